"""JavaScript generator for the in-page capture script.

The script is installed with ``page.add_init_script`` on every tracked tab.
It reports interactions by writing ``TRACK:<json>`` lines to the console,
which the recorder consumes through the page ``console`` event.
"""

import json
from dataclasses import dataclass
from typing import Optional

TRACK_PREFIX = "TRACK:"


@dataclass
class TrackingScriptConfig:
    """Configuration for the capture script."""

    mousemove_throttle_ms: int = 50
    scroll_debounce_ms: int = 100
    popstate_delay_ms: int = 10
    click_text_limit: int = 50
    capture_mousemove: bool = True


class TrackingScriptGenerator:
    """Generates the capture script injected into recorded pages."""

    def __init__(self, config: Optional[TrackingScriptConfig] = None):
        self.config = config or TrackingScriptConfig()

    def generate(self) -> str:
        """Generate the init script.

        Returns:
            JavaScript source suitable for ``page.add_init_script``
        """
        config = self.config
        prefix = json.dumps(TRACK_PREFIX)

        mousemove = ""
        if config.capture_mousemove:
            mousemove = f'''
  var lastMouseMove = 0;
  document.addEventListener("mousemove", function(e) {{
    var now = Date.now();
    if (now - lastMouseMove > {config.mousemove_throttle_ms}) {{
      lastMouseMove = now;
      track("mousemove", {{ x: e.pageX, y: e.pageY, clientX: e.clientX, clientY: e.clientY }});
    }}
  }}, true);
'''

        return f'''(function() {{
  if (window.__debugAgentTracking) return;
  window.__debugAgentTracking = true;

  var track = function(type, data) {{
    console.log({prefix} + JSON.stringify({{ type: type, data: data }}));
  }};

  // History API and hash navigations never fire a load event
  var currentUrl = window.location.href;
  var reportSpa = function(method) {{
    var newUrl = window.location.href;
    if (newUrl !== currentUrl || method === "hashchange") {{
      track("spa_navigation", {{
        url: newUrl,
        previousUrl: currentUrl,
        method: method,
        title: document.title
      }});
      currentUrl = newUrl;
    }}
  }};

  var originalPushState = history.pushState;
  var originalReplaceState = history.replaceState;
  history.pushState = function() {{
    var result = originalPushState.apply(history, arguments);
    reportSpa("pushState");
    return result;
  }};
  history.replaceState = function() {{
    var result = originalReplaceState.apply(history, arguments);
    reportSpa("replaceState");
    return result;
  }};
  window.addEventListener("popstate", function() {{
    setTimeout(function() {{ reportSpa("popstate"); }}, {config.popstate_delay_ms});
  }});
  window.addEventListener("hashchange", function() {{ reportSpa("hashchange"); }});
{mousemove}
  document.addEventListener("click", function(e) {{
    var target = e.target;
    var rect = target.getBoundingClientRect();
    track("click", {{
      x: e.pageX,
      y: e.pageY,
      clientX: e.clientX,
      clientY: e.clientY,
      button: e.button,
      target: {{
        tag: target.tagName,
        id: target.id,
        class: target.className,
        text: (target.textContent || "").trim().substring(0, {config.click_text_limit}),
        href: target.href,
        value: target.value,
        rect: {{ x: rect.x, y: rect.y, width: rect.width, height: rect.height }}
      }}
    }});
  }}, true);

  document.addEventListener("keydown", function(e) {{
    track("keydown", {{
      key: e.key,
      code: e.code,
      keyCode: e.keyCode,
      ctrlKey: e.ctrlKey,
      shiftKey: e.shiftKey,
      altKey: e.altKey,
      metaKey: e.metaKey,
      target: {{ tag: e.target.tagName, id: e.target.id, name: e.target.name }}
    }});
  }}, true);

  document.addEventListener("input", function(e) {{
    var target = e.target;
    track("input", {{
      value: target.value,
      type: target.type,
      name: target.name,
      id: target.id,
      tag: target.tagName
    }});
  }}, true);

  var scrollTimeout;
  document.addEventListener("scroll", function() {{
    clearTimeout(scrollTimeout);
    scrollTimeout = setTimeout(function() {{
      track("scroll", {{
        x: window.scrollX,
        y: window.scrollY,
        width: document.documentElement.scrollWidth,
        height: document.documentElement.scrollHeight,
        viewportWidth: window.innerWidth,
        viewportHeight: window.innerHeight
      }});
    }}, {config.scroll_debounce_ms});
  }}, true);

  document.addEventListener("focus", function(e) {{
    var target = e.target;
    track("focus", {{ tag: target.tagName, id: target.id, name: target.name, type: target.type }});
  }}, true);

  document.addEventListener("submit", function(e) {{
    var form = e.target;
    var fields = {{}};
    form.querySelectorAll("input, select, textarea").forEach(function(input) {{
      if (input.name) fields[input.name] = input.value;
    }});
    track("submit", {{ action: form.action, method: form.method, data: fields }});
  }}, true);

  var onResize = function() {{
    track("viewport_resize", {{ width: window.innerWidth, height: window.innerHeight }});
  }};
  onResize();
  window.addEventListener("resize", onResize);

  track("tracking_initialized", {{ url: window.location.href }});
}})();'''


def parse_track_message(text: str) -> Optional[dict]:
    """Decode a ``TRACK:`` console line into ``{"type", "data"}``.

    Returns None for other console output and for malformed lines.
    """
    if not text.startswith(TRACK_PREFIX):
        return None
    try:
        message = json.loads(text[len(TRACK_PREFIX):])
    except json.JSONDecodeError:
        return None
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        return None
    data = message.get("data")
    return {"type": message["type"], "data": data if isinstance(data, dict) else {}}
