"""Instrumentation adapter - load user hook code for replay.

Instrumentation is Python source supplied at replay time. It is evaluated in
its own namespace and normalized into four optional lifecycle hooks:

    setup(ctx)                     once, after the first tab exists
    on_before_event(event, ctx)    before each event that resolves to a tab
    on_after_event(event, ctx)     after each event that resolves to a tab
    on_complete(ctx)               once at the end; its return value is the result

``ctx`` is a dict with ``page`` (the Playwright page) and, for per-event
hooks, ``event_index``. ``event`` is the ``InteractionEvent`` being replayed.
Hooks may be plain functions or coroutines. The camelCase names
(``onBeforeEvent`` ...) are accepted as aliases.

Accepted shapes:

    # a factory called with the page handle
    lambda page: {"on_after_event": lambda event, ctx: print(event.type)}

    # a mapping or object exposing hooks
    {"setup": lambda ctx: None, "on_complete": lambda ctx: {"done": True}}

    # a module defining hook functions, or a ``hooks`` binding
    async def on_complete(ctx):
        return {"title": await ctx["page"].title()}
"""

import builtins
import inspect
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional, Union

import structlog

from ..errors import InstrumentationError

logger = structlog.get_logger()

# Canonical hook name -> names recognised in instrumentation code
HOOK_ALIASES: dict[str, tuple[str, ...]] = {
    "setup": ("setup",),
    "on_before_event": ("on_before_event", "onBeforeEvent"),
    "on_after_event": ("on_after_event", "onAfterEvent"),
    "on_complete": ("on_complete", "onComplete"),
}

# Module-level bindings taken as the instrumentation value, in order
ENTRY_POINTS = ("hooks", "instrument", "instrumentation")

# Stands in for the page while the code's shape is validated
MOCK_PAGE = SimpleNamespace(mock=True)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\n?")
_PREFIXES = (
    re.compile(r"^export\s+default\s+", re.IGNORECASE),
    re.compile(r"^export\s+", re.IGNORECASE),
    re.compile(r"^module\.exports\s*=\s*", re.IGNORECASE),
)


def sanitize_instrumentation_code(raw: str) -> str:
    """Strip wrapping artifacts: code fences, export prefixes, stray semicolons."""
    code = _FENCE_RE.sub("", raw).strip()
    for prefix in _PREFIXES:
        code = prefix.sub("", code)
    code = re.sub(r"^[;\s]+", "", code)
    code = re.sub(r"[;\s]+$", "", code)
    return code


@dataclass
class CompileResult:
    """Outcome of evaluating instrumentation code."""

    ok: bool
    value: Any = None
    error: Optional[Exception] = None


def _lookup(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(name)
    return getattr(value, name, None)


def extract_hooks(value: Any) -> dict[str, Callable]:
    """Callable hooks exposed by a mapping or object, keyed by canonical name."""
    if value is None:
        return {}
    found = {}
    for canonical, aliases in HOOK_ALIASES.items():
        for alias in aliases:
            candidate = _lookup(value, alias)
            if callable(candidate):
                found[canonical] = candidate
                break
    return found


def _is_factory(value: Any) -> bool:
    # Classes expose their methods as attributes, so they are always factories
    return callable(value) and (inspect.isclass(value) or not extract_hooks(value))


def _call_factory(factory: Callable, page: Any) -> Any:
    """Call a factory with the page, or without arguments if it takes none."""
    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError):
        return factory(page)

    takes_argument = any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        for p in signature.parameters.values()
    )
    return factory(page) if takes_argument else factory()


def evaluate_instrumentation(code: str) -> Any:
    """Evaluate instrumentation code in a fresh namespace and return its value.

    An expression evaluates to itself. Anything else runs as a module; the
    value is its ``hooks``/``instrument``/``instrumentation`` binding, or a
    namespace of the hook functions it defines.
    """
    namespace: dict[str, Any] = {
        "__name__": "debug_agent_instrumentation",
        "__builtins__": builtins,
    }
    try:
        expression = compile(code, "<instrumentation>", "eval")
    except SyntaxError:
        expression = None

    if expression is not None:
        return eval(expression, namespace)

    exec(compile(code, "<instrumentation>", "exec"), namespace)
    for name in ENTRY_POINTS:
        if name in namespace:
            return namespace[name]

    hooks = extract_hooks(namespace)
    return SimpleNamespace(**hooks) if hooks else None


def compile_instrumentation(code: str) -> CompileResult:
    """Evaluate code and check it has a usable shape.

    Usable means a factory that returns something with at least one hook (a
    factory that raises against the mock page is accepted and checked again
    with the real page), or a mapping/object exposing at least one hook.
    """
    try:
        value = evaluate_instrumentation(code)
    except Exception as e:
        return CompileResult(ok=False, error=e)

    if _is_factory(value):
        try:
            produced = _call_factory(value, MOCK_PAGE)
        except Exception:
            return CompileResult(ok=True, value=value)
        if inspect.isawaitable(produced):
            produced.close()
            return CompileResult(
                ok=False,
                error=InstrumentationError("Instrumentation factories must not be async"),
            )
        if extract_hooks(produced):
            return CompileResult(ok=True, value=value)

    elif extract_hooks(value):
        return CompileResult(ok=True, value=value)

    return CompileResult(
        ok=False,
        error=InstrumentationError(
            "Must be a function returning hooks or an object with hook functions"
        ),
    )


@dataclass
class InstrumentationHooks:
    """The four optional lifecycle hooks. Any subset may be missing."""

    setup: Optional[Callable] = None
    on_before_event: Optional[Callable] = None
    on_after_event: Optional[Callable] = None
    on_complete: Optional[Callable] = None
    errors: list[dict] = field(default_factory=list)

    @property
    def loaded(self) -> bool:
        return any((self.setup, self.on_before_event, self.on_after_event, self.on_complete))

    def has(self, name: str) -> bool:
        return getattr(self, name, None) is not None

    async def call(self, name: str, *args, event_index: Optional[int] = None) -> Any:
        """Invoke a hook. Exceptions are logged and swallowed so replay continues."""
        hook = getattr(self, name, None)
        if hook is None:
            return None
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.error(
                "Instrumentation hook failed",
                hook=name,
                event_index=event_index,
                error=str(e),
                exc_info=True,
            )
            self.errors.append({"hook": name, "eventIndex": event_index, "error": str(e)})
            return None


def normalize_to_hooks(value: Any, page: Any) -> InstrumentationHooks:
    """Turn an evaluated instrumentation value into hooks bound to ``page``."""
    if value is None:
        return InstrumentationHooks()

    if _is_factory(value):
        try:
            produced = _call_factory(value, page)
        except Exception as e:
            logger.error("Failed to call instrumentation function", error=str(e))
            return InstrumentationHooks()
        if inspect.isawaitable(produced):
            produced.close()
            logger.error("Instrumentation factories must not be async")
            return InstrumentationHooks()
        if produced is None or _is_factory(produced):
            return InstrumentationHooks()
        value = produced

    return InstrumentationHooks(**extract_hooks(value))


class Instrumentation:
    """Instrumentation loaded for one replay run.

    Hooks are normalized twice: provisionally against ``MOCK_PAGE`` when the
    code is loaded, and for real by ``bind`` once the first tab exists.
    Invalid code leaves the run without hooks.
    """

    def __init__(self, source: str):
        self.code = sanitize_instrumentation_code(source)
        self.result = compile_instrumentation(self.code)
        self.value = self.result.value if self.result.ok else None
        self.log = logger.bind(component="instrumentation")

        if not self.result.ok:
            self.log.warning(
                "Instrumentation disabled",
                error=str(self.result.error),
            )
            self.hooks = InstrumentationHooks()
        else:
            self.hooks = normalize_to_hooks(self.value, MOCK_PAGE)
            self.log.info("Instrumentation loaded", hooks=sorted(extract_hooks(self.hooks)))

    @property
    def ok(self) -> bool:
        return self.result.ok

    def bind(self, page: Any) -> InstrumentationHooks:
        """Re-normalize against the real page handle."""
        if self.value is not None:
            errors = self.hooks.errors
            self.hooks = normalize_to_hooks(self.value, page)
            self.hooks.errors = errors
        return self.hooks


def load_instrumentation_file(path: Union[str, Path]) -> str:
    """Read instrumentation source.

    Raises:
        InstrumentationError: if the file cannot be read
    """
    path = Path(path)
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise InstrumentationError(f"Could not load instrumentation file {path}: {e}") from e
