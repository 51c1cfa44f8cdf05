"""Tests for instrumentation loading and hook invocation."""

import pytest

from debug_agent.errors import InstrumentationError
from debug_agent.replay.instrumentation import (
    MOCK_PAGE,
    Instrumentation,
    InstrumentationHooks,
    compile_instrumentation,
    evaluate_instrumentation,
    extract_hooks,
    load_instrumentation_file,
    normalize_to_hooks,
    sanitize_instrumentation_code,
)


class TestSanitize:
    """Tests for sanitize_instrumentation_code."""

    def test_strips_code_fences(self):
        """Test markdown code fences are removed."""
        raw = "```python\nhooks = {'setup': print}\n```"
        assert sanitize_instrumentation_code(raw) == "hooks = {'setup': print}"

    def test_strips_export_default(self):
        """Test an export default prefix is removed."""
        assert sanitize_instrumentation_code("export default lambda page: {}") == "lambda page: {}"

    def test_strips_module_exports(self):
        """Test a module.exports prefix is removed."""
        assert sanitize_instrumentation_code("module.exports = {'setup': print};") == "{'setup': print}"

    def test_strips_stray_semicolons(self):
        """Test trailing semicolons are removed."""
        assert sanitize_instrumentation_code(";;  {'a': 1} ;\n") == "{'a': 1}"


class TestEvaluate:
    """Tests for evaluate_instrumentation."""

    def test_expression(self):
        """Test a bare expression evaluates to its value."""
        assert evaluate_instrumentation("{'x': 1}") == {"x": 1}

    def test_module_entry_point(self):
        """Test a module-level hooks entry point is used."""
        value = evaluate_instrumentation("def setup(ctx):\n    pass\n\ninstrument = {'setup': setup}")
        assert set(value) == {"setup"}

    def test_module_level_hooks(self):
        """Test module-level hook functions are collected."""
        value = evaluate_instrumentation("def on_complete(ctx):\n    return 1\n")
        assert extract_hooks(value)["on_complete"]({}) == 1

    def test_module_without_hooks(self):
        """Test a module without hooks yields nothing."""
        assert evaluate_instrumentation("x = 42") is None

    def test_isolated_namespace(self):
        """Test each evaluation gets a fresh namespace."""
        evaluate_instrumentation("leaked = 1")
        assert "leaked" not in globals()


class TestCompileInstrumentation:
    """Tests for compile_instrumentation shape checks."""

    def test_mapping_with_hooks(self):
        """Test a mapping of hooks is accepted."""
        result = compile_instrumentation("{'setup': lambda ctx: None}")
        assert result.ok is True

    def test_factory_returning_hooks(self):
        """Test a page factory returning hooks is accepted."""
        result = compile_instrumentation("lambda page: {'on_complete': lambda ctx: page}")
        assert result.ok is True
        assert callable(result.value)

    def test_factory_without_arguments(self):
        """Test a factory taking no arguments is accepted."""
        assert compile_instrumentation("lambda: {'setup': lambda ctx: None}").ok is True

    def test_factory_failing_against_mock_page_is_accepted(self):
        """Test a factory failing against the stand-in page is still accepted."""
        result = compile_instrumentation("lambda page: {'setup': page.goto}")
        assert result.ok is True

    def test_async_factory_rejected(self):
        """Test async factories are rejected."""
        result = compile_instrumentation("async def hooks(page):\n    return {}\n")
        assert result.ok is False
        assert isinstance(result.error, InstrumentationError)

    def test_class_factory(self):
        """Test a class with hook methods is accepted."""
        code = (
            "class Hooks:\n"
            "    def __init__(self, page):\n"
            "        self.page = page\n"
            "    def on_complete(self, ctx):\n"
            "        return self.page\n"
            "hooks = Hooks\n"
        )
        assert compile_instrumentation(code).ok is True

    def test_camel_case_aliases(self):
        """Test camelCase hook names are accepted."""
        value = compile_instrumentation("{'onAfterEvent': lambda e, ctx: None}").value
        assert set(extract_hooks(value)) == {"on_after_event"}

    def test_value_without_hooks(self):
        """Test a value without hooks is rejected."""
        result = compile_instrumentation("{'unrelated': 1}")

        assert result.ok is False
        assert "Must be a function returning hooks" in str(result.error)

    def test_syntax_error(self):
        """Test syntax errors raise InstrumentationError."""
        result = compile_instrumentation("def (")
        assert result.ok is False
        assert isinstance(result.error, SyntaxError)

    def test_runtime_error(self):
        """Test errors while evaluating raise InstrumentationError."""
        result = compile_instrumentation("raise ValueError('boom')")
        assert result.ok is False
        assert "boom" in str(result.error)


class TestNormalizeToHooks:
    """Tests for normalize_to_hooks."""

    def test_factory_receives_page(self):
        """Test the factory is called with the page."""
        page = object()
        hooks = normalize_to_hooks(lambda p: {"on_complete": lambda ctx: p}, page)
        assert hooks.on_complete({}) is page

    def test_factory_raising_yields_empty_hooks(self):
        """Test a raising factory yields no hooks."""
        def factory(page):
            raise RuntimeError("no page yet")

        hooks = normalize_to_hooks(factory, object())
        assert hooks.loaded is False

    def test_non_callable_attributes_ignored(self):
        """Test non-callable hook attributes are ignored."""
        hooks = normalize_to_hooks({"setup": "not callable", "on_complete": lambda ctx: 1}, MOCK_PAGE)

        assert hooks.setup is None
        assert hooks.has("on_complete")

    def test_none(self):
        """Test None yields no hooks."""
        assert normalize_to_hooks(None, MOCK_PAGE).loaded is False


class TestInstrumentationHooks:
    """Tests for hook invocation."""

    @pytest.mark.asyncio
    async def test_missing_hook(self):
        """Test calling a missing hook returns None."""
        assert await InstrumentationHooks().call("setup", {}) is None

    @pytest.mark.asyncio
    async def test_sync_and_async_hooks(self):
        """Test sync and async hooks are both awaited."""
        async def on_complete(ctx):
            return {"done": ctx["page"]}

        hooks = InstrumentationHooks(setup=lambda ctx: "sync", on_complete=on_complete)

        assert await hooks.call("setup", {"page": 1}) == "sync"
        assert await hooks.call("on_complete", {"page": 2}) == {"done": 2}

    @pytest.mark.asyncio
    async def test_failing_hook_is_contained(self):
        """Test a failing hook is recorded, not raised."""
        def on_after_event(event, ctx):
            raise ValueError("selector missing")

        hooks = InstrumentationHooks(on_after_event=on_after_event)

        result = await hooks.call("on_after_event", None, {}, event_index=7)

        assert result is None
        assert hooks.errors == [{"hook": "on_after_event", "eventIndex": 7, "error": "selector missing"}]


class TestInstrumentation:
    """Tests for the Instrumentation wrapper."""

    def test_invalid_code_runs_hookless(self):
        """Test invalid source leaves the replay without hooks."""
        instrumentation = Instrumentation("x = 42")

        assert instrumentation.ok is False
        assert instrumentation.hooks.loaded is False

    def test_bind_uses_real_page(self):
        """Test bind rebuilds hooks against the real page."""
        instrumentation = Instrumentation("lambda page: {'on_complete': lambda ctx: page}")
        page = object()

        assert instrumentation.hooks.on_complete({}) is MOCK_PAGE
        hooks = instrumentation.bind(page)

        assert hooks.on_complete({}) is page
        assert instrumentation.hooks is hooks

    def test_bind_keeps_recorded_errors(self):
        """Test bind keeps errors recorded before it."""
        instrumentation = Instrumentation("{'setup': lambda ctx: None}")
        instrumentation.hooks.errors.append({"hook": "setup"})

        hooks = instrumentation.bind(object())

        assert hooks.errors == [{"hook": "setup"}]

    def test_fenced_source(self):
        """Test fenced source is sanitized before evaluation."""
        instrumentation = Instrumentation("```python\ndef setup(ctx):\n    pass\n```")
        assert instrumentation.ok is True
        assert instrumentation.hooks.has("setup")


class TestLoadInstrumentationFile:
    """Tests for load_instrumentation_file."""

    def test_load(self, tmp_path):
        """Test loading instrumentation from a file."""
        path = tmp_path / "hooks.py"
        path.write_text("def setup(ctx):\n    pass\n")
        assert "def setup" in load_instrumentation_file(path)

    def test_missing_file(self, tmp_path):
        """Test a missing file raises InstrumentationError."""
        with pytest.raises(InstrumentationError, match="Could not load instrumentation file"):
            load_instrumentation_file(tmp_path / "missing.py")
