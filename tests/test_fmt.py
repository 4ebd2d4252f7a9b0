"""Tests for the fmt module (ANSI-formatted output helpers)."""

from io import StringIO

from rich.console import Console

from askterm import fmt


def _capture(func, *args, **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old = fmt._console
    fmt._console = Console(file=buf, no_color=True, width=80)
    try:
        func(*args, **kwargs)
    finally:
        fmt._console = old
    return buf.getvalue()


class TestCycleHeader:
    def test_with_cap(self):
        assert "Cycle 3/10" in _capture(fmt.cycle_header, 3, 10)

    def test_unbounded(self):
        out = _capture(fmt.cycle_header, 7, None)
        assert "Cycle 7" in out
        assert "/" not in out


class TestLlmTiming:
    def test_provider_and_elapsed(self):
        out = _capture(fmt.llm_timing, 1.44, "gemini")
        assert "gemini responded in 1.4s" in out


class TestCompletion:
    def test_ok(self):
        out = _capture(fmt.completion, 5, "ok")
        assert "Agent finished: 5 cycles" in out
        assert "outcome" not in out

    def test_exhausted(self):
        out = _capture(fmt.completion, 2, "exhausted")
        assert "outcome=exhausted" in out


class TestToolOutput:
    def test_tool_call_lists_arguments(self):
        out = _capture(fmt.tool_call, "read_file", '{\n  "path": "a.txt"\n}')
        assert "read_file" in out
        assert '"path": "a.txt"' in out

    def test_tool_result(self):
        out = _capture(fmt.tool_result, "run_shell_command", 0.25, "hello")
        assert "run_shell_command" in out
        assert "0.2s" in out or "0.3s" in out
        assert "hello" in out

    def test_tool_error(self):
        out = _capture(fmt.tool_error, "fetch_url", "error: HTTP 404")
        assert "fetch_url" in out
        assert "HTTP 404" in out

    def test_approval_request(self):
        out = _capture(fmt.approval_request, "rm -rf build")
        assert "The agent wants to execute:" in out
        assert "rm -rf build" in out

    def test_brackets_are_literal(self):
        out = _capture(fmt.tool_call, "run_shell_command", "[bold]x[/bold]")
        assert "[bold]x[/bold]" in out


class TestDiagnostics:
    def test_session_option(self):
        out = _capture(fmt.session_option, 2, "1234", "What is a monad?")
        assert "  2) 1234 => What is a monad?" in out

    def test_session_option_without_preview(self):
        out = _capture(fmt.session_option, 0, ">>> Delete all conversations", "")
        assert "=>" not in out

    def test_warning(self):
        assert "Warning: careful" in _capture(fmt.warning, "careful")

    def test_error(self):
        assert "Error: boom" in _capture(fmt.error, "boom")

    def test_info(self):
        assert "hello" in _capture(fmt.info, "hello")

    def test_assistant_text(self):
        assert "[assistant] hi" in _capture(fmt.assistant_text, "hi")


class TestInit:
    def test_no_color(self):
        old = fmt._console
        try:
            fmt.init(no_color=True)
            assert fmt._console.no_color
            assert fmt._console.stderr
        finally:
            fmt._console = old
