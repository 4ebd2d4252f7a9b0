"""ANSI-formatted stderr diagnostics using Rich."""

from rich.console import Console
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Exchange structure ------------------------------------------------------


def cycle_header(n: int, max_n: int | None) -> None:
    title = f"Cycle {n}/{max_n}" if max_n else f"Cycle {n}"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, provider: str) -> None:
    text = Text()
    text.append(f"  {provider} responded in {elapsed:.1f}s", style="green")
    _console.print(text)


def llm_spinner(label: str = "Waiting for the model"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def completion(cycles: int, outcome: str) -> None:
    if outcome == "ok":
        _console.print(
            Text(f"  ✓ Agent finished: {cycles} cycles", style="bold green")
        )
    else:
        _console.print(
            Text(f"  Agent finished: {cycles} cycles, outcome={outcome}", style="bold red")
        )


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, args_json: str) -> None:
    header = Text()
    header.append("  ▶ ", style="bold magenta")
    header.append(name, style="bold magenta")
    _console.print(header)
    if args_json:
        for line in args_json.splitlines():
            _console.print(Text(f"    {line}", style="dim"))


def tool_result(name: str, elapsed: float, preview: str) -> None:
    header = Text()
    header.append(f"  ✓ {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    _console.print(header)
    if preview:
        _console.print(Text(f"    {preview}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def approval_request(command: str) -> None:
    _console.print(Text("  The agent wants to execute:", style="yellow"))
    _console.print(Text(f"    {command}", style="cyan"))


# -- Assistant text ----------------------------------------------------------


def assistant_text(text: str) -> None:
    line = Text()
    line.append("  [assistant] ", style="blue")
    line.append(text)
    _console.print(line)


# -- Conversations -----------------------------------------------------------


def session_option(index: int, label: str, preview: str) -> None:
    line = Text()
    line.append(f"  {index:>3}) ", style="bold")
    line.append(label, style="cyan")
    if preview:
        line.append(f" => {preview}", style="dim")
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)
