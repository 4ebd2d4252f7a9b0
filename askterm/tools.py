"""Tool registry and built-in tools for agent mode."""

import copy
import fnmatch
import os
import signal
import subprocess
import sys
import tempfile
import threading
from dataclasses import replace
from pathlib import Path

from . import fmt
from .errors import ToolError
from .fetch import fetch_url, web_search
from .image import data_url, grab_clipboard_image
from .session import ToolCall, ToolResult

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "run_shell_command",
            "description": (
                "Run a shell command with /bin/sh and return its combined "
                "stdout and stderr. The user may be asked to approve it first."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "command": {
                        "type": "string",
                        "description": "The shell command to execute.",
                    },
                    "timeout": {
                        "type": "integer",
                        "description": "Timeout in seconds (1-120). Defaults to 30.",
                    },
                },
                "required": ["command"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "read_file",
            "description": (
                "Read a text file or list a directory. Output is capped at 50KB; "
                "use offset to continue from the line given in the hint."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "Path to the file or directory. ~ is expanded.",
                    },
                    "offset": {
                        "type": "integer",
                        "description": "1-based line to start from. Defaults to 1.",
                    },
                },
                "required": ["path"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "write_file",
            "description": (
                "Create or overwrite a file with the given content. "
                "Parent directories are created as needed."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path to the file."},
                    "content": {
                        "type": "string",
                        "description": "The full content to write.",
                    },
                },
                "required": ["path", "content"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "search_files",
            "description": (
                "Recursively find files whose name matches a glob pattern "
                "(e.g. '*.py'). .git directories are skipped."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "Directory to search. Defaults to '.'.",
                    },
                    "pattern": {
                        "type": "string",
                        "description": "Glob matched against file names.",
                    },
                },
                "required": ["pattern"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "fetch_url",
            "description": (
                "Fetch a web page over HTTP(S) and return it as markdown, text "
                "or raw HTML. Private and internal addresses are blocked."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "The URL to fetch."},
                    "format": {
                        "type": "string",
                        "enum": ["markdown", "text", "html"],
                        "description": "Output format. Defaults to markdown.",
                    },
                },
                "required": ["url"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "web_search",
            "description": (
                "Search the web and return up to 5 results with title, "
                "snippet and URL."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The search query."}
                },
                "required": ["query"],
            },
        },
    },
]

CLIPBOARD_TOOL = {
    "type": "function",
    "function": {
        "name": "clipboard_image",
        "description": "Attach the image currently on the user's clipboard.",
        "parameters": {"type": "object", "properties": {}},
    },
}

MAX_OUTPUT_BYTES = 50 * 1024  # read_file cap
BINARY_CHECK_BYTES = 8 * 1024
MAX_SEARCH_RESULTS = 100
MAX_CAPTURE_BYTES = 1024 * 1024  # shell output cap
LARGE_OUTPUT_BYTES = 32 * 1024  # above this, output is spilled to a file
PREVIEW_CHARS = 2000
MIN_TIMEOUT = 1
MAX_TIMEOUT = 120
_KILL_WAIT_TIMEOUT = 5


def clamp_timeout(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ToolError(f"timeout must be a number, got {type(value).__name__}")
    return max(MIN_TIMEOUT, min(int(value), MAX_TIMEOUT))


def _str_arg(args: dict, key: str, default: str | None = None) -> str:
    value = args.get(key, default)
    if value is None:
        raise ToolError(f"missing required argument {key!r}")
    if not isinstance(value, str):
        raise ToolError(f"argument {key!r} must be a string, got {type(value).__name__}")
    return value


def confirm_on_tty(command: str) -> bool:
    """Ask the user to approve a shell command. Denies when stdin is not a terminal."""
    if not sys.stdin.isatty():
        fmt.warning("stdin is not a terminal, cannot ask for approval; command denied")
        return False
    from prompt_toolkit.shortcuts import confirm

    try:
        return confirm("Execute this command?")
    except EOFError:
        return False


# -- Process handling ----------------------------------------------------------


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill the process group started with start_new_session, then reap."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except OSError:
        pass  # already exited
    try:
        proc.kill()
    except OSError:
        pass
    try:
        proc.wait(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        pass


def capture_process(proc: subprocess.Popen, timeout: int) -> tuple[str, bool, bool]:
    """Drain combined output with a size cap and a deadline.

    Returns (output, timed_out, truncated).
    """
    chunks: list[bytes] = []
    total = 0
    truncated = False

    def _reader():
        nonlocal total, truncated
        try:
            while True:
                chunk = proc.stdout.read(4096)
                if not chunk:
                    break
                if truncated:
                    continue  # keep draining so the child never blocks on a full pipe
                chunks.append(chunk[: MAX_CAPTURE_BYTES - total])
                total += len(chunks[-1])
                if total >= MAX_CAPTURE_BYTES:
                    truncated = True
        except (OSError, ValueError):
            pass  # pipe closed after kill

    reader = threading.Thread(target=_reader, daemon=True)
    reader.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_tree(proc)

    reader.join(timeout=2)
    proc.stdout.close()
    return b"".join(chunks).decode("utf-8", errors="replace"), timed_out, truncated


class ToolRegistry:
    """The tools offered to the model in agent mode, and their executor.

    ``execute`` never raises for tool-level problems: unknown tools, bad
    arguments and failures inside a tool all come back as a ToolResult with
    ``success=False``.
    """

    def __init__(
        self,
        base_dir: str = ".",
        *,
        allowed_dirs=(),
        timeout: int = 30,
        auto_approve: bool = False,
        confirm=None,
        clipboard_command: str | None = None,
        output_dir: str | Path | None = None,
    ):
        self.base_dir = Path(base_dir).resolve()
        self.allowed_dirs = [Path(d).expanduser().resolve() for d in allowed_dirs]
        self.timeout = clamp_timeout(timeout)
        self.auto_approve = auto_approve
        self.confirm = confirm or confirm_on_tty
        self.clipboard_command = clipboard_command
        self.output_dir = Path(output_dir) if output_dir else Path(tempfile.gettempdir())
        self._spilled: set[Path] = set()
        self._handlers = {
            "run_shell_command": self._run_shell_command,
            "read_file": self._read_file,
            "write_file": self._write_file,
            "search_files": self._search_files,
            "fetch_url": self._fetch_url,
            "web_search": self._web_search,
        }
        if clipboard_command:
            self._handlers["clipboard_image"] = self._clipboard_image

    def names(self) -> list[str]:
        return list(self._handlers)

    def schemas(self) -> list[dict]:
        tools = copy.deepcopy(TOOLS)
        if "clipboard_image" in self._handlers:
            tools.append(copy.deepcopy(CLIPBOARD_TOOL))
        return tools

    def execute(self, call: ToolCall) -> ToolResult:
        handler = self._handlers.get(call.tool_name)
        if handler is None:
            return ToolResult(call.id, "unknown tool", success=False)
        if not isinstance(call.arguments, dict):
            return ToolResult(
                call.id,
                f"error: arguments must be a JSON object, got {str(call.arguments)[:200]!r}",
                success=False,
            )
        try:
            output = handler(call.arguments)
        except ToolError as e:
            return ToolResult(call.id, f"error: {e}", success=False)
        except Exception as e:
            return ToolResult(
                call.id, f"error: {call.tool_name} failed: {e}", success=False
            )
        if isinstance(output, ToolResult):
            return replace(output, tool_call_id=call.id)
        return ToolResult(call.id, output)

    # -- Paths ---------------------------------------------------------------

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` against base_dir and enforce the allowed_dirs scope."""
        if not path:
            raise ToolError("path must be a non-empty string")
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        resolved = candidate.resolve()
        if not self.allowed_dirs or resolved in self._spilled:
            return resolved
        for root in self.allowed_dirs:
            if resolved.is_relative_to(root):
                return resolved
        allowed = ", ".join(str(d) for d in self.allowed_dirs)
        raise ToolError(f"path {path!r} is outside the allowed directories ({allowed})")

    def spill(self, output: str) -> str:
        """Move output over LARGE_OUTPUT_BYTES to a temp file; return a summary."""
        data = output.encode("utf-8")
        if len(data) <= LARGE_OUTPUT_BYTES:
            return output
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                prefix="ask_tool_output_", suffix=".txt", dir=self.output_dir
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as e:
            head = data[:LARGE_OUTPUT_BYTES].decode("utf-8", errors="ignore")
            return f"{head}\n[output truncated at {LARGE_OUTPUT_BYTES} bytes; could not save it: {e}]"
        self._spilled.add(Path(name).resolve())
        return (
            f"Output too large for context ({len(data)} bytes, "
            f"{len(output.splitlines())} lines).\n"
            f"Full output saved to: {name}\n"
            "Use read_file with offset to page through it.\n"
            f"Preview (first {PREVIEW_CHARS} chars):\n{output[:PREVIEW_CHARS]}"
        )

    # -- Built-in tools --------------------------------------------------------

    def _run_shell_command(self, args: dict) -> str:
        command = _str_arg(args, "command")
        if not command.strip():
            raise ToolError("command must not be empty")
        timeout = clamp_timeout(args.get("timeout", self.timeout))
        if not self.auto_approve:
            fmt.approval_request(command)
            if not self.confirm(command):
                raise ToolError("the user declined to run this command")
        if not self.base_dir.is_dir():
            raise ToolError(f"working directory does not exist: {self.base_dir}")

        try:
            proc = subprocess.Popen(
                ["/bin/sh", "-c", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=self.base_dir,
                start_new_session=True,
            )
        except OSError as e:
            raise ToolError(f"failed to start shell command: {e}")

        output, timed_out, truncated = capture_process(proc, timeout)
        text = output or "(no output)"
        if truncated:
            text += f"\n[output truncated at {MAX_CAPTURE_BYTES} bytes]"
        text = self.spill(text)
        if timed_out:
            raise ToolError(f"command timed out after {timeout}s\n{text}")
        if proc.returncode != 0:
            raise ToolError(f"exit code {proc.returncode}\n{text}")
        return text

    def _read_file(self, args: dict) -> str:
        path = _str_arg(args, "path")
        offset = args.get("offset", 1)
        if isinstance(offset, bool) or not isinstance(offset, int):
            raise ToolError("offset must be an integer")
        resolved = self.resolve(path)
        if not resolved.exists():
            raise ToolError(f"path does not exist: {path}")

        if resolved.is_dir():
            names = sorted(
                child.name + ("/" if child.is_dir() else "")
                for child in resolved.iterdir()
            )
            listing = "\n".join(names)
            if len(listing.encode("utf-8")) > MAX_OUTPUT_BYTES:
                listing = listing.encode("utf-8")[:MAX_OUTPUT_BYTES].decode(
                    "utf-8", errors="ignore"
                ) + "\n[listing truncated at 50KB]"
            return listing

        with open(resolved, "rb") as f:
            head = f.read(BINARY_CHECK_BYTES)
        if b"\x00" in head:
            raise ToolError(f"binary file detected: {path}")
        try:
            lines = resolved.read_text(encoding="utf-8").splitlines(keepends=True)
        except UnicodeDecodeError as e:
            raise ToolError(f"failed to decode {path} as UTF-8: {e}")

        start = max(offset - 1, 0)
        out: list[str] = []
        size = 0
        for line in lines[start:]:
            n = len(line.encode("utf-8"))
            if size + n > MAX_OUTPUT_BYTES:
                break
            out.append(line)
            size += n
        remaining = len(lines) - start - len(out)
        text = "".join(out)
        if remaining > 0:
            text += (
                f"\n[{remaining} more lines, use offset={start + len(out) + 1} to continue]"
            )
        return text

    def _write_file(self, args: dict) -> str:
        path = _str_arg(args, "path")
        content = _str_arg(args, "content")
        resolved = self.resolve(path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8")
        resolved.write_bytes(data)
        return f"Wrote {len(data)} bytes to {path}"

    def _search_files(self, args: dict) -> str:
        root = self.resolve(_str_arg(args, "path", "."))
        pattern = _str_arg(args, "pattern")
        if not root.is_dir():
            raise ToolError(f"not a directory: {root}")
        matches: list[str] = []
        truncated = False
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d != ".git")
            for name in sorted(filenames):
                if fnmatch.fnmatch(name, pattern):
                    if len(matches) >= MAX_SEARCH_RESULTS:
                        truncated = True
                        break
                    matches.append(os.path.join(dirpath, name))
            if truncated:
                break
        if not matches:
            return f"No files matching {pattern!r} under {root}"
        result = "\n".join(matches)
        if truncated:
            result += f"\n[results truncated at {MAX_SEARCH_RESULTS}]"
        return result

    def _fetch_url(self, args: dict) -> str:
        return fetch_url(
            _str_arg(args, "url"),
            format=_str_arg(args, "format", "markdown"),
            timeout=clamp_timeout(args.get("timeout", self.timeout)),
        )

    def _web_search(self, args: dict) -> str:
        return web_search(
            _str_arg(args, "query"),
            timeout=clamp_timeout(args.get("timeout", self.timeout)),
        )

    def _clipboard_image(self, args: dict) -> ToolResult:
        b64 = grab_clipboard_image(self.clipboard_command)
        return ToolResult(
            tool_call_id="",
            output=f"Attached the clipboard image ({len(b64)} bytes, base64 PNG).",
            image_url=data_url(b64),
        )
