"""Human-readable rendering of a session, for the editor view and --last."""

import json
import os
import shlex
import shutil
import subprocess
import tempfile

from .errors import AgentError
from .session import Message, Session

IMAGE_URL_PREVIEW = 70


def _line(ch: str, width: int) -> str:
    return ch * width


def render_content(message: Message) -> str:
    content = message.content
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        out = []
        for part in content:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "text":
                out.append(part.get("text", ""))
            elif part.get("type") == "image_url":
                url = (part.get("image_url") or {}).get("url", "")
                out.append("[Image content - not displayed in text history]")
                out.append(f"[Image URL (truncated): {url[:IMAGE_URL_PREVIEW]}...]")
        return "\n".join(out)
    return json.dumps(content)


def render_message(message: Message, width: int) -> str:
    lines = [_line("▃", width), f"▍{message.role} ▐", _line("▀", width)]
    if message.role == "tool" and message.tool_result is not None:
        status = "ok" if message.tool_result.success else "failed"
        lines.append(f"[result for {message.tool_result.tool_call_id}: {status}]")
    body = render_content(message)
    if body:
        lines.append(body)
    for call in message.tool_calls:
        args = call.arguments if isinstance(call.arguments, str) else json.dumps(call.arguments)
        lines.append(f"[tool call {call.id}] {call.tool_name}({args})")
    return "\n".join(lines)


def render_transcript(session: Session, width: int | None = None) -> str:
    if width is None:
        width = shutil.get_terminal_size((80, 24)).columns
    return "".join("\n\n" + render_message(m, width) for m in session.messages)


def show_in_editor(session: Session, editor: str) -> None:
    """Write the rendered transcript to a temp file and open it in ``editor``."""
    fd, path = tempfile.mkstemp(prefix="ask_hist_", suffix=".txt")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(render_transcript(session))
        try:
            subprocess.run([*shlex.split(editor), path], check=False)
        except OSError as e:
            raise AgentError(f"failed to open editor {editor!r}: {e}")
    finally:
        try:
            os.unlink(path)
        except OSError:
            pass


def last_message_json(session: Session) -> str:
    """The last message's content as pretty JSON (``null`` for an empty session)."""
    last = session.last()
    return json.dumps(last.content if last else None, indent=2, ensure_ascii=False)
