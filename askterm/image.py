"""Clipboard image capture and multimodal content parts."""

import base64
import subprocess

from .errors import ToolError

CLIPBOARD_TIMEOUT = 10


def detect_display_server() -> str | None:
    """Return "wayland" or "xorg" by looking at the process list, else None."""
    try:
        proc = subprocess.run(
            ["ps", "-A"], capture_output=True, text=True, timeout=CLIPBOARD_TIMEOUT
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    listing = proc.stdout.lower()
    if "wayland" in listing:
        return "wayland"
    if "xorg" in listing:
        return "xorg"
    return None


def detect_clipboard_command(xorg_command: str, wayland_command: str) -> str | None:
    server = detect_display_server()
    if server == "wayland":
        return wayland_command
    if server == "xorg":
        return xorg_command
    return None


def grab_clipboard_image(command: str | None) -> str:
    """Run the clipboard command and return its output base64-encoded."""
    if not command:
        raise ToolError(
            "unsupported display server for clipboard images; "
            "only Xorg and Wayland are supported"
        )
    try:
        proc = subprocess.run(
            ["sh", "-c", command], capture_output=True, timeout=CLIPBOARD_TIMEOUT
        )
    except subprocess.TimeoutExpired:
        raise ToolError(f"clipboard command timed out after {CLIPBOARD_TIMEOUT}s")
    except OSError as e:
        raise ToolError(f"failed to run clipboard command: {e}")
    if not proc.stdout:
        raise ToolError(
            "clipboard returned no data. Ensure an image is on the clipboard. "
            f"clipboard_command is {command!r}"
        )
    return base64.b64encode(proc.stdout).decode("ascii")


def data_url(b64: str, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{b64}"


def image_part(url: str, detail: str) -> dict:
    return {"type": "image_url", "image_url": {"url": url, "detail": detail}}


def build_image_content(text: str, url: str, detail: str) -> list[dict]:
    """User content with the prompt text followed by one image."""
    return [{"type": "text", "text": text}, image_part(url, detail)]
