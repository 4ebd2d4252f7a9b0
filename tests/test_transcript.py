"""Tests for transcript rendering."""

import json
import os
from unittest.mock import patch

import pytest

from askterm.errors import AgentError
from askterm.session import Message, Session, ToolCall, ToolResult
from askterm.transcript import (
    last_message_json,
    render_message,
    render_transcript,
    show_in_editor,
)


def _session(*messages):
    session = Session(id="t")
    session.extend(list(messages))
    return session


class TestRender:
    def test_banner(self):
        out = render_message(Message.user("hello"), 10)
        assert out.splitlines() == ["▃" * 10, "▍user ▐", "▀" * 10, "hello"]

    def test_image_parts_are_summarised(self):
        url = "data:image/png;base64," + "A" * 200
        message = Message.user(
            [
                {"type": "text", "text": "what is this?"},
                {"type": "image_url", "image_url": {"url": url, "detail": "high"}},
            ]
        )
        out = render_message(message, 5)
        assert "what is this?" in out
        assert "[Image content - not displayed in text history]" in out
        assert f"[Image URL (truncated): {url[:70]}...]" in out
        assert "A" * 100 not in out

    def test_tool_exchange(self):
        call_msg = Message(
            role="assistant", tool_calls=[ToolCall("c1", "read_file", {"path": "a"})]
        )
        result_msg = Message.tool(ToolResult("c1", "boom", success=False))
        assert '[tool call c1] read_file({"path": "a"})' in render_message(call_msg, 5)
        out = render_message(result_msg, 5)
        assert "[result for c1: failed]" in out
        assert "boom" in out

    def test_transcript_in_order(self):
        session = _session(
            Message(role="system", content="be brief"),
            Message.user("q"),
            Message(role="assistant", content="a"),
        )
        out = render_transcript(session, width=4)
        assert out.startswith("\n\n▃▃▃▃")
        assert out.index("▍system") < out.index("▍user") < out.index("▍assistant")

    def test_empty_transcript(self):
        assert render_transcript(Session(id="t"), width=4) == ""


class TestLastMessage:
    def test_text(self):
        session = _session(Message.user("q"), Message(role="assistant", content='say "hi"'))
        assert json.loads(last_message_json(session)) == 'say "hi"'

    def test_empty(self):
        assert last_message_json(Session(id="t")) == "null"

    def test_parts(self):
        parts = [{"type": "text", "text": "x"}]
        out = last_message_json(_session(Message.user(parts)))
        assert json.loads(out) == parts
        assert "\n" in out


class TestEditor:
    def test_opens_rendered_file_then_removes_it(self):
        seen = {}

        def fake_run(argv, check):
            path = argv[-1]
            with open(path, encoding="utf-8") as f:
                seen["text"] = f.read()
            seen["argv"] = argv
            seen["path"] = path

        session = _session(Message.user("hello there"))
        with patch("askterm.transcript.subprocess.run", side_effect=fake_run):
            show_in_editor(session, "less -R")
        assert seen["argv"][:2] == ["less", "-R"]
        assert "hello there" in seen["text"]

        assert not os.path.exists(seen["path"])

    def test_missing_editor(self):
        with pytest.raises(AgentError, match="failed to open editor"):
            show_in_editor(Session(id="t"), "definitely-not-an-editor-xyz")
