"""Tests for token estimation and context-window trimming."""

import pytest

from askterm import context
from askterm.context import estimate_tokens, fit_to_window, group_into_turns
from askterm.session import Message, ToolCall, ToolResult


class _WordEncoder:
    def encode(self, text):
        return text.split()


@pytest.fixture(autouse=True)
def word_encoder(monkeypatch):
    monkeypatch.setattr(context, "_encoder", _WordEncoder())


def _assistant_calls(*ids):
    return Message(
        role="assistant",
        tool_calls=[ToolCall(i, "read_file", {"path": "x"}) for i in ids],
    )


class TestEstimate:
    def test_counts_overhead_and_words(self):
        msgs = [Message.user("one two three")]
        assert estimate_tokens(msgs) == context.MESSAGE_OVERHEAD + 3

    def test_images_use_flat_estimate(self):
        msgs = [
            Message.user(
                [
                    {"type": "text", "text": "look"},
                    {"type": "image_url", "image_url": {"url": "data:..."}},
                ]
            )
        ]
        assert estimate_tokens(msgs) == context.MESSAGE_OVERHEAD + 1 + context.IMAGE_TOKENS

    def test_tools_add_to_total(self):
        msgs = [Message.user("hi")]
        assert estimate_tokens(msgs, [{"name": "x"}]) > estimate_tokens(msgs)


class TestGroupIntoTurns:
    def test_tool_round_is_one_turn(self):
        msgs = [
            Message.user("q"),
            _assistant_calls("a", "b"),
            Message.tool(ToolResult("a", "1")),
            Message.tool(ToolResult("b", "2")),
            Message(role="assistant", content="done"),
        ]
        turns = group_into_turns(msgs)
        assert [len(t) for t in turns] == [1, 3, 1]

    def test_plain_messages_are_single_turns(self):
        msgs = [Message.user("a"), Message(role="assistant", content="b")]
        assert group_into_turns(msgs) == [[msgs[0]], [msgs[1]]]


class TestFitToWindow:
    def test_no_limit_returns_copy(self):
        msgs = [Message.user("hi")]
        out = fit_to_window(msgs, None, None, 100)
        assert out == msgs
        assert out is not msgs

    def test_fits_untouched(self):
        msgs = [Message.user("hi")]
        assert fit_to_window(msgs, None, 1000, 10) == msgs

    def test_never_splits_a_tool_round(self):
        msgs = [
            Message(role="system", content="sys"),
            Message.user("old " * 50),
            _assistant_calls("c1"),
            Message.tool(ToolResult("c1", "result " * 50)),
            Message(role="assistant", content="answer " * 50),
            Message.user("new question"),
        ]
        out = fit_to_window(msgs, None, 60, 10)
        assert out[0].role == "system"
        assert out[-1].content == "new question"
        assert not any(m.role == "tool" for m in out)
        assert out[1].role == "user"

    def test_keeps_last_turn_even_if_too_big(self):
        msgs = [Message.user("a"), Message.user("huge " * 500)]
        out = fit_to_window(msgs, None, 50, 10)
        assert out == [msgs[-1]]
