"""Token estimation and context-window trimming for outgoing requests."""

import json

import tiktoken

from .session import Message

# Per-message overhead (role, separators), roughly 4 tokens each.
MESSAGE_OVERHEAD = 4
# Flat estimate for an inline image part.
IMAGE_TOKENS = 1000

_encoder = None


def _get_encoder():
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def _message_tokens(message: Message) -> int:
    enc = _get_encoder()
    total = MESSAGE_OVERHEAD
    content = message.content
    if isinstance(content, list):
        for part in content:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "image_url":
                total += IMAGE_TOKENS
            else:
                total += len(enc.encode(part.get("text", "") or ""))
    elif content:
        total += len(enc.encode(str(content)))
    for tc in message.tool_calls:
        args = tc.arguments if isinstance(tc.arguments, str) else json.dumps(tc.arguments)
        total += len(enc.encode(tc.tool_name + args))
    return total


def estimate_tokens(messages: list[Message], tools: list | None = None) -> int:
    """Count tokens across all messages using tiktoken."""
    total = sum(_message_tokens(m) for m in messages)
    if tools:
        total += len(_get_encoder().encode(json.dumps(tools)))
    return total


def group_into_turns(messages: list[Message]) -> list[list[Message]]:
    """Group messages into atomic turns.

    A turn is either a single message, or an assistant message with
    tool_calls plus every tool result that answers it.
    """
    turns = []
    i = 0
    while i < len(messages):
        msg = messages[i]
        if msg.role == "assistant" and msg.tool_calls:
            turn = [msg]
            ids = {tc.id for tc in msg.tool_calls}
            j = i + 1
            while (
                j < len(messages)
                and messages[j].role == "tool"
                and messages[j].tool_result.tool_call_id in ids
            ):
                turn.append(messages[j])
                j += 1
            turns.append(turn)
            i = j
        else:
            turns.append([msg])
            i += 1
    return turns


def fit_to_window(
    messages: list[Message],
    tools: list | None,
    context_length: int | None,
    reserved_output: int,
) -> list[Message]:
    """Drop the oldest turns after the leading system block until the request fits.

    The most recent turn is always kept, even when it alone exceeds the
    budget; the provider then reports the overflow. Returns a new list and
    never mutates ``messages``.
    """
    if not context_length:
        return list(messages)
    budget = context_length - reserved_output
    if estimate_tokens(messages, tools) <= budget:
        return list(messages)

    turns = group_into_turns(messages)
    leading = 0
    while leading < len(turns) and turns[leading][0].role == "system":
        leading += 1
    head = turns[:leading]
    body = turns[leading:]

    head_msgs = [m for turn in head for m in turn]
    while len(body) > 1:
        body = body[1:]
        # A window must not open on orphaned tool results or a bare assistant reply.
        while len(body) > 1 and body[0][0].role != "user":
            body = body[1:]
        candidate = head_msgs + [m for turn in body for m in turn]
        if estimate_tokens(candidate, tools) <= budget:
            return candidate
    return head_msgs + [m for turn in body for m in turn]
