"""Conversation data model: Message, ToolCall, ToolResult and Session."""

import copy
from dataclasses import dataclass, field
from typing import Any

from .errors import DuplicateToolCallError, OrphanedToolResultError, SessionError

ROLES = ("system", "user", "assistant", "tool")


@dataclass
class ToolCall:
    """A model-initiated request to run a local tool.

    ``arguments`` is a dict when the model sent valid JSON, otherwise the raw
    string exactly as received.
    """

    id: str
    tool_name: str
    arguments: dict | str = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.tool_name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCall":
        return cls(
            id=data["id"], tool_name=data["name"], arguments=data.get("arguments", {})
        )


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""

    tool_call_id: str
    output: str
    success: bool = True
    image_url: str | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "tool_call_id": self.tool_call_id,
            "output": self.output,
            "success": self.success,
        }
        if self.image_url is not None:
            data["image_url"] = self.image_url
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ToolResult":
        return cls(
            tool_call_id=data["tool_call_id"],
            output=data.get("output", ""),
            success=bool(data.get("success", True)),
            image_url=data.get("image_url"),
        )


@dataclass
class Message:
    """One conversation turn.

    ``content`` is plain text, a list of content parts (``{"type": "text"}``
    and ``{"type": "image_url"}`` dicts), or None for an assistant message
    that only calls tools.
    """

    role: str
    content: Any = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_result: ToolResult | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise SessionError(f"invalid message role {self.role!r}")
        if self.role == "tool" and self.tool_result is None:
            raise SessionError("tool message without a tool result")
        if self.tool_calls and self.role != "assistant":
            raise SessionError(f"{self.role} message cannot carry tool calls")

    @classmethod
    def user(cls, content: Any) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def tool(cls, result: ToolResult) -> "Message":
        return cls(role="tool", content=result.output, tool_result=result)

    def text(self) -> str:
        """Return the textual part of the content, ignoring images."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            return "\n".join(
                part.get("text", "")
                for part in self.content
                if isinstance(part, dict) and part.get("type") == "text"
            )
        return str(self.content)

    def to_dict(self) -> dict:
        data: dict = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_result is not None:
            data["tool_result"] = self.tool_result.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        if not isinstance(data, dict):
            raise SessionError(f"message must be an object, got {type(data).__name__}")
        result = data.get("tool_result")
        return cls(
            role=data.get("role", ""),
            content=data.get("content"),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls", [])],
            tool_result=ToolResult.from_dict(result) if result is not None else None,
        )


@dataclass
class Session:
    """A named conversation: an ordered, append-only list of Messages.

    ``dirty`` is set by every mutation and cleared by SessionStore.save().
    """

    id: str
    model: str | None = None
    messages: list[Message] = field(default_factory=list)
    dirty: bool = False

    def call_ids(self) -> set[str]:
        return {tc.id for m in self.messages for tc in m.tool_calls}

    def check_append(self, message: Message, known_ids: set[str] | None = None) -> None:
        """Raise SessionError if appending ``message`` would break linkage."""
        known = self.call_ids() if known_ids is None else known_ids
        if message.role == "tool":
            ref = message.tool_result.tool_call_id
            if ref not in known:
                raise OrphanedToolResultError(
                    f"tool result references unknown call id {ref!r}"
                )
        seen: set[str] = set()
        for tc in message.tool_calls:
            if tc.id in known or tc.id in seen:
                raise DuplicateToolCallError(f"tool call id {tc.id!r} already used")
            seen.add(tc.id)

    def append(self, message: Message) -> None:
        self.check_append(message)
        self.messages.append(message)
        self.dirty = True

    def extend(self, messages: list[Message]) -> None:
        known = self.call_ids()
        for message in messages:
            self.check_append(message, known)
            known.update(tc.id for tc in message.tool_calls)
        self.messages.extend(messages)
        if messages:
            self.dirty = True

    def clear(self) -> None:
        """Truncate history, keeping identity."""
        self.messages.clear()
        self.dirty = True

    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def fork(self) -> "Session":
        """Deep copy used as the working state of an in-flight exchange."""
        return copy.deepcopy(self)

    def absorb(self, other: "Session", startup_message: str | None = None) -> int:
        """Copy another session's messages onto the end of this one.

        When this session already has messages, the other session's leading
        system prompt (or a leading message equal to ``startup_message``) is
        skipped. Returns the number of messages copied.
        """
        if other.model and self.model and other.model != self.model:
            raise SessionError(
                f"model mismatch (current: {self.model}, selected: {other.model})"
            )
        incoming = list(other.messages)
        if self.messages:
            while incoming and (
                incoming[0].role == "system"
                or (startup_message is not None and incoming[0].content == startup_message)
            ):
                incoming.pop(0)
        self.extend(copy.deepcopy(incoming))
        if self.model is None:
            self.model = other.model
        return len(incoming)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        if not isinstance(data, dict):
            raise SessionError("session must be a JSON object")
        messages = data.get("messages", [])
        if not isinstance(messages, list):
            raise SessionError("'messages' must be a list")
        session = cls(id=str(data.get("id", "")), model=data.get("model"))
        session.extend([Message.from_dict(m) for m in messages])
        session.dirty = False
        return session
