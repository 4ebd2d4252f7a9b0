"""Provider adapters: translate sessions to vendor requests and responses back.

Adapters are pure: they build a WireRequest and parse a response body. Network
I/O lives in transport.py.
"""

import json
import os
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from .config import ProviderConfig
from .context import fit_to_window
from .errors import ConfigError, MalformedResponseError
from .session import Message, ToolCall

# OpenAI reasoning models reject max_tokens/temperature.
_REASONING_MODEL_RE = re.compile(r"^(o\d|gpt-5)")


@dataclass
class WireRequest:
    """A fully formed provider request, ready for a Transport."""

    url: str
    body: dict
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)


def _base_url(host: str) -> str:
    if "://" in host:
        return host.rstrip("/")
    return f"https://{host}"


def _parse(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise MalformedResponseError(
            f"unexpected response type {type(raw).__name__}"
        )
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"response is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedResponseError("response is not a JSON object")
    return data


def _parse_arguments(raw) -> dict | str:
    """Decode tool arguments; keep the raw string when it is not a JSON object."""
    if isinstance(raw, dict):
        return raw
    if raw is None or raw == "":
        return {}
    if not isinstance(raw, str):
        return json.dumps(raw)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    return parsed if isinstance(parsed, dict) else raw


def _dump_arguments(arguments: dict | str) -> str:
    return arguments if isinstance(arguments, str) else json.dumps(arguments)


def _mint_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


class Adapter:
    """Translate an abstract chat exchange to and from one vendor's schema."""

    name = "base"

    def encode(
        self,
        history: list[Message],
        config: ProviderConfig,
        *,
        api_key: str,
        tools: list | None = None,
    ) -> WireRequest:
        raise NotImplementedError

    def decode(self, raw) -> Message:
        raise NotImplementedError

    def window(
        self, history: list[Message], config: ProviderConfig, tools: list | None
    ) -> list[Message]:
        return fit_to_window(history, tools, config.max_context_tokens, config.max_tokens)


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------


def to_openai_message(message: Message) -> dict:
    if message.role == "tool":
        return {
            "role": "tool",
            "tool_call_id": message.tool_result.tool_call_id,
            "content": message.tool_result.output,
        }
    if message.role == "assistant" and message.tool_calls:
        return {
            "role": "assistant",
            "content": message.content,
            "tool_calls": [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.tool_name,
                        "arguments": _dump_arguments(tc.arguments),
                    },
                }
                for tc in message.tool_calls
            ],
        }
    content = message.content if message.content is not None else ""
    return {"role": message.role, "content": content}


class OpenAIAdapter(Adapter):
    name = "openai"

    def sampling_params(self, config: ProviderConfig) -> dict:
        if _REASONING_MODEL_RE.match(config.model) and "openai" in config.host:
            return {}
        return {"max_tokens": config.max_tokens, "temperature": config.temperature}

    def build_body(
        self, history: list[Message], config: ProviderConfig, tools: list | None
    ) -> dict:
        windowed = self.window(history, config, tools)
        body: dict = {
            "model": config.model,
            "messages": [to_openai_message(m) for m in windowed],
        }
        body.update(self.sampling_params(config))
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        return body

    def encode(self, history, config, *, api_key, tools=None):
        body = self.build_body(history, config, tools)
        if config.name != "mistral":
            body["user"] = os.environ.get("USER", "user")
        return WireRequest(
            url=f"{_base_url(config.host)}{config.endpoint}",
            body=body,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )

    def decode(self, raw) -> Message:
        data = _parse(raw)
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise MalformedResponseError("response has no choices")
        choice = choices[0]
        message = choice.get("message") if isinstance(choice, dict) else None
        if not isinstance(message, dict):
            raise MalformedResponseError("choice has no message object")

        content = message.get("content")
        if content is not None and not isinstance(content, (str, list)):
            raise MalformedResponseError(
                f"unexpected content type {type(content).__name__}"
            )

        raw_calls = message.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise MalformedResponseError("tool_calls is not a list")
        calls = []
        for tc in raw_calls:
            function = tc.get("function") if isinstance(tc, dict) else None
            if not isinstance(function, dict) or not function.get("name"):
                raise MalformedResponseError("tool call without a function name")
            calls.append(
                ToolCall(
                    id=tc.get("id") or _mint_call_id(),
                    tool_name=function["name"],
                    arguments=_parse_arguments(function.get("arguments")),
                )
            )
        if content is None and not calls:
            content = ""
        return Message(role="assistant", content=content, tool_calls=calls)


# ---------------------------------------------------------------------------
# Google Gemini generateContent
# ---------------------------------------------------------------------------


def _split_data_url(url: str) -> tuple[str, str]:
    """Split ``data:<mime>;base64,<data>`` into (mime, data)."""
    header, _, data = url.partition(",")
    mime = header.removeprefix("data:").split(";", 1)[0] or "image/png"
    return mime, data


class GeminiAdapter(Adapter):
    name = "gemini"

    def _parts(self, content) -> list[dict]:
        if isinstance(content, list):
            parts = []
            for part in content:
                if not isinstance(part, dict):
                    continue
                if part.get("type") == "text":
                    parts.append({"text": part.get("text", "")})
                elif part.get("type") == "image_url":
                    mime, data = _split_data_url(part.get("image_url", {}).get("url", ""))
                    parts.append({"inlineData": {"mimeType": mime, "data": data}})
            return parts
        return [{"text": content or ""}]

    def to_gemini_content(self, message: Message, call_names: dict[str, str]) -> dict:
        if message.role == "tool":
            result = message.tool_result
            return {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": call_names.get(result.tool_call_id, "tool_result"),
                            "response": {"content": result.output},
                        }
                    }
                ],
            }
        if message.role == "assistant":
            parts = []
            if message.content:
                parts.extend(self._parts(message.content))
            for tc in message.tool_calls:
                args = tc.arguments if isinstance(tc.arguments, dict) else {}
                parts.append({"functionCall": {"name": tc.tool_name, "args": args}})
            return {"role": "model", "parts": parts or [{"text": ""}]}
        # Gemini has no system role in contents; the prompt goes in as a user turn.
        return {"role": "user", "parts": self._parts(message.content)}

    def to_gemini_contents(self, history: list[Message]) -> list[dict]:
        """Convert history, grouping consecutive tool results into one content.

        Gemini expects every functionResponse of a parallel call turn in a
        single user content.
        """
        call_names = {tc.id: tc.tool_name for m in history for tc in m.tool_calls}
        contents: list[dict] = []
        previous_tool = False
        for message in history:
            content = self.to_gemini_content(message, call_names)
            if message.role == "tool" and previous_tool:
                contents[-1]["parts"].extend(content["parts"])
            else:
                contents.append(content)
            previous_tool = message.role == "tool"
        return contents

    def encode(self, history, config, *, api_key, tools=None):
        windowed = self.window(history, config, tools)
        body: dict = {
            "contents": self.to_gemini_contents(windowed),
            "generationConfig": {
                "maxOutputTokens": config.max_tokens,
                "temperature": config.temperature,
            },
        }
        if tools:
            body["tools"] = [
                {"function_declarations": [t["function"] for t in tools]}
            ]
        endpoint = config.endpoint or f"/v1beta/models/{config.model}:generateContent"
        return WireRequest(
            url=f"{_base_url(config.host)}{endpoint}",
            body=body,
            headers={"Content-Type": "application/json"},
            params={"key": api_key},
        )

    def decode(self, raw) -> Message:
        data = _parse(raw)
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            feedback = data.get("promptFeedback")
            detail = f" (promptFeedback: {json.dumps(feedback)})" if feedback else ""
            raise MalformedResponseError(f"response has no candidates{detail}")
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        if not isinstance(content, dict):
            raise MalformedResponseError("candidate has no content object")
        parts = content.get("parts", [])
        if not isinstance(parts, list):
            raise MalformedResponseError("content parts is not a list")

        texts = []
        calls = []
        for part in parts:
            if not isinstance(part, dict):
                raise MalformedResponseError("content part is not an object")
            if "functionCall" in part:
                fc = part["functionCall"]
                if not isinstance(fc, dict) or not fc.get("name"):
                    raise MalformedResponseError("functionCall without a name")
                args = fc.get("args", {})
                calls.append(
                    ToolCall(
                        id=_mint_call_id(),
                        tool_name=fc["name"],
                        arguments=args if isinstance(args, dict) else json.dumps(args),
                    )
                )
            elif isinstance(part.get("text"), str):
                texts.append(part["text"])
        text = "".join(texts)
        return Message(
            role="assistant", content=text if (text or not calls) else None, tool_calls=calls
        )


# ---------------------------------------------------------------------------
# LiteLLM (any vendor LiteLLM routes to, OpenAI-shaped)
# ---------------------------------------------------------------------------


class LiteLLMAdapter(OpenAIAdapter):
    """OpenAI-shaped request handed to litellm.completion() by LiteLLMTransport."""

    name = "litellm"

    def sampling_params(self, config: ProviderConfig) -> dict:
        return {"max_tokens": config.max_tokens, "temperature": config.temperature}

    def encode(self, history, config, *, api_key, tools=None):
        body = self.build_body(history, config, tools)
        options: dict = {"api_key": api_key}
        url = ""
        if config.host:
            url = f"{_base_url(config.host)}{config.endpoint}"
            options["api_base"] = url
        return WireRequest(url=url, body=body, options=options)


ADAPTERS: dict[str, type[Adapter]] = {
    "openai": OpenAIAdapter,
    "gemini": GeminiAdapter,
    "litellm": LiteLLMAdapter,
}


def adapter_for(config: ProviderConfig) -> Adapter:
    try:
        return ADAPTERS[config.api]()
    except KeyError:
        raise ConfigError(f"no adapter for api {config.api!r}")
