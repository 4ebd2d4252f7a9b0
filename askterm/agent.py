"""The exchange loop: request a completion, run any tool calls, repeat."""

import enum
import json
import subprocess
import time
from contextlib import nullcontext
from dataclasses import dataclass, field

from . import fmt
from .config import ProviderConfig
from .errors import AdapterError, SessionError, TransportError
from .image import build_image_content
from .providers import Adapter
from .session import Message, Session, ToolCall, ToolResult
from .tools import ToolRegistry
from .transport import Transport

MAX_ARG_LOG = 1000
MAX_RESULT_PREVIEW = 500

IMAGE_FOLLOWUP_TEXT = "Image attached by the clipboard_image tool."


class LoopState(enum.Enum):
    AWAITING_USER_INPUT = "awaiting_user_input"
    REQUESTING_COMPLETION = "requesting_completion"
    INSPECTING_RESPONSE = "inspecting_response"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass
class ExchangeResult:
    """Outcome of one run_exchange() call.

    ``messages`` holds what the exchange added to the session (empty when
    ``ok`` is False, since nothing is committed then).
    """

    text: str = ""
    ok: bool = True
    cycles: int = 0
    messages: list[Message] = field(default_factory=list)
    error: str | None = None
    exhausted: bool = False
    states: list[LoopState] = field(default_factory=list)


def startup_role(model: str) -> str:
    """Gemini and the o1/o3 families do not accept a system prompt."""
    if "gemini-" in model or "o1-" in model or "o3-" in model:
        return "user"
    return "system"


def expand_startup_message(message: str) -> str:
    """Expand shell substitutions like $(date) with ``sh -c echo``.

    Falls back to the literal message if the shell fails.
    """
    escaped = message.replace("\\", "\\\\").replace('"', '\\"')
    try:
        proc = subprocess.run(
            ["sh", "-c", f'echo "{escaped}"'], capture_output=True, timeout=10
        )
    except (OSError, subprocess.TimeoutExpired):
        return message
    if proc.returncode != 0:
        return message
    return proc.stdout.decode("utf-8", errors="replace").rstrip()


def start_session_messages(
    startup_message: str, model: str, *, system_prompt: bool = True
) -> list[Message]:
    """Messages a brand-new session opens with."""
    if not system_prompt or not startup_message:
        return []
    return [Message(role=startup_role(model), content=expand_startup_message(startup_message))]


def agent_prompt(template: str, user_input: str) -> str:
    if "{user_input}" not in template:
        return f"{template}\n\n{user_input}"
    return template.replace("{user_input}", user_input)


def _describe_calls(calls: list[ToolCall]) -> str:
    parts = []
    for call in calls:
        args = call.arguments if isinstance(call.arguments, str) else json.dumps(call.arguments)
        parts.append(f"{call.tool_name}({args})")
    return "[tool calls not executed outside agent mode: " + ", ".join(parts) + "]"


def surface_tool_calls(reply: Message) -> Message:
    """Fold tool calls into plain text so no unanswered call is stored."""
    text = reply.text()
    note = _describe_calls(reply.tool_calls)
    return Message(role="assistant", content=f"{text}\n\n{note}" if text else note)


def run_tool(registry: ToolRegistry, call: ToolCall, verbose: bool) -> ToolResult:
    if verbose:
        if isinstance(call.arguments, dict):
            pretty = json.dumps(call.arguments, indent=2)
        else:
            pretty = str(call.arguments)
        if len(pretty) > MAX_ARG_LOG:
            pretty = pretty[:MAX_ARG_LOG] + "\n... (truncated)"
        fmt.tool_call(call.tool_name, pretty)

    t0 = time.monotonic()
    result = registry.execute(call)
    elapsed = time.monotonic() - t0

    if verbose:
        if result.success:
            fmt.tool_result(call.tool_name, elapsed, result.output[:MAX_RESULT_PREVIEW])
        else:
            fmt.tool_error(call.tool_name, result.output[:MAX_RESULT_PREVIEW])
    return result


def run_exchange(
    session: Session,
    user_input,
    *,
    adapter: Adapter,
    transport: Transport,
    config: ProviderConfig,
    api_key: str,
    registry: ToolRegistry | None = None,
    agent_mode: bool = False,
    max_iterations: int | None = None,
    max_seconds: float | None = None,
    verbose: bool = True,
) -> ExchangeResult:
    """Run one exchange: from a user input to a final assistant message.

    ``user_input`` is text, a list of content parts, or a ready Message.
    The loop works on a fork of ``session``; new messages are committed to
    ``session`` only when the exchange completes (normally or by hitting
    ``max_iterations``/``max_seconds``). On a transport or adapter error the
    caller's session is left exactly as it was.
    """
    if agent_mode and registry is None:
        raise ValueError("agent mode requires a tool registry")

    result = ExchangeResult()
    trace = result.states
    trace.append(LoopState.AWAITING_USER_INPUT)

    work = session.fork()
    start = len(work.messages)
    if isinstance(user_input, Message):
        work.append(user_input)
    else:
        work.append(Message.user(user_input))

    tools = registry.schemas() if agent_mode else None
    started = time.monotonic()

    while True:
        result.cycles += 1
        if verbose and agent_mode:
            fmt.cycle_header(result.cycles, max_iterations)

        trace.append(LoopState.REQUESTING_COMPLETION)
        t0 = time.monotonic()
        spinner = fmt.llm_spinner() if verbose else nullcontext()
        try:
            request = adapter.encode(work.messages, config, api_key=api_key, tools=tools)
            with spinner:
                raw = transport.send(request)
            reply = adapter.decode(raw)
        except (TransportError, AdapterError) as e:
            result.ok = False
            result.error = str(e)
            trace.append(LoopState.DONE)
            return result
        if verbose:
            fmt.llm_timing(time.monotonic() - t0, config.name)

        trace.append(LoopState.INSPECTING_RESPONSE)
        if reply.tool_calls and not agent_mode:
            reply = surface_tool_calls(reply)
        try:
            work.append(reply)
        except SessionError as e:
            result.ok = False
            result.error = f"invalid response from {config.name}: {e}"
            trace.append(LoopState.DONE)
            return result

        if not reply.tool_calls:
            result.text = reply.text()
            break

        trace.append(LoopState.EXECUTING_TOOLS)
        if verbose and reply.text():
            fmt.assistant_text(reply.text())
        # Every tool result must directly follow the call message; images go after.
        images = []
        for call in reply.tool_calls:
            tool_result = run_tool(registry, call, verbose)
            work.append(Message.tool(tool_result))
            if tool_result.image_url:
                images.append(
                    Message.user(
                        build_image_content(
                            IMAGE_FOLLOWUP_TEXT, tool_result.image_url, config.vision_detail
                        )
                    )
                )
        for image in images:
            work.append(image)

        over_cycles = max_iterations is not None and result.cycles >= max_iterations
        over_time = max_seconds is not None and time.monotonic() - started >= max_seconds
        if over_cycles or over_time:
            result.exhausted = True
            result.text = reply.text()
            break

    trace.append(LoopState.DONE)
    result.messages = work.messages[start:]
    session.extend(result.messages)
    session.model = config.model

    if verbose and agent_mode:
        fmt.completion(result.cycles, "exhausted" if result.exhausted else "ok")
    return result
