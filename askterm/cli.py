"""Command-line entry point: ``ask [options] [input ...]``."""

import argparse
import os
import sys
from importlib import metadata

from . import fmt
from .agent import (
    agent_prompt,
    expand_startup_message,
    run_exchange,
    start_session_messages,
)
from .config import Settings, generate_config, get_settings, resolve_api_key
from .errors import AgentError, ConfigError, SessionError, StoreError
from .image import (
    build_image_content,
    data_url,
    detect_clipboard_command,
    grab_clipboard_image,
)
from .providers import adapter_for
from .store import SessionStore, default_session_id, validate_session_id
from .tools import ToolRegistry
from .transcript import last_message_json, show_in_editor
from .transport import transport_for

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_EXHAUSTED = 2
EXIT_INTERRUPTED = 130


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ask",
        usage="%(prog)s [options] [input ...]",
        description=(
            "Talk to an LLM from the terminal. Each shell keeps its own "
            "conversation; -r lets the model use local tools."
        ),
    )
    parser.add_argument(
        "input", nargs="*", help="Prompt text. Piped stdin is prepended."
    )
    parser.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="Agent mode: let the model run tools until the task is done.",
    )
    parser.add_argument(
        "-i",
        "--image",
        action="store_true",
        help="Attach the image on the clipboard to the prompt.",
    )
    parser.add_argument(
        "-c",
        "--clear",
        action="store_true",
        help="Clear the current conversation.",
    )
    parser.add_argument(
        "-C",
        "--clear-all",
        action="store_true",
        help="Delete every saved conversation.",
    )
    parser.add_argument(
        "-l",
        "--last",
        action="store_true",
        help="Print the last message of the conversation as JSON.",
    )
    parser.add_argument(
        "-o",
        "--manage",
        action="store_true",
        help="Delete conversations or copy one into the current conversation.",
    )
    parser.add_argument(
        "-p",
        "--no-system-prompt",
        action="store_true",
        help="Start a new conversation without the startup message.",
    )
    parser.add_argument(
        "--session",
        default=None,
        help="Conversation id (default: $ASK_SESSION, else the parent shell's pid).",
    )
    parser.add_argument(
        "--provider", default=None, help="Provider name from the config."
    )
    parser.add_argument("--model", default=None, help="Override the provider's model.")
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Stop agent mode after this many cycles (default: unbounded).",
    )
    parser.add_argument(
        "--max-seconds",
        type=float,
        default=None,
        help="Stop agent mode after this many seconds (default: unbounded).",
    )
    parser.add_argument(
        "-y",
        "--yolo",
        action="store_true",
        help="Run shell commands in agent mode without asking.",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Suppress diagnostics."
    )
    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument("--color", action="store_true", help="Force ANSI color.")
    color_group.add_argument(
        "--no-color", action="store_true", help="Disable ANSI color."
    )
    parser.add_argument(
        "--version", action="store_true", help="Print the version and exit."
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )
    return parser


def read_input(words: list[str], stdin=None) -> str:
    """Join piped stdin and the positional words with a newline."""
    stdin = sys.stdin if stdin is None else stdin
    parts = []
    if not stdin.isatty():
        data = stdin.read()
        if data.strip():
            parts.append(data)
    text = " ".join(words)
    if text.strip():
        parts.append(text)
    return "\n".join(parts)


# -- Conversation management ---------------------------------------------------


def _default_prompter(message: str) -> str:
    from prompt_toolkit import prompt

    return prompt(message)


def choose(options: list[tuple[str, str]], title: str, prompter) -> int | None:
    """Show a numbered menu and return the chosen index, or None."""
    fmt.info(title)
    for index, (label, preview) in enumerate(options):
        fmt.session_option(index, label, preview)
    try:
        answer = prompter("Select an option: ").strip()
    except EOFError:
        return None
    if not answer.isdigit() or int(answer) >= len(options):
        return None
    return int(answer)


def manage_sessions(
    store: SessionStore, current_id: str, settings: Settings, prompter=None
) -> None:
    prompter = prompter or _default_prompter
    summaries = store.summaries()
    if not summaries:
        fmt.info("No conversations to manage!")
        return

    options = [(">>> Delete all conversations", "")]
    options += [(store.path_for(sid).name, preview) for sid, preview in summaries]
    index = choose(options, "Conversations:", prompter)
    if index is None:
        fmt.info("Action cancelled.")
        return
    if index == 0:
        fmt.info(f"Deleted {store.clear_all()} conversation transcript(s).")
        return

    selected_id = summaries[index - 1][0]
    action = choose(
        [("Delete", ""), ("Copy to current conversation", ""), ("Cancel", "")],
        f"Action for {options[index][0]}:",
        prompter,
    )
    if action == 0:
        store.delete(selected_id)
        fmt.info(f"Conversation {selected_id} deleted.")
    elif action == 1:
        if selected_id == current_id:
            fmt.warning("cannot copy a conversation into itself")
            return
        current = store.load(current_id)
        try:
            copied = current.absorb(
                store.load(selected_id),
                startup_message=expand_startup_message(settings.startup_message),
            )
        except SessionError as e:
            fmt.warning(f"cannot copy conversation: {e}")
            return
        store.save(current)
        fmt.info(f"Copied {copied} message(s) into the current conversation.")
    else:
        fmt.info("Action cancelled.")


# -- Main ------------------------------------------------------------------------


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            version = metadata.version("askterm")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(EXIT_OK)
    if args.init_config:
        print(generate_config())
        sys.exit(EXIT_OK)
    if args.max_iterations is not None and args.max_iterations < 1:
        parser.error("--max-iterations must be at least 1")
    if args.max_seconds is not None and args.max_seconds <= 0:
        parser.error("--max-seconds must be positive")

    fmt.init(color=args.color, no_color=args.no_color)

    try:
        code = _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(EXIT_ERROR)
    except KeyboardInterrupt:
        print(file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(code)


def _run_main(args) -> int:
    settings = get_settings()
    if not (args.color or args.no_color) and settings.color is not None:
        fmt.init(color=settings.color, no_color=not settings.color)
    verbose = not (args.quiet or settings.quiet)

    store = SessionStore(settings.transcript_dir, settings.transcript_name)
    try:
        session_id = validate_session_id(args.session or default_session_id())
    except ValueError as e:
        raise ConfigError(str(e))

    if args.clear_all:
        fmt.info(f"Deleted {store.clear_all()} conversation transcript(s).")
        return EXIT_OK

    user_text = read_input(args.input)
    if not user_text:
        if args.manage:
            manage_sessions(store, session_id, settings)
            return EXIT_OK
        if args.clear:
            store.clear(session_id)
            fmt.info("Conversation cleared.")
            return EXIT_OK
        if args.last:
            print(last_message_json(store.load(session_id)))
            return EXIT_OK

    session = store.load(session_id)
    config = settings.provider_config(args.provider, args.model)
    clipboard_command = detect_clipboard_command(
        settings.clipboard_command_xorg, settings.clipboard_command_wayland
    )

    prompt_text = user_text
    if args.recursive and user_text:
        prompt_text = agent_prompt(settings.agent_prompt_template, user_text)
    content = prompt_text
    if args.image:
        image = data_url(grab_clipboard_image(clipboard_command))
        content = build_image_content(prompt_text, image, config.vision_detail)

    if not content:
        show_in_editor(session, settings.editor)
        return EXIT_OK

    api_key = resolve_api_key(config)
    if not session.messages:
        session.extend(
            start_session_messages(
                settings.startup_message,
                config.model,
                system_prompt=not args.no_system_prompt,
            )
        )

    registry = None
    if args.recursive:
        registry = ToolRegistry(
            os.getcwd(),
            allowed_dirs=settings.allowed_dirs,
            timeout=settings.tool_timeout,
            auto_approve=args.yolo or settings.yolo,
            clipboard_command=clipboard_command,
        )

    result = run_exchange(
        session,
        content,
        adapter=adapter_for(config),
        transport=transport_for(config),
        config=config,
        api_key=api_key,
        registry=registry,
        agent_mode=args.recursive,
        max_iterations=args.max_iterations or settings.max_iterations,
        max_seconds=args.max_seconds or settings.max_seconds,
        verbose=verbose,
    )
    if not result.ok:
        fmt.error(result.error or "request failed")
        return EXIT_ERROR

    save_failed = False
    try:
        store.save(session)
    except StoreError as e:
        fmt.error(f"conversation not saved: {e}")
        save_failed = True

    if result.text:
        print(result.text)
    if result.exhausted:
        fmt.warning(f"stopped after {result.cycles} cycle(s) before the task was finished")
        return EXIT_EXHAUSTED
    return EXIT_ERROR if save_failed else EXIT_OK
