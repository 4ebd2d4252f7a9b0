"""Configuration loading for askterm.

Reads TOML config from $XDG_CONFIG_HOME/ask/config.toml (default
~/.config/ask/config.toml). Precedence: CLI > config file > defaults.
"""

import os
import sys
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path

from .errors import ConfigError

DEFAULT_STARTUP_MESSAGE = (
    "You are ChatConcise, a very advanced LLM designed for experienced users. "
    "As ChatConcise you oblige to adhere to the following directives UNLESS "
    "overridden by the user:\n"
    "Be concise, proactive, helpful and efficient. Do not say anything more than "
    "what needed, but also, DON'T BE LAZY. If the user is asking for software, "
    "provide ONLY the code."
)

DEFAULT_AGENT_PROMPT_TEMPLATE = (
    "You are an autonomous developer agent working in the user's terminal.\n"
    "Current objective: {user_input}\n\n"
    "Use the provided tools to inspect and change the system. Guidelines:\n"
    "1. Read a file before editing it.\n"
    "2. Run one distinct step per tool call so the user can review it.\n"
    "3. When writing files, write the full content.\n"
    "4. When the objective is fully done and verified, reply with a short "
    "summary and do not call any more tools."
)


@dataclass(frozen=True)
class ProviderConfig:
    """A resolved chat-completion provider. Immutable for the whole run."""

    name: str
    model: str
    host: str
    endpoint: str
    api_key_variable: str
    api: str = "openai"
    max_tokens: int = 2048
    temperature: float = 0.6
    vision_detail: str = "high"
    max_context_tokens: int | None = None
    request_timeout: float = 120.0


DEFAULT_PROVIDERS: dict[str, dict] = {
    "oai": {
        "model": "gpt-4o-mini",
        "host": "api.openai.com",
        "endpoint": "/v1/chat/completions",
        "api_key_variable": "OPENAI_API_KEY",
    },
    "gemini": {
        "model": "gemini-1.5-flash-latest",
        "host": "generativelanguage.googleapis.com",
        "endpoint": "",
        "api_key_variable": "GEMINI_API_KEY",
    },
}

APIS = ("openai", "gemini", "litellm")


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "max_tokens": int,
    "temperature": (int, float),
    "vision_detail": str,
    "transcript_name": str,
    "transcript_dir": str,
    "editor": str,
    "clipboard_command_xorg": str,
    "clipboard_command_wayland": str,
    "startup_message": str,
    "agent_prompt_template": str,
    "max_iterations": int,
    "max_seconds": (int, float),
    "tool_timeout": int,
    "allowed_dirs": list,
    "yolo": bool,
    "quiet": bool,
    "color": bool,
    "providers": dict,
}

PROVIDER_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "host": str,
    "endpoint": str,
    "api_key_variable": str,
    "api": str,
    "max_tokens": int,
    "temperature": (int, float),
    "vision_detail": str,
    "max_context_tokens": int,
    "request_timeout": (int, float),
}

_REQUIRED_PROVIDER_KEYS = ("model", "api_key_variable")


@dataclass
class Settings:
    """Merged settings for one invocation."""

    provider: str = "oai"
    providers: dict[str, dict] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_PROVIDERS.items()}
    )
    max_tokens: int = 2048
    temperature: float = 0.6
    vision_detail: str = "high"
    transcript_name: str = "gpt_transcript-"
    transcript_dir: str | None = None
    editor: str = "more"
    clipboard_command_xorg: str = "xclip -selection clipboard -t image/png -o"
    clipboard_command_wayland: str = "wl-paste"
    startup_message: str = DEFAULT_STARTUP_MESSAGE
    agent_prompt_template: str = DEFAULT_AGENT_PROMPT_TEMPLATE
    max_iterations: int | None = None
    max_seconds: float | None = None
    tool_timeout: int = 30
    allowed_dirs: list[str] = field(default_factory=list)
    yolo: bool = False
    quiet: bool = False
    color: bool | None = None

    def provider_config(
        self, name: str | None = None, model: str | None = None
    ) -> ProviderConfig:
        """Build the ProviderConfig for ``name`` (default: the configured provider)."""
        name = name or self.provider
        raw = self.providers.get(name)
        if raw is None:
            known = ", ".join(sorted(self.providers)) or "(none)"
            raise ConfigError(f"invalid provider {name!r}. Known providers: {known}")
        missing = [k for k in _REQUIRED_PROVIDER_KEYS if not raw.get(k)]
        if raw.get("api") != "litellm" and not raw.get("host"):
            missing.append("host")
        if missing:
            raise ConfigError(
                f"provider {name!r} is missing required key(s): {', '.join(missing)}"
            )
        config = ProviderConfig(
            name=name,
            model=raw["model"],
            host=raw.get("host", ""),
            endpoint=raw.get("endpoint", ""),
            api_key_variable=raw["api_key_variable"],
            api=raw.get("api") or infer_api(raw["model"]),
            max_tokens=raw.get("max_tokens", self.max_tokens),
            temperature=float(raw.get("temperature", self.temperature)),
            vision_detail=raw.get("vision_detail", self.vision_detail),
            max_context_tokens=raw.get("max_context_tokens"),
            request_timeout=float(raw.get("request_timeout", 120.0)),
        )
        if model:
            config = replace(config, model=model, api=raw.get("api") or infer_api(model))
        if config.api not in APIS:
            raise ConfigError(
                f"provider {name!r}: api must be one of {', '.join(APIS)}, got {config.api!r}"
            )
        return config


def infer_api(model: str) -> str:
    return "gemini" if "gemini-" in model else "openai"


def resolve_api_key(config: ProviderConfig) -> str:
    """Read the provider secret from the environment variable the config names."""
    value = os.environ.get(config.api_key_variable, "")
    if not value.strip():
        raise ConfigError(
            f"missing API key! Set the {config.api_key_variable} environment "
            "variable and try again."
        )
    return value


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ask"
    return Path.home() / ".config" / "ask"


def config_path() -> Path:
    return global_config_dir() / "config.toml"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _check_types(
    values: dict, schema: dict[str, type | tuple[type, ...]], source: str
) -> dict:
    """Type-check ``values`` against ``schema``; warn about and drop unknown keys."""
    known = {}
    for key, value in values.items():
        if key not in schema:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue
        expected = schema[key]
        # bool is a subclass of int; only accept it where bool is expected.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )
        known[key] = value
    return known


def _validate_config(config: dict, source: str) -> dict:
    known = _check_types(config, CONFIG_KEYS, source)

    for i, elem in enumerate(known.get("allowed_dirs", [])):
        if not isinstance(elem, str):
            raise ConfigError(
                f"{source}: allowed_dirs[{i}]: expected string, got {type(elem).__name__}"
            )

    providers = {}
    for name, table in known.get("providers", {}).items():
        if not isinstance(table, dict):
            raise ConfigError(f"{source}: providers.{name} must be a table")
        providers[name] = _check_types(table, PROVIDER_KEYS, f"{source}: providers.{name}")
        api = providers[name].get("api")
        if api is not None and api not in APIS:
            raise ConfigError(
                f"{source}: providers.{name}.api must be one of {', '.join(APIS)}"
            )
    if "providers" in known:
        known["providers"] = providers

    for key in ("max_iterations", "tool_timeout"):
        if key in known and known[key] < 1:
            raise ConfigError(f"{source}: {key!r} must be at least 1")
    if "max_seconds" in known and known["max_seconds"] <= 0:
        raise ConfigError(f"{source}: 'max_seconds' must be positive")
    return known


# --- Public API ---


def load_config(path: Path | None = None) -> dict:
    """Load and validate the config file. Returns {} if it does not exist."""
    path = path or config_path()
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{path}: cannot read file: {e}") from e
    return _validate_config(config, str(path))


def build_settings(config: dict) -> Settings:
    """Merge a validated config dict over the defaults."""
    settings = Settings()
    for key, value in config.items():
        if key == "providers":
            for name, table in value.items():
                merged = dict(settings.providers.get(name, {}))
                merged.update(table)
                settings.providers[name] = merged
        elif key == "allowed_dirs":
            settings.allowed_dirs = [str(Path(p).expanduser()) for p in value]
        elif key in ("temperature", "max_seconds"):
            setattr(settings, key, float(value))
        else:
            setattr(settings, key, value)
    return settings


def get_settings(path: Path | None = None) -> Settings:
    return build_settings(load_config(path))


def generate_config() -> str:
    """Return a commented-out template config string."""
    lines = [
        "# ask configuration file",
        f"# Location: {config_path()}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Provider ---",
        '# provider = "oai"               # any name under [providers]',
        "# max_tokens = 2048",
        "# temperature = 0.6",
        '# vision_detail = "high"',
        "",
        "# --- Conversations ---",
        '# transcript_name = "gpt_transcript-"',
        '# transcript_dir = "/tmp"         # default: system temp directory',
        '# editor = "more"',
        '# startup_message = "You are a helpful assistant."',
        "",
        "# --- Clipboard ---",
        '# clipboard_command_xorg = "xclip -selection clipboard -t image/png -o"',
        '# clipboard_command_wayland = "wl-paste"',
        "",
        "# --- Agent mode ---",
        '# agent_prompt_template = "Objective: {user_input}"',
        "# max_iterations = 50             # default: unbounded",
        "# max_seconds = 600               # default: unbounded",
        "# tool_timeout = 30",
        '# allowed_dirs = ["~/src"]         # default: no file scope restriction',
        "# yolo = false                    # true = run shell commands without asking",
        "",
        "# --- UI ---",
        "# color = true",
        "# quiet = false",
        "",
        "# [providers.oai]",
        '# model = "gpt-4o-mini"',
        '# host = "api.openai.com"',
        '# endpoint = "/v1/chat/completions"',
        '# api_key_variable = "OPENAI_API_KEY"',
        "",
        "# [providers.claude]",
        '# api = "litellm"',
        '# model = "anthropic/claude-sonnet-4-5"',
        '# host = "api.anthropic.com"',
        '# api_key_variable = "ANTHROPIC_API_KEY"',
        "# max_context_tokens = 200000",
        "",
    ]
    return "\n".join(lines)
