"""Error taxonomy shared by every askterm component."""


class AgentError(Exception):
    """Base class for failures reported to the user at the process boundary."""


class ConfigError(AgentError):
    """Raised for invalid configuration (unknown provider, missing API key, etc.)."""


class TransportError(AgentError):
    """Raised when the provider could not be reached or answered with an error status."""


class AdapterError(AgentError):
    """Raised when a provider exchange cannot be translated."""


class MalformedResponseError(AdapterError):
    """Raised when a provider response does not have the expected shape."""


class ToolError(AgentError):
    """Raised inside a tool; the registry turns it into a failed ToolResult."""


class StoreError(AgentError):
    """Raised when a session cannot be read from or written to disk."""


class SessionError(AgentError, ValueError):
    """Raised when a mutation would break a session invariant."""


class OrphanedToolResultError(SessionError):
    """A tool message references a call id no earlier assistant message made."""


class DuplicateToolCallError(SessionError):
    """A tool call id is already used in the session."""
