from __future__ import annotations


class RelayError(Exception):
    """Base exception for this project."""


class ConfigError(RelayError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class BackendConnectionError(RelayError):
    """The backend process failed to start or complete the MCP handshake."""

    def __init__(self, backend_id: str, message: str):
        super().__init__(f"backend {backend_id!r}: {message}")
        self.backend_id = backend_id


class ToolListError(RelayError):
    """Connected, but tool enumeration failed (non-fatal)."""


class CapacityError(RelayError):
    def __init__(self, *, max_sessions: int):
        super().__init__(f"connection limit {max_sessions} reached")
        self.max_sessions = max_sessions


class UnknownBackendError(RelayError):
    def __init__(self, backend_id: str, *, available: list[str]):
        super().__init__(f"unknown backend {backend_id!r}. Available: {', '.join(available)}")
        self.backend_id = backend_id
        self.available = available


class ToolExecutionError(RelayError):
    """Normalized tool call failure.

    Carries a small, stable error type so failures can be folded into
    ToolCallResult.error consistently.
    """

    def __init__(self, error_type: str, message: str, *, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.details = details or {}


class TerminalChatError(RelayError):
    """Ends the in-flight chat call. The session stays usable."""


class ModelError(TerminalChatError):
    """The model capability invocation failed."""


class MaxRoundsExceededError(TerminalChatError):
    def __init__(self, *, max_rounds: int):
        super().__init__(f"conversation exceeded {max_rounds} rounds without a final answer")
        self.max_rounds = max_rounds
