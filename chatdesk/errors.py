"""Error taxonomy shared by the orchestration core."""

from __future__ import annotations


class ChatdeskError(RuntimeError):
    """Base class for all errors raised by chatdesk components."""

    #: Short machine readable label used in tool results and logs.
    code = "error"


class ValidationError(ChatdeskError):
    """Tool arguments did not match the declared input schema."""

    code = "validation"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class AuthError(ChatdeskError):
    """Tool is not allowed for the tenant or channel of the caller."""

    code = "auth"


class UnknownToolError(ChatdeskError):
    code = "unknown_tool"


class RateLimitedError(ChatdeskError):
    code = "rate_limited"

    def __init__(self, message: str, retry_after_ms: int = 0) -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class ToolExecutionError(ChatdeskError):
    """A tool handler failed.

    ``transient`` marks failures worth a retry (timeouts, upstream 5xx).
    """

    code = "execution"

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ProviderError(ChatdeskError):
    """Every configured generation provider failed."""

    code = "provider"

    def __init__(self, message: str, *, attempts: int, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ParseError(ChatdeskError):
    """Model output did not match the structured response contract."""

    code = "parse"

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class PersistenceError(ChatdeskError):
    code = "persistence"

    def __init__(self, message: str, conversation_id: str | None = None) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id


__all__ = [
    "AuthError",
    "ChatdeskError",
    "ParseError",
    "PersistenceError",
    "ProviderError",
    "RateLimitedError",
    "ToolExecutionError",
    "UnknownToolError",
    "ValidationError",
]
