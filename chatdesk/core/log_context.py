"""Runtime helpers for attaching conversation context to log records.

This module exposes a small API around a :class:`contextvars.ContextVar`
that tracks which tenant, conversation and request are being processed. The
orchestrator populates the context with ``set_log_context`` at the start of a
pipeline run and passes the returned token to ``reset_log_context`` when the
run ends. :class:`LogContextFilter` copies the values onto every log record so
formatters can emit them without each call site repeating them.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from typing import TypedDict

__all__ = [
    "LogContext",
    "LogContextFilter",
    "get_log_context",
    "reset_log_context",
    "set_log_context",
]


class LogContext(TypedDict):
    """Values stored in the log context during a pipeline run."""

    tenant_id: str | None
    conversation_id: str | None
    request_id: str | None


_log_context: ContextVar[LogContext | None] = ContextVar(
    "chatdesk_log_context", default=None
)


def set_log_context(
    *,
    tenant_id: str | None = None,
    conversation_id: str | None = None,
    request_id: str | None = None,
) -> Token[LogContext | None]:
    """Persist the identifiers in the context variable.

    Returns:
        ``Token`` returned by :meth:`contextvars.ContextVar.set`. Callers must
        later pass this token to :func:`reset_log_context`.
    """

    return _log_context.set(
        {
            "tenant_id": tenant_id,
            "conversation_id": conversation_id,
            "request_id": request_id,
        }
    )


def reset_log_context(token: Token[LogContext | None]) -> None:
    _log_context.reset(token)


def get_log_context() -> LogContext | None:
    return _log_context.get()


class LogContextFilter(logging.Filter):
    """Copy the active log context onto each record (``None`` when unset)."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get() or {}
        record.tenant_id = context.get("tenant_id")
        record.conversation_id = context.get("conversation_id")
        record.request_id = context.get("request_id")
        return True
