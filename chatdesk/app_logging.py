"""Logging setup for the chatdesk service.

Two loggers are configured, each writing to its own midnight-rotated file
under ``LOG_DIR``:

``chatdesk``
    Application log (``app.log``). Records carry the tenant, conversation and
    request identifiers published by :mod:`chatdesk.core.log_context`.
``uvicorn.access``
    One JSON document per HTTP request (``access.log``), written by the
    middleware installed through :func:`_install_access_logging`.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

from .core.log_context import LogContextFilter, reset_log_context, set_log_context

APP_LOGGER_NAME = "chatdesk"
ACCESS_LOGGER_NAME = "uvicorn.access"
TEXT_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"

_CONTEXT_FIELDS = ("tenant_id", "conversation_id", "request_id")
_UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})
_REDACTED = "***"
_SECRET_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "api_key",
        "x-api-key",
    }
)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


@dataclass(frozen=True)
class LoggingOptions:
    log_dir: str = "logs"
    level: int = logging.INFO
    json_output: bool = False
    retention_days: int = 7
    rotate_utc: bool = False

    @classmethod
    def from_env(cls) -> "LoggingOptions":
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        return cls(
            log_dir=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            json_output=_env_flag("LOG_JSON"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_env_flag("LOG_ROTATE_UTC"),
        )


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object (LOG_JSON=true)."""

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        document.update(
            {
                field: getattr(record, field)
                for field in _CONTEXT_FIELDS
                if getattr(record, field, None)
            }
        )
        if record.exc_info:
            document["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


class ConversationTextFormatter(logging.Formatter):
    """Plain text format with the conversation id appended when known."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        conversation_id = getattr(record, "conversation_id", None)
        return f"{line} [conversation={conversation_id}]" if conversation_id else line


def redact(value: object) -> object:
    """Return ``value`` with credential-like keys masked at any depth."""

    if isinstance(value, dict):
        return {
            key: _REDACTED if str(key).lower() in _SECRET_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


def _rotating_handler(options: LoggingOptions, filename: str) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(options.log_dir, filename),
        when="midnight",
        backupCount=options.retention_days,
        utc=options.rotate_utc,
    )
    if options.json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    return handler


def _decode_body(raw: bytes) -> object:
    try:
        return redact(json.loads(raw))
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded
    return request.client.host if request.client is not None else None


def _install_access_logging(app: FastAPI) -> None:
    """Log one JSON line per request and echo ``X-Request-Id`` back.

    The request id is taken from the incoming header when present, stored on
    ``request.state`` and bound into the log context so application records
    emitted while serving the request carry it too.
    """

    capture_bodies = _env_flag("LOG_REQUEST_BODIES")
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        if request.url.path in _UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        body: object = None
        if capture_bodies:
            raw = await request.body()

            async def replay() -> dict:  # pragma: no cover - starlette internals
                return {"type": "http.request", "body": raw, "more_body": False}

            request._receive = replay  # type: ignore[attr-defined]
            if raw:
                body = _decode_body(raw)

        token = set_log_context(
            tenant_id=request.headers.get("X-Tenant-Id"), request_id=request_id
        )
        try:
            response = await call_next(request)
        finally:
            reset_log_context(token)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": _client_ip(request),
            "headers": redact(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Attach rotating file handlers and, given an app, the access middleware."""

    options = LoggingOptions.from_env()
    os.makedirs(options.log_dir, exist_ok=True)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        handler = _rotating_handler(options, "app.log")
        if not options.json_output:
            handler.setFormatter(ConversationTextFormatter())
        handler.addFilter(LogContextFilter())
        app_logger.addHandler(handler)
    app_logger.setLevel(options.level)

    # uvicorn installs its own stream handler; access lines go to the file only.
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_rotating_handler(options, "access.log"))
    access_logger.setLevel(options.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
