import json
import pathlib
import sys
from typing import Any

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from chatdesk.agents.providers import CompletionRequest, CompletionResponse
from chatdesk.app_logging import init_logging
from chatdesk.core.settings import Settings
from chatdesk.core.tenant_config import ChannelPolicy, TenantConfig, TenantConfigService
from chatdesk.tools.builtin import HANDOFF_TOOL, TICKET_NOTE_TOOL


class ScriptedProvider:
    """Generation provider that replays queued replies.

    Dict replies are serialized to JSON, strings are returned verbatim and
    exception instances are raised. Once the queue is empty ``default`` is
    used the same way.
    """

    def __init__(self, name: str, replies=(), *, default: Any = None) -> None:
        self.name = name
        self.model = f"{name}-test"
        self.replies = list(replies)
        self.default = default
        self.requests: list[CompletionRequest] = []
        self.healthy = True

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        reply = self.replies.pop(0) if self.replies else self.default
        if reply is None:
            raise RuntimeError(f"{self.name} has no scripted reply")
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return CompletionResponse(content=reply, model=self.model, provider=self.name)

    async def health_check(self) -> bool:
        if isinstance(self.healthy, BaseException):
            raise self.healthy
        return self.healthy


def agent_reply(message: str, intent: str, **extra: Any) -> dict[str, Any]:
    reply: dict[str, Any] = {
        "user_facing_message": message,
        "intent": intent,
        "extracted_fields": {},
        "should_escalate": False,
        "tool_calls": [],
    }
    reply.update(extra)
    return reply


def inbound_payload(
    text: str, conversation_id: str = "conv-1", channel: str = "web", **extra: Any
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "channel": channel,
        "conversationId": conversation_id,
        "visitorId": "visitor-1",
        "message": {"text": text},
    }
    payload.update(extra)
    return payload


def tenant_with_tools(*tool_names: str, tenant_id: str = "default") -> TenantConfig:
    """Tenant that enables the built-ins plus ``tool_names`` on every channel."""

    enabled = [HANDOFF_TOOL, TICKET_NOTE_TOOL, *tool_names]
    return TenantConfig(
        tenant_id=tenant_id,
        enabled_tools=enabled,
        channel_policies={
            channel: ChannelPolicy(enabled_tools=list(enabled))
            for channel in ("web", "whatsapp", "business_chat")
        },
    )


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "primary_provider": "primary",
        "tool_retry_delay_seconds": 0.0,
        "persistence_retry_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def tenant_configs() -> TenantConfigService:
    return TenantConfigService({"default": tenant_with_tools("lookup_order")})


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
