"""Per-tenant configuration consumed read-only by the orchestration core."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CHANNELS: tuple[str, ...] = ("whatsapp", "business_chat", "web")
DEFAULT_TENANT = "default"

_DEFAULT_TOOLS = ["create_ticket_note", "handoff_to_human"]


class ChannelPolicy(BaseModel):
    enabled_tools: list[str] = Field(default_factory=lambda: list(_DEFAULT_TOOLS))
    max_turns_before_escalation: int = 10
    streaming_enabled: bool = False


class EscalationThresholds(BaseModel):
    max_clarifications: int = 2
    frustration_keywords: list[str] = Field(
        default_factory=lambda: [
            "frustrated",
            "angry",
            "useless",
            "terrible",
            "worst",
            "speak to human",
            "real person",
            "manager",
            "supervisor",
        ]
    )
    escalation_intents: list[str] = Field(
        default_factory=lambda: [
            "request_human",
            "legal_question",
            "contract_negotiation",
            "discount_request",
            "complaint",
        ]
    )
    sentiment_escalation_threshold: float = -0.7
    urgency_auto_escalate: list[str] = Field(default_factory=lambda: ["critical"])
    risk_flag_auto_escalate: list[str] = Field(
        default_factory=lambda: [
            "legal_threat",
            "social_media_threat",
            "policy_exception_requested",
        ]
    )


class TicketCreationPolicy(BaseModel):
    auto_create_on_new: bool = True
    auto_summarize_on_update: bool = True
    tag_prefix: str = "chatdesk"


class TenantConfig(BaseModel):
    """Configuration resolved for a single tenant."""

    tenant_id: str = DEFAULT_TENANT
    enabled_tools: list[str] = Field(default_factory=lambda: list(_DEFAULT_TOOLS))
    channel_policies: dict[str, ChannelPolicy] = Field(
        default_factory=lambda: {
            "whatsapp": ChannelPolicy(),
            "business_chat": ChannelPolicy(),
            "web": ChannelPolicy(streaming_enabled=True),
        }
    )
    escalation_thresholds: EscalationThresholds = Field(default_factory=EscalationThresholds)
    ticket_creation_policy: TicketCreationPolicy = Field(default_factory=TicketCreationPolicy)
    prompt_version: str = "v1"
    feature_flags: dict[str, bool] = Field(default_factory=dict)

    def channel_policy(self, channel: str) -> ChannelPolicy:
        return self.channel_policies.get(channel.lower()) or ChannelPolicy()

    def tool_denial_reason(self, tool_name: str, channel: str) -> str | None:
        """Return why ``tool_name`` is unavailable, or ``None`` when allowed."""

        if tool_name not in self.enabled_tools:
            return f"tool '{tool_name}' is not enabled for tenant {self.tenant_id}"
        policy = self.channel_policies.get(channel.lower())
        if policy is None or tool_name not in policy.enabled_tools:
            return f"tool '{tool_name}' is not enabled on channel {channel}"
        if self.feature_flags.get(f"tool.{tool_name}") is False:
            return f"tool '{tool_name}' is disabled by feature flag"
        return None

    def is_tool_enabled(self, tool_name: str, channel: str) -> bool:
        return self.tool_denial_reason(tool_name, channel) is None


class TenantConfigService:
    """Resolve tenant configuration, falling back to the default tenant."""

    def __init__(self, configs: Mapping[str, TenantConfig] | None = None) -> None:
        self._configs: dict[str, TenantConfig] = {DEFAULT_TENANT: TenantConfig()}
        for tenant_id, config in (configs or {}).items():
            self._configs[tenant_id] = config

    @classmethod
    def from_file(cls, path: str | Path) -> "TenantConfigService":
        """Load tenants from a JSON document ``{"tenants": {id: config}}``."""

        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        tenants: dict[str, Any] = raw.get("tenants", raw)
        configs = {
            tenant_id: TenantConfig.model_validate({"tenant_id": tenant_id, **payload})
            for tenant_id, payload in tenants.items()
        }
        logger.info("Loaded configuration for %d tenants from %s", len(configs), path)
        return cls(configs)

    def get(self, tenant_id: str | None) -> TenantConfig:
        if tenant_id and tenant_id in self._configs:
            return self._configs[tenant_id]
        return self._configs[DEFAULT_TENANT]

    def tenants(self) -> list[str]:
        return sorted(self._configs)
