"""Composition root: builds every collaborator from :class:`Settings`."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .agents.core import AgentCore
from .agents.prompts import PromptBundleStore
from .agents.providers import LLMProvider, build_providers
from .agents.router import ModelRouter, RoutingConfig
from .channels.base import ChannelOutbound
from .channels.logging_outbound import LoggingOutbound
from .conversations.orchestrator import Orchestrator
from .conversations.repository import (
    ConversationStore,
    InMemoryConversationStore,
    PostgresConversationStore,
    ResilientConversationStore,
)
from .core.settings import Settings, load_settings
from .core.tenant_config import TenantConfigService
from .events import (
    EventBus,
    InMemoryConversationCollector,
    InMemorySessionIndexer,
    TransitionAuditLog,
    wire_default_handlers,
)
from .security.dedup import IngressDeduplicator
from .security.rate_limit import WindowRateLimiter
from .ticketing import InMemoryTicketingService, TicketingService
from .tools.builtin import register_builtin_tools
from .tools.cache import InMemoryCacheStore
from .tools.feedback import InMemoryFeedbackCollector
from .tools.registry import ToolRegistry
from .tools.runtime import ToolRuntime

logger = logging.getLogger(__name__)


@dataclass
class ChatdeskRuntime:
    settings: Settings
    tenant_configs: TenantConfigService
    store: ResilientConversationStore
    router: ModelRouter
    agent: AgentCore
    registry: ToolRegistry
    tools: ToolRuntime
    ticketing: TicketingService
    outbound: ChannelOutbound
    events: EventBus
    orchestrator: Orchestrator
    ingress_dedup: IngressDeduplicator
    session_indexer: InMemorySessionIndexer
    learning_collector: InMemoryConversationCollector
    audit_log: TransitionAuditLog
    feedback: InMemoryFeedbackCollector

    async def start(self) -> None:
        inner = self.store.inner
        if isinstance(inner, PostgresConversationStore):
            await inner.ensure_schema()
        await self.events.start()

    async def stop(self) -> None:
        await self.events.stop()

    async def readiness(self) -> dict[str, Any]:
        providers = await self.router.health_check()
        persistence = {
            "healthy": self.store.healthy,
            "unhealthy_conversations": self.store.unhealthy_conversations(),
        }
        any_provider = any(p["status"] == "ok" for p in providers.values())
        ready = any_provider and persistence["healthy"] and not self.router.is_fully_open()
        return {
            "status": "ready" if ready else "degraded",
            "providers": providers,
            "persistence": persistence,
        }


def create_runtime(
    settings: Settings | None = None,
    *,
    providers: Mapping[str, LLMProvider] | None = None,
    store: ConversationStore | None = None,
    outbound: ChannelOutbound | None = None,
    ticketing: TicketingService | None = None,
    tenant_configs: TenantConfigService | None = None,
) -> ChatdeskRuntime:
    """Build a runtime; any collaborator passed explicitly replaces the default."""

    settings = settings or load_settings()

    if tenant_configs is None:
        if settings.tenant_config_path:
            tenant_configs = TenantConfigService.from_file(settings.tenant_config_path)
        else:
            tenant_configs = TenantConfigService()

    if store is None:
        if settings.database_url:
            store = PostgresConversationStore(
                settings.database_url, max_turns=settings.max_stored_turns
            )
        else:
            store = InMemoryConversationStore(max_turns=settings.max_stored_turns)
    resilient = ResilientConversationStore(
        store,
        attempts=settings.persistence_retry_attempts,
        retry_delay=settings.persistence_retry_delay_seconds,
        alert_threshold=settings.persistence_failure_alert_threshold,
    )

    router = ModelRouter(
        RoutingConfig.from_settings(settings),
        providers if providers is not None else build_providers(settings),
    )
    agent = AgentCore(
        router,
        PromptBundleStore(settings.prompts_dir),
        history_turn_limit=settings.history_turn_limit,
    )

    ticketing = ticketing or InMemoryTicketingService()
    registry = ToolRegistry()
    register_builtin_tools(registry, ticketing)
    feedback = InMemoryFeedbackCollector()
    tools = ToolRuntime(
        registry,
        tenant_configs,
        cache=InMemoryCacheStore(),
        rate_limiter=WindowRateLimiter(),
        feedback=feedback,
        default_timeout=settings.tool_timeout_seconds,
        default_retry_delay=settings.tool_retry_delay_seconds,
    )

    events = EventBus(workers=settings.event_workers, max_queue_size=settings.event_queue_size)
    indexer = InMemorySessionIndexer()
    collector = InMemoryConversationCollector()
    audit = TransitionAuditLog()
    wire_default_handlers(events, indexer=indexer, collector=collector, audit=audit)

    outbound = outbound or LoggingOutbound()
    orchestrator = Orchestrator(
        store=resilient,
        agent=agent,
        tools=tools,
        tenant_configs=tenant_configs,
        outbound=outbound,
        ticketing=ticketing,
        events=events,
        max_consecutive_failures=settings.max_consecutive_failures,
    )
    return ChatdeskRuntime(
        settings=settings,
        tenant_configs=tenant_configs,
        store=resilient,
        router=router,
        agent=agent,
        registry=registry,
        tools=tools,
        ticketing=ticketing,
        outbound=outbound,
        events=events,
        orchestrator=orchestrator,
        ingress_dedup=IngressDeduplicator(
            settings.ingress_dedup_ttl_seconds, settings.ingress_dedup_max_entries
        ),
        session_indexer=indexer,
        learning_collector=collector,
        audit_log=audit,
        feedback=feedback,
    )
