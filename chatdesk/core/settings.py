"""Process level settings resolved from environment variables.

Values are read once by :func:`load_settings`. A ``.env`` file in the working
directory is honoured through ``python-dotenv`` so local development does not
need exported variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    # Model routing
    primary_provider: str = "sandbox"
    secondary_provider: str | None = None
    tertiary_provider: str | None = None
    routing_strategy: str = "config"
    ab_split_percent: int = 50
    routing_epoch: str = "1"
    llm_timeout_seconds: float = 30.0
    llm_health_timeout_seconds: float = 5.0
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-5-haiku-20241022"

    # Tools
    tool_timeout_seconds: float = 15.0
    tool_retry_delay_seconds: float = 1.0

    # Conversation handling
    history_turn_limit: int = 10
    max_stored_turns: int = 20
    max_consecutive_failures: int = 2

    # Ingress
    ingress_dedup_ttl_seconds: float = 3600.0
    ingress_dedup_max_entries: int = 50_000

    # Persistence
    database_url: str | None = None
    persistence_retry_attempts: int = 3
    persistence_retry_delay_seconds: float = 0.2
    persistence_failure_alert_threshold: int = 3

    # Downstream events
    event_workers: int = 2
    event_queue_size: int = 1000

    tenant_config_path: str | None = None
    prompts_dir: str | None = None


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""

    load_dotenv()
    return Settings(
        primary_provider=os.getenv("LLM_PRIMARY_PROVIDER", "sandbox").lower(),
        secondary_provider=(_env_optional("LLM_SECONDARY_PROVIDER") or "").lower() or None,
        tertiary_provider=(_env_optional("LLM_TERTIARY_PROVIDER") or "").lower() or None,
        routing_strategy=os.getenv("LLM_ROUTING_STRATEGY", "config").lower(),
        ab_split_percent=int(os.getenv("LLM_AB_SPLIT_PERCENT", "50")),
        routing_epoch=os.getenv("LLM_ROUTING_EPOCH", "1"),
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
        llm_health_timeout_seconds=float(os.getenv("LLM_HEALTH_TIMEOUT_SECONDS", "5")),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-20241022"),
        tool_timeout_seconds=float(os.getenv("TOOL_TIMEOUT_SECONDS", "15")),
        tool_retry_delay_seconds=float(os.getenv("TOOL_RETRY_DELAY_SECONDS", "1.0")),
        history_turn_limit=int(os.getenv("HISTORY_TURN_LIMIT", "10")),
        max_stored_turns=int(os.getenv("MAX_STORED_TURNS", "20")),
        max_consecutive_failures=int(os.getenv("MAX_CONSECUTIVE_FAILURES", "2")),
        ingress_dedup_ttl_seconds=float(os.getenv("INGRESS_DEDUP_TTL_SECONDS", "3600")),
        ingress_dedup_max_entries=int(os.getenv("INGRESS_DEDUP_MAX_ENTRIES", "50000")),
        database_url=_env_optional("DATABASE_URL"),
        persistence_retry_attempts=int(os.getenv("PERSISTENCE_RETRY_ATTEMPTS", "3")),
        persistence_retry_delay_seconds=float(
            os.getenv("PERSISTENCE_RETRY_DELAY_SECONDS", "0.2")
        ),
        persistence_failure_alert_threshold=int(
            os.getenv("PERSISTENCE_FAILURE_ALERT_THRESHOLD", "3")
        ),
        event_workers=int(os.getenv("EVENT_WORKERS", "2")),
        event_queue_size=int(os.getenv("EVENT_QUEUE_SIZE", "1000")),
        tenant_config_path=_env_optional("TENANT_CONFIG_PATH"),
        prompts_dir=_env_optional("PROMPTS_DIR"),
    )
