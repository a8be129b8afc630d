"""Outbound channel that only logs, for local development."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from .base import ChannelOutbound

logger = logging.getLogger(__name__)


class LoggingOutbound(ChannelOutbound):
    """Log every outbound action and keep the delivered messages in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.escalations: list[dict[str, Any]] = []
        self.tags: dict[str, list[str]] = {}

    async def send_message(self, conversation_id: str, text: str) -> None:
        self.sent.append((conversation_id, text))
        logger.info("Reply to %s (%d chars)", conversation_id, len(text))

    async def send_typing(self, conversation_id: str) -> None:
        logger.debug("Typing indicator for %s", conversation_id)

    async def escalate_to_human(
        self, conversation_id: str, reason: str, summary: str | None = None
    ) -> None:
        self.escalations.append(
            {"conversation_id": conversation_id, "reason": reason, "summary": summary}
        )
        logger.info("Escalating %s to a human agent: %s", conversation_id, reason)

    async def add_tags(self, conversation_id: str, tags: Sequence[str]) -> None:
        existing = self.tags.setdefault(conversation_id, [])
        existing.extend(tag for tag in tags if tag not in existing)
        logger.info("Tags for %s: %s", conversation_id, ", ".join(tags))

    async def set_department(self, conversation_id: str, department: str) -> None:
        logger.info("Department for %s set to %s", conversation_id, department)

    def replies_for(self, conversation_id: str) -> list[str]:
        return [text for cid, text in self.sent if cid == conversation_id]
