"""Outbound channel abstraction used by the orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any


class ChannelOutbound(ABC):
    """Delivery side of a chat channel.

    Implementations wrap a concrete messaging platform. Rich and template
    messages are optional capabilities: the default implementations return
    ``False`` so callers can fall back to plain text.
    """

    @abstractmethod
    async def send_message(self, conversation_id: str, text: str) -> None:
        """Deliver ``text`` to the visitor."""

    @abstractmethod
    async def send_typing(self, conversation_id: str) -> None: ...

    @abstractmethod
    async def escalate_to_human(
        self, conversation_id: str, reason: str, summary: str | None = None
    ) -> None: ...

    @abstractmethod
    async def add_tags(self, conversation_id: str, tags: Sequence[str]) -> None: ...

    @abstractmethod
    async def set_department(self, conversation_id: str, department: str) -> None: ...

    async def send_rich_message(
        self, conversation_id: str, message: Mapping[str, Any]
    ) -> bool:
        return False

    async def send_template_message(
        self,
        conversation_id: str,
        template: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> bool:
        return False
