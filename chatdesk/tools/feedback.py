"""Feedback collection for tool executions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol


@dataclass(frozen=True)
class ToolFeedback:
    tool: str
    conversation_id: str
    tenant_id: str
    request_id: str
    success: bool
    duration_ms: float
    error_type: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class FeedbackCollector(Protocol):
    async def collect(self, feedback: ToolFeedback) -> None: ...


class InMemoryFeedbackCollector:
    """Keeps the most recent feedback entries in memory."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: list[ToolFeedback] = []
        self._max_entries = max_entries

    async def collect(self, feedback: ToolFeedback) -> None:
        self._entries.append(feedback)
        if len(self._entries) > self._max_entries:
            del self._entries[: len(self._entries) - self._max_entries]

    @property
    def entries(self) -> list[ToolFeedback]:
        return list(self._entries)

    def failure_rate(self, tool: str) -> float:
        relevant = [entry for entry in self._entries if entry.tool == tool]
        if not relevant:
            return 0.0
        return sum(1 for entry in relevant if not entry.success) / len(relevant)
