"""Outbound event channel for downstream, best-effort consumers.

The orchestrator publishes events without waiting for consumers. Worker tasks
drain the queue and dispatch each event to the handlers subscribed to its
kind; handler failures are logged and never reach the publisher.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)

STATE_TRANSITION = "state.transition"
SESSION_INDEX = "session.index"
LEARNING_COLLECT = "learning.collect"

EVENT_KINDS: tuple[str, ...] = (STATE_TRANSITION, SESSION_INDEX, LEARNING_COLLECT)


@dataclass(frozen=True)
class Event:
    kind: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    def __init__(self, *, workers: int = 2, max_queue_size: int = 1000) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._worker_count = max(1, workers)
        self._workers: list[asyncio.Task[None]] = []
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def subscribe(self, kind: str, handler: EventHandler) -> None:
        self._handlers[kind].append(handler)

    def publish(self, kind: str, payload: dict[str, Any]) -> bool:
        """Queue an event; returns ``False`` when it had to be dropped."""

        try:
            self._queue.put_nowait(Event(kind, payload))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event queue full; dropping %s event", kind)
            return False
        return True

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"chatdesk-events-{index}")
            for index in range(self._worker_count)
        ]
        logger.info("Event bus started with %d workers", self._worker_count)

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain queued events, then stop the workers."""

        if not self._workers:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Event bus stopped with %d events pending", self._queue.qsize())
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Event bus stopped")

    async def drain(self) -> None:
        """Dispatch every queued event in the calling task (used without workers)."""

        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        for handler in self._handlers.get(event.kind, ()):
            try:
                await handler(event)
            except Exception:
                logger.exception("Handler for %s event failed", event.kind)


# ---------------------------------------------------------------------------
# Downstream collaborators


class SessionIndexer(Protocol):
    async def index(self, record: dict[str, Any]) -> None: ...


class ConversationCollector(Protocol):
    async def collect(self, record: dict[str, Any]) -> None: ...


class InMemorySessionIndexer:
    """Latest snapshot per conversation, keyed by conversation id."""

    def __init__(self) -> None:
        self.sessions: dict[str, dict[str, Any]] = {}

    async def index(self, record: dict[str, Any]) -> None:
        self.sessions[record["conversation_id"]] = record


class InMemoryConversationCollector:
    def __init__(self) -> None:
        self.collected: list[dict[str, Any]] = []

    async def collect(self, record: dict[str, Any]) -> None:
        self.collected.append(record)


class TransitionAuditLog:
    """Keeps accepted state transitions for audit."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(self, event: Event) -> None:
        self.entries.append(event.payload)
        logger.info(
            "Audit: conversation %s moved %s -> %s (intent=%s)",
            event.payload.get("conversation_id"),
            event.payload.get("from"),
            event.payload.get("to"),
            event.payload.get("intent"),
        )


def wire_default_handlers(
    bus: EventBus,
    *,
    indexer: SessionIndexer,
    collector: ConversationCollector,
    audit: TransitionAuditLog,
) -> None:
    async def on_index(event: Event) -> None:
        await indexer.index(event.payload["record"])

    async def on_learning(event: Event) -> None:
        await collector.collect(event.payload["record"])

    bus.subscribe(STATE_TRANSITION, audit.record)
    bus.subscribe(SESSION_INDEX, on_index)
    bus.subscribe(LEARNING_COLLECT, on_learning)
