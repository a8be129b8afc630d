"""Conversation persistence backends."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..errors import PersistenceError
from .models import ConversationRecord, utcnow

logger = logging.getLogger(__name__)

MAX_STORED_TURNS = 20


class ConversationStore(Protocol):
    """Persistence abstraction used by the orchestrator."""

    async def get(self, conversation_id: str) -> Optional[ConversationRecord]: ...

    async def save(self, record: ConversationRecord) -> None: ...


def trim_turns(record: ConversationRecord, max_turns: int = MAX_STORED_TURNS) -> None:
    """Keep system turns plus the most recent ``max_turns`` other turns."""

    non_system = [t for t in record.turns if t.role != "system"]
    if len(non_system) <= max_turns:
        return
    system = [t for t in record.turns if t.role == "system"]
    record.turns = system + non_system[-max_turns:]


class InMemoryConversationStore:
    """Process-local store for development and tests.

    Records are stored as plain dictionaries so callers never share mutable
    state with the store.
    """

    def __init__(self, max_turns: int = MAX_STORED_TURNS) -> None:
        self._records: Dict[str, dict] = {}
        self._max_turns = max_turns

    async def get(self, conversation_id: str) -> Optional[ConversationRecord]:
        data = self._records.get(conversation_id)
        if data is None:
            return None
        return ConversationRecord.from_dict(data)

    async def save(self, record: ConversationRecord) -> None:
        trim_turns(record, self._max_turns)
        record.updated_at = utcnow()
        self._records[record.conversation_id] = record.to_dict()

    def __len__(self) -> int:
        return len(self._records)


class PostgresConversationStore:
    """PostgreSQL implementation of :class:`ConversationStore`.

    Each conversation is one row holding the record as a JSONB document plus
    a few columns used for operational queries.
    """

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS conversation_records (
            conversation_id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            channel TEXT NOT NULL,
            state TEXT NOT NULL,
            document JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS conversation_records_tenant_state_idx
            ON conversation_records (tenant_id, state);
    """

    def __init__(self, dsn: str, max_turns: int = MAX_STORED_TURNS) -> None:
        self._dsn = dsn
        self._max_turns = max_turns

    async def _connect(self) -> psycopg.AsyncConnection:
        return await psycopg.AsyncConnection.connect(self._dsn)

    async def ensure_schema(self) -> None:
        async with await self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(self._SCHEMA)

    async def get(self, conversation_id: str) -> Optional[ConversationRecord]:
        async with await self._connect() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    "SELECT document FROM conversation_records WHERE conversation_id = %s",
                    (conversation_id,),
                )
                row = await cur.fetchone()
        if not row:
            return None
        return ConversationRecord.from_dict(row["document"])

    async def save(self, record: ConversationRecord) -> None:
        trim_turns(record, self._max_turns)
        record.updated_at = utcnow()
        async with await self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO conversation_records
                        (conversation_id, tenant_id, channel, state, document, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (conversation_id) DO UPDATE SET
                        state = EXCLUDED.state,
                        document = EXCLUDED.document,
                        updated_at = EXCLUDED.updated_at
                    """,
                    (
                        record.conversation_id,
                        record.tenant_id,
                        record.channel,
                        record.state.value,
                        Jsonb(record.to_dict()),
                        record.created_at,
                        record.updated_at,
                    ),
                )


class ResilientConversationStore:
    """Retry wrapper that also tracks repeated failures per conversation.

    Once a conversation accumulates ``alert_threshold`` consecutive failed
    operations the store reports itself unhealthy until an operation for that
    conversation succeeds again.
    """

    def __init__(
        self,
        inner: ConversationStore,
        *,
        attempts: int = 3,
        retry_delay: float = 0.2,
        alert_threshold: int = 3,
    ) -> None:
        self._inner = inner
        self._attempts = max(1, attempts)
        self._retry_delay = retry_delay
        self._alert_threshold = max(1, alert_threshold)
        self._failures: Dict[str, int] = {}

    @property
    def inner(self) -> ConversationStore:
        return self._inner

    @property
    def healthy(self) -> bool:
        return not self.unhealthy_conversations()

    def unhealthy_conversations(self) -> list[str]:
        return sorted(
            cid for cid, count in self._failures.items() if count >= self._alert_threshold
        )

    async def get(self, conversation_id: str) -> Optional[ConversationRecord]:
        return await self._run("get", conversation_id, self._inner.get, conversation_id)

    async def save(self, record: ConversationRecord) -> None:
        await self._run("save", record.conversation_id, self._inner.save, record)

    async def _run(self, operation: str, conversation_id: str, func, *args):
        last_error: Exception | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                result = await func(*args)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Conversation %s failed for %s (attempt %d/%d): %s",
                    operation,
                    conversation_id,
                    attempt,
                    self._attempts,
                    exc,
                )
                if attempt < self._attempts:
                    await asyncio.sleep(self._retry_delay)
                continue
            self._failures.pop(conversation_id, None)
            return result

        count = self._failures.get(conversation_id, 0) + 1
        self._failures[conversation_id] = count
        if count >= self._alert_threshold:
            logger.error(
                "Persistence unhealthy: %d consecutive failed operations for conversation %s",
                count,
                conversation_id,
            )
        raise PersistenceError(
            f"Conversation {operation} failed after {self._attempts} attempts: {last_error}",
            conversation_id=conversation_id,
        ) from last_error
