from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Protocol

from ..errors import ChatdeskError
from .models import CreateTicketParams, Ticket, UpdateTicketParams

logger = logging.getLogger(__name__)


class TicketNotFoundError(ChatdeskError):
    code = "ticket_not_found"


class TicketingService(Protocol):
    async def create_ticket(self, params: CreateTicketParams) -> Ticket: ...

    async def update_ticket(self, params: UpdateTicketParams) -> Ticket: ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None: ...

    async def get_ticket_by_conversation_id(self, conversation_id: str) -> Ticket | None: ...

    async def add_note(self, ticket_id: str, note: str) -> Ticket: ...


# ---------------------------------------------------------------------------
# In-memory implementation (development and tests)


class InMemoryTicketingService:
    def __init__(self, id_prefix: str = "TCK") -> None:
        self._tickets: dict[str, Ticket] = {}
        self._by_conversation: dict[str, str] = {}
        self._id_prefix = id_prefix
        self._id_seq = 1

    async def create_ticket(self, params: CreateTicketParams) -> Ticket:
        ticket_id = f"{self._id_prefix}-{self._id_seq}"
        self._id_seq += 1
        ticket = Ticket(
            id=ticket_id,
            conversation_id=params.conversation_id,
            channel=params.channel,
            subject=params.subject,
            description=params.description,
            tags=list(dict.fromkeys(params.tags)),
            custom_fields=dict(params.custom_fields),
        )
        self._tickets[ticket_id] = ticket
        self._by_conversation[params.conversation_id] = ticket_id
        logger.info("Ticket %s created for conversation %s", ticket_id, params.conversation_id)
        return copy.deepcopy(ticket)

    async def update_ticket(self, params: UpdateTicketParams) -> Ticket:
        ticket = self._require(params.ticket_id)
        if params.summary:
            ticket.summary = params.summary
        if params.status:
            ticket.status = params.status
        if params.tags:
            ticket.tags = list(dict.fromkeys([*ticket.tags, *params.tags]))
        if params.lead_fields:
            ticket.lead_fields = {**ticket.lead_fields, **params.lead_fields}
        if params.intent_classification:
            ticket.intent_classification = params.intent_classification
        if params.description:
            ticket.description = params.description
        ticket.updated_at = datetime.now(timezone.utc)
        logger.info("Ticket %s updated (status=%s)", ticket.id, ticket.status)
        return copy.deepcopy(ticket)

    async def add_note(self, ticket_id: str, note: str) -> Ticket:
        ticket = self._require(ticket_id)
        ticket.notes.append(note)
        ticket.updated_at = datetime.now(timezone.utc)
        logger.info("Note added to ticket %s (%d chars)", ticket_id, len(note))
        return copy.deepcopy(ticket)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def get_ticket_by_conversation_id(self, conversation_id: str) -> Ticket | None:
        ticket_id = self._by_conversation.get(conversation_id)
        if ticket_id is None:
            return None
        return await self.get_ticket(ticket_id)

    def all(self) -> list[Ticket]:
        return [copy.deepcopy(t) for t in self._tickets.values()]

    def _require(self, ticket_id: str) -> Ticket:
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket
