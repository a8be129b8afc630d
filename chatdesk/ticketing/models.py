"""Ticket records exchanged with the ticketing back-end."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

TicketStatus = Literal["Open", "Pending", "Escalated", "Resolved"]

TICKET_STATUSES: tuple[str, ...] = ("Open", "Pending", "Escalated", "Resolved")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Ticket:
    id: str
    conversation_id: str
    channel: str
    subject: str
    description: str = ""
    status: TicketStatus = "Open"
    tags: list[str] = field(default_factory=list)
    summary: str | None = None
    lead_fields: dict[str, Any] = field(default_factory=dict)
    intent_classification: str | None = None
    custom_fields: dict[str, Any] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class CreateTicketParams:
    conversation_id: str
    channel: str
    visitor_id: str
    subject: str
    description: str = ""
    contact_id: str | None = None
    tags: list[str] = field(default_factory=list)
    custom_fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class UpdateTicketParams:
    ticket_id: str
    summary: str | None = None
    status: TicketStatus | None = None
    tags: list[str] = field(default_factory=list)
    lead_fields: dict[str, Any] = field(default_factory=dict)
    intent_classification: str | None = None
    description: str | None = None
