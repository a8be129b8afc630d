"""Domain models owned by the orchestrator."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from .state_machine import ConversationState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Epoch milliseconds are what most channel adapters send.
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return datetime.fromisoformat(str(value))


@dataclass
class Turn:
    role: str
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    attachments: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "attachments": list(self.attachments),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            timestamp=_parse_dt(data.get("timestamp") or utcnow()),
            attachments=list(data.get("attachments") or []),
        )


@dataclass
class StructuredMemory:
    """Facts extracted about the visitor over the course of a conversation."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    intent: str | None = None
    product_interest: list[str] = field(default_factory=list)
    custom_fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def compact(self) -> dict[str, Any]:
        """Return only populated fields, used when prompting the model."""

        return {k: v for k, v in self.to_dict().items() if v not in (None, [], {})}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StructuredMemory":
        data = dict(data or {})
        return cls(
            name=data.get("name"),
            email=data.get("email"),
            phone=data.get("phone"),
            company=data.get("company"),
            intent=data.get("intent"),
            product_interest=list(data.get("product_interest") or []),
            custom_fields=dict(data.get("custom_fields") or {}),
        )


@dataclass
class ConversationRecord:
    conversation_id: str
    tenant_id: str
    channel: str
    state: ConversationState = ConversationState.NEW
    turns: list[Turn] = field(default_factory=list)
    structured_memory: StructuredMemory = field(default_factory=StructuredMemory)
    turn_count: int = 0
    clarification_count: int = 0
    consecutive_failures: int = 0
    primary_intent: str | None = None
    language: str | None = None
    ticket_id: str | None = None
    csat_rating: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "tenant_id": self.tenant_id,
            "channel": self.channel,
            "state": self.state.value,
            "turns": [turn.to_dict() for turn in self.turns],
            "structured_memory": self.structured_memory.to_dict(),
            "turn_count": self.turn_count,
            "clarification_count": self.clarification_count,
            "consecutive_failures": self.consecutive_failures,
            "primary_intent": self.primary_intent,
            "language": self.language,
            "ticket_id": self.ticket_id,
            "csat_rating": self.csat_rating,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationRecord":
        return cls(
            conversation_id=data["conversation_id"],
            tenant_id=data.get("tenant_id") or "default",
            channel=data.get("channel") or "web",
            state=ConversationState(data.get("state", ConversationState.NEW.value)),
            turns=[Turn.from_dict(t) for t in data.get("turns") or []],
            structured_memory=StructuredMemory.from_dict(data.get("structured_memory")),
            turn_count=int(data.get("turn_count") or 0),
            clarification_count=int(data.get("clarification_count") or 0),
            consecutive_failures=int(data.get("consecutive_failures") or 0),
            primary_intent=data.get("primary_intent"),
            language=data.get("language"),
            ticket_id=data.get("ticket_id"),
            csat_rating=data.get("csat_rating"),
            created_at=_parse_dt(data.get("created_at") or utcnow()),
            updated_at=_parse_dt(data.get("updated_at") or utcnow()),
        )


@dataclass
class EscalationDecision:
    should_escalate: bool
    reason: str | None = None
