"""Conversation state machine.

The machine is pure: :func:`resolve_target_state` maps an intent to the state
the conversation should move to and :func:`transition` validates the move
against the declared edge table. Neither keeps state between calls; accepted
transitions return a :class:`TransitionEvent` that callers publish for audit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    NEW = "NEW"
    ACTIVE_QA = "ACTIVE_QA"
    ORDER_INQUIRY = "ORDER_INQUIRY"
    SHIPMENT_TRACKING = "SHIPMENT_TRACKING"
    RETURN_REFUND = "RETURN_REFUND"
    PRODUCT_INQUIRY = "PRODUCT_INQUIRY"
    LEAD_QUALIFICATION = "LEAD_QUALIFICATION"
    MEETING_BOOKING = "MEETING_BOOKING"
    SUPPORT_TRIAGE = "SUPPORT_TRIAGE"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"


class TransitionOutcome(str, Enum):
    ACCEPTED = "accepted"
    NOOP = "noop"
    REJECTED = "rejected"


S = ConversationState

TERMINAL_STATES = frozenset({S.ESCALATED, S.RESOLVED})

_INTENT_GROUPS: dict[ConversationState, tuple[str, ...]] = {
    S.ACTIVE_QA: ("greeting", "general_question", "faq"),
    S.ORDER_INQUIRY: (
        "order_status",
        "order_delayed",
        "order_issue",
        "modify_order",
        "cancel_order",
        "partial_cancel",
        "order_lookup",
        "missing_item",
        "wrong_product",
        "damaged_product",
        "invoice_issue",
    ),
    S.SHIPMENT_TRACKING: (
        "track_shipment",
        "delivery_status",
        "delivery_delayed",
        "failed_delivery",
        "shipment_details",
    ),
    S.RETURN_REFUND: (
        "return_request",
        "return_status",
        "refund_status",
        "refund_delay",
        "refund_amount_mismatch",
        "refund_link_issue",
        "replacement_request",
        "replacement_status",
    ),
    S.PRODUCT_INQUIRY: (
        "product_search",
        "product_inquiry",
        "product_out_of_stock",
        "product_not_listed",
        "bulk_quote",
        "product_interest",
        "pricing_question",
    ),
    S.LEAD_QUALIFICATION: ("lead_inquiry",),
    S.MEETING_BOOKING: ("schedule_meeting", "book_demo"),
    S.SUPPORT_TRIAGE: (
        "support_request",
        "bug_report",
        "technical_issue",
        "app_web_issue",
        "payment_issue",
        "warranty_service",
        "repair_request",
        "installation_request",
    ),
    S.RESOLVED: ("resolved", "goodbye", "thank_you", "issue_resolved"),
    S.ESCALATED: (
        "request_human",
        "complaint",
        "legal_question",
        "contract_negotiation",
        "discount_request",
    ),
}

INTENT_TO_STATE: dict[str, ConversationState] = {
    intent: state for state, intents in _INTENT_GROUPS.items() for intent in intents
}

STATE_TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    S.NEW: frozenset(
        {
            S.ACTIVE_QA,
            S.ESCALATED,
            S.ORDER_INQUIRY,
            S.SHIPMENT_TRACKING,
            S.RETURN_REFUND,
            S.PRODUCT_INQUIRY,
            S.SUPPORT_TRIAGE,
            S.LEAD_QUALIFICATION,
            S.MEETING_BOOKING,
        }
    ),
    S.ACTIVE_QA: frozenset(
        {
            S.LEAD_QUALIFICATION,
            S.MEETING_BOOKING,
            S.SUPPORT_TRIAGE,
            S.ORDER_INQUIRY,
            S.SHIPMENT_TRACKING,
            S.RETURN_REFUND,
            S.PRODUCT_INQUIRY,
            S.ESCALATED,
            S.RESOLVED,
        }
    ),
    S.ORDER_INQUIRY: frozenset(
        {S.SHIPMENT_TRACKING, S.RETURN_REFUND, S.ESCALATED, S.RESOLVED}
    ),
    S.SHIPMENT_TRACKING: frozenset(
        {S.ORDER_INQUIRY, S.RETURN_REFUND, S.ESCALATED, S.RESOLVED}
    ),
    S.RETURN_REFUND: frozenset(
        {S.ORDER_INQUIRY, S.SHIPMENT_TRACKING, S.ESCALATED, S.RESOLVED}
    ),
    S.PRODUCT_INQUIRY: frozenset(
        {
            S.LEAD_QUALIFICATION,
            S.ORDER_INQUIRY,
            S.MEETING_BOOKING,
            S.ACTIVE_QA,
            S.ESCALATED,
            S.RESOLVED,
        }
    ),
    S.LEAD_QUALIFICATION: frozenset(
        {S.MEETING_BOOKING, S.PRODUCT_INQUIRY, S.ACTIVE_QA, S.ESCALATED, S.RESOLVED}
    ),
    S.MEETING_BOOKING: frozenset(
        {S.LEAD_QUALIFICATION, S.ACTIVE_QA, S.ESCALATED, S.RESOLVED}
    ),
    S.SUPPORT_TRIAGE: frozenset(
        {S.ORDER_INQUIRY, S.ACTIVE_QA, S.ESCALATED, S.RESOLVED}
    ),
    S.ESCALATED: frozenset(),
    # Reopen: anything but escalation straight from a resolved conversation.
    S.RESOLVED: frozenset(set(ConversationState) - {S.ESCALATED, S.RESOLVED}),
}


@dataclass(frozen=True)
class TransitionEvent:
    conversation_id: str
    from_state: ConversationState
    to_state: ConversationState
    intent: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, str]:
        return {
            "conversation_id": self.conversation_id,
            "from": self.from_state.value,
            "to": self.to_state.value,
            "intent": self.intent,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TransitionResult:
    new_state: ConversationState
    event: TransitionEvent | None
    outcome: TransitionOutcome

    @property
    def changed(self) -> bool:
        return self.outcome is TransitionOutcome.ACCEPTED


def resolve_target_state(
    current_state: ConversationState, intent: str | None, should_escalate: bool
) -> ConversationState:
    """Return the state ``intent`` points at, or ``current_state`` if unknown."""

    if should_escalate:
        return S.ESCALATED
    normalized = (intent or "").strip().lower()
    return INTENT_TO_STATE.get(normalized, current_state)


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    return to_state in STATE_TRANSITIONS.get(from_state, frozenset())


def transition(
    conversation_id: str,
    current_state: ConversationState,
    target_state: ConversationState,
    intent: str,
) -> TransitionResult:
    """Validate ``current_state -> target_state`` against the edge table."""

    if target_state == current_state:
        return TransitionResult(current_state, None, TransitionOutcome.NOOP)

    if not can_transition(current_state, target_state):
        logger.warning(
            "Rejected transition %s -> %s for conversation %s (intent=%s)",
            current_state.value,
            target_state.value,
            conversation_id,
            intent,
        )
        return TransitionResult(current_state, None, TransitionOutcome.REJECTED)

    event = TransitionEvent(
        conversation_id=conversation_id,
        from_state=current_state,
        to_state=target_state,
        intent=intent,
    )
    logger.info(
        "Conversation %s moved %s -> %s (intent=%s)",
        conversation_id,
        current_state.value,
        target_state.value,
        intent,
    )
    return TransitionResult(target_state, event, TransitionOutcome.ACCEPTED)
