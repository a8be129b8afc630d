"""Escalation policy applied after every agent turn."""

from __future__ import annotations

import logging

from ..agents.schemas import AgentResponse
from ..core.tenant_config import TenantConfig
from ..nlp import NlpPipeline
from .models import ConversationRecord, EscalationDecision

logger = logging.getLogger(__name__)

CLARIFICATION_INTENTS = frozenset({"clarification", "clarification_request"})


class EscalationPolicy:
    """Decide whether a conversation must be handed to a human.

    Triggers are checked in order and the first match wins: the agent's own
    flag, tenant escalation intents, urgency level, risk flags, negative
    sentiment, frustration keywords, too many clarifications, too many turns
    on the channel and repeated pipeline failures. When the agent reports no sentiment the keyword
    based :class:`~chatdesk.nlp.NlpPipeline` score is used instead.
    """

    def __init__(
        self, *, max_consecutive_failures: int = 2, nlp: NlpPipeline | None = None
    ) -> None:
        self._max_consecutive_failures = max_consecutive_failures
        self._nlp = nlp or NlpPipeline()

    def evaluate(
        self,
        response: AgentResponse,
        record: ConversationRecord,
        user_text: str,
        tenant: TenantConfig,
    ) -> EscalationDecision:
        thresholds = tenant.escalation_thresholds
        if response.should_escalate:
            return EscalationDecision(True, response.escalation_reason or "agent_requested")

        if response.intent.lower() in {i.lower() for i in thresholds.escalation_intents}:
            return EscalationDecision(True, f"intent:{response.intent}")

        urgency = self._nlp.urgency(user_text)
        if urgency in thresholds.urgency_auto_escalate:
            return EscalationDecision(True, f"urgency:{urgency}")

        for flag in self._nlp.risk_flags(user_text):
            if flag in thresholds.risk_flag_auto_escalate:
                return EscalationDecision(True, f"risk:{flag}")

        if response.sentiment is not None:
            score = response.sentiment.score
        else:
            score = self._nlp.sentiment(user_text)["score"]
        if score < thresholds.sentiment_escalation_threshold:
            return EscalationDecision(True, "negative_sentiment")

        lowered = (user_text or "").lower()
        for keyword in thresholds.frustration_keywords:
            if keyword.lower() in lowered:
                return EscalationDecision(True, "frustration_detected")

        if record.clarification_count >= thresholds.max_clarifications:
            return EscalationDecision(True, "max_clarifications")

        max_turns = tenant.channel_policy(record.channel).max_turns_before_escalation
        if record.turn_count >= max_turns:
            return EscalationDecision(True, "max_turns")

        if record.consecutive_failures >= self._max_consecutive_failures:
            return EscalationDecision(True, "repeated_failures")

        return EscalationDecision(False)
