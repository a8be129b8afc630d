"""Typed view of the structured response contract returned by the model."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class TicketUpdatePayload(BaseModel):
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    status: Literal["Open", "Pending", "Escalated", "Resolved"] | None = None
    lead_fields: dict[str, Any] = Field(default_factory=dict)
    intent_classification: str | None = None


class Sentiment(BaseModel):
    label: Literal["positive", "negative", "neutral"] = "neutral"
    score: float = 0.0
    emotion: str | None = None


class SecondaryIntent(BaseModel):
    label: str
    confidence: float | None = None


class ExtractedEntity(BaseModel):
    type: str
    value: str
    confidence: float | None = None


class ResolutionReceipt(BaseModel):
    action_taken: str = ""
    reference_id: str | None = None
    expected_timeline: str | None = None
    next_steps: str | None = None


class AgentResponse(BaseModel):
    """One generation turn, parsed from the model's JSON output."""

    user_facing_message: str
    intent: str
    extracted_fields: dict[str, Any] = Field(default_factory=dict)
    should_escalate: bool = False
    escalation_reason: str | None = None
    ticket_update_payload: TicketUpdatePayload = Field(default_factory=TicketUpdatePayload)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    detected_language: str | None = None
    intent_confidence: float | None = None
    secondary_intents: list[SecondaryIntent] = Field(default_factory=list)
    sentiment: Sentiment | None = None
    extracted_entities: list[ExtractedEntity] = Field(default_factory=list)
    confidence_score: float | None = None
    clarification_needed: bool | None = None
    customer_stage: str | None = None
    resolution_receipt: ResolutionReceipt | None = None
    fcr_achieved: bool | None = None
