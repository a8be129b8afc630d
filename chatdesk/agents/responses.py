"""Response contract: the JSON schema the model must follow and its parser."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..errors import ParseError
from .schemas import AgentResponse, ToolCall

logger = logging.getLogger(__name__)

PARSE_FALLBACK_INTENT = "parse_fallback"
PARSE_FALLBACK_MESSAGE = (
    "Thanks for your message. Could you tell me a little more about what you need help with?"
)

RESPONSE_CONTRACT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "user_facing_message": {
            "type": "string",
            "description": "The message to send to the user.",
        },
        "intent": {
            "type": "string",
            "description": (
                "Classified intent of the user message (e.g. greeting, order_status, "
                "return_request, request_human, complaint, goodbye)."
            ),
        },
        "extracted_fields": {
            "type": "object",
            "description": "Extracted lead/support fields (name, email, phone, company, product_interest, ...).",
            "additionalProperties": True,
        },
        "should_escalate": {
            "type": "boolean",
            "description": "Whether the conversation should be escalated to a human agent.",
        },
        "escalation_reason": {"type": "string"},
        "ticket_update_payload": {
            "type": "object",
            "properties": {
                "summary": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "status": {
                    "type": "string",
                    "enum": ["Open", "Pending", "Escalated", "Resolved"],
                },
                "lead_fields": {"type": "object", "additionalProperties": True},
                "intent_classification": {"type": "string"},
            },
        },
        "tool_calls": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "args": {"type": "object", "additionalProperties": True},
                },
                "required": ["name", "args"],
            },
            "description": "Tool calls to execute. The runtime executes them safely.",
        },
        "detected_language": {"type": "string", "description": "ISO language code."},
        "intent_confidence": {"type": "number"},
        "secondary_intents": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"label": {"type": "string"}, "confidence": {"type": "number"}},
            },
        },
        "sentiment": {
            "type": "object",
            "properties": {
                "label": {"type": "string", "enum": ["positive", "negative", "neutral"]},
                "score": {"type": "number", "description": "-1 (negative) to 1 (positive)."},
                "emotion": {"type": "string"},
            },
        },
        "extracted_entities": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string"},
                    "value": {"type": "string"},
                    "confidence": {"type": "number"},
                },
            },
        },
        "confidence_score": {"type": "number"},
        "clarification_needed": {"type": "boolean"},
        "customer_stage": {"type": "string"},
        "resolution_receipt": {
            "type": "object",
            "properties": {
                "action_taken": {"type": "string"},
                "reference_id": {"type": "string"},
                "expected_timeline": {"type": "string"},
                "next_steps": {"type": "string"},
            },
        },
        "fcr_achieved": {"type": "boolean"},
    },
    "required": [
        "user_facing_message",
        "intent",
        "extracted_fields",
        "should_escalate",
        "tool_calls",
    ],
}

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


def strip_code_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = _FENCE_END.sub("", _FENCE_START.sub("", text))
    return text.strip()


def _tool_calls(value: Any) -> list[ToolCall]:
    calls: list[ToolCall] = []
    if not isinstance(value, list):
        return calls
    for entry in value:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            logger.warning("Dropping malformed tool call: %r", entry)
            continue
        name = entry["name"].strip()
        if name.startswith("functions."):
            name = name[len("functions.") :]
        args = entry.get("args")
        if args is None:
            args = {}
        if not name or not isinstance(args, dict):
            logger.warning("Dropping malformed tool call: %r", entry)
            continue
        calls.append(ToolCall(name=name, args=args))
    return calls


def _optional_list(value: Any) -> list[Any]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def parse_agent_response(raw: str) -> AgentResponse:
    """Parse model output into an :class:`AgentResponse`.

    Raises :class:`~chatdesk.errors.ParseError` when the text is not a JSON
    object carrying at least ``user_facing_message`` and ``intent``.
    """

    text = strip_code_fences(raw or "")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Model output is not valid JSON: {exc}", raw=raw) from exc
    if not isinstance(payload, dict):
        raise ParseError("Model output is not a JSON object", raw=raw)

    message = payload.get("user_facing_message")
    intent = payload.get("intent")
    if not isinstance(message, str) or not message.strip():
        raise ParseError("Missing user_facing_message", raw=raw)
    if not isinstance(intent, str) or not intent.strip():
        raise ParseError("Missing intent", raw=raw)

    extracted = payload.get("extracted_fields")
    ticket = payload.get("ticket_update_payload")
    data = {
        "user_facing_message": message,
        "intent": intent.strip(),
        "extracted_fields": extracted if isinstance(extracted, dict) else {},
        "should_escalate": payload.get("should_escalate") is True,
        "escalation_reason": payload.get("escalation_reason") or None,
        "ticket_update_payload": ticket if isinstance(ticket, dict) else {},
        "tool_calls": _tool_calls(payload.get("tool_calls")),
        "detected_language": payload.get("detected_language") or None,
        "intent_confidence": payload.get("intent_confidence"),
        "secondary_intents": _optional_list(payload.get("secondary_intents")),
        "sentiment": payload.get("sentiment") if isinstance(payload.get("sentiment"), dict) else None,
        "extracted_entities": _optional_list(payload.get("extracted_entities")),
        "confidence_score": payload.get("confidence_score"),
        "clarification_needed": payload.get("clarification_needed"),
        "customer_stage": payload.get("customer_stage") or None,
        "resolution_receipt": payload.get("resolution_receipt")
        if isinstance(payload.get("resolution_receipt"), dict)
        else None,
        "fcr_achieved": payload.get("fcr_achieved"),
    }
    try:
        return AgentResponse.model_validate(data)
    except PydanticValidationError as exc:
        raise ParseError(f"Model output does not match the response contract: {exc}", raw=raw) from exc


def fallback_response() -> AgentResponse:
    """Safe reply used when the model output could not be parsed."""

    return AgentResponse(
        user_facing_message=PARSE_FALLBACK_MESSAGE,
        intent=PARSE_FALLBACK_INTENT,
        should_escalate=False,
    )
