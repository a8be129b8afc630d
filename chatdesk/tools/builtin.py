"""Tools shipped with every deployment."""

from __future__ import annotations

import logging
from typing import Any

from ..ticketing import TicketingService, TicketNotFoundError
from .registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

HANDOFF_TOOL = "handoff_to_human"
TICKET_NOTE_TOOL = "create_ticket_note"

HANDOFF_MESSAGE = (
    "Connecting you with a team member. They will have the full context of our conversation."
)


async def handoff_to_human(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    reason = str(args.get("reason") or "User requested human agent")
    summary = str(args.get("summary") or "")
    logger.info(
        "Handoff to human requested for %s on %s (summary %d chars)",
        ctx.conversation_id,
        ctx.channel,
        len(summary),
    )
    return ToolResult.ok(
        {"escalated": True, "reason": reason, "summary": summary, "message": HANDOFF_MESSAGE}
    )


def make_ticket_note_handler(ticketing: TicketingService):
    async def create_ticket_note(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        ticket_id = args.get("ticket_id")
        if not ticket_id:
            ticket = await ticketing.get_ticket_by_conversation_id(ctx.conversation_id)
            if ticket is None:
                return ToolResult.fail("No ticket exists for this conversation", "not_found")
            ticket_id = ticket.id
        try:
            await ticketing.add_note(ticket_id, str(args["note"]))
        except TicketNotFoundError as exc:
            return ToolResult.fail(str(exc), exc.code)
        return ToolResult.ok({"ticket_id": ticket_id, "message": "Note added to ticket."})

    return create_ticket_note


def builtin_tools(ticketing: TicketingService) -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name=HANDOFF_TOOL,
            description="Escalate the conversation to a human agent with a context summary.",
            handler=handoff_to_human,
            input_schema={
                "type": "object",
                "properties": {
                    "reason": {"type": "string", "description": "Reason for escalation"},
                    "summary": {
                        "type": "string",
                        "description": "Conversation summary for the human agent",
                    },
                },
                "required": ["reason"],
                "additionalProperties": False,
            },
            output_schema={
                "type": "object",
                "properties": {
                    "escalated": {"type": "boolean"},
                    "reason": {"type": "string"},
                    "message": {"type": "string"},
                },
                "required": ["escalated"],
            },
            rate_limit_per_minute=5,
            retryable=False,
            context_scope=("tenant_id", "conversation_id"),
        ),
        ToolDefinition(
            name=TICKET_NOTE_TOOL,
            description="Add an internal note to the support ticket of this conversation.",
            handler=make_ticket_note_handler(ticketing),
            input_schema={
                "type": "object",
                "properties": {
                    "note": {"type": "string", "minLength": 1},
                    "ticket_id": {
                        "type": "string",
                        "description": "Defaults to the ticket linked to the conversation",
                    },
                },
                "required": ["note"],
                "additionalProperties": False,
            },
            output_schema={
                "type": "object",
                "properties": {
                    "ticket_id": {"type": "string"},
                    "message": {"type": "string"},
                },
            },
            auth_level="service",
            rate_limit_per_minute=20,
            context_scope=("tenant_id", "conversation_id"),
        ),
    ]


def register_builtin_tools(registry: ToolRegistry, ticketing: TicketingService) -> None:
    for tool in builtin_tools(ticketing):
        registry.register(tool)
