import asyncio

import pytest

from chatdesk.core.tenant_config import TenantConfigService
from chatdesk.ticketing import (
    CreateTicketParams,
    InMemoryTicketingService,
    TicketNotFoundError,
    UpdateTicketParams,
)
from chatdesk.tools.builtin import HANDOFF_MESSAGE, register_builtin_tools
from chatdesk.tools.registry import ToolContext, ToolRegistry
from chatdesk.tools.runtime import ToolRuntime

CTX = ToolContext(
    tenant_id="default",
    channel="whatsapp",
    conversation_id="conv-1",
    visitor_id="visitor-1",
    request_id="req-1",
)


def _params(**overrides) -> CreateTicketParams:
    values = {
        "conversation_id": "conv-1",
        "channel": "whatsapp",
        "visitor_id": "visitor-1",
        "subject": "Chat - whatsapp - visitor-1",
        "tags": ["chatdesk:whatsapp", "chatdesk:new"],
    }
    values.update(overrides)
    return CreateTicketParams(**values)


def test_ticket_lifecycle():
    service = InMemoryTicketingService()

    async def scenario():
        ticket = await service.create_ticket(_params())
        await service.update_ticket(
            UpdateTicketParams(
                ticket_id=ticket.id,
                summary="Wants a refund",
                tags=["refund", "chatdesk:new"],
                lead_fields={"email": "ana@example.com"},
            )
        )
        updated = await service.update_ticket(
            UpdateTicketParams(ticket_id=ticket.id, status="Escalated", lead_fields={"phone": "1"})
        )
        return ticket, updated, await service.get_ticket_by_conversation_id("conv-1")

    created, updated, by_conversation = asyncio.run(scenario())

    assert created.id == "TCK-1"
    assert created.status == "Open"
    assert updated.tags == ["chatdesk:whatsapp", "chatdesk:new", "refund"]
    assert updated.summary == "Wants a refund"
    assert updated.status == "Escalated"
    assert updated.lead_fields == {"email": "ana@example.com", "phone": "1"}
    assert by_conversation.id == "TCK-1"


def test_returned_tickets_are_copies():
    service = InMemoryTicketingService()

    async def scenario():
        ticket = await service.create_ticket(_params())
        ticket.tags.append("mutated")
        return await service.get_ticket(ticket.id)

    assert "mutated" not in asyncio.run(scenario()).tags


def test_unknown_ticket_raises():
    with pytest.raises(TicketNotFoundError):
        asyncio.run(InMemoryTicketingService().add_note("TCK-404", "hello"))


def _runtime(service) -> ToolRuntime:
    registry = ToolRegistry()
    register_builtin_tools(registry, service)
    return ToolRuntime(registry, TenantConfigService())


def test_handoff_tool_returns_handoff_message():
    runtime = _runtime(InMemoryTicketingService())

    result = asyncio.run(
        runtime.execute("handoff_to_human", {"reason": "wants a person"}, CTX)
    )

    assert result.success
    assert result.data["escalated"] is True
    assert result.data["message"] == HANDOFF_MESSAGE


def test_handoff_tool_rejects_unknown_arguments():
    runtime = _runtime(InMemoryTicketingService())

    result = asyncio.run(runtime.execute("handoff_to_human", {"reason": "x", "urgent": True}, CTX))

    assert result.error_type == "validation"


def test_ticket_note_defaults_to_conversation_ticket():
    service = InMemoryTicketingService()
    runtime = _runtime(service)

    async def scenario():
        missing = await runtime.execute("create_ticket_note", {"note": "VIP customer"}, CTX)
        await service.create_ticket(_params())
        added = await runtime.execute("create_ticket_note", {"note": "VIP customer"}, CTX)
        unknown = await runtime.execute(
            "create_ticket_note", {"note": "x", "ticket_id": "TCK-99"}, CTX
        )
        return missing, added, unknown

    missing, added, unknown = asyncio.run(scenario())

    assert missing.error_type == "not_found"
    assert added.success
    assert added.data["ticket_id"] == "TCK-1"
    assert service.all()[0].notes == ["VIP customer"]
    assert unknown.error_type == "ticket_not_found"


def test_same_note_from_two_conversations_lands_on_each_ticket():
    service = InMemoryTicketingService()
    runtime = _runtime(service)
    other = ToolContext(
        tenant_id="default",
        channel="whatsapp",
        conversation_id="conv-2",
        visitor_id="visitor-2",
        request_id="req-2",
    )

    async def scenario():
        first = await service.create_ticket(_params())
        second = await service.create_ticket(_params(conversation_id="conv-2", visitor_id="visitor-2"))
        results = await asyncio.gather(
            runtime.execute("create_ticket_note", {"note": "Called back"}, CTX),
            runtime.execute("create_ticket_note", {"note": "Called back"}, other),
        )
        return first, second, results

    first, second, (a, b) = asyncio.run(scenario())

    assert a.data["ticket_id"] == first.id
    assert b.data["ticket_id"] == second.id
    assert [t.notes for t in service.all()] == [["Called back"], ["Called back"]]
