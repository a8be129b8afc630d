import asyncio

from chatdesk.events import (
    LEARNING_COLLECT,
    SESSION_INDEX,
    STATE_TRANSITION,
    EventBus,
    InMemoryConversationCollector,
    InMemorySessionIndexer,
    TransitionAuditLog,
    wire_default_handlers,
)


def test_workers_dispatch_and_stop_drains_queue():
    bus = EventBus(workers=2)
    indexer = InMemorySessionIndexer()
    collector = InMemoryConversationCollector()
    audit = TransitionAuditLog()
    wire_default_handlers(bus, indexer=indexer, collector=collector, audit=audit)

    async def scenario():
        await bus.start()
        assert bus.running
        bus.publish(SESSION_INDEX, {"record": {"conversation_id": "c1", "state": "NEW"}})
        bus.publish(SESSION_INDEX, {"record": {"conversation_id": "c1", "state": "ACTIVE_QA"}})
        bus.publish(LEARNING_COLLECT, {"record": {"conversation_id": "c2"}})
        bus.publish(
            STATE_TRANSITION,
            {"conversation_id": "c1", "from": "NEW", "to": "ACTIVE_QA", "intent": "greeting"},
        )
        await bus.stop()
        assert not bus.running

    asyncio.run(scenario())

    assert indexer.sessions["c1"]["state"] in {"NEW", "ACTIVE_QA"}
    assert collector.collected == [{"conversation_id": "c2"}]
    assert audit.entries[0]["to"] == "ACTIVE_QA"


def test_handler_failure_does_not_stop_other_handlers(caplog):
    bus = EventBus(workers=1)
    received = []

    async def broken(event):
        raise RuntimeError("index unavailable")

    async def working(event):
        received.append(event.payload)

    bus.subscribe(SESSION_INDEX, broken)
    bus.subscribe(SESSION_INDEX, working)

    async def scenario():
        bus.publish(SESSION_INDEX, {"record": {}})
        await bus.drain()

    asyncio.run(scenario())

    assert received == [{"record": {}}]
    assert "Handler for session.index event failed" in caplog.text


def test_full_queue_drops_events_without_blocking():
    bus = EventBus(max_queue_size=1)

    assert bus.publish(SESSION_INDEX, {"record": {}})
    assert not bus.publish(SESSION_INDEX, {"record": {}})
    assert bus.dropped == 1


def test_events_without_handlers_are_discarded():
    bus = EventBus()

    async def scenario():
        bus.publish("unknown.kind", {})
        await bus.drain()

    asyncio.run(scenario())
    assert bus.dropped == 0
