from chatdesk.conversations.memory import merge_structured_memory, merge_user_profile
from chatdesk.conversations.models import ConversationRecord, StructuredMemory, Turn
from chatdesk.conversations.schemas import UserProfile
from chatdesk.conversations.state_machine import ConversationState


def test_merge_overwrites_profile_fields_and_keeps_existing():
    existing = StructuredMemory(name="Ana", email="old@example.com")

    merged = merge_structured_memory(
        existing, {"email": " new@example.com ", "company": "Acme", "name": ""}
    )

    assert merged.name == "Ana"
    assert merged.email == "new@example.com"
    assert merged.company == "Acme"
    # input is not mutated
    assert existing.email == "old@example.com"


def test_merge_unions_product_interest_in_order():
    existing = StructuredMemory(product_interest=["boots"])

    merged = merge_structured_memory(
        existing, {"product_interest": ["jacket", "boots"], "productInterest": "hat"}
    )

    assert merged.product_interest == ["boots", "jacket", "hat"]


def test_unknown_keys_land_in_custom_fields():
    merged = merge_structured_memory(StructuredMemory(), {"order_id": "A1", "size": 42})

    assert merged.custom_fields == {"order_id": "A1", "size": 42}


def test_merge_with_nothing_returns_copy():
    existing = StructuredMemory(name="Ana")
    merged = merge_structured_memory(existing, None)

    assert merged == existing
    assert merged is not existing


def test_merge_user_profile_copies_identity():
    memory = StructuredMemory(name="Old")
    merge_user_profile(memory, UserProfile(name="Ana", phone="+5511999"))

    assert memory.name == "Ana"
    assert memory.phone == "+5511999"
    assert memory.email is None


def test_compact_drops_empty_fields():
    memory = StructuredMemory(name="Ana", product_interest=[])
    assert memory.compact() == {"name": "Ana"}


def test_record_round_trips_through_dict():
    record = ConversationRecord(
        conversation_id="c1",
        tenant_id="t1",
        channel="whatsapp",
        state=ConversationState.ORDER_INQUIRY,
        turns=[Turn(role="user", content="hi", attachments=[{"type": "image", "url": "u"}])],
        structured_memory=StructuredMemory(name="Ana"),
        turn_count=1,
        ticket_id="TCK-1",
    )

    restored = ConversationRecord.from_dict(record.to_dict())

    assert restored.state is ConversationState.ORDER_INQUIRY
    assert restored.turns[0].attachments == [{"type": "image", "url": "u"}]
    assert restored.structured_memory.name == "Ana"
    assert restored.ticket_id == "TCK-1"
    assert restored.created_at == record.created_at


def test_record_from_dict_accepts_epoch_millis():
    record = ConversationRecord.from_dict(
        {"conversation_id": "c1", "created_at": 1_700_000_000_000, "turns": []}
    )

    assert record.created_at.year == 2023
    assert record.state is ConversationState.NEW
    assert record.channel == "web"
