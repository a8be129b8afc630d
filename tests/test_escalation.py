import pytest

from chatdesk.agents.schemas import AgentResponse, Sentiment
from chatdesk.conversations.escalation import EscalationPolicy
from chatdesk.conversations.models import ConversationRecord
from chatdesk.core.tenant_config import ChannelPolicy, TenantConfig
from chatdesk.nlp import NlpPipeline

TENANT = TenantConfig()


def _record(**fields) -> ConversationRecord:
    record = ConversationRecord(conversation_id="c1", tenant_id="default", channel="web")
    for key, value in fields.items():
        setattr(record, key, value)
    return record


def _response(intent="order_status", **fields) -> AgentResponse:
    return AgentResponse(user_facing_message="ok", intent=intent, **fields)


def test_no_trigger_means_no_escalation():
    decision = EscalationPolicy().evaluate(_response(), _record(turn_count=1), "where is my order", TENANT)

    assert not decision.should_escalate
    assert decision.reason is None


def test_agent_flag_wins_and_keeps_its_reason():
    policy = EscalationPolicy()

    flagged = policy.evaluate(
        _response(should_escalate=True, escalation_reason="legal threat"), _record(), "hi", TENANT
    )
    unflagged_reason = policy.evaluate(_response(should_escalate=True), _record(), "hi", TENANT)

    assert flagged.reason == "legal threat"
    assert unflagged_reason.reason == "agent_requested"


@pytest.mark.parametrize(
    "response, record, text, reason",
    [
        (_response("Complaint"), _record(), "hi", "intent:Complaint"),
        (
            _response(sentiment=Sentiment(label="negative", score=-0.9)),
            _record(),
            "hi",
            "negative_sentiment",
        ),
        (_response(), _record(), "Let me speak to a SUPERVISOR", "frustration_detected"),
        (_response(), _record(clarification_count=2), "hi", "max_clarifications"),
        (_response(), _record(turn_count=10), "hi", "max_turns"),
        (_response(), _record(consecutive_failures=2), "hi", "repeated_failures"),
    ],
)
def test_triggers(response, record, text, reason):
    decision = EscalationPolicy().evaluate(response, record, text, TENANT)

    assert decision.should_escalate
    assert decision.reason == reason


def test_keyword_sentiment_is_used_when_model_omits_it():
    tenant = TenantConfig(
        escalation_thresholds={"sentiment_escalation_threshold": -0.5, "frustration_keywords": []}
    )
    text = "awful, terrible and disappointed"

    decision = EscalationPolicy(nlp=NlpPipeline()).evaluate(_response(), _record(), text, tenant)

    assert decision.reason == "negative_sentiment"


def test_channel_policy_sets_turn_limit():
    tenant = TenantConfig(
        channel_policies={"whatsapp": ChannelPolicy(max_turns_before_escalation=3)}
    )
    record = _record(turn_count=3)
    record.channel = "whatsapp"

    assert EscalationPolicy().evaluate(_response(), record, "hi", tenant).reason == "max_turns"


def test_nlp_sentiment_scale():
    nlp = NlpPipeline()

    assert nlp.sentiment("hello there") == {"label": "neutral", "score": 0.0}
    assert nlp.sentiment("this is bad")["score"] == pytest.approx(-1 / 3)
    assert nlp.sentiment("great, thanks, perfect")["label"] == "positive"
    assert nlp.sentiment("awful terrible worst useless")["score"] == -1.0


@pytest.mark.parametrize(
    "text, reason",
    [
        ("I am sending a legal notice to your office", "urgency:critical"),
        ("Fix it or I post online and tag you on Twitter", "risk:social_media_threat"),
        ("Can you make an exception, the warranty ran out last week", "risk:policy_exception_requested"),
    ],
)
def test_urgency_and_risk_flags_escalate(text, reason):
    decision = EscalationPolicy().evaluate(_response(), _record(), text, TENANT)

    assert decision.reason == reason


def test_urgency_and_risk_come_after_intent_and_before_sentiment():
    policy = EscalationPolicy()
    angry = _response(sentiment=Sentiment(label="negative", score=-0.9))

    assert policy.evaluate(_response("complaint"), _record(), "my lawyer", TENANT).reason == "intent:complaint"
    assert policy.evaluate(angry, _record(), "my lawyer will call", TENANT).reason == "urgency:critical"


def test_urgency_and_risk_follow_tenant_lists():
    tenant = TenantConfig(
        escalation_thresholds={
            "urgency_auto_escalate": ["critical", "high"],
            "risk_flag_auto_escalate": [],
            "frustration_keywords": [],
        }
    )
    policy = EscalationPolicy()

    assert policy.evaluate(_response(), _record(), "this is urgent", tenant).reason == "urgency:high"
    assert not policy.evaluate(_response(), _record(), "I will post on facebook", tenant).should_escalate


def test_nlp_urgency_and_risk_levels():
    nlp = NlpPipeline()

    assert nlp.urgency("where is my parcel") == "low"
    assert nlp.urgency("still not delivered") == "medium"
    assert nlp.urgency("this is a scam") == "high"
    assert nlp.urgency("taking this to consumer court") == "critical"
    assert nlp.risk_flags("my lawyer will post it on youtube") == ["legal_threat", "social_media_threat"]
    assert nlp.risk_flags("thanks for the help") == []


def test_nlp_language_detection():
    nlp = NlpPipeline()

    assert nlp.language("Hello, I would like to know where my order is and when it will arrive.") == "en"
    assert nlp.language("   ") is None
