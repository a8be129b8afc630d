"""End-to-end handling of one inbound message.

:class:`Orchestrator` drives a single run: load the conversation, ask the
agent for a reply, apply escalation policy and state transitions, execute tool
calls, refine the reply with tool results, persist and deliver. Runs for the
same conversation are serialized by :class:`ConversationLocks`; different
conversations proceed concurrently. The visitor always receives a reply.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from ..agents.core import AgentCore, ToolOutcome
from ..agents.responses import PARSE_FALLBACK_INTENT
from ..agents.schemas import AgentResponse, ToolCall
from ..channels.base import ChannelOutbound
from ..core.log_context import reset_log_context, set_log_context
from ..core.tenant_config import TenantConfig, TenantConfigService
from ..errors import ParseError, PersistenceError, ProviderError
from ..events import LEARNING_COLLECT, SESSION_INDEX, STATE_TRANSITION, EventBus
from ..nlp import NlpPipeline
from ..ticketing import CreateTicketParams, TicketingService, UpdateTicketParams
from ..tools.builtin import HANDOFF_TOOL
from ..tools.registry import ToolContext
from ..tools.runtime import ToolRuntime
from .escalation import CLARIFICATION_INTENTS, EscalationPolicy
from .memory import merge_structured_memory, merge_user_profile
from .models import ConversationRecord, EscalationDecision, Turn
from .repository import ConversationStore
from .schemas import InboundMessage
from .state_machine import (
    TERMINAL_STATES,
    ConversationState,
    TransitionEvent,
    TransitionOutcome,
    TransitionResult,
    resolve_target_state,
    transition,
)

logger = logging.getLogger(__name__)

GENERIC_APOLOGY = (
    "Sorry, I'm having trouble right now. Please try again in a moment, "
    "or ask to speak with a team member."
)
PROVIDER_FAILURE_INTENT = "provider_failure"

_NON_INTENTS = frozenset({PARSE_FALLBACK_INTENT, PROVIDER_FAILURE_INTENT})


class ConversationLocks:
    """One :class:`asyncio.Lock` per conversation id, dropped when unused."""

    def __init__(self) -> None:
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @contextlib.asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(conversation_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[conversation_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[conversation_id]
            if users <= 1:
                del self._locks[conversation_id]
            else:
                self._locks[conversation_id] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class OrchestrationResult:
    conversation_id: str
    request_id: str
    reply: str
    state: ConversationState | None
    intent: str | None = None
    escalated: bool = False
    escalation_reason: str | None = None
    tool_results: list[ToolOutcome] = field(default_factory=list)
    transitions: list[TransitionEvent] = field(default_factory=list)
    persisted: bool = False
    language: str | None = None


class Orchestrator:
    def __init__(
        self,
        *,
        store: ConversationStore,
        agent: AgentCore,
        tools: ToolRuntime,
        tenant_configs: TenantConfigService,
        outbound: ChannelOutbound,
        ticketing: TicketingService,
        events: EventBus | None = None,
        escalation: EscalationPolicy | None = None,
        nlp: NlpPipeline | None = None,
        max_consecutive_failures: int = 2,
        request_id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._store = store
        self._agent = agent
        self._tools = tools
        self._tenant_configs = tenant_configs
        self._outbound = outbound
        self._ticketing = ticketing
        self._events = events
        self._nlp = nlp or NlpPipeline()
        self._escalation = escalation or EscalationPolicy(
            max_consecutive_failures=max_consecutive_failures, nlp=self._nlp
        )
        self._new_request_id = request_id_factory
        self._locks = ConversationLocks()

    async def handle_message(self, inbound: InboundMessage) -> OrchestrationResult:
        request_id = self._new_request_id()
        conversation_id = inbound.conversation_id
        token = set_log_context(
            tenant_id=inbound.tenant_id,
            conversation_id=conversation_id,
            request_id=request_id,
        )
        try:
            async with self._locks.hold(conversation_id):
                try:
                    return await self._run(inbound, request_id)
                except Exception:
                    logger.exception("Pipeline failed for conversation %s", conversation_id)
                    await self._deliver(conversation_id, GENERIC_APOLOGY)
                    return OrchestrationResult(
                        conversation_id=conversation_id,
                        request_id=request_id,
                        reply=GENERIC_APOLOGY,
                        state=None,
                    )
        finally:
            reset_log_context(token)

    # ------------------------------------------------------------------
    # Pipeline

    async def _run(self, inbound: InboundMessage, request_id: str) -> OrchestrationResult:
        cid = inbound.conversation_id
        text = inbound.message.text
        tenant = self._tenant_configs.get(inbound.tenant_id)
        transitions: list[TransitionEvent] = []

        record, loaded = await self._load_or_create(inbound, tenant)

        record.turns.append(
            Turn(
                role="user",
                content=text,
                timestamp=inbound.timestamp,
                attachments=[a.model_dump() for a in inbound.message.attachments],
            )
        )
        record.turn_count += 1
        merge_user_profile(record.structured_memory, inbound.user_profile)

        await self._best_effort("typing indicator", self._outbound.send_typing(cid))

        history = record.turns[:-1]
        response = await self._first_pass(inbound, record, tenant, history, request_id)

        language = response.detected_language or self._nlp.language(text)
        if language:
            record.language = language

        decision = self._escalation.evaluate(response, record, text, tenant)
        # only a run that moves the conversation into ESCALATED notifies a human
        escalated_by_policy = self._apply_state(
            record, response.intent, decision.should_escalate, transitions
        )

        outcomes: list[ToolOutcome] = []
        handoff_escalated = False
        if response.tool_calls:
            ctx = ToolContext(
                tenant_id=inbound.tenant_id,
                channel=inbound.channel,
                conversation_id=cid,
                visitor_id=inbound.visitor_id,
                request_id=request_id,
            )
            outcomes = list(
                await asyncio.gather(*(self._execute_tool(call, ctx) for call in response.tool_calls))
            )
            for call, outcome in zip(response.tool_calls, outcomes):
                if outcome.tool == HANDOFF_TOOL and outcome.result.success:
                    if await self._handoff(record, call, response, transitions):
                        handoff_escalated = True

        if outcomes:
            response = await self._refine(
                inbound, record, tenant, history, outcomes, response, request_id
            )
            if response.should_escalate and record.state is not ConversationState.ESCALATED:
                decision = EscalationDecision(
                    True, response.escalation_reason or "agent_requested"
                )
                escalated_by_policy = self._apply_state(
                    record, response.intent, True, transitions
                )

        record.structured_memory = merge_structured_memory(
            record.structured_memory, response.extracted_fields
        )
        if response.intent not in _NON_INTENTS:
            record.primary_intent = response.intent

        if record.ticket_id:
            await self._update_ticket(
                record,
                response,
                record.state is ConversationState.ESCALATED,
                tenant.ticket_creation_policy.auto_summarize_on_update,
            )

        record.turns.append(Turn(role="assistant", content=response.user_facing_message))
        if response.intent.lower() in CLARIFICATION_INTENTS:
            record.clarification_count += 1

        if loaded:
            persisted = await self._persist(record)
            self._publish(SESSION_INDEX, {"record": record.to_dict()})
            if record.state in TERMINAL_STATES:
                self._publish(LEARNING_COLLECT, {"record": record.to_dict()})
        else:
            # the stored copy could not be read; saving would overwrite it
            logger.warning("Conversation %s left unsaved after a failed load", cid)
            persisted = False

        if escalated_by_policy:
            reason = decision.reason or "policy"
            await self._best_effort(
                "escalation",
                self._outbound.escalate_to_human(cid, reason, _handoff_summary(record, response)),
            )
            prefix = tenant.ticket_creation_policy.tag_prefix
            await self._best_effort(
                "escalation tags",
                self._outbound.add_tags(cid, [f"{prefix}:escalated", f"{prefix}:{reason}"]),
            )

        await self._deliver(cid, response.user_facing_message)

        escalation_reason = None
        if escalated_by_policy:
            escalation_reason = decision.reason
        elif handoff_escalated:
            escalation_reason = HANDOFF_TOOL
        logger.info(
            "Message processed: state=%s intent=%s escalated=%s tool_calls=%d",
            record.state.value,
            response.intent,
            record.state is ConversationState.ESCALATED,
            len(outcomes),
        )
        return OrchestrationResult(
            conversation_id=cid,
            request_id=request_id,
            reply=response.user_facing_message,
            state=record.state,
            intent=response.intent,
            escalated=escalated_by_policy or handoff_escalated,
            escalation_reason=escalation_reason,
            tool_results=outcomes,
            transitions=transitions,
            persisted=persisted,
            language=language,
        )

    async def _load_or_create(
        self, inbound: InboundMessage, tenant: TenantConfig
    ) -> tuple[ConversationRecord, bool]:
        """Return the conversation and whether the store answered.

        When the store fails the run continues on a blank record that must not
        be saved, and no ticket is created so a stored ticket is not duplicated.
        """
        try:
            record = await self._store.get(inbound.conversation_id)
        except PersistenceError as exc:
            logger.error("Could not load conversation %s: %s", inbound.conversation_id, exc)
            return self._new_record(inbound), False
        if record is not None:
            return record, True

        record = self._new_record(inbound)
        policy = tenant.ticket_creation_policy
        if policy.auto_create_on_new:
            try:
                ticket = await self._ticketing.create_ticket(
                    CreateTicketParams(
                        conversation_id=inbound.conversation_id,
                        channel=inbound.channel,
                        visitor_id=inbound.visitor_id,
                        contact_id=inbound.contact_id,
                        subject=f"Chat - {inbound.channel} - {inbound.visitor_id}",
                        description=inbound.message.text,
                        tags=[f"{policy.tag_prefix}:{inbound.channel}", f"{policy.tag_prefix}:new"],
                        custom_fields={
                            "visitor_name": inbound.user_profile.name,
                            "visitor_email": inbound.user_profile.email,
                        },
                    )
                )
            except Exception:
                logger.exception("Failed to create ticket for new conversation")
            else:
                record.ticket_id = ticket.id
                logger.info("Ticket %s created for new conversation", ticket.id)
        return record, True

    @staticmethod
    def _new_record(inbound: InboundMessage) -> ConversationRecord:
        return ConversationRecord(
            conversation_id=inbound.conversation_id,
            tenant_id=inbound.tenant_id,
            channel=inbound.channel,
        )

    async def _first_pass(
        self,
        inbound: InboundMessage,
        record: ConversationRecord,
        tenant: TenantConfig,
        history: list[Turn],
        request_id: str,
    ) -> AgentResponse:
        try:
            response = await self._agent.process(
                inbound.message.text,
                history,
                record.structured_memory,
                inbound.channel,
                tenant.prompt_version,
                request_id,
                conversation_id=inbound.conversation_id,
                available_tools=self._tools.available_tools(inbound.tenant_id, inbound.channel),
            )
        except ProviderError as exc:
            record.consecutive_failures += 1
            logger.error(
                "Generation failed after %d attempts (%d consecutive failures): %s",
                exc.attempts,
                record.consecutive_failures,
                exc,
            )
            return AgentResponse(user_facing_message=GENERIC_APOLOGY, intent=PROVIDER_FAILURE_INTENT)
        record.consecutive_failures = 0
        return response

    async def _execute_tool(self, call: ToolCall, ctx: ToolContext) -> ToolOutcome:
        result = await self._tools.execute(call.name, call.args, ctx)
        return ToolOutcome(tool=call.name, result=result)

    async def _handoff(
        self,
        record: ConversationRecord,
        call: ToolCall,
        response: AgentResponse,
        transitions: list[TransitionEvent],
    ) -> bool:
        if not self._apply_state(record, HANDOFF_TOOL, True, transitions):
            return False
        reason = str(call.args.get("reason") or "Escalated")
        summary = str(call.args.get("summary") or "") or _handoff_summary(record, response)
        await self._best_effort(
            "handoff escalation",
            self._outbound.escalate_to_human(record.conversation_id, reason, summary),
        )
        return True

    def _apply_state(
        self,
        record: ConversationRecord,
        intent: str,
        should_escalate: bool,
        transitions: list[TransitionEvent],
    ) -> bool:
        """Move ``record`` for this turn; True when it newly entered ESCALATED.

        A resolved conversation cannot escalate directly, so it is reopened on
        the state the intent points at (ACTIVE_QA when there is none) first.
        """
        target = resolve_target_state(record.state, intent, should_escalate)
        result = self._move(record, target, intent, transitions)
        if should_escalate and result.outcome is TransitionOutcome.REJECTED:
            reopened = resolve_target_state(record.state, intent, False)
            if reopened in (record.state, ConversationState.ESCALATED):
                reopened = ConversationState.ACTIVE_QA
            if self._move(record, reopened, intent, transitions).changed:
                result = self._move(record, ConversationState.ESCALATED, intent, transitions)
        return (
            should_escalate
            and result.changed
            and record.state is ConversationState.ESCALATED
        )

    def _move(
        self,
        record: ConversationRecord,
        target: ConversationState,
        intent: str,
        transitions: list[TransitionEvent],
    ) -> TransitionResult:
        result = transition(record.conversation_id, record.state, target, intent)
        record.state = result.new_state
        if result.event is not None:
            self._record_transition(result.event, transitions)
        return result

    async def _refine(
        self,
        inbound: InboundMessage,
        record: ConversationRecord,
        tenant: TenantConfig,
        history: list[Turn],
        outcomes: list[ToolOutcome],
        response: AgentResponse,
        request_id: str,
    ) -> AgentResponse:
        try:
            refined = await self._agent.process_with_tool_results(
                inbound.message.text,
                history,
                record.structured_memory,
                inbound.channel,
                outcomes,
                response.user_facing_message,
                tenant.prompt_version,
                f"{request_id}-refined",
                conversation_id=inbound.conversation_id,
            )
        except (ProviderError, ParseError) as exc:
            logger.warning("Refinement pass failed; keeping the first reply: %s", exc)
            return response
        merged = response.model_copy(deep=True)
        merged.user_facing_message = refined.user_facing_message
        merged.intent = refined.intent or response.intent
        merged.extracted_fields = {**response.extracted_fields, **refined.extracted_fields}
        merged.tool_calls = []
        if refined.should_escalate:
            merged.should_escalate = True
            merged.escalation_reason = refined.escalation_reason or response.escalation_reason
        return merged

    async def _update_ticket(
        self,
        record: ConversationRecord,
        response: AgentResponse,
        escalating: bool,
        auto_summarize: bool,
    ) -> None:
        payload = response.ticket_update_payload
        summary = payload.summary
        if not summary and auto_summarize:
            summary = _handoff_summary(record, response)
        try:
            await self._ticketing.update_ticket(
                UpdateTicketParams(
                    ticket_id=record.ticket_id,
                    summary=summary,
                    status="Escalated" if escalating else payload.status,
                    tags=list(payload.tags),
                    lead_fields=payload.lead_fields or dict(response.extracted_fields),
                    intent_classification=payload.intent_classification or response.intent,
                )
            )
        except Exception:
            logger.exception("Failed to update ticket %s", record.ticket_id)

    async def _persist(self, record: ConversationRecord) -> bool:
        try:
            await self._store.save(record)
        except PersistenceError as exc:
            logger.error("Conversation %s was not persisted: %s", record.conversation_id, exc)
            return False
        return True

    async def _deliver(self, conversation_id: str, text: str) -> None:
        try:
            await self._outbound.send_message(conversation_id, text)
        except Exception:
            logger.exception("Failed to send reply to %s", conversation_id)

    def _record_transition(self, event: TransitionEvent, transitions: list[TransitionEvent]) -> None:
        transitions.append(event)
        self._publish(STATE_TRANSITION, event.as_dict())

    def _publish(self, kind: str, payload: dict) -> None:
        if self._events is not None:
            self._events.publish(kind, payload)

    @staticmethod
    async def _best_effort(action: str, awaitable) -> None:
        try:
            await awaitable
        except Exception as exc:
            logger.warning("Best-effort %s failed: %s", action, exc)


def _handoff_summary(record: ConversationRecord, response: AgentResponse) -> str:
    parts = []
    if response.ticket_update_payload.summary:
        parts.append(response.ticket_update_payload.summary)
    if record.primary_intent:
        parts.append(f"Intent: {record.primary_intent}")
    if response.sentiment is not None:
        parts.append(f"Sentiment: {response.sentiment.label} ({response.sentiment.score})")
    parts.append(f"Turns: {record.turn_count}")
    return " | ".join(parts)
