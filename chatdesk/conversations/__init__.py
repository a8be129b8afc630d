"""Conversation records, state machine and persistence.

The orchestrator lives in :mod:`chatdesk.conversations.orchestrator`; it is not
re-exported here because it depends on the agent layer, which itself imports
the conversation models.
"""

from . import schemas
from .memory import merge_structured_memory, merge_user_profile
from .models import ConversationRecord, EscalationDecision, StructuredMemory, Turn
from .repository import (
    ConversationStore,
    InMemoryConversationStore,
    PostgresConversationStore,
    ResilientConversationStore,
)
from .state_machine import ConversationState, TransitionOutcome, TransitionResult, transition

__all__ = [
    "ConversationRecord",
    "ConversationState",
    "ConversationStore",
    "EscalationDecision",
    "InMemoryConversationStore",
    "PostgresConversationStore",
    "ResilientConversationStore",
    "StructuredMemory",
    "TransitionOutcome",
    "TransitionResult",
    "Turn",
    "merge_structured_memory",
    "merge_user_profile",
    "schemas",
    "transition",
]
