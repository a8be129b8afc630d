"""Tool registry and governed execution runtime."""

from .builtin import HANDOFF_TOOL, TICKET_NOTE_TOOL, builtin_tools, register_builtin_tools
from .cache import CacheStats, CacheStore, InMemoryCacheStore
from .feedback import FeedbackCollector, InMemoryFeedbackCollector, ToolFeedback
from .inflight import InflightDeduplicator, tool_call_key
from .registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult
from .runtime import ToolRuntime, is_transient

__all__ = [
    "CacheStats",
    "CacheStore",
    "FeedbackCollector",
    "HANDOFF_TOOL",
    "InMemoryCacheStore",
    "InMemoryFeedbackCollector",
    "InflightDeduplicator",
    "TICKET_NOTE_TOOL",
    "ToolContext",
    "ToolDefinition",
    "ToolFeedback",
    "ToolRegistry",
    "ToolResult",
    "ToolRuntime",
    "builtin_tools",
    "is_transient",
    "register_builtin_tools",
    "tool_call_key",
]
