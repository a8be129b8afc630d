"""Generation layer: providers, routing, prompts and the agent core."""

from .core import AgentCore, ToolOutcome
from .parameters import ResponseParameterStore
from .prompts import PromptBundle, PromptBundleStore
from .providers import (
    AnthropicProvider,
    ChatMessage,
    CompletionRequest,
    CompletionResponse,
    LLMProvider,
    OpenAIProvider,
    ProviderCredentials,
    ProviderRegistry,
    SandboxProvider,
    TokenUsage,
    build_providers,
)
from .responses import (
    PARSE_FALLBACK_INTENT,
    RESPONSE_CONTRACT_SCHEMA,
    fallback_response,
    parse_agent_response,
)
from .router import ModelRouter, RoutingConfig, ab_bucket
from .schemas import AgentResponse, ToolCall

__all__ = [
    "AgentCore",
    "AgentResponse",
    "AnthropicProvider",
    "ChatMessage",
    "CompletionRequest",
    "CompletionResponse",
    "LLMProvider",
    "ModelRouter",
    "OpenAIProvider",
    "PARSE_FALLBACK_INTENT",
    "PromptBundle",
    "PromptBundleStore",
    "ProviderCredentials",
    "ProviderRegistry",
    "RESPONSE_CONTRACT_SCHEMA",
    "ResponseParameterStore",
    "RoutingConfig",
    "SandboxProvider",
    "TokenUsage",
    "ToolCall",
    "ToolOutcome",
    "ab_bucket",
    "build_providers",
    "fallback_response",
    "parse_agent_response",
]
