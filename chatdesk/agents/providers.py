"""Generation providers and the credentials they are built from."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic
from openai import AsyncOpenAI

from ..core.settings import Settings
from .parameters import ResponseParameterStore
from .responses import strip_code_fences

logger = logging.getLogger(__name__)

JSON_ONLY_INSTRUCTION = (
    "CRITICAL: You must respond with valid JSON only. No markdown fences, no preamble, "
    "no explanation outside the JSON. Start your response with {"
)


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for credentials resolved for a provider."""

    provider: str
    api_key: str | None
    extras: dict[str, str]


class ProviderRegistry:
    """Resolve provider credentials from environment or explicit overrides."""

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``.

        Explicit overrides (e.g. injected during testing) win over the
        environment variables listed in ``_DEFAULT_ENV_MAP``.
        """

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=provider,
                api_key=override.get("api_key"),
                extras={k: v for k, v in override.items() if k != "api_key"},
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        api_key = os.getenv(env_var) if env_var else None
        extras: dict[str, str] = {}
        if key == "openai" and os.getenv("OPENAI_BASE_URL"):
            extras["base_url"] = os.environ["OPENAI_BASE_URL"]
        return ProviderCredentials(provider=provider, api_key=api_key, extras=extras)

    def list_supported_providers(self) -> dict[str, bool]:
        """Map each known provider to whether credentials are configured."""

        providers = set(self._DEFAULT_ENV_MAP) | set(self._overrides)
        return {name: bool(self.get_credentials(name).api_key) for name in sorted(providers)}


# ---------------------------------------------------------------------------
# Request / response types


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class CompletionRequest:
    messages: list[ChatMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    json_mode: bool = True


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class CompletionResponse:
    content: str
    model: str
    provider: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: float = 0.0


class LLMProvider(Protocol):
    name: str
    model: str

    async def complete(self, request: CompletionRequest) -> CompletionResponse: ...

    async def health_check(self) -> bool: ...


# ---------------------------------------------------------------------------
# Implementations


class OpenAIProvider:
    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        parameters: ResponseParameterStore | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self._parameters = parameters or ResponseParameterStore()
        self._client = client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        params = self._parameters.merge(
            self.name, {"temperature": request.temperature, "max_tokens": request.max_tokens}
        )
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [message.as_dict() for message in request.messages],
            **params,
        }
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}
        started = time.perf_counter()
        response = await self._client.chat.completions.create(**payload)
        content = response.choices[0].message.content or ""
        usage = response.usage
        return CompletionResponse(
            content=content,
            model=response.model or self.model,
            provider=self.name,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def health_check(self) -> bool:
        await self._client.models.retrieve(self.model)
        return True


class AnthropicProvider:
    """Messages API provider.

    System messages are sent through the separate ``system`` parameter and
    consecutive messages with the same role are merged, since the API expects
    strictly alternating user/assistant turns starting with the user.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        parameters: ResponseParameterStore | None = None,
        timeout: float = 30.0,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self._parameters = parameters or ResponseParameterStore()
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key, timeout=timeout, max_retries=0
        )

    @staticmethod
    def _split_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, str]]]:
        system_parts: list[str] = []
        turns: list[dict[str, str]] = []
        for message in messages:
            if message.role == "system":
                system_parts.append(message.content)
                continue
            role = "assistant" if message.role == "assistant" else "user"
            if turns and turns[-1]["role"] == role:
                turns[-1]["content"] += "\n\n" + message.content
            else:
                turns.append({"role": role, "content": message.content})
        if turns and turns[0]["role"] != "user":
            turns.insert(0, {"role": "user", "content": "(conversation start)"})
        return "\n\n".join(system_parts), turns

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        params = self._parameters.merge(
            self.name, {"temperature": request.temperature, "max_tokens": request.max_tokens}
        )
        system, turns = self._split_messages(request.messages)
        prefilled = False
        if request.json_mode:
            system = f"{system}\n\n{JSON_ONLY_INSTRUCTION}".strip()
            if turns and turns[-1]["role"] == "user":
                turns.append({"role": "assistant", "content": "{"})
                prefilled = True
        started = time.perf_counter()
        response = await self._client.messages.create(
            model=self.model,
            system=system,
            messages=turns,
            **params,
        )
        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks:
            raise RuntimeError("Anthropic returned no text content")
        content = strip_code_fences(text_blocks[0])
        # the prefilled brace is not echoed back; restore it for object bodies only
        if prefilled and content[:1] in ('"', "}"):
            content = "{" + content
        return CompletionResponse(
            content=content,
            model=response.model or self.model,
            provider=self.name,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            ),
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def health_check(self) -> bool:
        await self._client.messages.create(
            model=self.model,
            max_tokens=5,
            messages=[{"role": "user", "content": "ping"}],
        )
        return True


_SANDBOX_INTENTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(human|agent|person|manager)\b", re.I), "request_human"),
    (re.compile(r"\b(return|refund|exchange)\b", re.I), "return_request"),
    (re.compile(r"\b(track|tracking|shipment|delivery)\b", re.I), "track_shipment"),
    (re.compile(r"\border\b", re.I), "order_status"),
    (re.compile(r"\b(price|product|stock|available)\b", re.I), "product_inquiry"),
    (re.compile(r"\b(hi|hello|hey)\b", re.I), "greeting"),
)


class SandboxProvider:
    """Offline provider producing a deterministic contract-shaped reply.

    Used for local development and demos when no vendor credentials are
    configured.
    """

    name = "sandbox"
    model = "sandbox-echo"

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        user_messages = [m.content for m in request.messages if m.role == "user"]
        last = user_messages[-1] if user_messages else ""
        preview = last.strip().splitlines()[-1] if last.strip() else ""
        intent = "general_question"
        for pattern, label in _SANDBOX_INTENTS:
            if pattern.search(last):
                intent = label
                break
        reply = {
            "user_facing_message": f"(sandbox) I received your message: {preview[:200]}",
            "intent": intent,
            "extracted_fields": {},
            "should_escalate": False,
            "tool_calls": [],
        }
        content = json.dumps(reply)
        return CompletionResponse(
            content=content,
            model=self.model,
            provider=self.name,
            usage=TokenUsage(
                prompt_tokens=sum(len(m.content.split()) for m in request.messages),
                completion_tokens=len(content.split()),
            ),
        )

    async def health_check(self) -> bool:
        return True


def build_providers(
    settings: Settings,
    *,
    credentials: ProviderRegistry | None = None,
    parameters: ResponseParameterStore | None = None,
) -> dict[str, LLMProvider]:
    """Instantiate every provider whose credentials are available."""

    credentials = credentials or ProviderRegistry()
    parameters = parameters or ResponseParameterStore()
    providers: dict[str, LLMProvider] = {"sandbox": SandboxProvider()}

    openai_creds = credentials.get_credentials("openai")
    if openai_creds.api_key:
        providers["openai"] = OpenAIProvider(
            openai_creds.api_key,
            settings.openai_model,
            parameters=parameters,
            base_url=openai_creds.extras.get("base_url"),
            timeout=settings.llm_timeout_seconds,
        )
    anthropic_creds = credentials.get_credentials("anthropic")
    if anthropic_creds.api_key:
        providers["anthropic"] = AnthropicProvider(
            anthropic_creds.api_key,
            settings.anthropic_model,
            parameters=parameters,
            timeout=settings.llm_timeout_seconds,
        )
    logger.info("Generation providers available: %s", ", ".join(sorted(providers)))
    return providers
