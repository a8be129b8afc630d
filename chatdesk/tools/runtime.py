"""Governed execution of model-issued tool calls.

Every call goes through the same gate sequence before a handler runs:
registry lookup, tenant and channel authorization, input schema validation
and rate limiting. Identical concurrent calls share one execution, cacheable
tools are served from the result cache, and retryable tools get a single
retry for transient failures. The outcome is always a :class:`ToolResult`.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from ..core.tenant_config import TenantConfigService
from ..errors import (
    AuthError,
    ChatdeskError,
    RateLimitedError,
    ToolExecutionError,
    UnknownToolError,
    ValidationError,
)
from ..security.rate_limit import RateLimiter
from .cache import CacheStore
from .feedback import FeedbackCollector, ToolFeedback
from .inflight import InflightDeduplicator, tool_call_key
from .registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 15.0
DEFAULT_RETRY_DELAY_SECONDS = 1.0


def is_transient(exc: BaseException) -> bool:
    """Whether a handler failure is worth one more attempt."""

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(exc, ToolExecutionError):
        return exc.transient
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    if isinstance(exc, httpx.TransportError):
        return True
    return False


class ToolRuntime:
    def __init__(
        self,
        registry: ToolRegistry,
        tenant_configs: TenantConfigService,
        *,
        cache: CacheStore | None = None,
        rate_limiter: RateLimiter | None = None,
        feedback: FeedbackCollector | None = None,
        default_timeout: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        default_retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._tenant_configs = tenant_configs
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._feedback = feedback
        self._default_timeout = default_timeout
        self._default_retry_delay = default_retry_delay
        self._sleep = sleep
        self._inflight: InflightDeduplicator[ToolResult] = InflightDeduplicator()
        self._background: set[asyncio.Task[None]] = set()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def available_tools(self, tenant_id: str, channel: str) -> list[ToolDefinition]:
        """Tools the tenant has enabled that also support ``channel``."""

        config = self._tenant_configs.get(tenant_id)
        return [
            tool
            for tool in self._registry.all()
            if channel in tool.allowed_channels and config.is_tool_enabled(tool.name, channel)
        ]

    async def execute(
        self, name: str, args: Mapping[str, Any] | None, ctx: ToolContext
    ) -> ToolResult:
        started = time.perf_counter()
        arguments = dict(args or {})
        try:
            tool = self._authorize(name, arguments, ctx)
            key = tool_call_key(name, arguments, tool.scope_of(ctx))
            result = await self._inflight.run(
                key, lambda: self._execute_shared(tool, arguments, ctx, key)
            )
        except RateLimitedError as exc:
            result = ToolResult.fail(
                str(exc), exc.code, data={"retry_after_ms": exc.retry_after_ms}
            )
        except ValidationError as exc:
            result = ToolResult.fail(str(exc), exc.code, data={"errors": exc.errors})
        except ChatdeskError as exc:
            result = ToolResult.fail(str(exc), exc.code)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Tool %s finished success=%s error_type=%s in %.1fms",
            name,
            result.success,
            result.error_type,
            duration_ms,
        )
        self._record_feedback(name, ctx, result, duration_ms)
        return result

    # ------------------------------------------------------------------
    # Gates

    def _authorize(self, name: str, args: dict[str, Any], ctx: ToolContext) -> ToolDefinition:
        tool = self._registry.get(name)
        if tool is None:
            logger.warning("Tool %s not found in registry", name)
            raise UnknownToolError(f"Unknown tool: {name}")

        denial = self._tenant_configs.get(ctx.tenant_id).tool_denial_reason(name, ctx.channel)
        if denial:
            logger.warning("Tool %s denied for tenant %s: %s", name, ctx.tenant_id, denial)
            raise AuthError(
                f'The "{name}" feature is not currently enabled. Please try a different approach.'
            )

        if ctx.channel not in tool.allowed_channels:
            logger.warning(
                "Tool %s not supported on channel %s (allowed: %s)",
                name,
                ctx.channel,
                ", ".join(tool.allowed_channels),
            )
            raise AuthError(f"Tool {name} is not supported on this channel")

        errors = tool.input_errors(args)
        if errors:
            logger.warning("Tool %s input validation failed: %s", name, "; ".join(errors))
            raise ValidationError(f"Invalid input: {'; '.join(errors)}", errors)

        if self._rate_limiter is not None:
            decision = self._rate_limiter.check(
                f"tool:{name}:{ctx.tenant_id}", tool.rate_limit_per_minute
            )
            if not decision.allowed:
                raise RateLimitedError(
                    "Tool rate limit exceeded. Try again shortly.",
                    retry_after_ms=decision.retry_after_ms,
                )
        return tool

    # ------------------------------------------------------------------
    # Shared execution (one per in-flight key)

    async def _execute_shared(
        self, tool: ToolDefinition, args: dict[str, Any], ctx: ToolContext, key: str
    ) -> ToolResult:
        use_cache = self._cache is not None and tool.cacheable and tool.cache_ttl_seconds > 0
        if use_cache:
            try:
                cached = await self._cache.get(key)
            except Exception:
                logger.warning("Cache read failed for %s", key, exc_info=True)
                cached = None
            if cached is not None:
                logger.info("Tool cache hit for %s", key)
                return copy.deepcopy(cached)

        result = await self._run_with_retry(tool, args, ctx)

        if result.success:
            errors = tool.output_errors(result.data)
            if errors:
                logger.warning(
                    "Tool %s output failed schema validation: %s", tool.name, "; ".join(errors)
                )
            if use_cache:
                try:
                    await self._cache.set(key, copy.deepcopy(result), tool.cache_ttl_seconds)
                except Exception:
                    logger.warning("Cache write failed for %s", key, exc_info=True)
        return result

    async def _run_with_retry(
        self, tool: ToolDefinition, args: dict[str, Any], ctx: ToolContext
    ) -> ToolResult:
        attempts = 2 if tool.retryable else 1
        timeout = tool.timeout_seconds or self._default_timeout
        delay = (
            tool.retry_delay_seconds
            if tool.retry_delay_seconds is not None
            else self._default_retry_delay
        )
        for attempt in range(1, attempts + 1):
            try:
                outcome = await asyncio.wait_for(tool.handler(dict(args), ctx), timeout)
            except Exception as exc:
                transient = is_transient(exc)
                logger.error(
                    "Tool %s attempt %d/%d failed (transient=%s): %s",
                    tool.name,
                    attempt,
                    attempts,
                    transient,
                    exc or type(exc).__name__,
                )
                if transient and attempt < attempts:
                    await self._sleep(delay)
                    continue
                return _failure_from_exception(exc)
            if isinstance(outcome, ToolResult):
                return outcome
            return ToolResult.ok(outcome)
        raise AssertionError("unreachable")  # pragma: no cover

    def _record_feedback(
        self, name: str, ctx: ToolContext, result: ToolResult, duration_ms: float
    ) -> None:
        if self._feedback is None:
            return
        feedback = ToolFeedback(
            tool=name,
            conversation_id=ctx.conversation_id,
            tenant_id=ctx.tenant_id,
            request_id=ctx.request_id,
            success=result.success,
            duration_ms=duration_ms,
            error_type=result.error_type,
        )
        task = asyncio.ensure_future(self._feedback.collect(feedback))
        self._background.add(task)
        task.add_done_callback(self._feedback_done)

    def _feedback_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Tool feedback collection failed: %s", exc)


def _failure_from_exception(exc: BaseException) -> ToolResult:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ToolResult.fail("Tool execution timed out", "timeout")
    if isinstance(exc, ToolExecutionError):
        return ToolResult.fail(f"Tool execution failed: {exc}", exc.code)
    return ToolResult.fail("Tool execution failed", "execution")
