import asyncio

import httpx
import pytest
from jsonschema.exceptions import SchemaError

from chatdesk.core.tenant_config import TenantConfigService
from chatdesk.errors import ToolExecutionError
from chatdesk.security.rate_limit import WindowRateLimiter
from chatdesk.tools.cache import InMemoryCacheStore
from chatdesk.tools.feedback import InMemoryFeedbackCollector
from chatdesk.tools.registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult
from chatdesk.tools.runtime import ToolRuntime, is_transient
from conftest import tenant_with_tools

CTX = ToolContext(
    tenant_id="default",
    channel="web",
    conversation_id="conv-1",
    visitor_id="visitor-1",
    request_id="req-1",
)

ORDER_SCHEMA = {
    "type": "object",
    "properties": {"order_id": {"type": "string"}},
    "required": ["order_id"],
}


def _lookup_tool(handler, **overrides) -> ToolDefinition:
    values = {
        "name": "lookup_order",
        "description": "Look up an order",
        "handler": handler,
        "input_schema": ORDER_SCHEMA,
    }
    values.update(overrides)
    return ToolDefinition(**values)


def _runtime(*tools, tenant=None, sleeps=None, **kwargs) -> ToolRuntime:
    async def fake_sleep(delay):
        if sleeps is not None:
            sleeps.append(delay)

    tenant = tenant or tenant_with_tools(*(tool.name for tool in tools))
    return ToolRuntime(
        ToolRegistry(tools),
        TenantConfigService({"default": tenant}),
        rate_limiter=kwargs.pop("rate_limiter", WindowRateLimiter()),
        sleep=fake_sleep,
        **kwargs,
    )


def test_successful_execution_returns_handler_result():
    async def handler(args, ctx):
        return ToolResult.ok({"order_id": args["order_id"], "status": "shipped"})

    result = asyncio.run(_runtime(_lookup_tool(handler)).execute("lookup_order", {"order_id": "A1"}, CTX))

    assert result.success
    assert result.data == {"order_id": "A1", "status": "shipped"}
    assert result.to_dict() == {"success": True, "data": result.data}


def test_plain_return_values_are_wrapped():
    async def handler(args, ctx):
        return {"status": "shipped"}

    result = asyncio.run(_runtime(_lookup_tool(handler)).execute("lookup_order", {"order_id": "A1"}, CTX))

    assert result.success
    assert result.data == {"status": "shipped"}


def test_concurrent_identical_calls_share_one_execution():
    calls = 0

    async def handler(args, ctx):
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return ToolResult.ok({"order_id": args["order_id"]})

    runtime = _runtime(_lookup_tool(handler))

    async def scenario():
        return await asyncio.gather(
            *(runtime.execute("lookup_order", {"order_id": "A1"}, CTX) for _ in range(3))
        )

    results = asyncio.run(scenario())

    assert calls == 1
    assert [r.success for r in results] == [True, True, True]


def test_different_args_execute_separately():
    seen = []

    async def handler(args, ctx):
        seen.append(args["order_id"])
        await asyncio.sleep(0)
        return ToolResult.ok()

    runtime = _runtime(_lookup_tool(handler))

    async def scenario():
        await asyncio.gather(
            runtime.execute("lookup_order", {"order_id": "A1"}, CTX),
            runtime.execute("lookup_order", {"order_id": "B2"}, CTX),
        )

    asyncio.run(scenario())
    assert sorted(seen) == ["A1", "B2"]


def test_cacheable_tool_is_served_from_cache():
    calls = 0

    async def handler(args, ctx):
        nonlocal calls
        calls += 1
        return ToolResult.ok({"calls": calls})

    cache = InMemoryCacheStore()
    runtime = _runtime(
        _lookup_tool(handler, cacheable=True, cache_ttl_seconds=60), cache=cache
    )

    async def scenario():
        first = await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)
        second = await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)
        return first, second

    first, second = asyncio.run(scenario())

    assert calls == 1
    assert first.data == second.data == {"calls": 1}
    assert cache.stats().hits == 1


def test_failures_are_not_cached():
    calls = 0

    async def handler(args, ctx):
        nonlocal calls
        calls += 1
        return ToolResult.fail("not found", "not_found")

    runtime = _runtime(
        _lookup_tool(handler, cacheable=True, cache_ttl_seconds=60), cache=InMemoryCacheStore()
    )

    async def scenario():
        await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)
        await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)

    asyncio.run(scenario())
    assert calls == 2


def test_rate_limited_call_reports_retry_after():
    async def handler(args, ctx):
        return ToolResult.ok()

    runtime = _runtime(_lookup_tool(handler, rate_limit_per_minute=1))

    async def scenario():
        first = await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)
        second = await runtime.execute("lookup_order", {"order_id": "B2"}, CTX)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.success
    assert not second.success
    assert second.error_type == "rate_limited"
    assert second.data["retry_after_ms"] > 0


def test_transient_failure_is_retried_once():
    attempts = 0
    sleeps = []

    async def handler(args, ctx):
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise ToolExecutionError("upstream returned 503", transient=True)
        return ToolResult.ok({"attempt": attempts})

    runtime = _runtime(_lookup_tool(handler, retry_delay_seconds=0.5), sleeps=sleeps)
    result = asyncio.run(runtime.execute("lookup_order", {"order_id": "A1"}, CTX))

    assert result.success
    assert result.data == {"attempt": 2}
    assert sleeps == [0.5]


def test_second_transient_failure_is_returned():
    attempts = 0

    async def handler(args, ctx):
        nonlocal attempts
        attempts += 1
        raise ToolExecutionError("upstream returned 503", transient=True)

    result = asyncio.run(
        _runtime(_lookup_tool(handler)).execute("lookup_order", {"order_id": "A1"}, CTX)
    )

    assert attempts == 2
    assert not result.success
    assert result.error == "Tool execution failed: upstream returned 503"


def test_permanent_failure_is_not_retried():
    attempts = 0

    async def handler(args, ctx):
        nonlocal attempts
        attempts += 1
        raise ValueError("bad data")

    result = asyncio.run(
        _runtime(_lookup_tool(handler)).execute("lookup_order", {"order_id": "A1"}, CTX)
    )

    assert attempts == 1
    assert result.error_type == "execution"
    assert result.error == "Tool execution failed"


def test_non_retryable_tool_runs_once():
    attempts = 0

    async def handler(args, ctx):
        nonlocal attempts
        attempts += 1
        raise ToolExecutionError("flaky", transient=True)

    runtime = _runtime(_lookup_tool(handler, retryable=False))
    asyncio.run(runtime.execute("lookup_order", {"order_id": "A1"}, CTX))

    assert attempts == 1


def test_timeout_is_reported():
    async def handler(args, ctx):
        await asyncio.sleep(1)
        return ToolResult.ok()

    runtime = _runtime(_lookup_tool(handler, timeout_seconds=0.01, retryable=False))
    result = asyncio.run(runtime.execute("lookup_order", {"order_id": "A1"}, CTX))

    assert result.error_type == "timeout"
    assert result.error == "Tool execution timed out"


def test_invalid_input_never_reaches_handler():
    called = False

    async def handler(args, ctx):
        nonlocal called
        called = True
        return ToolResult.ok()

    result = asyncio.run(_runtime(_lookup_tool(handler)).execute("lookup_order", {}, CTX))

    assert not called
    assert result.error_type == "validation"
    assert any("order_id" in error for error in result.data["errors"])


def test_unknown_tool():
    result = asyncio.run(_runtime().execute("delete_everything", {}, CTX))

    assert result.error_type == "unknown_tool"
    assert "delete_everything" in result.error


def test_tool_disabled_for_tenant_is_denied():
    async def handler(args, ctx):
        return ToolResult.ok()

    runtime = _runtime(_lookup_tool(handler), tenant=tenant_with_tools())
    result = asyncio.run(runtime.execute("lookup_order", {"order_id": "A1"}, CTX))

    assert result.error_type == "auth"
    assert result.error == (
        'The "lookup_order" feature is not currently enabled. Please try a different approach.'
    )


def test_tool_not_supported_on_channel_is_denied():
    async def handler(args, ctx):
        return ToolResult.ok()

    runtime = _runtime(_lookup_tool(handler, allowed_channels=("whatsapp",)))
    result = asyncio.run(runtime.execute("lookup_order", {"order_id": "A1"}, CTX))

    assert result.error_type == "auth"
    assert [t.name for t in runtime.available_tools("default", "web")] == []
    assert [t.name for t in runtime.available_tools("default", "whatsapp")] == ["lookup_order"]


def test_feedback_is_collected_after_execution():
    async def handler(args, ctx):
        raise ValueError("boom")

    feedback = InMemoryFeedbackCollector()
    runtime = _runtime(_lookup_tool(handler), feedback=feedback)

    async def scenario():
        await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)
        await asyncio.sleep(0)

    asyncio.run(scenario())

    [entry] = feedback.entries
    assert entry.tool == "lookup_order"
    assert entry.request_id == "req-1"
    assert not entry.success
    assert feedback.failure_rate("lookup_order") == 1.0


def test_invalid_schema_is_rejected_at_definition():
    async def handler(args, ctx):
        return ToolResult.ok()

    with pytest.raises(SchemaError):
        _lookup_tool(handler, input_schema={"type": "not-a-type"})


@pytest.mark.parametrize(
    "exc, expected",
    [
        (asyncio.TimeoutError(), True),
        (ToolExecutionError("x", transient=True), True),
        (ToolExecutionError("x"), False),
        (httpx.ConnectError("refused"), True),
        (
            httpx.HTTPStatusError(
                "server error",
                request=httpx.Request("GET", "https://shop.test"),
                response=httpx.Response(502),
            ),
            True,
        ),
        (
            httpx.HTTPStatusError(
                "not found",
                request=httpx.Request("GET", "https://shop.test"),
                response=httpx.Response(404),
            ),
            False,
        ),
        (ValueError("x"), False),
    ],
)
def test_is_transient(exc, expected):
    assert is_transient(exc) is expected


def test_context_scoped_tool_does_not_share_across_conversations():
    seen = []

    async def handler(args, ctx):
        seen.append(ctx.conversation_id)
        await asyncio.sleep(0.01)
        return ToolResult.ok({"conversation_id": ctx.conversation_id})

    runtime = _runtime(_lookup_tool(handler, context_scope=("conversation_id",)))
    other = ToolContext(
        tenant_id="default",
        channel="web",
        conversation_id="conv-2",
        visitor_id="visitor-2",
        request_id="req-2",
    )

    async def scenario():
        return await asyncio.gather(
            runtime.execute("lookup_order", {"order_id": "A1"}, CTX),
            runtime.execute("lookup_order", {"order_id": "A1"}, other),
        )

    first, second = asyncio.run(scenario())

    assert sorted(seen) == ["conv-1", "conv-2"]
    assert first.data == {"conversation_id": "conv-1"}
    assert second.data == {"conversation_id": "conv-2"}


def test_cache_hits_do_not_share_mutable_data():
    async def handler(args, ctx):
        return ToolResult.ok({"items": ["a"]})

    runtime = _runtime(
        _lookup_tool(handler, cacheable=True, cache_ttl_seconds=60), cache=InMemoryCacheStore()
    )

    async def scenario():
        first = await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)
        first.data["items"].append("mutated")
        second = await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)
        second.data["items"].append("again")
        return await runtime.execute("lookup_order", {"order_id": "A1"}, CTX)

    assert asyncio.run(scenario()).data == {"items": ["a"]}
