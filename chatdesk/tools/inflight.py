"""In-flight de-duplication of identical tool executions."""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Generic, TypeVar

T = TypeVar("T")


def canonical_args(args: Mapping[str, Any]) -> str:
    return json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)


def tool_call_key(
    name: str, args: Mapping[str, Any], scope: Mapping[str, str] | None = None
) -> str:
    """Deterministic key for a (tool name, canonicalized args) pair.

    ``scope`` holds the call context values a tool's outcome depends on; calls
    that differ only in scope never share an execution or a cache entry.
    """

    material = canonical_args(args)
    if scope:
        material = f"{material}|{canonical_args(scope)}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]
    return f"tool:{name}:{digest}"


class InflightDeduplicator(Generic[T]):
    """Share one pending execution between concurrent callers with the same key.

    The first caller starts the work as a task; later callers with the same
    key await that task. The entry is dropped as soon as the task finishes, so
    a later call runs the work again.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[T]] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._forget(k, _t))
        # cancelling one waiter leaves the shared task running
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[T]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def __len__(self) -> int:
        return len(self._inflight)
