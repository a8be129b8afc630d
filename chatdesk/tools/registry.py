"""Tool definitions and the registry that maps names to them."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

AuthLevel = Literal["none", "service", "tenant"]

ALL_CHANNELS: tuple[str, ...] = ("whatsapp", "business_chat", "web")


@dataclass(frozen=True)
class ToolContext:
    tenant_id: str
    channel: str
    conversation_id: str
    visitor_id: str
    request_id: str


@dataclass
class ToolResult:
    """Uniform outcome of a tool execution."""

    success: bool
    data: Any = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_type: str = "execution", data: Any = None) -> "ToolResult":
        return cls(success=False, data=data, error=error, error_type=error_type)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        payload: dict[str, Any] = {"success": False, "error": self.error, "error_type": self.error_type}
        if self.data is not None:
            payload["data"] = self.data
        return payload


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[ToolResult]]


@dataclass
class ToolDefinition:
    name: str
    description: str
    handler: ToolHandler
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    output_schema: dict[str, Any] = field(default_factory=dict)
    version: str = "1.0.0"
    auth_level: AuthLevel = "none"
    rate_limit_per_minute: int = 60
    allowed_channels: tuple[str, ...] = ALL_CHANNELS
    cacheable: bool = False
    cache_ttl_seconds: float = 0.0
    retryable: bool = True
    retry_delay_seconds: float | None = None
    timeout_seconds: float | None = None
    # ToolContext fields the result depends on; they become part of the dedup key
    context_scope: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        Draft7Validator.check_schema(self.input_schema)
        if self.output_schema:
            Draft7Validator.check_schema(self.output_schema)
        self._input_validator = Draft7Validator(self.input_schema)
        self._output_validator = (
            Draft7Validator(self.output_schema) if self.output_schema else None
        )

    def input_errors(self, args: dict[str, Any]) -> list[str]:
        return _format_errors(self._input_validator, args)

    def output_errors(self, data: Any) -> list[str]:
        if self._output_validator is None:
            return []
        return _format_errors(self._output_validator, data)

    def scope_of(self, ctx: ToolContext) -> dict[str, str]:
        return {name: getattr(ctx, name) for name in self.context_scope}

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def _format_errors(validator: Draft7Validator, instance: Any) -> list[str]:
    errors = sorted(validator.iter_errors(instance), key=lambda e: list(e.path))
    messages = []
    for error in errors:
        location = "/".join(str(part) for part in error.path) or "<root>"
        messages.append(f"{location}: {error.message}")
    return messages


class ToolRegistry:
    """Name -> definition map; re-registration replaces the old definition."""

    def __init__(self, tools: Iterable[ToolDefinition] = ()) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            logger.warning(
                "Tool %s already registered (v%s); overwriting with v%s",
                tool.name,
                self._tools[tool.name].version,
                tool.version,
            )
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def all(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
