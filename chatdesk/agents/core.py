"""Agent core: prompt assembly, generation and response parsing."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ..conversations.models import StructuredMemory, Turn
from ..errors import ParseError
from ..tools.registry import ToolDefinition, ToolResult
from .prompts import PromptBundle, PromptBundleStore
from .providers import ChatMessage, CompletionRequest
from .responses import RESPONSE_CONTRACT_SCHEMA, fallback_response, parse_agent_response
from .router import ModelRouter
from .schemas import AgentResponse

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TURN_LIMIT = 10


@dataclass(frozen=True)
class ToolOutcome:
    """Result of one tool call, as fed back into the refinement pass."""

    tool: str
    result: ToolResult


class AgentCore:
    def __init__(
        self,
        router: ModelRouter,
        prompts: PromptBundleStore | None = None,
        *,
        history_turn_limit: int = DEFAULT_HISTORY_TURN_LIMIT,
    ) -> None:
        self._router = router
        self._prompts = prompts or PromptBundleStore()
        self._history_turn_limit = history_turn_limit

    async def process(
        self,
        message: str,
        history: Sequence[Turn],
        structured_memory: StructuredMemory,
        channel: str,
        prompt_version: str | None,
        request_id: str,
        *,
        conversation_id: str | None = None,
        available_tools: Sequence[ToolDefinition] = (),
    ) -> AgentResponse:
        """Run the first generation pass for ``message``.

        :class:`~chatdesk.errors.ProviderError` propagates. Unparseable output
        degrades to a non-escalating fallback response.
        """

        bundle = self._prompts.get(prompt_version)
        system = self._system_prompt(bundle, channel, structured_memory, available_tools)
        messages = [
            ChatMessage("system", system),
            *self._history_messages(history),
            ChatMessage("user", message),
        ]
        completion = await self._router.generate(
            CompletionRequest(messages=messages, json_mode=True),
            routing_key=conversation_id,
        )
        try:
            response = parse_agent_response(completion.content)
        except ParseError as exc:
            logger.error(
                "Agent output could not be parsed (request %s, provider %s): %s; raw=%r",
                request_id,
                completion.provider,
                exc,
                exc.raw[:2000],
            )
            return fallback_response()

        logger.info(
            "Agent response (request %s): intent=%s escalate=%s tool_calls=%d",
            request_id,
            response.intent,
            response.should_escalate,
            len(response.tool_calls),
        )
        return response

    async def process_with_tool_results(
        self,
        message: str,
        history: Sequence[Turn],
        structured_memory: StructuredMemory,
        channel: str,
        tool_results: Sequence[ToolOutcome],
        prior_message: str,
        prompt_version: str | None,
        request_id: str,
        *,
        conversation_id: str | None = None,
    ) -> AgentResponse:
        """Second pass grounded in what the tools returned.

        ``history`` must not contain the current user message. Raises
        :class:`~chatdesk.errors.ProviderError` or
        :class:`~chatdesk.errors.ParseError`; the caller keeps the first reply.
        """

        bundle = self._prompts.get(prompt_version)
        system = self._system_prompt(bundle, channel, structured_memory, (), refinement=True)
        messages = [
            ChatMessage("system", system),
            *self._history_messages(history),
            ChatMessage("user", message),
            ChatMessage("assistant", prior_message),
            ChatMessage("user", _tool_results_block(tool_results)),
        ]
        completion = await self._router.generate(
            CompletionRequest(messages=messages, json_mode=True),
            routing_key=conversation_id,
        )
        response = parse_agent_response(completion.content)
        response.tool_calls = []
        logger.info(
            "Refined response (request %s) from %d tool results: intent=%s",
            request_id,
            len(tool_results),
            response.intent,
        )
        return response

    # ------------------------------------------------------------------

    def _history_messages(self, history: Sequence[Turn]) -> list[ChatMessage]:
        if self._history_turn_limit <= 0:
            return []
        turns = [turn for turn in history if turn.role != "system"]
        turns = turns[-self._history_turn_limit :]
        return [ChatMessage(turn.role, turn.content) for turn in turns]

    def _system_prompt(
        self,
        bundle: PromptBundle,
        channel: str,
        memory: StructuredMemory,
        tools: Sequence[ToolDefinition],
        *,
        refinement: bool = False,
    ) -> str:
        known = memory.compact()
        sections = [
            bundle.system,
            "",
            "--- DEVELOPER INSTRUCTIONS ---",
            bundle.developer,
            "",
        ]
        if bundle.brand_tone:
            sections += ["--- BRAND TONE ---", bundle.brand_tone, ""]
        sections += [
            "--- RESPONSE FORMAT ---",
            "You MUST respond with a JSON object matching this schema:",
            json.dumps(RESPONSE_CONTRACT_SCHEMA, indent=2),
            "",
            "--- CURRENT CONTEXT ---",
            f"Channel: {channel}",
            f"Known visitor info: {json.dumps(known, default=str) if known else 'none'}",
            "",
            "--- AVAILABLE TOOLS ---",
        ]
        if refinement:
            sections += [
                "Do NOT call any tools in this response.",
                "The tools were already executed and their results are provided below.",
            ]
        elif tools:
            sections.append(
                "If you need to perform actions, include them in the tool_calls array with the correct args."
            )
            for tool in tools:
                sections.append(
                    f"- {tool.name}: {tool.description}\n  Input schema: {json.dumps(tool.input_schema)}"
                )
        else:
            sections.append("No tools are available. Keep tool_calls as an empty array [].")
        return "\n".join(sections).strip()


def _tool_results_block(tool_results: Sequence[ToolOutcome]) -> str:
    lines = ["Tool execution results:", ""]
    for outcome in tool_results:
        result = outcome.result
        if result.success:
            lines.append(
                f"{outcome.tool} succeeded:\n{json.dumps(result.data, indent=2, default=str)}"
            )
        else:
            lines.append(f"{outcome.tool} failed: {result.error or 'Unknown error'}")
    lines += [
        "",
        "Instructions:",
        "- Provide your FINAL response incorporating the tool results above.",
        "- If a tool failed, explain it to the visitor and offer an alternative.",
        "- Do NOT include any tool_calls. Tools have already been executed.",
        "- Keep tool_calls as an empty array [].",
    ]
    return "\n".join(lines)
