"""Resilience layer wrapped around every model call.

Two recoveries, each tried once:
    1. Empty reply (no text, no tool calls) → ask again for a plain answer.
    2. Send failure → ask again without tools on a reduced history.
If the recovery send also fails, the error propagates to the caller.
"""

from __future__ import annotations

import math
import re
from typing import Any, TYPE_CHECKING

from loguru import logger

from chanbot.agent.compaction import ContextCompactor, total_cost
from chanbot.agent.turns import Turn

if TYPE_CHECKING:
    from chanbot.agent.debug_trace import DebugTrace
    from chanbot.providers.base import LLMProvider, LLMResponse

RETRY_BUDGET_FRACTION = 0.7

EMPTY_RETRY_INSTRUCTION = (
    "Return only the final answer in plain text (no reasoning). Do not call any "
    "tools or functions. If the question needs tools you do not have, answer "
    "briefly with what you know."
)
FAILURE_RETRY_INSTRUCTION = (
    "You MUST NOT call any tools or functions. Provide a direct text response only. "
    "If you need information from tools, explain what you would need instead of "
    "trying to call them."
)

# Provider messages that mean tool calls and tool results no longer line up
_TOOL_DESYNC = re.compile(
    r"mismatch between tool calls and tool results"
    r"|tool_call_ids? did not have response messages"
    r"|tool_call_id\W+[\w-]+\W+(?:not found|does not match)",
    re.IGNORECASE,
)


def is_tool_desync(error: BaseException) -> bool:
    """True when a provider error reports a tool-call / tool-result mismatch."""
    return bool(_TOOL_DESYNC.search(str(error)))


def _is_empty(response: "LLMResponse") -> bool:
    return not (response.content or "").strip() and not response.has_tool_calls


class ResilientChat:
    """Sends turn sequences to the provider with the retry policy above."""

    def __init__(
        self,
        provider: "LLMProvider",
        compactor: ContextCompactor,
        max_context_tokens: int,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ):
        self.provider = provider
        self.compactor = compactor
        self.max_context_tokens = max_context_tokens
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def retry_budget(self) -> int:
        return math.floor(self.max_context_tokens * RETRY_BUDGET_FRACTION)

    async def _send(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]] | None,
        label: str,
        trace: "DebugTrace | None",
    ) -> "LLMResponse":
        logger.debug(
            f"{label}: sending {len(turns)} turn(s), ~{total_cost(turns)} tokens, "
            f"{len(tools) if tools else 0} tool(s)"
        )
        if trace:
            trace.log_request(label, turns, len(tools) if tools else 0)
        try:
            response = await self.provider.chat(
                messages=[t.to_message() for t in turns],
                tools=tools or None,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            if trace:
                trace.log_error(label, e)
            raise
        if trace:
            trace.log_response(label, response)
        logger.debug(
            f"{label} response (tools={len(response.tool_calls)}): {(response.content or '')[:200]}"
        )
        return response

    def _reduced(self, turns: list[Turn], instruction: str) -> list[Turn]:
        return self.compactor.trim([*turns, Turn.system(instruction)], self.retry_budget)

    async def chat(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]] | None,
        label: str,
        trace: "DebugTrace | None" = None,
    ) -> "LLMResponse":
        """
        Send ``turns`` and recover once from an empty reply or a failure.

        Args:
            turns: Request history (already compacted).
            tools: Tool catalog, or None to disable tools.
            label: Call site name for logs and traces.
            trace: Optional per-turn debug trace.

        Returns:
            The provider's response (possibly from a retry).

        Raises:
            Exception: the retry's error when both attempts fail.
        """
        try:
            response = await self._send(turns, tools, label, trace)
            if _is_empty(response):
                logger.warning(f"{label} returned empty content; retrying with explicit answer instruction")
                reduced = self._reduced(turns, EMPTY_RETRY_INSTRUCTION)
                response = await self._send(reduced, None, f"{label} retry-empty", trace)
            return response
        except Exception as e:
            logger.warning(f"{label} failed: {e}")
            reduced = self._reduced(turns, FAILURE_RETRY_INSTRUCTION)
            logger.info(f"Retrying {label} with explicit no-tools instruction and reduced context")
            try:
                return await self._send(reduced, None, f"{label} retry", trace)
            except Exception as e2:
                logger.error(f"Retry for {label} failed: {e2}")
                raise
