"""Tests for ContextCompactor — token bound, summary composition, fallbacks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chanbot.agent.compaction import (
    SUMMARY_PREFIX,
    ContextCompactor,
    effective_max,
    estimate_tokens,
    fallback_memory,
    render_transcript,
    total_cost,
    truncate,
    turn_cost,
)
from chanbot.agent.turns import Turn
from chanbot.providers.base import LLMResponse, ToolCallRequest


# ── Helpers ──────────────────────────────────────────────────────────────


def make_provider(content: str = "Earlier they discussed the weather.") -> MagicMock:
    provider = MagicMock()
    provider.chat = AsyncMock(return_value=LLMResponse(content=content))
    return provider


def failing_provider() -> MagicMock:
    provider = MagicMock()
    provider.chat = AsyncMock(side_effect=RuntimeError("backend down"))
    return provider


def conversation(n: int, chars: int) -> list[Turn]:
    turns = [Turn.system("You are a bot.")]
    for i in range(n):
        role = "user" if i % 2 == 0 else "assistant"
        body = f"{i:03d} " + "x" * (chars - 4)
        turns.append(Turn(role=role, content=body))
    return turns


# ── Token accounting ─────────────────────────────────────────────────────


class TestTokenAccounting:

    def test_estimate_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_turn_cost_includes_overhead(self):
        assert turn_cost(Turn.user("abcd")) == 5
        assert total_cost([Turn.user("abcd"), Turn.user("")]) == 9

    def test_effective_max(self):
        assert effective_max(1024) == 921
        assert effective_max(4096) == 3686

    def test_truncate(self):
        assert truncate("short", 10) == "short"
        cut = truncate("a" * 50, 10)
        assert len(cut) <= 10
        assert cut.endswith("…")

    def test_fallback_memory_is_transcript_head(self):
        transcript = "u" * 1000
        assert fallback_memory(transcript) == "u" * 600 + "…"
        assert fallback_memory("tiny") == "tiny"

    def test_transcript_lines_capped(self):
        text = render_transcript([Turn.user("a" * 700), Turn.assistant("ok")])
        first, second = text.split("\n")
        assert first == "user: " + "a" * 600 + "…"
        assert second == "assistant: ok"


# ── Compaction ───────────────────────────────────────────────────────────


class TestCompact:

    @pytest.mark.asyncio
    async def test_within_budget_unchanged(self):
        provider = make_provider()
        compactor = ContextCompactor(provider)
        turns = conversation(4, 40)
        assert await compactor.compact(turns, 4096) == turns
        provider.chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_turn_unchanged(self):
        compactor = ContextCompactor(make_provider())
        turns = [Turn.system("x" * 10000)]
        assert await compactor.compact(turns, 100) == turns

    @pytest.mark.asyncio
    async def test_summary_plus_recent(self):
        compactor = ContextCompactor(make_provider())
        turns = conversation(40, 200)
        result = await compactor.compact(turns, 1024)

        assert result[0] is turns[0]
        assert result[1].role == "system"
        assert result[1].content == SUMMARY_PREFIX + "Earlier they discussed the weather."
        recent = result[2:]
        assert len(recent) >= 6
        assert recent == turns[-len(recent):]
        assert total_cost(result) <= effective_max(1024)

    @pytest.mark.asyncio
    async def test_long_turns_still_bounded(self):
        compactor = ContextCompactor(make_provider())
        turns = conversation(40, 2000)
        result = await compactor.compact(turns, 1024)

        assert result[0] is turns[0]
        assert result[1].content.startswith(SUMMARY_PREFIX)
        assert result[-1] is turns[-1]
        assert total_cost(result) <= effective_max(1024)

    @pytest.mark.asyncio
    async def test_fifty_long_turns_yield_one_summary(self):
        compactor = ContextCompactor(make_provider())
        result = await compactor.compact(conversation(50, 2000), 1024)

        assert sum(t.content.startswith(SUMMARY_PREFIX) for t in result) == 1
        assert total_cost(result) <= effective_max(1024)

    @pytest.mark.asyncio
    async def test_earlier_summary_folded_into_new_one(self):
        compactor = ContextCompactor(make_provider())
        first = await compactor.compact(conversation(40, 200), 1024)
        grown = first + conversation(20, 200)[1:]
        result = await compactor.compact(grown, 1024)

        assert sum(t.content.startswith(SUMMARY_PREFIX) for t in result) == 1
        assert total_cost(result) <= effective_max(1024)

    @pytest.mark.asyncio
    async def test_summarizer_failure_uses_transcript_head(self):
        compactor = ContextCompactor(failing_provider())
        turns = conversation(40, 200)
        result = await compactor.compact(turns, 1024)

        summary = result[1].content
        assert summary.startswith(SUMMARY_PREFIX)
        memory = summary[len(SUMMARY_PREFIX):]
        assert memory.startswith("user: 000 ")
        assert total_cost(result) <= effective_max(1024)

    @pytest.mark.asyncio
    async def test_empty_summary_uses_fallback(self):
        compactor = ContextCompactor(make_provider(content="   "))
        result = await compactor.compact(conversation(40, 200), 1024)
        assert result[1].content.startswith(SUMMARY_PREFIX + "user: 000 ")

    @pytest.mark.asyncio
    async def test_no_orphan_tool_turn_after_compaction(self):
        compactor = ContextCompactor(make_provider())
        turns = conversation(30, 200)
        turns.append(Turn.assistant("", [ToolCallRequest(id="call_0", name="calc", arguments={})]))
        for i in range(8):
            turns.append(Turn.tool("r" * 300, "call_0"))
        result = await compactor.compact(turns, 1024)

        body = result[1:]
        for i, turn in enumerate(body):
            if turn.role == "tool":
                before = [t for t in body[:i] if t.role != "tool"]
                assert before and before[-1].has_tool_calls
        assert total_cost(result) <= effective_max(1024)


class TestTrim:

    def test_keeps_system_and_newest(self):
        compactor = ContextCompactor(make_provider())
        turns = conversation(10, 40)
        result = compactor.trim(turns, 50)
        assert result[0] is turns[0]
        assert result[-1] is turns[-1]
        assert total_cost(result) <= 50

    def test_drops_leading_tool_turns(self):
        compactor = ContextCompactor(make_provider())
        turns = [
            Turn.system("sys"),
            Turn.assistant("", [ToolCallRequest(id="call_0", name="a")]),
            Turn.tool("r" * 400, "call_0"),
            Turn.tool("ok", "call_0"),
            Turn.user("next"),
        ]
        result = compactor.trim(turns, 20)
        assert all(t.role != "tool" for t in result)
        assert result[-1].content == "next"


class TestSummarizeText:

    @pytest.mark.asyncio
    async def test_output_capped(self):
        compactor = ContextCompactor(make_provider(content="y" * 500))
        result = await compactor.summarize_text("x" * 1000, max_chars=100)
        assert len(result) <= 100

    @pytest.mark.asyncio
    async def test_failure_truncates_input(self):
        compactor = ContextCompactor(failing_provider())
        result = await compactor.summarize_text("hello " * 100, max_chars=50)
        assert len(result) <= 50
        assert result.startswith("hello")
        assert result.endswith("…")
