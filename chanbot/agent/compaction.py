"""Context compaction: keep a channel's turns inside the model's token budget.

Older turns are folded into a short synthetic memory, recent turns stay
verbatim. Lossy on purpose: recall of old detail is traded for a bounded
prompt.

Token accounting is a character heuristic (1 token ≈ 4 chars) plus a fixed
per-turn framing overhead, which is accurate enough for budget decisions
and needs no tokenizer.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from loguru import logger

from chanbot.agent.turns import Turn

if TYPE_CHECKING:
    from chanbot.providers.base import LLMProvider

TURN_OVERHEAD_TOKENS = 4
RESERVE_FRACTION = 0.1        # headroom left for the reply
RECENT_BUDGET_FRACTION = 0.6  # share of the budget kept verbatim
MIN_RECENT_TURNS = 6
TRANSCRIPT_LINE_CHARS = 600
SUMMARY_FALLBACK_CHARS = 600
SHRUNK_SUMMARY_CHARS = 220
SUMMARY_PREFIX = "Conversation summary so far: "

SUMMARIZER_SYSTEM_PROMPT = "\n".join([
    "You are an assistant compressing earlier conversation context for an IRC bot.",
    "Return only a compact memory in plain text (no preface, no labels).",
    "Include: key facts, constraints, decisions, numbers, names; user intents and outcomes.",
    "Avoid quotes, lists, or markdown. Use 1-2 concise sentences.",
])


def estimate_tokens(text: str | None) -> int:
    """Rough token count: ceil(chars / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def turn_cost(turn: Turn) -> int:
    """Estimated tokens for one turn, framing included."""
    return estimate_tokens(turn.content) + TURN_OVERHEAD_TOKENS


def total_cost(turns: list[Turn]) -> int:
    return sum(turn_cost(t) for t in turns)


def effective_max(max_tokens: int) -> int:
    """Budget actually filled: 90% of the context window."""
    return math.floor(max_tokens * (1 - RESERVE_FRACTION))


def truncate(text: str, limit: int) -> str:
    """Cut text to at most ``limit`` characters, ending in an ellipsis when cut."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:max(0, limit - 1)].rstrip() + "…"


def fallback_memory(transcript: str) -> str:
    """Memory used when the model cannot summarize: the transcript head plus an ellipsis."""
    if len(transcript) <= SUMMARY_FALLBACK_CHARS:
        return transcript
    return transcript[:SUMMARY_FALLBACK_CHARS] + "…"


def _drop_orphan_tool_turns(turns: list[Turn]) -> list[Turn]:
    """Drop leading tool turns whose assistant turn was cut away."""
    start = 0
    while start < len(turns) and turns[start].role == "tool":
        start += 1
    return turns[start:]


def render_transcript(turns: list[Turn]) -> str:
    """Plain ``role: content`` transcript, each content capped."""
    lines = []
    for t in turns:
        content = t.content or ""
        if len(content) > TRANSCRIPT_LINE_CHARS:
            content = content[:TRANSCRIPT_LINE_CHARS] + "…"
        lines.append(f"{t.role}: {content}")
    return "\n".join(lines)


class ContextCompactor:
    """Summarization-based compaction of a turn sequence.

    ``turns[0]`` is always the system prompt and always survives.
    """

    def __init__(self, provider: "LLMProvider", model: str | None = None):
        self.provider = provider
        self.model = model

    # ── Hard trim ─────────────────────────────────────────────────────

    def trim(self, turns: list[Turn], max_tokens: int, pinned: int = 1) -> list[Turn]:
        """Keep the first ``pinned`` turns plus the newest turns that fit ``max_tokens``.

        ``max_tokens`` is used as-is (no reserve applied). Pinned turns are
        dropped from the end of the pinned block if they alone overflow, but
        turn 0 is always kept.
        """
        if not turns:
            return []
        head = list(turns[:max(1, pinned)])
        rest = turns[len(head):]

        while len(head) > 1 and total_cost(head) > max_tokens:
            rest = []  # pinned block alone overflows: nothing else can fit
            head.pop()

        selected: list[Turn] = []
        total = total_cost(head)
        for turn in reversed(rest):
            cost = turn_cost(turn)
            if total + cost > max_tokens:
                break
            selected.append(turn)
            total += cost
        selected.reverse()
        return head + _drop_orphan_tool_turns(selected)

    # ── Compaction ────────────────────────────────────────────────────

    async def compact(self, turns: list[Turn], max_tokens: int) -> list[Turn]:
        """Return a sequence whose estimated cost is within ``effective_max(max_tokens)``.

        Args:
            turns: Full sequence, system prompt first.
            max_tokens: The model's context window.

        Returns:
            ``turns`` unchanged when it already fits, otherwise
            ``[system, summary, *recent]`` (hard-trimmed if needed).
        """
        if len(turns) <= 1:
            return list(turns)

        budget = effective_max(max_tokens)
        if total_cost(turns) <= budget:
            return list(turns)

        system, rest = turns[0], turns[1:]
        recent_budget = max(math.floor(budget * RECENT_BUDGET_FRACTION), 1)

        recent: list[Turn] = []
        recent_tokens = turn_cost(system)
        for turn in reversed(rest):
            cost = turn_cost(turn)
            force_keep = len(recent) < MIN_RECENT_TURNS
            if not force_keep and recent_tokens + cost > recent_budget:
                break
            recent.append(turn)
            recent_tokens += cost
        recent.reverse()

        older = rest[:len(rest) - len(recent)]
        # Tool results travel with the assistant turn that requested them
        while recent and recent[0].role == "tool":
            older.append(recent.pop(0))

        if not older:
            logger.debug(f"Compaction: nothing old enough to summarize, hard-trimming {len(turns)} turns")
            return self.trim(turns, budget)

        memory = await self._summarize_older(older)
        summary_turn = Turn.system(SUMMARY_PREFIX + memory)
        composed = [system, summary_turn, *recent]
        if total_cost(composed) <= budget:
            logger.debug(
                f"Compaction: {len(older)} turns → summary, {len(recent)} kept "
                f"(~{total_cost(composed)}/{budget} tokens)"
            )
            return composed

        shrunk = await self.summarize_text(memory, SHRUNK_SUMMARY_CHARS)
        composed = [system, Turn.system(SUMMARY_PREFIX + shrunk), *recent]
        if total_cost(composed) <= budget:
            return composed

        logger.debug(f"Compaction: still over budget after shrinking summary, hard-trimming to {budget}")
        return self.trim(composed, budget, pinned=2)

    async def _summarize_older(self, older: list[Turn]) -> str:
        transcript = render_transcript(older)
        try:
            response = await self.provider.chat(
                messages=[
                    {"role": "system", "content": SUMMARIZER_SYSTEM_PROMPT},
                    {"role": "user", "content": f"Summarize this earlier context:\n\n{transcript}"},
                ],
                model=self.model,
            )
            summary = (response.content or "").strip()
        except Exception as e:
            logger.warning(f"Context summarization failed, using truncated transcript: {e}")
            return fallback_memory(transcript)

        if not summary:
            logger.warning("Context summarization returned nothing, using truncated transcript")
            return fallback_memory(transcript)
        return summary

    # ── Text shrinking ────────────────────────────────────────────────

    async def summarize_text(self, text: str, max_chars: int = 400) -> str:
        """Rewrite ``text`` to at most ``max_chars`` characters, keeping tone and key facts.

        Falls back to a hard truncation when the model fails.
        """
        system = "\n".join([
            "You are an assistant summarizer for an IRC bot.",
            "Goal: Rewrite the given assistant response to fit within the character limit "
            "while preserving key information and keeping the same tone and voice.",
            "Output strictly the final answer only - no reasoning, no preface, no meta commentary.",
            "Constraints:",
            f"- Max {max_chars} characters",
            "- Plain text only (no markdown, lists, or code fences)",
            "- Prefer one succinct paragraph; if very dense, it may contain natural sentence breaks",
        ])
        try:
            response = await self.provider.chat(
                messages=[
                    {"role": "system", "content": system},
                    {
                        "role": "user",
                        "content": (
                            f"Summarize the following assistant response to <= {max_chars} characters "
                            f"while keeping the same tone and preserving key information.\n\n---\n{text}"
                        ),
                    },
                ],
                model=self.model,
            )
        except Exception as e:
            logger.warning(f"Summarization failed, truncating instead: {e}")
            return truncate(text, max_chars)

        content = (response.content or "").strip()
        logger.debug(f"Summarization output ({len(content)} chars): {content[:200]}")
        if not content:
            return truncate(text, max_chars)
        return truncate(content, max_chars)
