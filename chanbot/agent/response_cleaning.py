"""Response cleaning: sanitize model output and history before it is kept.

All functions are pure with no instance state.
"""

from __future__ import annotations

import re

from chanbot.agent.compaction import truncate
from chanbot.agent.turns import Turn

TRUNCATION_MARKER = " [truncated]"

_REASONING_BLOCKS = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<thinking>.*?</thinking>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE),
]
# Closing tag with no opener: everything before it was reasoning
_DANGLING_CLOSE = re.compile(r".*?</(?:think|thinking|reasoning)>", re.DOTALL | re.IGNORECASE)


def strip_reasoning(text: str | None) -> str:
    """Remove <think>/<thinking>/<reasoning> blocks from model output.

    A dangling closing tag also removes all text before it, since models
    that stream reasoning often drop the opening tag.
    """
    if not text:
        return ""
    result = str(text)
    for pattern in _REASONING_BLOCKS:
        result = pattern.sub("", result)
    result = _DANGLING_CLOSE.sub("", result)
    return result.strip()


def cap_for_history(text: str | None, max_chars: int, annotate: bool) -> str:
    """Cap text stored in history.

    With ``annotate`` the cut is marked with `` [truncated]`` so the model
    knows the output was incomplete (used for tool results).
    """
    raw = str(text or "")
    if len(raw) <= max_chars:
        return raw
    if not annotate:
        return truncate(raw, max_chars)
    budget = max(30, max_chars - len(TRUNCATION_MARKER))
    return truncate(raw, budget) + TRUNCATION_MARKER


def prune_ephemeral_turns(turns: list[Turn]) -> list[Turn]:
    """Drop assistant turns that requested tools and every tool turn.

    Tool traffic is only valid inside one in-flight round; it is never kept
    in persisted history. Turn 0 (system prompt) is always kept.
    """
    if not turns:
        return []
    system, rest = turns[0], turns[1:]
    kept = [
        t for t in rest
        if t.role != "tool" and not (t.role == "assistant" and t.has_tool_calls)
    ]
    return [system, *kept]


def prune_empty_turns(turns: list[Turn]) -> list[Turn]:
    """Drop blank turns before a request. Tool traffic is kept even when blank."""
    kept = []
    for t in turns:
        if t.role == "tool" or (t.role == "assistant" and t.has_tool_calls):
            kept.append(t)
        elif (t.content or "").strip():
            kept.append(t)
    return kept


def cap_history_length(turns: list[Turn], max_length: int) -> list[Turn]:
    """Keep the system turn plus the newest ``max_length - 1`` turns."""
    if len(turns) <= max_length:
        return list(turns)
    return [turns[0], *turns[len(turns) - (max_length - 1):]]
