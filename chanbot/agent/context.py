"""Turn builder: the turns appended before each engine invocation."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol, TYPE_CHECKING

from loguru import logger

from chanbot.agent.response_cleaning import cap_for_history
from chanbot.agent.turns import Turn
from chanbot.utils.sanitize import sanitize_unicode

if TYPE_CHECKING:
    from chanbot.bus.events import InboundMessage
    from chanbot.config.schema import ChaosModeConfig

CHAOS_SNIPPET_COUNT = 3
CHAOS_SNIPPET_CHARS = 120


@dataclass
class HistoryMessage:
    """A message from the channel's long-term history."""
    nick: str
    message: str
    timestamp_ms: float


class MessageHistoryProvider(Protocol):
    """Source of random historical messages (chaos mode only)."""

    def get_random_messages(self, channel: str, n: int) -> list[HistoryMessage]:
        ...


class TurnBuilder:
    """
    Builds the context snippet and user turns for one ``process_messages`` call.

    The snippet gives the model the current date, time and channel. With
    chaos mode on, it sometimes adds a few random lines from the channel's
    history for variety.
    """

    def __init__(
        self,
        chaos_mode: "ChaosModeConfig | None" = None,
        history: MessageHistoryProvider | None = None,
        user_msg_max_chars: int = 1500,
        sanitizer: Callable[[str], str] = sanitize_unicode,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.chaos_mode = chaos_mode
        self.history = history
        self.user_msg_max_chars = user_msg_max_chars
        self._sanitize = sanitizer
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_context_turn(self, channel: str) -> Turn:
        """System turn with date, time, channel and (maybe) chaos snippets."""
        now = self._clock()
        parts = [
            f"Current date: {now.strftime('%m-%d-%Y')} (mm-dd-yyyy), "
            f"Time: {now.strftime('%H:%M')} UTC, Channel: {channel}"
        ]
        snippets = self._chaos_snippets(channel)
        if snippets:
            parts.append(f"Chaos snippets: {snippets}")
        return Turn.system("\n".join(parts))

    def _chaos_snippets(self, channel: str) -> str:
        if not (self.chaos_mode and self.chaos_mode.enabled and self.history):
            return ""
        if self._rng.random() >= self.chaos_mode.probability:
            return ""
        try:
            messages = self.history.get_random_messages(channel, CHAOS_SNIPPET_COUNT) or []
        except Exception as e:
            logger.error(f"Error getting chaos snippets for {channel}: {e}")
            return ""
        return " | ".join(
            f"[{m.nick}] {str(m.message or '')[:CHAOS_SNIPPET_CHARS]}"
            for m in messages[:CHAOS_SNIPPET_COUNT]
        )

    def build_user_turns(self, messages: list["InboundMessage"]) -> list[Turn]:
        """One user turn per distinct, non-blank message: ``[nick] text``."""
        turns: list[Turn] = []
        seen: set[str] = set()
        for msg in messages:
            text = str(msg.content or "").strip()
            if not text or text in seen:
                continue
            seen.add(text)
            capped = cap_for_history(self._sanitize(text), self.user_msg_max_chars, annotate=False)
            turns.append(Turn.user(f"[{msg.nick}] {capped}"))
        return turns
