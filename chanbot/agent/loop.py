"""Agent loop: the core conversation engine."""

import asyncio
import json
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

from loguru import logger

from chanbot.agent.compaction import ContextCompactor, effective_max, total_cost
from chanbot.agent.context import MessageHistoryProvider, TurnBuilder
from chanbot.agent.debug_trace import DebugTrace
from chanbot.agent.inline_calls import parse_inline_tool_calls
from chanbot.agent.resilience import ResilientChat, is_tool_desync
from chanbot.agent.response_cleaning import (
    cap_for_history,
    cap_history_length,
    prune_empty_turns,
    prune_ephemeral_turns,
    strip_reasoning,
)
from chanbot.agent.tools.registry import ToolRegistry
from chanbot.agent.turns import (
    RawArguments,
    RoundTracker,
    Turn,
    ensure_tool_call_ids,
    parse_arguments,
    round_signature,
)
from chanbot.bus.events import InboundMessage
from chanbot.config.schema import AgentDefaults, Config
from chanbot.providers.base import LLMProvider, LLMResponse, ToolCallRequest
from chanbot.session.manager import Session, SessionManager
from chanbot.utils.sanitize import sanitize_unicode

FORCED_FINAL_INSTRUCTION = "Please provide a response based on the information gathered from the tools."
SKIPPED_TOOL_RESULT = "Skipped: tool round limit reached, answer with what you have."


class AgentLoop:
    """
    The agent loop is the core processing engine.

    For each batch of channel messages it:
    1. Loads the channel's conversation (system prompt first)
    2. Appends a context snippet and the new user turns
    3. Calls the model, executing requested tools over several rounds
    4. Forces a tool-free answer when rounds run out or the model loops
    5. Cleans the reply, prunes tool traffic and persists the history
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry | None = None,
        sessions: SessionManager | None = None,
        defaults: AgentDefaults | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        history: MessageHistoryProvider | None = None,
        builder: TurnBuilder | None = None,
    ):
        self.defaults = defaults or AgentDefaults()
        self.provider = provider
        self.model = model or provider.get_default_model()
        self.tools = tools if tools is not None else ToolRegistry(timeout=self.defaults.tool_timeout)
        self.sessions = sessions or SessionManager()

        self.system_prompt = self.defaults.system_prompt
        self.max_tool_call_rounds = self.defaults.max_tool_call_rounds
        self.max_context_tokens = self.defaults.max_context_tokens
        self.max_history_length = self.defaults.max_history_length
        self.tool_out_max_chars = self.defaults.tool_out_max_chars
        self._trace_dir = Path(self.defaults.debug_trace_dir).expanduser() if self.defaults.debug_trace_dir else None

        self.builder = builder or TurnBuilder(
            chaos_mode=self.defaults.chaos_mode,
            history=history,
            user_msg_max_chars=self.defaults.user_msg_max_chars,
        )
        self.compactor = ContextCompactor(provider, model=self.model)
        self.resilience = ResilientChat(
            provider,
            self.compactor,
            max_context_tokens=self.max_context_tokens,
            model=self.model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider: LLMProvider | None = None,
        tools: ToolRegistry | None = None,
        sessions: SessionManager | None = None,
        history: MessageHistoryProvider | None = None,
    ) -> "AgentLoop":
        """Build an engine from a loaded ``Config``."""
        if provider is None:
            from chanbot.providers.litellm_provider import LiteLLMProvider
            provider = LiteLLMProvider(
                api_key=config.provider.api_key,
                api_base=config.provider.api_base,
                default_model=config.provider.model,
                timeout=config.provider.timeout,
                disable_thinking=config.provider.disable_thinking,
            )
        return cls(
            provider=provider,
            tools=tools,
            sessions=sessions,
            defaults=config.agents.defaults,
            model=config.provider.model,
            temperature=config.provider.temperature,
            max_tokens=config.provider.max_tokens,
            history=history,
        )

    def _lock_for(self, channel: str) -> asyncio.Lock:
        lock = self._locks.get(channel)
        if lock is None:
            lock = self._locks[channel] = asyncio.Lock()
        return lock

    def _session_for(self, channel: str) -> Session:
        """Get the channel's session, seeding the system prompt on first use."""
        session = self.sessions.get_or_create(channel)
        if not session.turns or session.turns[0].role != "system":
            session.turns.insert(0, Turn.system(self.system_prompt))
        return session

    # ── Public API ────────────────────────────────────────────────────

    async def process_messages(self, channel: str, messages: list[InboundMessage]) -> str:
        """
        Turn a batch of channel messages into one assistant reply.

        Args:
            channel: Channel the messages arrived on.
            messages: Messages received since the last reply.

        Returns:
            The reply text (possibly empty). Never partial.

        Raises:
            Exception: unrecovered provider failures. A tool/result
                desynchronization also clears the channel's history first.
        """
        async with self._lock_for(channel):
            try:
                return await self._process(channel, messages)
            except Exception as e:
                if is_tool_desync(e):
                    logger.warning(f"Tool call/result mismatch on {channel}, clearing its history: {e}")
                    self.sessions.clear(channel)
                else:
                    logger.error(f"Processing failed for {channel}: {e}")
                raise

    async def record_assistant_output(self, channel: str, text: str) -> None:
        """Add assistant text produced outside ``process_messages`` to the history."""
        text = (text or "").strip()
        if not text:
            return
        async with self._lock_for(channel):
            session = self._session_for(channel)
            last = next((t for t in reversed(session.turns) if t.role == "assistant"), None)
            if last is not None and (last.content or "").strip() == text:
                logger.debug(f"Skipping duplicate assistant output for {channel}")
                return
            await self._persist(session, [*session.turns, Turn.assistant(text)])

    async def clear_history(self, channel: str | None = None) -> None:
        """Forget one channel's conversation, or all of them.

        Waits for any turn in flight on the affected channel(s) so a running
        turn cannot write the old history back afterwards.
        """
        if channel is not None:
            async with self._lock_for(channel):
                self.sessions.clear(channel)
        else:
            async with AsyncExitStack() as stack:
                for key in sorted(self._locks):
                    await stack.enter_async_context(self._locks[key])
                self.sessions.clear()
        logger.info(f"Cleared history for {channel or 'all channels'}")

    async def summarize_text(self, text: str, max_chars: int = 400) -> str:
        """Rewrite text to fit ``max_chars`` (hard truncation if the model fails)."""
        return await self.compactor.summarize_text(text, max_chars)

    def get_history(self, channel: str) -> list[Turn]:
        """Copy of a channel's persisted turns."""
        session = self.sessions.get(channel)
        return session.get_history() if session else []

    # ── Turn processing ───────────────────────────────────────────────

    async def _process(self, channel: str, messages: list[InboundMessage]) -> str:
        session = self._session_for(channel)
        trace = DebugTrace(self._trace_dir, channel) if self._trace_dir else None

        user_turns = self.builder.build_user_turns(messages)
        if trace:
            trace.log_user_turns(user_turns)
        context_turn = self.builder.build_context_turn(channel)
        turns = [*session.turns, context_turn, *user_turns]
        tools = self.tools.get_definitions() or None

        logger.info(f"Processing {len(user_turns)} message(s) for {channel}")
        try:
            turns, response = await self._request(turns, tools, "initial", trace)
            tracker = RoundTracker(self.max_tool_call_rounds)
            forced = False

            while True:
                calls = self._collect_tool_calls(response)
                if not calls:
                    break
                if not tracker.admit(calls):
                    logger.warning(f"Forcing final answer for {channel}: {tracker.stop_reason}")
                    forced = True
                    break

                turns.append(Turn.assistant(response.content or "", calls))
                for tc in calls:
                    turns.append(Turn.tool(await self._run_tool(tc, trace), tc.id))
                logger.info(f"Tool round {tracker.rounds} complete for {channel}: {round_signature(calls)}")

                turns, response = await self._request(turns, tools, f"round {tracker.rounds}", trace)

            if forced:
                turns.append(Turn.assistant(response.content or "", calls))
                turns.extend(Turn.tool(SKIPPED_TOOL_RESULT, tc.id) for tc in calls)
                turns.append(Turn.user(FORCED_FINAL_INSTRUCTION))
                turns, response = await self._request(turns, None, "forced final", trace)

            raw = response.content or ""
            final = strip_reasoning(raw)
            if trace:
                trace.log_final(raw, final)

            # The context snippet is per call; only the conversation is kept
            kept = [t for t in prune_ephemeral_turns(turns) if t is not context_turn]
            if final:
                kept.append(Turn.assistant(final))
            await self._persist(session, kept)

            logger.info(
                f"Reply for {channel} after {tracker.executed_rounds} tool round(s)"
                f"{' (forced)' if forced else ''}: {final[:120]}"
            )
            return sanitize_unicode(final)
        finally:
            if trace:
                logger.debug(f"Debug trace saved: {trace.save()}")

    async def _request(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]] | None,
        label: str,
        trace: DebugTrace | None,
    ) -> tuple[list[Turn], LLMResponse]:
        """Compact the working turns and send them (minus blank turns) to the model."""
        turns = await self.compactor.compact(turns, self.max_context_tokens)
        response = await self.resilience.chat(prune_empty_turns(turns), tools, label, trace)
        return turns, response

    def _collect_tool_calls(self, response: LLMResponse) -> list[ToolCallRequest]:
        calls = list(response.tool_calls)
        if not calls:
            calls = parse_inline_tool_calls(response.content)
            if calls:
                logger.info(f"Recovered {len(calls)} inline tool call(s) from reply text")
                response.content = ""
        return ensure_tool_call_ids(calls)

    async def _run_tool(self, tc: ToolCallRequest, trace: DebugTrace | None) -> str:
        arguments = parse_arguments(tc.arguments)
        if isinstance(arguments, RawArguments):
            logger.warning(f"Could not decode arguments for {tc.name}, passing raw: {arguments.text[:200]}")
            shown = arguments.text
        else:
            shown = json.dumps(arguments, ensure_ascii=False, default=str)
        logger.info(f"Tool call: {tc.name}({shown[:200]})")

        result = await self.tools.execute(tc.name, arguments)
        text = cap_for_history(str(result), self.tool_out_max_chars, annotate=True)
        if trace:
            trace.log_tool_result(tc.name, text)
        return text

    async def _persist(self, session: Session, turns: list[Turn]) -> None:
        turns = await self.compactor.compact(turns, self.max_context_tokens)
        turns = cap_history_length(turns, self.max_history_length)
        session.replace_turns(turns)
        self.sessions.save(session)
        logger.debug(
            f"Saved {len(turns)} turn(s) for {session.key} "
            f"(~{total_cost(turns)}/{effective_max(self.max_context_tokens)} tokens)"
        )
