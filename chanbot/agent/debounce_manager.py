"""Debounce + queue management for message intake.

Sits in front of AgentLoop:
    1. Buffer: messages accumulate per channel until the debounce timer fires
    2. Queue: batches wait for processing, merged if backlogged
    3. Processing: one batch at a time per channel, replies go to ``send``
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from chanbot.agent.loop import AgentLoop
    from chanbot.bus.events import InboundMessage
    from chanbot.config.schema import Config

SendCallback = Callable[[str, str], Awaitable[None]]

ERROR_REPLY = "Sorry, I encountered an error processing that request."
QUEUE_MERGE_CAP = 50


class ChannelDispatcher:
    """Sliding-window debounce + sequential per-channel queue processor."""

    def __init__(
        self,
        loop: "AgentLoop",
        send: SendCallback,
        debounce_seconds: float = 2.0,
        merge_cap: int = QUEUE_MERGE_CAP,
    ) -> None:
        self._loop = loop
        self._send = send
        self.debounce_seconds = debounce_seconds
        self.merge_cap = merge_cap
        self._buffers: dict[str, list["InboundMessage"]] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._queues: dict[str, list[list["InboundMessage"]]] = {}
        self._processors: dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(cls, loop: "AgentLoop", send: SendCallback, config: "Config") -> "ChannelDispatcher":
        """Build a dispatcher using the configured debounce window."""
        return cls(loop, send, debounce_seconds=config.agents.defaults.debounce_seconds)

    # ── Intake ────────────────────────────────────────────────────────

    def add_message(self, msg: "InboundMessage") -> None:
        """Buffer a message and restart its channel's debounce timer."""
        self._buffers.setdefault(msg.channel, []).append(msg)
        timer = self._timers.pop(msg.channel, None)
        if timer and not timer.done():
            timer.cancel()
        self._timers[msg.channel] = asyncio.create_task(self.debounce_timer(msg.channel))

    def pending(self, channel: str) -> int:
        """Messages buffered or queued for a channel."""
        queued = sum(len(b) for b in self._queues.get(channel, []))
        return len(self._buffers.get(channel, [])) + queued

    # ── Debounce timer ────────────────────────────────────────────────

    async def debounce_timer(self, channel: str) -> None:
        """Wait for the debounce window, then flush batch to queue."""
        await asyncio.sleep(self.debounce_seconds)
        self._timers.pop(channel, None)
        self.enqueue_batch(channel)

    # ── Enqueue ───────────────────────────────────────────────────────

    def enqueue_batch(self, channel: str) -> None:
        """Move current intake buffer into the processing queue."""
        batch = self._buffers.pop(channel, [])
        if not batch:
            return
        queue = self._queues.setdefault(channel, [])
        queue.append(batch)
        logger.debug(f"Queue: enqueued {len(batch)} messages for {channel} (queue depth: {len(queue)})")

        # Start queue processor if not already running
        existing = self._processors.get(channel)
        if not existing or existing.done():
            self._processors[channel] = asyncio.create_task(self.process_queue(channel))

    # ── Queue processor ───────────────────────────────────────────────

    async def process_queue(self, channel: str) -> None:
        """Process batches from the queue, merging if backlogged."""
        queue = self._queues.get(channel)
        while queue:
            if len(queue) > 1:
                batches_to_merge = len(queue)
                merged: list["InboundMessage"] = []
                while queue:
                    merged.extend(queue.pop(0))

                # Keep newest, drop oldest
                if len(merged) > self.merge_cap:
                    dropped = len(merged) - self.merge_cap
                    merged = merged[-self.merge_cap:]
                    logger.warning(
                        f"Queue merge: dropped {dropped} oldest messages "
                        f"(keeping {len(merged)} newest) in {channel}"
                    )
                queue.append(merged)
                logger.info(f"Queue merge: collapsed {batches_to_merge} batches → {len(merged)} messages in {channel}")

            batch = queue.pop(0)
            await self._process_batch(channel, batch)
        self._queues.pop(channel, None)

    async def _process_batch(self, channel: str, batch: list["InboundMessage"]) -> None:
        try:
            reply = await self._loop.process_messages(channel, batch)
        except Exception as e:
            logger.error(f"Queue: error processing batch in {channel}: {e}", exc_info=True)
            reply = ERROR_REPLY
        if not reply:
            return
        try:
            await self._send(channel, reply)
        except Exception as e:
            logger.error(f"Failed to send reply to {channel}: {e}")

    # ── Shutdown ──────────────────────────────────────────────────────

    async def flush_all(self) -> None:
        """Process every pending buffer now and wait for all queues to drain."""
        for channel, timer in list(self._timers.items()):
            timer.cancel()
            self._timers.pop(channel, None)
        for channel in list(self._buffers):
            self.enqueue_batch(channel)
        running = [t for t in self._processors.values() if not t.done()]
        if running:
            await asyncio.gather(*running)
        self._processors.clear()
