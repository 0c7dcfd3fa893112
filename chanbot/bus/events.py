"""Event types exchanged between channel clients and the agent."""

import time
from dataclasses import dataclass, field


@dataclass
class InboundMessage:
    """A message received from a chat channel."""

    channel: str  # e.g. "#python" or a nick for private messages
    nick: str
    content: str
    timestamp: float = field(default_factory=lambda: time.time() * 1000)  # ms since epoch
