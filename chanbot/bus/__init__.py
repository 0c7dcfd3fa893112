"""Message bus types."""

from chanbot.bus.events import InboundMessage

__all__ = ["InboundMessage"]
