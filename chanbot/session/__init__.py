"""Session management module."""

from chanbot.session.manager import Session, SessionManager

__all__ = ["Session", "SessionManager"]
