"""Per-channel conversation state."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from chanbot.agent.turns import Turn
from chanbot.utils.helpers import ensure_dir, safe_filename


@dataclass
class Session:
    """
    One channel's conversation.

    ``turns[0]`` is the system prompt once the engine has touched the session.
    Only the agent loop mutates ``turns``, and only while it holds the
    channel's lock.
    """

    key: str  # channel name
    turns: list[Turn] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def replace_turns(self, turns: list[Turn]) -> None:
        """Swap in a new turn sequence."""
        self.turns = list(turns)
        self.updated_at = datetime.now()

    def get_history(self) -> list[Turn]:
        """Copy of the current turns."""
        return list(self.turns)

    def clear(self) -> None:
        """Clear all turns and reset session to initial state."""
        self.turns = []
        self.updated_at = datetime.now()


class SessionManager:
    """
    Conversation store keyed by channel.

    Sessions live in memory for the process lifetime. When ``sessions_dir``
    is given they are also written as JSONL files (metadata line, then one
    turn per line) and reloaded on first access.

    No locking here: callers guarantee a single writer per channel.
    """

    def __init__(self, sessions_dir: Path | None = None):
        self.sessions_dir = ensure_dir(sessions_dir) if sessions_dir is not None else None
        self._cache: dict[str, Session] = {}

    def _get_session_path(self, key: str) -> Path | None:
        """Get the file path for a session."""
        if self.sessions_dir is None:
            return None
        return self.sessions_dir / f"{safe_filename(key)}.jsonl"

    def get(self, key: str) -> Session | None:
        """Get a cached session without creating one."""
        return self._cache.get(key)

    def get_or_create(self, key: str) -> Session:
        """
        Get an existing session or create a new one.

        Args:
            key: Channel name.

        Returns:
            The session.
        """
        if key in self._cache:
            return self._cache[key]

        session = self._load(key)
        if session is None:
            session = Session(key=key)

        self._cache[key] = session
        return session

    def _load(self, key: str) -> Session | None:
        """Load a session from disk."""
        path = self._get_session_path(key)

        if path is None or not path.exists():
            return None

        try:
            turns = []
            metadata = {}
            created_at = None

            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue

                    data = json.loads(line)

                    if data.get("_type") == "metadata":
                        metadata = data.get("metadata", {})
                        created_at = datetime.fromisoformat(data["created_at"]) if data.get("created_at") else None
                    else:
                        turns.append(Turn.from_dict(data))

            return Session(
                key=key,
                turns=turns,
                created_at=created_at or datetime.now(),
                metadata=metadata,
            )
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to load session {key}: {e}")
            return None

    def save(self, session: Session) -> None:
        """Store a session (and write it to disk when persistence is on)."""
        self._cache[session.key] = session
        path = self._get_session_path(session.key)
        if path is None:
            return

        with open(path, "w", encoding="utf-8") as f:
            metadata_line = {
                "_type": "metadata",
                "key": session.key,
                "created_at": session.created_at.isoformat(),
                "updated_at": session.updated_at.isoformat(),
                "metadata": session.metadata,
            }
            f.write(json.dumps(metadata_line) + "\n")
            for turn in session.turns:
                f.write(json.dumps(turn.to_dict(), ensure_ascii=False) + "\n")

    def clear(self, key: str | None = None) -> None:
        """Reset one channel's conversation, or every channel when key is None."""
        keys = [key] if key is not None else list(self._cache)
        for k in keys:
            session = self._cache.pop(k, None)
            path = self._get_session_path(k)
            if path is not None and path.exists():
                path.unlink()
            if session is not None:
                session.clear()
        if key is None and self.sessions_dir is not None:
            for path in self.sessions_dir.glob("*.jsonl"):
                path.unlink()

    def channels(self) -> list[str]:
        """Channels with an in-memory session."""
        return list(self._cache)
