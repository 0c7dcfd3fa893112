"""Conversation turns and the small value types derived from them."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from chanbot.providers.base import ToolCallRequest

Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class Turn:
    """One message in a channel's conversation."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCallRequest] | None = None  # assistant only
    tool_call_id: str | None = None                  # tool only

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def system(cls, content: str) -> "Turn":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCallRequest] | None = None) -> "Turn":
        return cls(role="assistant", content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "Turn":
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    def to_message(self) -> dict[str, Any]:
        """Render as an OpenAI-style chat message."""
        msg: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.role == "assistant" and self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": _arguments_to_json(tc.arguments),
                    },
                }
                for tc in self.tool_calls
            ]
        if self.role == "tool" and self.tool_call_id:
            msg["tool_call_id"] = self.tool_call_id
        return msg

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSONL storage."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        """Deserialize from JSONL storage."""
        calls = data.get("tool_calls")
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            tool_calls=[
                ToolCallRequest(id=c["id"], name=c["name"], arguments=c.get("arguments", {}))
                for c in calls
            ] if calls else None,
            tool_call_id=data.get("tool_call_id"),
        )


def _arguments_to_json(arguments: dict[str, Any] | str) -> str:
    if isinstance(arguments, str):
        return arguments or "{}"
    return json.dumps(arguments, ensure_ascii=False)


# ── Tool call arguments ──────────────────────────────────────────────────


@dataclass(frozen=True)
class RawArguments:
    """Tool arguments that could not be decoded as a JSON object.

    Passed through to the tool executor untouched instead of failing the round.
    """
    text: str


ParsedArguments = Union[dict[str, Any], RawArguments]


def parse_arguments(raw: dict[str, Any] | str | None) -> ParsedArguments:
    """Decode a tool call's argument payload.

    Empty payloads become ``{}``. Anything that is not a JSON object comes
    back as ``RawArguments``.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    text = str(raw).strip()
    if not text:
        return {}
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return RawArguments(text)
    if isinstance(decoded, dict):
        return decoded
    return RawArguments(text)


# ── Round bookkeeping ────────────────────────────────────────────────────


def ensure_tool_call_ids(tool_calls: list[ToolCallRequest]) -> list[ToolCallRequest]:
    """Give every call a stable id (``call_<index>``) so tool turns can link back."""
    for i, tc in enumerate(tool_calls):
        if not tc.id:
            tc.id = f"call_{i}"
    return tool_calls


def round_signature(tool_calls: list[ToolCallRequest]) -> str:
    """Sorted, comma-joined tool names of one round (loop detection only)."""
    return ",".join(sorted(tc.name for tc in tool_calls))


@dataclass
class RoundTracker:
    """Counts tool rounds and spots the model repeating itself.

    ``admit`` returns False when the round must not run: either the round
    limit is exceeded or the same signature is about to occur a third time
    in a row.
    """

    max_rounds: int
    repeat_limit: int = 3
    rounds: int = 0
    signatures: list[str] = field(default_factory=list)
    stop_reason: str | None = None

    def admit(self, tool_calls: list[ToolCallRequest]) -> bool:
        self.rounds += 1
        if self.rounds > self.max_rounds:
            self.stop_reason = f"max rounds ({self.max_rounds}) exceeded"
            return False

        signature = round_signature(tool_calls)
        previous = self.signatures[-(self.repeat_limit - 1):]
        if len(previous) == self.repeat_limit - 1 and all(s == signature for s in previous):
            self.stop_reason = f"same tools {self.repeat_limit}x in a row: {signature}"
            return False

        self.signatures.append(signature)
        return True

    @property
    def executed_rounds(self) -> int:
        return len(self.signatures)
