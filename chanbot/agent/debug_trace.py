"""Debug trace logger: writes a detailed markdown log for one turn.

Logs the user turns, every request sent to the model (turn list and token
estimate), every raw response, tool results, errors and the raw vs.
filtered final text.

Output: <trace dir>/YYYY-MM-DD_HHMMSS_{channel}.md
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from chanbot.agent.compaction import total_cost
from chanbot.utils.helpers import ensure_dir, safe_filename

if TYPE_CHECKING:
    from chanbot.agent.turns import Turn
    from chanbot.providers.base import LLMResponse

RAW_PREVIEW_CHARS = 8000


class DebugTrace:
    """Captures a single turn's full processing trace."""

    def __init__(self, log_dir: Path, channel: str):
        ts = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        self._log_dir = ensure_dir(log_dir)
        self._path = self._log_dir / f"{ts}_{safe_filename(channel)[:30]}.md"
        self._lines: list[str] = []
        self._start = time.monotonic()

        self._write(f"# Debug Trace: {channel}")
        self._write(f"**Time:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, text: str) -> None:
        self._lines.append(text)

    def _elapsed(self) -> str:
        return f"{time.monotonic() - self._start:.2f}s"

    def log_user_turns(self, turns: list["Turn"]) -> None:
        """Log the new user turns of this call."""
        self._write(f"## User Turns ({self._elapsed()})")
        for t in turns:
            self._write(f"- `{t.content}`")
        self._write("")

    def log_request(self, label: str, turns: list["Turn"], tool_count: int) -> None:
        """Log a request about to be sent."""
        self._write(f"## Request: {label} ({self._elapsed()})")
        self._write(f"**Turns:** {len(turns)}, ~{total_cost(turns)} tokens, tools: {tool_count}\n")
        for i, t in enumerate(turns):
            preview = t.content[:300] + "..." if len(t.content) > 300 else t.content
            extra = f" [tool_calls={len(t.tool_calls)}]" if t.tool_calls else ""
            self._write(f"### [{i}] {t.role}{extra}")
            self._write(f"```\n{preview}\n```\n")

    def log_response(self, label: str, response: "LLMResponse") -> None:
        """Log the raw response of a request."""
        self._write(f"### Response: {label} ({self._elapsed()})")
        payload = {
            "content": response.content,
            "tool_calls": [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in response.tool_calls
            ],
            "finish_reason": response.finish_reason,
        }
        raw = json.dumps(payload, ensure_ascii=False, default=str)
        if len(raw) > RAW_PREVIEW_CHARS:
            raw = raw[:RAW_PREVIEW_CHARS] + "…"
        self._write(f"```json\n{raw}\n```\n")

    def log_error(self, label: str, error: BaseException) -> None:
        """Log a failed request."""
        self._write(f"### Error: {label} ({self._elapsed()})")
        self._write(f"`{type(error).__name__}: {error}`\n")

    def log_tool_result(self, name: str, result: str) -> None:
        """Log a tool execution result."""
        preview = result[:500] + "..." if len(result) > 500 else result
        self._write(f"### Tool Result: {name} ({self._elapsed()})")
        self._write(f"```\n{preview}\n```\n")

    def log_final(self, raw: str, filtered: str) -> None:
        """Log the final output."""
        self._write(f"## Final Output ({self._elapsed()})")
        self._write(f"**Raw:**\n```\n{raw}\n```\n")
        if filtered != raw:
            self._write(f"**Filtered:**\n```\n{filtered}\n```\n")
        self._write(f"---\n**Total time:** {self._elapsed()}")

    def save(self) -> Path:
        """Write the trace to disk and return the path."""
        self._path.write_text("\n".join(self._lines), encoding="utf-8")
        return self._path
