"""Recover tool calls that a model wrote into its text instead of structured calls.

Some models (Kimi-style templates, Hermes/Qwen-style templates) emit call
syntax as plain text when served through backends that do not parse it.
"""

import json
import re
from typing import Any

import json_repair

from chanbot.providers.base import ToolCallRequest

# functions.get_weather:0<|tool_call_argument_begin|>{"query": "London"}<|tool_call_end|>
# (the markers sometimes arrive with the underscores stripped)
_MARKER_CALL = re.compile(
    r"<\|?\s*(?:calls?fxn\w*|tool_?call_?begin)\s*\|?>\s*"
    r"(?:functions\.)?([a-zA-Z0-9_\-]+)(?::\d+)?\s*"
    r"<\|tool_?call_?argument_?begin\|>(.*?)<\|tool_?call_?end\|>",
    re.DOTALL,
)

# <tool_call>{"name": "get_weather", "arguments": {"query": "London"}}</tool_call>
_TAGGED_CALL = re.compile(r"<tool_call>\s*(\{.*?\})\s*</tool_call>", re.DOTALL)


def _decode_object(raw: str) -> dict[str, Any]:
    raw = (raw or "").strip()
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        start, end = raw.find("{"), raw.rfind("}")
        decoded = json_repair.loads(raw[start:end + 1]) if start != -1 and end > start else {}
    return decoded if isinstance(decoded, dict) else {}


def parse_inline_tool_calls(text: str | None) -> list[ToolCallRequest]:
    """Extract pseudo tool calls from reply text, in order of appearance.

    Returns an empty list when the text contains none. Ids are left empty;
    the agent assigns them.
    """
    if not text:
        return []

    found: list[tuple[int, ToolCallRequest]] = []
    for m in _MARKER_CALL.finditer(text):
        name = m.group(1).strip()
        if name:
            found.append((m.start(), ToolCallRequest(id="", name=name, arguments=_decode_object(m.group(2)))))

    for m in _TAGGED_CALL.finditer(text):
        payload = _decode_object(m.group(1))
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        args = payload.get("arguments", payload.get("parameters", {}))
        if isinstance(args, str):
            args = _decode_object(args)
        found.append((m.start(), ToolCallRequest(
            id="", name=name.strip(), arguments=args if isinstance(args, dict) else {},
        )))

    found.sort(key=lambda item: item[0])
    return [call for _, call in found]
