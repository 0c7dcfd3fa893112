"""Base class for agent tools."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class ToolNotFoundError(LookupError):
    """Raised when a tool name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Tool not found: {name}")
        self.name = name


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool execution.

    Failures (unknown tool, bad arguments, exceptions, timeouts) are values,
    not exceptions, so a single bad call never aborts a round.
    """
    ok: bool
    text: str

    @classmethod
    def success(cls, text: str) -> "ToolResult":
        return cls(ok=True, text=text)

    @classmethod
    def failure(cls, text: str) -> "ToolResult":
        return cls(ok=False, text=text if text.startswith("Error") else f"Error: {text}")

    def __str__(self) -> str:
        return self.text


class Tool(ABC):
    """
    Abstract base class for agent tools.

    Tools are capabilities the model can call (weather lookup, calculator,
    message history search, ...).
    """

    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name used in function calls."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Description of what the tool does."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """
        Execute the tool with given parameters.

        Args:
            **kwargs: Tool-specific parameters.

        Returns:
            String result of the tool execution.
        """
        pass

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """Check required parameters and top-level types. Returns error strings."""
        schema = self.parameters or {}
        errors = []
        for key in schema.get("required", []):
            if key not in params:
                errors.append(f"missing required parameter '{key}'")
        for key, spec in schema.get("properties", {}).items():
            if key not in params:
                continue
            expected = self._TYPE_MAP.get(spec.get("type", ""))
            value = params[key]
            if expected and not isinstance(value, expected):
                errors.append(f"'{key}' should be {spec['type']}")
            elif expected is not bool and isinstance(value, bool) and spec.get("type") in ("integer", "number"):
                errors.append(f"'{key}' should be {spec['type']}")
            if "enum" in spec and value not in spec["enum"]:
                errors.append(f"'{key}' must be one of {spec['enum']}")
        return errors

    def to_schema(self) -> dict[str, Any]:
        """Convert tool to OpenAI function schema format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
