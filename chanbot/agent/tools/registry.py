"""Tool registry for dynamic tool management."""

import asyncio
from typing import Any

import json_repair
from loguru import logger

from chanbot.agent.tools.base import Tool, ToolNotFoundError, ToolResult
from chanbot.agent.turns import ParsedArguments, RawArguments
from chanbot.utils.sanitize import sanitize_unicode

DEFAULT_TOOL_TIMEOUT = 30.0


class ToolRegistry:
    """
    Registry for agent tools.

    Allows dynamic registration and execution of tools. ``execute`` never
    raises for tool-level problems: it returns a failed ``ToolResult`` that
    the agent feeds back to the model.
    """

    def __init__(self, timeout: float = DEFAULT_TOOL_TIMEOUT):
        self._tools: dict[str, Tool] = {}
        self.timeout = timeout

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool by name."""
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        """Get a tool by name or raise ToolNotFoundError."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions in OpenAI format."""
        return [tool.to_schema() for tool in self._tools.values()]

    def _coerce_arguments(self, name: str, arguments: ParsedArguments) -> dict[str, Any] | None:
        if not isinstance(arguments, RawArguments):
            return arguments
        # Models sometimes emit almost-JSON (single quotes, trailing commas)
        repaired = json_repair.loads(arguments.text)
        if isinstance(repaired, dict):
            logger.debug(f"Repaired raw arguments for {name}: {arguments.text[:100]}")
            return repaired
        return None

    async def execute(self, name: str, arguments: ParsedArguments) -> ToolResult:
        """
        Execute a tool by name with given arguments.

        Args:
            name: Tool name.
            arguments: Decoded arguments, or the raw payload if decoding failed.

        Returns:
            ToolResult with the (Unicode-sanitized) output or an error string.
        """
        try:
            tool = self.require(name)
        except ToolNotFoundError as e:
            logger.warning(str(e))
            return ToolResult.failure(str(e))

        params = self._coerce_arguments(name, arguments)
        if params is None:
            raw = arguments.text if isinstance(arguments, RawArguments) else str(arguments)
            return ToolResult.failure(f"Invalid arguments for {name}: {raw[:200]}")

        errors = tool.validate_params(params)
        if errors:
            return ToolResult.failure(f"Invalid parameters for tool '{name}': " + "; ".join(errors))

        logger.info(f"Executing tool: {name}")
        try:
            result = await asyncio.wait_for(tool.execute(**params), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {name} timed out after {self.timeout}s")
            return ToolResult.failure(f"{name} timed out after {self.timeout:g}s")
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            return ToolResult.failure(f"executing {name}: {e}")

        return ToolResult.success(sanitize_unicode(str(result if result is not None else "")))

    @property
    def tool_names(self) -> list[str]:
        """Get list of registered tool names."""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
