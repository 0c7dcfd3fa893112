"""Agent tools module."""

from chanbot.agent.tools.base import Tool, ToolNotFoundError, ToolResult
from chanbot.agent.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolNotFoundError", "ToolResult", "ToolRegistry"]
