"""Tests for ToolRegistry — results instead of exceptions."""

import asyncio
from typing import Any

import pytest

from chanbot.agent.tools.base import Tool, ToolNotFoundError, ToolResult
from chanbot.agent.tools.registry import ToolRegistry
from chanbot.agent.turns import RawArguments


class AddTool(Tool):
    @property
    def name(self) -> str:
        return "add"

    @property
    def description(self) -> str:
        return "Add two integers"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
            "required": ["a", "b"],
        }

    async def execute(self, a: int, b: int, **kwargs: Any) -> str:
        return str(a + b)


class SlowTool(Tool):
    @property
    def name(self) -> str:
        return "slow"

    @property
    def description(self) -> str:
        return "Never finishes in time"

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        await asyncio.sleep(10)
        return "late"


class FancyTool(SlowTool):
    @property
    def name(self) -> str:
        return "fancy"

    async def execute(self, **kwargs: Any) -> str:
        return "“smart” quotes → arrows"


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry(timeout=0.05)
    reg.register(AddTool())
    reg.register(SlowTool())
    reg.register(FancyTool())
    return reg


class TestToolResult:

    def test_failure_prefixed_once(self):
        assert ToolResult.failure("boom").text == "Error: boom"
        assert ToolResult.failure("Error: boom").text == "Error: boom"

    def test_str_is_text(self):
        assert str(ToolResult.success("42")) == "42"


class TestRegistry:

    def test_definitions(self, registry):
        names = [d["function"]["name"] for d in registry.get_definitions()]
        assert names == ["add", "slow", "fancy"]
        assert registry.get_definitions()[0]["type"] == "function"

    def test_membership(self, registry):
        assert "add" in registry
        assert registry.has("slow")
        assert len(registry) == 3
        registry.unregister("slow")
        assert "slow" not in registry

    def test_require_unknown(self, registry):
        with pytest.raises(ToolNotFoundError):
            registry.require("missing")


class TestExecute:

    @pytest.mark.asyncio
    async def test_success(self, registry):
        result = await registry.execute("add", {"a": 2, "b": 3})
        assert result.ok
        assert result.text == "5"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        result = await registry.execute("missing", {})
        assert not result.ok
        assert result.text == "Error: Tool not found: missing"

    @pytest.mark.asyncio
    async def test_validation_error(self, registry):
        result = await registry.execute("add", {"a": "two"})
        assert not result.ok
        assert "missing required parameter 'b'" in result.text
        assert "'a' should be integer" in result.text

    @pytest.mark.asyncio
    async def test_timeout(self, registry):
        result = await registry.execute("slow", {})
        assert not result.ok
        assert "timed out" in result.text

    @pytest.mark.asyncio
    async def test_raw_arguments_repaired(self, registry):
        result = await registry.execute("add", RawArguments("{'a': 1, 'b': 2,}"))
        assert result.ok
        assert result.text == "3"

    @pytest.mark.asyncio
    async def test_unrepairable_raw_arguments(self, registry):
        result = await registry.execute("add", RawArguments("[1, 2]"))
        assert not result.ok
        assert "Invalid arguments for add" in result.text

    @pytest.mark.asyncio
    async def test_output_sanitized(self, registry):
        result = await registry.execute("fancy", {})
        assert result.text == '"smart" quotes -> arrows'
