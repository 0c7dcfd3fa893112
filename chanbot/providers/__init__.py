"""LLM provider abstraction module."""

from chanbot.providers.base import LLMProvider, LLMResponse, ToolCallRequest
from chanbot.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "ToolCallRequest", "LiteLLMProvider"]
