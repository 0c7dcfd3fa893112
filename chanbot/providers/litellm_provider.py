"""LiteLLM provider implementation for multi-provider support.

One request per ``chat`` call, bounded by a timeout. Errors propagate to the
caller: the agent's resilience layer decides whether to retry.
"""

import asyncio
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from chanbot.providers.base import LLMProvider, LLMResponse, ToolCallRequest

# Timeout for a single LLM call
LLM_CALL_TIMEOUT: float = 45.0

# Stop sequences that cut off reasoning output when thinking is disabled
THINKING_STOP_SEQUENCES: list[str] = ["<think>", "<thinking>", "<reasoning>"]


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Works with Ollama, Groq, OpenRouter, OpenAI and anything else LiteLLM
    routes to. The model string carries the provider prefix
    (e.g. ``ollama/llama3.2``, ``groq/llama-3.3-70b-versatile``).
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "ollama/llama3.2",
        extra_headers: dict[str, str] | None = None,
        timeout: float = LLM_CALL_TIMEOUT,
        disable_thinking: bool = False,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}
        self.disable_thinking = disable_thinking
        self._timeout = timeout

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters for providers (e.g. stop on some backends)
        litellm.drop_params = True

    def _build_kwargs(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }

        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if self.disable_thinking:
            kwargs["stop"] = list(THINKING_STOP_SEQUENCES)
        return kwargs

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            tools: Optional list of tool definitions in OpenAI format.
            model: Model identifier (e.g., 'groq/llama-3.3-70b-versatile').
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.

        Returns:
            LLMResponse with content and/or tool calls.

        Raises:
            asyncio.TimeoutError: the call exceeded the configured timeout.
            Exception: any LiteLLM / provider error, unchanged.
        """
        resolved = model or self.default_model
        kwargs = self._build_kwargs(resolved, messages, tools, max_tokens, temperature)

        try:
            response = await asyncio.wait_for(
                acompletion(**kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"LLM timeout after {self._timeout}s on {resolved}")
            raise
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        if hasattr(message, "tool_calls") and message.tool_calls:
            for tc in message.tool_calls:
                tool_calls.append(ToolCallRequest(
                    id=tc.id or "",
                    name=tc.function.name,
                    arguments=tc.function.arguments if tc.function.arguments is not None else {},
                ))

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        reasoning_content = getattr(message, "reasoning_content", None)

        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            reasoning_content=reasoning_content,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
