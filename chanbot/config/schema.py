"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful IRC bot assistant. You respond to messages in a concise "
    "and friendly manner.\n"
    "You have access to various tools that you can use to help users. Use these "
    "tools naturally when they would be helpful to answer questions or perform tasks.\n"
    "Keep your responses brief and appropriate for IRC chat."
)


class ChaosModeConfig(BaseModel):
    """Random historical snippets injected into the turn context."""
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = False
    probability: float = Field(default=0.1, ge=0.0, le=1.0)


class AgentDefaults(BaseModel):
    """Default agent configuration."""
    model_config = ConfigDict(validate_assignment=True)

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tool_call_rounds: int = Field(default=10, ge=1)
    max_context_tokens: int = Field(default=4096, ge=64)
    max_history_length: int = Field(default=20, ge=2)
    user_msg_max_chars: int = 1500
    tool_out_max_chars: int = 3000
    tool_timeout: float = 30.0
    debounce_seconds: float = Field(default=2.0, ge=0.0)
    debug_trace_dir: str | None = None  # per-turn markdown traces when set
    chaos_mode: ChaosModeConfig = Field(default_factory=ChaosModeConfig)


class AgentsConfig(BaseModel):
    """Agent configuration."""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


class ProviderConfig(BaseModel):
    """LLM backend configuration (any model string LiteLLM understands)."""
    model_config = ConfigDict(validate_assignment=True)

    model: str = "ollama/llama3.2"
    api_key: str | None = None
    api_base: str | None = None
    timeout: float = 45.0
    temperature: float = 0.7
    max_tokens: int = 1024
    disable_thinking: bool = False


class Config(BaseModel):
    """Root configuration for chanbot."""
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
