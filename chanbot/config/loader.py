"""Configuration loading utilities."""

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, ValidationError

from chanbot.config.schema import Config

# Load .env into os.environ (won't overwrite existing env vars)
load_dotenv(override=False)


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".chanbot" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, then apply env-var overrides.

    Priority (highest → lowest):
        1. CHANBOT_* environment variables / .env
        2. ~/.chanbot/config.json
        3. Built-in defaults
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            config = Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load config from {path}: {e}. Using default configuration.")
            config = Config()
    else:
        config = Config()

    _apply_env_overrides(config)
    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


# ---------------------------------------------------------------------------
# Flat CHANBOT_* env-var overrides (no __ nesting)
# ---------------------------------------------------------------------------

def _env_int(name: str) -> int | None:
    val = os.environ.get(name)
    if not val:
        return None
    try:
        return int(val)
    except ValueError:
        logger.warning(f"Ignoring {name}={val!r}: not an integer")
        return None


def _assign(target: BaseModel, field: str, value: Any, name: str) -> None:
    """Set a validated field, keeping the current value if the override is out of range."""
    try:
        setattr(target, field, value)
    except ValidationError as e:
        logger.warning(f"Ignoring {name}={value!r}: {e.errors()[0]['msg']}")


def _apply_env_overrides(config: Config) -> None:
    """Apply flat CHANBOT_* env vars on top of the loaded config."""
    defaults = config.agents.defaults

    # --- LLM backend ---
    if val := os.environ.get("CHANBOT_MODEL"):
        config.provider.model = val
    if val := os.environ.get("CHANBOT_API_KEY"):
        config.provider.api_key = val
    if val := os.environ.get("CHANBOT_API_BASE"):
        config.provider.api_base = val
    if os.environ.get("CHANBOT_DISABLE_THINKING", "").lower() in ("1", "true", "yes"):
        config.provider.disable_thinking = True

    # --- Agent ---
    if val := os.environ.get("CHANBOT_SYSTEM_PROMPT"):
        defaults.system_prompt = val
    if (num := _env_int("CHANBOT_MAX_TOOL_CALL_ROUNDS")) is not None:
        _assign(defaults, "max_tool_call_rounds", num, "CHANBOT_MAX_TOOL_CALL_ROUNDS")
    if (num := _env_int("CHANBOT_MAX_CONTEXT_TOKENS")) is not None:
        _assign(defaults, "max_context_tokens", num, "CHANBOT_MAX_CONTEXT_TOKENS")
    if val := os.environ.get("CHANBOT_DEBUG_TRACE_DIR"):
        defaults.debug_trace_dir = val

    # --- Chaos mode ---
    if os.environ.get("CHANBOT_CHAOS_MODE", "").lower() in ("1", "true", "yes"):
        defaults.chaos_mode.enabled = True
    if val := os.environ.get("CHANBOT_CHAOS_PROBABILITY"):
        try:
            defaults.chaos_mode.probability = min(1.0, max(0.0, float(val)))
        except ValueError:
            logger.warning(f"Ignoring CHANBOT_CHAOS_PROBABILITY={val!r}: not a number")


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
