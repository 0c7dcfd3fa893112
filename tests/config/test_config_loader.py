"""Tests for config loading — camelCase files, defaults, env overrides."""

import json

import pytest
from pydantic import ValidationError

from chanbot.config.loader import (
    camel_to_snake,
    convert_keys,
    load_config,
    save_config,
    snake_to_camel,
)
from chanbot.config.schema import Config

ENV_VARS = [
    "CHANBOT_MODEL", "CHANBOT_API_KEY", "CHANBOT_API_BASE", "CHANBOT_DISABLE_THINKING",
    "CHANBOT_SYSTEM_PROMPT", "CHANBOT_MAX_TOOL_CALL_ROUNDS", "CHANBOT_MAX_CONTEXT_TOKENS",
    "CHANBOT_DEBUG_TRACE_DIR", "CHANBOT_CHAOS_MODE", "CHANBOT_CHAOS_PROBABILITY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestKeyConversion:

    def test_camel_to_snake(self):
        assert camel_to_snake("maxToolCallRounds") == "max_tool_call_rounds"
        assert camel_to_snake("model") == "model"

    def test_snake_to_camel(self):
        assert snake_to_camel("max_context_tokens") == "maxContextTokens"

    def test_nested(self):
        assert convert_keys({"chaosMode": {"isOn": [{"aB": 1}]}}) == {"chaos_mode": {"is_on": [{"a_b": 1}]}}


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.json")
        defaults = config.agents.defaults
        assert defaults.max_tool_call_rounds == 10
        assert defaults.max_context_tokens == 4096
        assert defaults.max_history_length == 20
        assert defaults.user_msg_max_chars == 1500
        assert defaults.tool_out_max_chars == 3000
        assert defaults.chaos_mode.enabled is False
        assert defaults.chaos_mode.probability == 0.1
        assert config.provider.timeout == 45.0

    def test_camel_case_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "agents": {"defaults": {"maxToolCallRounds": 4, "chaosMode": {"enabled": True}}},
            "provider": {"model": "groq/llama-3.3-70b-versatile", "disableThinking": True},
        }), encoding="utf-8")

        config = load_config(path)
        assert config.agents.defaults.max_tool_call_rounds == 4
        assert config.agents.defaults.chaos_mode.enabled is True
        assert config.provider.model == "groq/llama-3.3-70b-versatile"
        assert config.provider.disable_thinking is True

    def test_invalid_file_falls_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken", encoding="utf-8")
        assert load_config(path).agents.defaults.max_tool_call_rounds == 10

    def test_invalid_values_fall_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"agents": {"defaults": {"maxToolCallRounds": 0}}}), encoding="utf-8")
        assert load_config(path).agents.defaults.max_tool_call_rounds == 10

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = Config()
        config.agents.defaults.max_history_length = 7
        save_config(config, path)

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw["agents"]["defaults"]["maxHistoryLength"] == 7
        assert load_config(path).agents.defaults.max_history_length == 7


class TestEnvOverrides:

    def test_overrides_applied(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHANBOT_MODEL", "ollama/qwen2.5")
        monkeypatch.setenv("CHANBOT_API_BASE", "http://localhost:11434")
        monkeypatch.setenv("CHANBOT_DISABLE_THINKING", "true")
        monkeypatch.setenv("CHANBOT_MAX_TOOL_CALL_ROUNDS", "3")
        monkeypatch.setenv("CHANBOT_CHAOS_MODE", "1")
        monkeypatch.setenv("CHANBOT_CHAOS_PROBABILITY", "2.5")

        config = load_config(tmp_path / "missing.json")
        assert config.provider.model == "ollama/qwen2.5"
        assert config.provider.api_base == "http://localhost:11434"
        assert config.provider.disable_thinking is True
        assert config.agents.defaults.max_tool_call_rounds == 3
        assert config.agents.defaults.chaos_mode.enabled is True
        assert config.agents.defaults.chaos_mode.probability == 1.0

    def test_bad_numbers_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHANBOT_MAX_CONTEXT_TOKENS", "lots")
        monkeypatch.setenv("CHANBOT_CHAOS_PROBABILITY", "often")

        config = load_config(tmp_path / "missing.json")
        assert config.agents.defaults.max_context_tokens == 4096
        assert config.agents.defaults.chaos_mode.probability == 0.1

    def test_env_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"provider": {"model": "from-file"}}), encoding="utf-8")
        monkeypatch.setenv("CHANBOT_MODEL", "from-env")
        assert load_config(path).provider.model == "from-env"

    def test_out_of_range_numbers_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHANBOT_MAX_TOOL_CALL_ROUNDS", "0")
        monkeypatch.setenv("CHANBOT_MAX_CONTEXT_TOKENS", "10")

        config = load_config(tmp_path / "missing.json")
        assert config.agents.defaults.max_tool_call_rounds == 10
        assert config.agents.defaults.max_context_tokens == 4096


class TestSchema:

    def test_assignment_validated(self):
        config = Config()
        with pytest.raises(ValidationError):
            config.agents.defaults.max_tool_call_rounds = 0
        with pytest.raises(ValidationError):
            config.agents.defaults.chaos_mode.probability = 1.5
        assert config.agents.defaults.max_tool_call_rounds == 10
