"""Tests for config loading and the adapter registry."""

import json

import pytest

from streamcore.config import ProviderConfig, StreamCoreConfig, get_config, get_settings, load_config
from streamcore.errors import ConfigurationError
from streamcore.models.anthropic import AnthropicAdapter
from streamcore.models.gemini import GeminiAdapter
from streamcore.models.ollama import OllamaAdapter
from streamcore.models.openai_compat import OpenAICompatAdapter
from streamcore.models.reasoning import CALLOUT, THINK_TAGS
from streamcore.models.registry import get_adapter, resolve_protocol
from streamcore.models.sse import RawSSEAdapter


def _write(tmp_path, data):
    path = tmp_path / "streamcore.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_missing_file_gives_defaults():
    cfg = get_config()
    assert cfg.default_provider == "openai"
    assert cfg.reasoning.style == "callout"
    assert cfg.providers == []


def test_settings_from_env(monkeypatch, tmp_path):
    path = _write(tmp_path, {"default_provider": "claude", "logging": {"level": "DEBUG", "json": True}})
    monkeypatch.setenv("STREAMCORE_CONFIG_PATH", path)
    assert get_settings().config_path == path
    cfg = load_config()
    assert cfg.default_provider == "claude"
    assert cfg.logging.json_output is True


def test_invalid_json_is_configuration_error(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{nope", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_invalid_schema_is_configuration_error(tmp_path):
    path = _write(tmp_path, {"reasoning": {"style": "sparkles"}})
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_retry_and_timeout_sections(tmp_path):
    cfg = load_config(_write(tmp_path, {
        "retry": {"max_retries": 1, "retry_delay": 0.5, "retryable_status_codes": [429]},
        "timeouts": {"chunk_timeout": 20},
    }))
    assert cfg.retry.max_retries == 1
    assert cfg.retry.delay_for(0) == 0.5
    assert cfg.retry.retryable_status_codes == [429]
    assert cfg.timeouts.chunk_timeout == 20
    assert cfg.timeouts.request_timeout is None


def test_negative_retry_count_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(_write(tmp_path, {"retry": {"max_retries": -1}}))


def test_get_api_key_reads_environment(monkeypatch):
    monkeypatch.setenv("MY_KEY", "sk-test")
    cfg = StreamCoreConfig()
    assert cfg.get_api_key(ProviderConfig(name="openai", api_key_env="MY_KEY")) == "sk-test"
    assert cfg.get_api_key(ProviderConfig(name="openai")) is None


# ── Registry ──────────────────────────────────────────────────────────────────

def _config(*providers, style="callout"):
    return StreamCoreConfig(
        default_provider=providers[0].name,
        providers=list(providers),
        reasoning={"style": style},
    )


def test_openai_family_provider(monkeypatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deep")
    cfg = _config(ProviderConfig(name="deepseek", model="deepseek-reasoner", api_key_env="DEEPSEEK_API_KEY"))
    adapter = get_adapter(config=cfg)
    assert isinstance(adapter, OpenAICompatAdapter)
    assert adapter.provider == "deepseek"
    assert adapter.model_name == "deepseek-reasoner"
    assert str(adapter._client.base_url).startswith("https://api.deepseek.com/v1")
    assert adapter.delimiters is CALLOUT


def test_missing_key_is_configuration_error():
    cfg = _config(ProviderConfig(name="openai", model="gpt-4o-mini", api_key_env="OPENAI_API_KEY"))
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        get_adapter("openai", cfg)


def test_missing_model_is_configuration_error(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-x")
    cfg = _config(ProviderConfig(name="openai", api_key_env="OPENAI_API_KEY"))
    with pytest.raises(ConfigurationError, match="Model is required"):
        get_adapter("openai", cfg)


def test_unknown_provider():
    with pytest.raises(ConfigurationError):
        get_adapter("nonexistent", StreamCoreConfig())
    with pytest.raises(ConfigurationError):
        resolve_protocol(ProviderConfig(name="custom"))


def test_custom_provider_with_explicit_protocol(monkeypatch):
    monkeypatch.setenv("LOCAL_KEY", "k")
    cfg = _config(ProviderConfig(
        name="lab", protocol="sse", model="m", api_key_env="LOCAL_KEY", base_url="http://lab.internal/v1",
    ))
    adapter = get_adapter(config=cfg)
    assert isinstance(adapter, RawSSEAdapter)
    assert adapter.url == "http://lab.internal/v1/chat/completions"


def test_claude_strips_messages_path_and_uses_think_tags(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
    cfg = _config(
        ProviderConfig(
            name="claude", model="claude-sonnet-4-5", api_key_env="ANTHROPIC_API_KEY",
            base_url="https://proxy.example.com/v1/messages", options={"thinking_budget": 1024},
        ),
        style="think_tags",
    )
    adapter = get_adapter(config=cfg)
    assert isinstance(adapter, AnthropicAdapter)
    assert str(adapter._client.base_url).rstrip("/") == "https://proxy.example.com"
    assert adapter.thinking_budget == 1024
    assert adapter.delimiters is THINK_TAGS


def test_gemini_provider(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "AIza-test")
    cfg = _config(ProviderConfig(name="gemini", model="gemini-2.5-flash", api_key_env="GEMINI_API_KEY",
                                 options={"include_thoughts": True}))
    adapter = get_adapter(config=cfg)
    assert isinstance(adapter, GeminiAdapter)
    assert adapter.include_thoughts is True


def test_grok_uses_raw_sse(monkeypatch):
    monkeypatch.setenv("GROK_API_KEY", "xai-1")
    cfg = _config(ProviderConfig(name="grok", model="grok-4", api_key_env="GROK_API_KEY"))
    adapter = get_adapter(config=cfg)
    assert isinstance(adapter, RawSSEAdapter)
    assert adapter.url == "https://api.x.ai/v1/chat/completions"


def test_ollama_needs_no_key():
    cfg = _config(ProviderConfig(name="ollama", model="llama3.1"))
    adapter = get_adapter(config=cfg)
    assert isinstance(adapter, OllamaAdapter)
    assert adapter.url == "http://127.0.0.1:11434/api/chat"


def test_well_known_provider_without_entry_still_needs_model(monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gsk")
    with pytest.raises(ConfigurationError, match="Model is required"):
        get_adapter("groq", StreamCoreConfig())
