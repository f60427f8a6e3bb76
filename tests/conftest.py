"""Pytest fixtures and config."""

import pytest

from streamcore import config as config_module


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch, tmp_path):
    """Avoid loading a real .env or streamcore.json in tests."""
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "GROK_API_KEY", "STREAMCORE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STREAMCORE_CONFIG_PATH", str(tmp_path / "missing.json"))
    monkeypatch.setattr(config_module, "_config", None)
    monkeypatch.setattr(config_module, "_settings", None)
    yield
