"""
Configuration system — reads streamcore.json + .env
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings

from streamcore.errors import RETRYABLE_STATUS_CODES, ConfigurationError, TransportError


# ── JSON schema models ───────────────────────────────────────────────────────

class ProviderConfig(BaseModel):
    name: str
    # "openai" | "anthropic" | "gemini" | "sse" | "ollama"; inferred from name when omitted
    protocol: Optional[str] = None
    model: Optional[str] = None
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    # Adapter-specific knobs: thinking_budget, include_thoughts, think
    options: dict[str, Any] = Field(default_factory=dict)


class ReasoningConfig(BaseModel):
    style: Literal["callout", "think_tags"] = "callout"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = Field(default=False, alias="json")

    model_config = {"populate_by_name": True}


class RetryPolicy(BaseModel):
    """Caller-side retry of a turn that failed before producing any text."""

    max_retries: int = Field(default=3, ge=0)
    # Seconds
    retry_delay: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_retry_delay: float = Field(default=30.0, ge=0)
    retryable_status_codes: list[int] = Field(default_factory=lambda: sorted(RETRYABLE_STATUS_CODES))
    # (error, attempt) -> bool; replaces the status-code check when set
    should_retry: Optional[Callable[[BaseException, int], bool]] = Field(default=None, exclude=True)

    def delay_for(self, attempt: int) -> float:
        return min(self.retry_delay * self.backoff_multiplier ** attempt, self.max_retry_delay)

    def allows(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        if self.should_retry is not None:
            return self.should_retry(error, attempt)
        if not isinstance(error, TransportError):
            return False
        return error.connection_failed or error.status_code in self.retryable_status_codes


class TimeoutPolicy(BaseModel):
    """Both limits cancel the turn's token; None disables a limit."""

    # Seconds for the whole call, retries included
    request_timeout: Optional[float] = Field(default=None, gt=0)
    # Seconds to wait for each chunk, the first one included
    chunk_timeout: Optional[float] = Field(default=None, gt=0)


class StreamCoreConfig(BaseModel):
    version: str = "1.0"
    default_provider: str = "openai"
    providers: list[ProviderConfig] = Field(default_factory=list)
    reasoning: ReasoningConfig = Field(default_factory=ReasoningConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    timeouts: TimeoutPolicy = Field(default_factory=TimeoutPolicy)

    def get_provider(self, name: str) -> Optional[ProviderConfig]:
        for p in self.providers:
            if p.name == name:
                return p
        return None

    def get_api_key(self, provider: ProviderConfig) -> Optional[str]:
        if provider.api_key_env:
            return os.environ.get(provider.api_key_env)
        return None


# ── App settings (from .env) ─────────────────────────────────────────────────

class AppSettings(BaseSettings):
    config_path: str = "./streamcore.json"
    log_level: Optional[str] = None

    model_config = {"env_prefix": "STREAMCORE_", "env_file": ".env", "extra": "ignore"}


# ── Singleton loaders ─────────────────────────────────────────────────────────

_config: Optional[StreamCoreConfig] = None
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def load_config(path: Optional[str] = None) -> StreamCoreConfig:
    global _config
    settings = get_settings()
    config_file = Path(path or settings.config_path)

    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            _config = StreamCoreConfig(**data)
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            raise ConfigurationError(f"Invalid config file {config_file}: {exc}") from exc
    else:
        _config = StreamCoreConfig()

    return _config


def get_config() -> StreamCoreConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config
