"""
Model registry — creates the right adapter based on config.

Supported providers (protocol family → adapter):
  openai     → OpenAICompatAdapter  openai, deepseek, siliconflow, openrouter,
                                    together, mistral, groq
  anthropic  → AnthropicAdapter     claude / anthropic
  gemini     → GeminiAdapter        gemini
  sse        → RawSSEAdapter        grok, qwen, doubao, kimi
  ollama     → OllamaAdapter        ollama (local, no key needed)
  <any>      → the protocol named in config, with its base_url

Clients are constructed here; constructing an adapter performs no I/O.
"""
from __future__ import annotations

import logging
from typing import Callable, NamedTuple, Optional

from streamcore.config import ProviderConfig, StreamCoreConfig, get_config
from streamcore.errors import ConfigurationError
from streamcore.models.base import BaseModelAdapter
from streamcore.models.reasoning import ReasoningDelimiters, get_delimiters

logger = logging.getLogger(__name__)


class _Defaults(NamedTuple):
    protocol: str
    base_url: Optional[str]


# Well-known endpoints for providers that don't require base_url in config
_PROVIDER_DEFAULTS: dict[str, _Defaults] = {
    "openai":      _Defaults("openai", "https://api.openai.com/v1"),
    "deepseek":    _Defaults("openai", "https://api.deepseek.com/v1"),
    "siliconflow": _Defaults("openai", "https://api.siliconflow.cn/v1"),
    "openrouter":  _Defaults("openai", "https://openrouter.ai/api/v1"),
    "together":    _Defaults("openai", "https://api.together.xyz/v1"),
    "mistral":     _Defaults("openai", "https://api.mistral.ai/v1"),
    "groq":        _Defaults("openai", "https://api.groq.com/openai/v1"),
    "claude":      _Defaults("anthropic", None),
    "anthropic":   _Defaults("anthropic", None),
    "gemini":      _Defaults("gemini", None),
    "grok":        _Defaults("sse", "https://api.x.ai/v1"),
    "qwen":        _Defaults("sse", "https://dashscope.aliyuncs.com/compatible-mode/v1"),
    "doubao":      _Defaults("sse", "https://ark.cn-beijing.volces.com/api/v3"),
    "kimi":        _Defaults("sse", "https://api.moonshot.cn/v1"),
    "ollama":      _Defaults("ollama", "http://127.0.0.1:11434"),
}

PROTOCOLS = frozenset({"openai", "anthropic", "gemini", "sse", "ollama"})
_KEYLESS_PROTOCOLS = frozenset({"ollama"})


def resolve_protocol(provider: ProviderConfig) -> str:
    protocol = provider.protocol or (
        _PROVIDER_DEFAULTS[provider.name].protocol if provider.name in _PROVIDER_DEFAULTS else None
    )
    if protocol is None:
        raise ConfigurationError(
            f"Unknown provider '{provider.name}': set 'protocol' to one of {', '.join(sorted(PROTOCOLS))}"
        )
    if protocol not in PROTOCOLS:
        raise ConfigurationError(f"Provider '{provider.name}' has unknown protocol '{protocol}'")
    return protocol


def _base_url(provider: ProviderConfig) -> Optional[str]:
    if provider.base_url:
        return provider.base_url
    defaults = _PROVIDER_DEFAULTS.get(provider.name)
    return defaults.base_url if defaults else None


# ── Builders ──────────────────────────────────────────────────────────────────

def _build_openai(p: ProviderConfig, api_key: str, delimiters: ReasoningDelimiters) -> BaseModelAdapter:
    from openai import AsyncOpenAI
    from streamcore.models.openai_compat import OpenAICompatAdapter

    client = AsyncOpenAI(api_key=api_key, base_url=_base_url(p))
    return OpenAICompatAdapter(
        model_name=p.model, client=client, provider=p.name,
        temperature=p.temperature, max_tokens=p.max_tokens, delimiters=delimiters,
    )


def _build_anthropic(p: ProviderConfig, api_key: str, delimiters: ReasoningDelimiters) -> BaseModelAdapter:
    from anthropic import AsyncAnthropic
    from streamcore.models.anthropic import AnthropicAdapter

    base_url = _base_url(p)
    if base_url:
        # The SDK appends /v1/messages itself
        base_url = base_url.rstrip("/")
        for suffix in ("/v1/messages", "/v1"):
            if base_url.endswith(suffix):
                base_url = base_url[: -len(suffix)]
                break
    client = AsyncAnthropic(api_key=api_key, base_url=base_url or None)
    return AnthropicAdapter(
        model_name=p.model, client=client, provider=p.name,
        temperature=p.temperature, max_tokens=p.max_tokens, delimiters=delimiters,
        thinking_budget=p.options.get("thinking_budget"),
    )


def _build_gemini(p: ProviderConfig, api_key: str, delimiters: ReasoningDelimiters) -> BaseModelAdapter:
    from google import genai
    from google.genai import types
    from streamcore.models.gemini import GeminiAdapter

    http_options = types.HttpOptions(base_url=p.base_url) if p.base_url else None
    client = genai.Client(api_key=api_key, http_options=http_options)
    return GeminiAdapter(
        model_name=p.model, client=client, provider=p.name,
        temperature=p.temperature, max_tokens=p.max_tokens, delimiters=delimiters,
        include_thoughts=bool(p.options.get("include_thoughts", False)),
    )


def _build_sse(p: ProviderConfig, api_key: str, delimiters: ReasoningDelimiters) -> BaseModelAdapter:
    import httpx
    from streamcore.models.sse import RawSSEAdapter

    base_url = _base_url(p)
    if not base_url:
        raise ConfigurationError(f"base_url not set for provider '{p.name}'")
    return RawSSEAdapter(
        model_name=p.model, client=httpx.AsyncClient(timeout=httpx.Timeout(60.0, read=None)),
        base_url=base_url, api_key=api_key, provider=p.name,
        temperature=p.temperature, max_tokens=p.max_tokens, delimiters=delimiters,
    )


def _build_ollama(p: ProviderConfig, api_key: str, delimiters: ReasoningDelimiters) -> BaseModelAdapter:
    import httpx
    from streamcore.models.ollama import DEFAULT_BASE_URL, OllamaAdapter

    return OllamaAdapter(
        model_name=p.model, client=httpx.AsyncClient(timeout=httpx.Timeout(60.0, read=None)),
        base_url=_base_url(p) or DEFAULT_BASE_URL, provider=p.name,
        temperature=p.temperature, max_tokens=p.max_tokens, delimiters=delimiters,
        think=p.options.get("think"),
    )


_BUILDERS: dict[str, Callable[[ProviderConfig, str, ReasoningDelimiters], BaseModelAdapter]] = {
    "openai": _build_openai,
    "anthropic": _build_anthropic,
    "gemini": _build_gemini,
    "sse": _build_sse,
    "ollama": _build_ollama,
}


def get_adapter(provider_name: str | None = None, config: StreamCoreConfig | None = None) -> BaseModelAdapter:
    cfg = config or get_config()
    name = provider_name or cfg.default_provider
    provider_cfg = cfg.get_provider(name)

    if provider_cfg is None:
        # Well-known provider without an entry: defaults only, key from <NAME>_API_KEY
        if name not in _PROVIDER_DEFAULTS:
            raise ConfigurationError(f"Unknown provider '{name}'")
        provider_cfg = ProviderConfig(name=name, api_key_env=f"{name.upper()}_API_KEY")

    protocol = resolve_protocol(provider_cfg)
    if not provider_cfg.model:
        raise ConfigurationError(f"Model is required for provider '{name}'")

    api_key = cfg.get_api_key(provider_cfg) or ""
    if not api_key and protocol not in _KEYLESS_PROTOCOLS:
        hint = f" Set {provider_cfg.api_key_env} in .env" if provider_cfg.api_key_env else ""
        raise ConfigurationError(f"API key is required for provider '{name}'.{hint}")

    delimiters = get_delimiters(cfg.reasoning.style)
    logger.debug("building %s adapter for %s (%s)", protocol, name, provider_cfg.model)
    return _BUILDERS[protocol](provider_cfg, api_key, delimiters)
