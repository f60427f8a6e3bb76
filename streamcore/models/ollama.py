"""
Ollama native adapter.
Talks to the local daemon's /api/chat endpoint, which streams one JSON object
per line (NDJSON):

  {"message": {"content": "...", "thinking": "...", "tool_calls": [...]}, "done": false}
  {"message": {...}, "done": true, "done_reason": "stop"}
  {"error": "..."}

Tool calls arrive complete, with arguments already decoded. Only images are
accepted as attachments.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from streamcore.cancellation import CancellationToken
from streamcore.errors import ProtocolError, StreamCoreError, TransportError, UnexpectedStopReason
from streamcore.models.base import BaseModelAdapter, Message, StreamConfig, StreamEvent, ToolDefinition
from streamcore.models.embeds import IMAGE_MIME_TYPES, check_embeds, resolve_embeds
from streamcore.models.reasoning import CALLOUT, ReasoningDelimiters
from streamcore.models.state import StreamState

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:11434"
NORMAL_DONE_REASONS = frozenset({"stop"})


class OllamaAdapter(BaseModelAdapter):
    protocol = "ollama"

    def __init__(
        self,
        model_name: str,
        client: httpx.AsyncClient,
        base_url: str = DEFAULT_BASE_URL,
        provider: str = "ollama",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        delimiters: ReasoningDelimiters = CALLOUT,
        think: Optional[bool] = None,
    ):
        super().__init__(model_name, provider, temperature, max_tokens, delimiters)
        self._client = client
        # Older configs point at the OpenAI-compatible /v1 prefix
        base = base_url.rstrip("/")
        if base.endswith("/v1"):
            base = base[:-3]
        self.url = base + "/api/chat"
        self.think = think

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        config: StreamConfig,
        state: StreamState,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        body: dict[str, Any] = {
            "model": self._model(config),
            "messages": await _to_ollama_messages(messages, config, self.provider),
            "stream": True,
        }
        options: dict[str, Any] = {}
        temperature = self._temperature(config)
        if temperature is not None:
            options["temperature"] = temperature
        max_tokens = self._max_tokens(config)
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if options:
            body["options"] = options
        if tools:
            body["tools"] = [t.to_openai_schema() for t in tools]
        if self.think is not None:
            body["think"] = self.think
        body.update(config.provider_options)

        logger.info(
            "starting %s chat", self.provider,
            extra={"model": body["model"], "messages": len(messages), "tools": len(tools)},
        )
        async with self._client.stream("POST", self.url, json=body) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise TransportError(
                    f"{self.provider} request failed with status {resp.status_code}: {resp.text[:500]}",
                    status_code=resp.status_code,
                )

            async for line in resp.aiter_lines():
                if token.cancelled:
                    return
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ProtocolError(f"{self.provider}: malformed stream line {line[:200]!r}") from exc

                if chunk.get("error"):
                    raise ProtocolError(f"{self.provider} stream error: {chunk['error']}")

                message = chunk.get("message") or {}
                if message.get("thinking"):
                    yield state.reasoning_event(message["thinking"])
                if message.get("content"):
                    yield state.content_event(message["content"])
                for call in message.get("tool_calls") or []:
                    function = call.get("function") or {}
                    if not function.get("name"):
                        raise ProtocolError(f"{self.provider}: tool call without a function name")
                    state.tool_calls.add_complete(call.get("id"), function["name"], function.get("arguments"))

                if chunk.get("done"):
                    reason = chunk.get("done_reason")
                    if reason and reason not in NORMAL_DONE_REASONS:
                        raise UnexpectedStopReason(self.provider, reason)
                    return

    async def aclose(self) -> None:
        await self._client.aclose()

    def _translate_error(self, exc: Exception) -> StreamCoreError:
        if isinstance(exc, httpx.TransportError):
            error = TransportError(
                f"{self.provider} connection error (is the daemon running at {self.url}?): {exc}",
                connection_failed=True,
            )
            error.__cause__ = exc
            return error
        return super()._translate_error(exc)


async def _to_ollama_messages(messages: list[Message], config: StreamConfig, provider: str) -> list[dict]:
    check_embeds(messages, IMAGE_MIME_TYPES, provider)

    result = []
    for msg in messages:
        entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.role == "tool" and msg.name:
            entry["tool_name"] = msg.name
        embeds = await resolve_embeds(msg, config.resolve_embed)
        if embeds:
            entry["images"] = [e.base64 for e in embeds]
        if msg.role == "assistant" and msg.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": c.name, "arguments": c.arguments}} for c in msg.tool_calls
            ]
        result.append(entry)
    return result
