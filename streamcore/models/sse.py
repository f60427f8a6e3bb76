"""
Raw Server-Sent Events adapter.
For vendors that speak Chat Completions over SSE but are reached without a
client library (Grok, Qwen, Doubao, Kimi). Requests go through httpx; the
response body is decoded here:

  event: <name>      → event name for the next dispatch (default "message")
  data: <payload>    → appended; several data lines join with "\n"
  : comment          → ignored (keep-alives)
  blank line         → dispatch
  data: [DONE]       → end of turn
  event: error       → in-band vendor error
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from streamcore.cancellation import CancellationToken
from streamcore.errors import ProtocolError, StreamCoreError, TransportError
from streamcore.models import chat_completions
from streamcore.models.base import BaseModelAdapter, Message, StreamConfig, StreamEvent, ToolDefinition
from streamcore.models.reasoning import CALLOUT, ReasoningDelimiters
from streamcore.models.state import StreamState

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
COMPLETIONS_PATH = "/chat/completions"


@dataclass(frozen=True)
class SSEEvent:
    event: str
    data: str
    id: Optional[str] = None


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Group decoded lines into events. A trailing event without a blank line is still dispatched."""
    event_name = ""
    data_lines: list[str] = []
    last_id: Optional[str] = None

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data_lines:
                yield SSEEvent(event=event_name or "message", data="\n".join(data_lines), id=last_id)
            event_name = ""
            data_lines = []
            continue
        if line.startswith(":"):
            continue

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            event_name = value
        elif field == "id":
            last_id = value
        # "retry" and unknown fields are ignored

    if data_lines:
        yield SSEEvent(event=event_name or "message", data="\n".join(data_lines), id=last_id)


def completions_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith(COMPLETIONS_PATH):
        return base
    return base + COMPLETIONS_PATH


class RawSSEAdapter(BaseModelAdapter):
    protocol = "sse"

    def __init__(
        self,
        model_name: str,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        provider: str = "grok",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        delimiters: ReasoningDelimiters = CALLOUT,
    ):
        super().__init__(model_name, provider, temperature, max_tokens, delimiters)
        self._client = client
        self.url = completions_url(base_url)
        self._api_key = api_key

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        config: StreamConfig,
        state: StreamState,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        body = chat_completions.build_request(
            self._model(config),
            await chat_completions.format_messages(messages, config, self.provider),
            tools,
            self._temperature(config),
            self._max_tokens(config),
        )
        body.update(config.provider_options)
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

        logger.info(
            "starting %s chat", self.provider,
            extra={"model": body["model"], "messages": len(messages), "tools": len(tools)},
        )
        async with self._client.stream("POST", self.url, json=body, headers=headers) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise TransportError(
                    f"{self.provider} request failed with status {resp.status_code}: {resp.text[:500]}",
                    status_code=resp.status_code,
                )

            async for sse in iter_sse_events(resp.aiter_lines()):
                if token.cancelled:
                    return
                if sse.event == "error":
                    raise ProtocolError(f"{self.provider} stream error: {sse.data}")
                if sse.data.strip() == DONE_SENTINEL:
                    return
                try:
                    chunk = json.loads(sse.data)
                except json.JSONDecodeError as exc:
                    raise ProtocolError(f"{self.provider}: malformed stream payload {sse.data[:200]!r}") from exc
                if not isinstance(chunk, dict):
                    raise ProtocolError(f"{self.provider}: stream payload is not a JSON object")

                events, finish_reason = chat_completions.apply_chunk(state, chunk, self.provider)
                for event in events:
                    yield event
                if finish_reason:
                    chat_completions.check_finish_reason(self.provider, finish_reason)
                    return

        logger.debug("%s stream closed without [DONE]", self.provider)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _translate_error(self, exc: Exception) -> StreamCoreError:
        if isinstance(exc, httpx.TransportError):
            error = TransportError(f"{self.provider} connection error: {exc}", connection_failed=True)
            error.__cause__ = exc
            return error
        return super()._translate_error(exc)
