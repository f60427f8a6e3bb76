"""
OpenAI-compatible adapter.
Works with OpenAI, DeepSeek, SiliconFlow, OpenRouter, Groq, Together, Mistral
and any endpoint speaking Chat Completions through the official openai SDK.

Reasoning deltas (`reasoning_content` / `reasoning`) are multiplexed into the
text stream; tool calls arrive as index-keyed partial JSON and are emitted once,
as a single `tool_calls` event, when the turn ends.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator

import openai
from openai import AsyncOpenAI

from streamcore.cancellation import CancellationToken
from streamcore.errors import StreamCoreError, TransportError
from streamcore.models import chat_completions
from streamcore.models.base import BaseModelAdapter, Message, StreamConfig, StreamEvent, ToolDefinition
from streamcore.models.reasoning import CALLOUT, ReasoningDelimiters
from streamcore.models.state import StreamState

logger = logging.getLogger(__name__)


class OpenAICompatAdapter(BaseModelAdapter):
    protocol = "openai"

    def __init__(
        self,
        model_name: str,
        client: AsyncOpenAI,
        provider: str = "openai",
        temperature: float | None = None,
        max_tokens: int | None = None,
        delimiters: ReasoningDelimiters = CALLOUT,
    ):
        super().__init__(model_name, provider, temperature, max_tokens, delimiters)
        self._client = client

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        config: StreamConfig,
        state: StreamState,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        openai_messages = await chat_completions.format_messages(messages, config, self.provider)
        kwargs = chat_completions.build_request(
            self._model(config),
            openai_messages,
            tools,
            self._temperature(config),
            self._max_tokens(config),
        )
        # Vendor knobs the SDK does not model go straight into the JSON body
        if config.provider_options:
            kwargs["extra_body"] = dict(config.provider_options)

        logger.info(
            "starting %s chat", self.provider,
            extra={"model": kwargs["model"], "messages": len(messages), "tools": len(tools)},
        )
        stream = await self._client.chat.completions.create(**kwargs)
        try:
            async for chunk in stream:
                if token.cancelled:
                    return
                events, finish_reason = chat_completions.apply_chunk(
                    state, chunk.model_dump(), self.provider
                )
                for event in events:
                    yield event
                if finish_reason:
                    chat_completions.check_finish_reason(self.provider, finish_reason)
                    return
        finally:
            await stream.close()

    async def aclose(self) -> None:
        await self._client.close()

    def _translate_error(self, exc: Exception) -> StreamCoreError:
        if isinstance(exc, openai.APIStatusError):
            error = TransportError(
                f"{self.provider} request failed with status {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
            )
        elif isinstance(exc, openai.APIConnectionError):
            error = TransportError(f"{self.provider} connection error: {exc}", connection_failed=True)
        else:
            return super()._translate_error(exc)
        error.__cause__ = exc
        return error
