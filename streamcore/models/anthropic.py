"""
Anthropic (Claude) model adapter.
Uses the official anthropic SDK with raw streaming events.

Event mapping:
  content_block_start (tool_use)     → open a tool-call buffer keyed by block index
  content_block_delta text_delta     → text
  content_block_delta thinking_delta → reasoning
  content_block_delta input_json_delta → partial tool arguments
  message_delta stop_reason          → checked against the normal stop reasons
  message_stop                       → end of turn
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

import anthropic
from anthropic import AsyncAnthropic

from streamcore.cancellation import CancellationToken
from streamcore.errors import ProtocolError, StreamCoreError, TransportError, UnexpectedStopReason
from streamcore.models.base import (
    BaseModelAdapter,
    Message,
    StreamConfig,
    StreamEvent,
    ToolDefinition,
    split_system,
)
from streamcore.models.embeds import IMAGE_MIME_TYPES, PDF_MIME_TYPE, check_embeds, resolve_embeds
from streamcore.models.reasoning import CALLOUT, ReasoningDelimiters
from streamcore.models.state import StreamState

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
SUPPORTED_MIME_TYPES = (*IMAGE_MIME_TYPES, PDF_MIME_TYPE)
NORMAL_STOP_REASONS = frozenset({"end_turn", "stop_sequence", "tool_use"})


class AnthropicAdapter(BaseModelAdapter):
    protocol = "anthropic"

    def __init__(
        self,
        model_name: str,
        client: AsyncAnthropic,
        provider: str = "claude",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        delimiters: ReasoningDelimiters = CALLOUT,
        thinking_budget: Optional[int] = None,
    ):
        super().__init__(model_name, provider, temperature, max_tokens, delimiters)
        self._client = client
        self.thinking_budget = thinking_budget

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        config: StreamConfig,
        state: StreamState,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        system, conversation = split_system(messages)
        kwargs: dict[str, Any] = {
            "model": self._model(config),
            "max_tokens": self._max_tokens(config) or DEFAULT_MAX_TOKENS,
            "messages": await _to_anthropic_messages(conversation, config, self.provider),
            "stream": True,
        }
        if system:
            kwargs["system"] = system
        temperature = self._temperature(config)
        if temperature is not None:
            kwargs["temperature"] = temperature
        if tools:
            kwargs["tools"] = [t.to_anthropic_schema() for t in tools]
        if self.thinking_budget:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
        if config.provider_options:
            kwargs["extra_body"] = dict(config.provider_options)

        logger.info(
            "starting %s chat", self.provider,
            extra={"model": kwargs["model"], "messages": len(messages), "tools": len(tools)},
        )
        stream = await self._client.messages.create(**kwargs)
        try:
            async for event in stream:
                if token.cancelled:
                    return

                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        state.tool_calls.add_fragment(event.index, call_id=block.id, name=block.name)

                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        if delta.text:
                            yield state.content_event(delta.text)
                    elif delta.type == "thinking_delta":
                        if delta.thinking:
                            yield state.reasoning_event(delta.thinking)
                    elif delta.type == "input_json_delta":
                        state.tool_calls.add_fragment(event.index, arguments=delta.partial_json)

                elif event.type == "message_delta":
                    stop_reason = event.delta.stop_reason
                    if stop_reason and stop_reason not in NORMAL_STOP_REASONS:
                        raise UnexpectedStopReason(self.provider, stop_reason)

                elif event.type == "message_stop":
                    return

                elif event.type == "error":
                    error = getattr(event, "error", None)
                    message = getattr(error, "message", None) or str(error)
                    raise ProtocolError(f"{self.provider} stream error: {message}")
        finally:
            await stream.close()

    async def aclose(self) -> None:
        await self._client.close()

    def _translate_error(self, exc: Exception) -> StreamCoreError:
        if isinstance(exc, anthropic.APIStatusError):
            error = TransportError(
                f"{self.provider} request failed with status {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
            )
        elif isinstance(exc, anthropic.APIConnectionError):
            error = TransportError(f"{self.provider} connection error: {exc}", connection_failed=True)
        else:
            return super()._translate_error(exc)
        error.__cause__ = exc
        return error


async def _to_anthropic_messages(
    messages: list[Message], config: StreamConfig, provider: str
) -> list[dict]:
    """Convert internal messages to Anthropic API format."""
    check_embeds(messages, SUPPORTED_MIME_TYPES, provider)

    result: list[dict] = []
    for msg in messages:
        if msg.role == "tool":
            # Tool result: becomes a user message with tool_result blocks.
            # Consecutive results share one user message.
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.content,
            }
            previous = result[-1] if result else None
            if previous and previous["role"] == "user" and _is_tool_result_list(previous["content"]):
                previous["content"].append(block)
            else:
                result.append({"role": "user", "content": [block]})
            continue

        blocks: list[dict] = []
        for embed in await resolve_embeds(msg, config.resolve_embed):
            kind = "image" if embed.is_image else "document"
            blocks.append({
                "type": kind,
                "source": {"type": "base64", "media_type": embed.mime_type, "data": embed.base64},
            })
        if msg.content:
            blocks.append({"type": "text", "text": msg.content})
        if msg.role == "assistant":
            for call in msg.tool_calls:
                blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})

        if not blocks or (len(blocks) == 1 and blocks[0]["type"] == "text"):
            result.append({"role": msg.role, "content": msg.content})
        else:
            result.append({"role": msg.role, "content": blocks})

    return result


def _is_tool_result_list(content: Any) -> bool:
    return isinstance(content, list) and all(b.get("type") == "tool_result" for b in content)
