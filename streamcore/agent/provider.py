"""
Streaming provider — drives one adapter turn through the lifecycle callbacks.

  1. on_tools_request     → tools offered to the model
  2. before_stream_start  → may replace messages / tools / options, or cancel
  3. adapter.stream_chat  → normalized StreamEvents
  4. on_stream_start      → elapsed clock starts
  5. before_chunk / yield / after_chunk for every content event
  6. on_tool_call         → tool_calls terminal
  7. on_error             → error terminal, then the cause is raised
  8. on_stream_end
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from streamcore.agent.callbacks import (
    AfterChunkHook,
    BeforeChunkHook,
    BeforeChunkResult,
    BeforeStreamStartHook,
    BeforeStreamStartResult,
    ErrorHook,
    StreamCallbacks,
    StreamEndHook,
    StreamStartHook,
    ToolCallHook,
    ToolsRequestHook,
    ToolsRequestResult,
    invoke_callback,
)
from streamcore.cancellation import CancellationToken
from streamcore.models.base import BaseModelAdapter, Message, StreamConfig, ToolDefinition

logger = logging.getLogger(__name__)


def _coerce_tools(result: Any) -> list[ToolDefinition]:
    if result is None:
        return []
    if isinstance(result, ToolsRequestResult):
        return list(result.tools)
    return list(result)


class StreamingProvider:
    def __init__(self, adapter: BaseModelAdapter, name: Optional[str] = None):
        self.adapter = adapter
        self.name = name or adapter.provider

    async def stream(
        self,
        messages: list[Message],
        config: Optional[StreamConfig] = None,
    ) -> AsyncIterator[str]:
        """Yield processed text chunks for one turn. Errors are raised after on_error."""
        config = config or StreamConfig()
        callbacks: StreamCallbacks = config.callbacks or StreamCallbacks()
        token = config.cancellation or CancellationToken()
        model = config.model or self.adapter.model_name or "unknown"
        messages = list(messages)
        error_reported = False

        if token.cancelled:
            return

        try:
            # ── 1. Tool discovery ─────────────────────────────────────────────
            tools: list[ToolDefinition] = []
            if callbacks.on_tools_request:
                tools = _coerce_tools(await invoke_callback(
                    callbacks.on_tools_request,
                    ToolsRequestHook(provider=self.name, model=model, messages=messages),
                ))
                logger.debug("received %d tools from caller", len(tools))

            # ── 2. Pre-stream mutation ────────────────────────────────────────
            final_messages, final_tools, final_options = messages, tools, dict(config.provider_options)
            if callbacks.before_stream_start:
                result: Optional[BeforeStreamStartResult] = await invoke_callback(
                    callbacks.before_stream_start,
                    BeforeStreamStartHook(
                        messages=messages,
                        provider=self.name,
                        model=model,
                        tools=tools,
                        provider_options=final_options,
                    ),
                )
                if result is not None:
                    if result.cancel:
                        logger.info("%s stream cancelled before start: %s", self.name, result.cancel_reason)
                        return
                    if result.messages is not None:
                        final_messages = list(result.messages)
                    if result.tools is not None:
                        final_tools = list(result.tools)
                    if result.provider_options is not None:
                        final_options = dict(result.provider_options)

            # ── 3. Stream construction ────────────────────────────────────────
            turn_config = config.model_copy(update={"provider_options": final_options, "cancellation": token})
            events = self.adapter.stream_chat(final_messages, final_tools, turn_config)

            # ── 4. Stream start ───────────────────────────────────────────────
            started = time.monotonic()
            await invoke_callback(callbacks.on_stream_start, StreamStartHook(
                provider=self.name,
                model=model,
                message_count=len(final_messages),
                has_tools=bool(final_tools),
            ))
            logger.info(
                "stream started",
                extra={"provider": self.name, "model": model,
                       "messages": len(final_messages), "tools": len(final_tools)},
            )

            # ── 5-7. Events ───────────────────────────────────────────────────
            chunk_count = 0
            received = 0
            accumulated = ""
            async with aclosing(events):
                async for event in events:
                    if event.type == "content":
                        received += 1
                        original = event.text
                        processed = original
                        if callbacks.before_chunk:
                            chunk_result: Optional[BeforeChunkResult] = await invoke_callback(
                                callbacks.before_chunk,
                                BeforeChunkHook(chunk=original, index=chunk_count, accumulated=accumulated),
                            )
                            if chunk_result is not None:
                                if chunk_result.skip:
                                    logger.debug("chunk %d skipped by before_chunk", chunk_count)
                                    continue
                                if chunk_result.chunk is not None:
                                    processed = chunk_result.chunk

                        accumulated += processed
                        chunk_count += 1
                        yield processed

                        await invoke_callback(callbacks.after_chunk, AfterChunkHook(
                            original_chunk=original,
                            processed_chunk=processed,
                            index=chunk_count - 1,
                            accumulated=accumulated,
                            accumulated_length=len(accumulated),
                            duration=time.monotonic() - started,
                        ))

                    elif event.type == "tool_calls":
                        logger.debug("%d tool calls requested", len(event.calls))
                        await invoke_callback(callbacks.on_tool_call, ToolCallHook(
                            tool_calls=event.calls,
                            messages=final_messages,
                            provider=self.name,
                        ))

                    elif event.type == "error":
                        error_reported = True
                        await self._report_error(callbacks, event.cause)
                        raise event.cause

            if token.cancelled:
                logger.info("%s stream cancelled: %s", self.name, token.reason)
                return

            # ── 8. Stream end ─────────────────────────────────────────────────
            await invoke_callback(callbacks.on_stream_end, StreamEndHook(
                provider=self.name,
                model=model,
                total_chunks=chunk_count,
                received_chunks=received,
                duration=time.monotonic() - started,
            ))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not error_reported:
                error_reported = True
                await self._report_error(callbacks, exc)
            raise

    async def _report_error(self, callbacks: StreamCallbacks, error: BaseException) -> None:
        logger.error("%s stream error: %s", self.name, error)
        await invoke_callback(callbacks.on_error, ErrorHook(error=error, provider=self.name))
