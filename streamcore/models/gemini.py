"""
Google Gemini model adapter.
Uses the google-genai SDK chat sessions: everything but the final message goes
into the session history, the final message is sent with send_message_stream.

  part.thought == True  → reasoning
  part.text             → text
  part.function_call    → complete tool call (args already decoded)
  candidate.finish_reason must be STOP; a blocked prompt is an error
"""
from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from streamcore.cancellation import CancellationToken
from streamcore.errors import (
    ProtocolError,
    StreamCoreError,
    TransportError,
    UnexpectedStopReason,
    UnsupportedInputError,
)
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

SUPPORTED_MIME_TYPES = (*IMAGE_MIME_TYPES, PDF_MIME_TYPE)


class GeminiAdapter(BaseModelAdapter):
    protocol = "gemini"

    def __init__(
        self,
        model_name: str,
        client: genai.Client,
        provider: str = "gemini",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        delimiters: ReasoningDelimiters = CALLOUT,
        include_thoughts: bool = False,
    ):
        super().__init__(model_name, provider, temperature, max_tokens, delimiters)
        self._client = client
        self.include_thoughts = include_thoughts

    def _generate_config(self, system: Optional[str], tools: list[ToolDefinition], config: StreamConfig):
        kwargs: dict[str, Any] = {}
        if system:
            kwargs["system_instruction"] = system
        temperature = self._temperature(config)
        if temperature is not None:
            kwargs["temperature"] = temperature
        max_tokens = self._max_tokens(config)
        if max_tokens is not None:
            kwargs["max_output_tokens"] = max_tokens
        if tools:
            kwargs["tools"] = [
                types.Tool(function_declarations=[
                    types.FunctionDeclaration(**t.to_gemini_declaration()) for t in tools
                ])
            ]
            # Calls are surfaced to the caller, never executed by the SDK
            kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(disable=True)
        if self.include_thoughts:
            kwargs["thinking_config"] = types.ThinkingConfig(include_thoughts=True)
        kwargs.update(config.provider_options)
        return types.GenerateContentConfig(**kwargs)

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        config: StreamConfig,
        state: StreamState,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        system, conversation = split_system(messages)
        contents = await _to_gemini_contents(conversation, config, self.provider)
        if not contents or contents[-1].role != "user":
            raise UnsupportedInputError(
                f"{self.provider}: the conversation must end with a user or tool message"
            )
        *history, last = contents

        model = self._model(config)
        logger.info(
            "starting %s chat", self.provider,
            extra={"model": model, "messages": len(messages), "tools": len(tools)},
        )
        chat = self._client.aio.chats.create(
            model=model,
            config=self._generate_config(system, tools, config),
            history=history,
        )
        async with aclosing(await chat.send_message_stream(last.parts)) as responses:
            async for response in responses:
                if token.cancelled:
                    return

                feedback = response.prompt_feedback
                if feedback is not None and feedback.block_reason:
                    raise UnexpectedStopReason(self.provider, _reason_name(feedback.block_reason))

                if not response.candidates:
                    continue
                candidate = response.candidates[0]
                parts = candidate.content.parts if candidate.content and candidate.content.parts else []
                for part in parts:
                    if part.function_call is not None:
                        call = part.function_call
                        if not call.name:
                            raise ProtocolError(f"{self.provider}: function call without a name")
                        state.tool_calls.add_complete(call.id, call.name, call.args or {})
                    elif part.text:
                        if part.thought:
                            yield state.reasoning_event(part.text)
                        else:
                            yield state.content_event(part.text)

                if candidate.finish_reason is not None:
                    reason = _reason_name(candidate.finish_reason)
                    if reason != "STOP":
                        raise UnexpectedStopReason(self.provider, reason)
                    return

    async def aclose(self) -> None:
        await self._client.aio.aclose()

    def _translate_error(self, exc: Exception) -> StreamCoreError:
        if isinstance(exc, genai_errors.APIError):
            error = TransportError(
                f"{self.provider} request failed with status {exc.code}: {exc.message}",
                status_code=exc.code,
            )
        elif isinstance(exc, httpx.TransportError):
            error = TransportError(f"{self.provider} connection error: {exc}", connection_failed=True)
        else:
            return super()._translate_error(exc)
        error.__cause__ = exc
        return error


def _reason_name(reason: Any) -> str:
    return getattr(reason, "name", None) or str(reason)


async def _to_gemini_contents(
    messages: list[Message], config: StreamConfig, provider: str
) -> list[types.Content]:
    """Assistant turns become `model` contents; tool results merge into one `user` content."""
    check_embeds(messages, SUPPORTED_MIME_TYPES, provider)

    contents: list[types.Content] = []
    pending_results: list[types.Part] = []

    def flush_results() -> None:
        if pending_results:
            contents.append(types.Content(role="user", parts=list(pending_results)))
            pending_results.clear()

    for msg in messages:
        if msg.role == "tool":
            pending_results.append(types.Part(
                function_response=types.FunctionResponse(
                    id=msg.tool_call_id,
                    name=msg.name or "",
                    response={"output": msg.content},
                )
            ))
            continue
        flush_results()

        parts: list[types.Part] = []
        for embed in await resolve_embeds(msg, config.resolve_embed):
            parts.append(types.Part.from_bytes(data=embed.data, mime_type=embed.mime_type))
        if msg.content:
            parts.append(types.Part(text=msg.content))
        if msg.role == "assistant":
            for call in msg.tool_calls:
                parts.append(types.Part(
                    function_call=types.FunctionCall(id=call.id, name=call.name, args=call.arguments)
                ))
        if not parts:
            parts.append(types.Part(text=""))
        contents.append(types.Content(role="model" if msg.role == "assistant" else "user", parts=parts))

    flush_results()
    return contents
