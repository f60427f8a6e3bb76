"""
Chat Completions wire format, shared by the SDK adapter and the raw SSE one.

Requests:
  messages → [{"role": ..., "content": str | [parts]}], tools → function schema
  image embeds → {"type": "image_url", "image_url": {"url": "data:mime;base64,..."}}
  PDF embeds   → {"type": "file", "file": {"filename": ..., "file_data": "data:..."}}

Streamed chunks:
  choices[0].delta.content            → text
  choices[0].delta.reasoning_content  → reasoning (DeepSeek, SiliconFlow, Grok)
  choices[0].delta.reasoning          → reasoning (OpenRouter)
  choices[0].delta.tool_calls[i]      → partial-JSON fragments keyed by index
  choices[0].finish_reason            → terminal signal
"""
from __future__ import annotations

import json
from typing import Any, Optional

from streamcore.errors import ProtocolError, UnexpectedStopReason
from streamcore.models.base import Message, StreamConfig, StreamEvent, ToolDefinition
from streamcore.models.embeds import (
    IMAGE_MIME_TYPES,
    PDF_MIME_TYPE,
    ResolvedEmbed,
    check_embeds,
    resolve_embeds,
)
from streamcore.models.state import StreamState

SUPPORTED_MIME_TYPES = (*IMAGE_MIME_TYPES, PDF_MIME_TYPE)
NORMAL_FINISH_REASONS = frozenset({"stop", "tool_calls", "function_call"})
REASONING_FIELDS = ("reasoning_content", "reasoning")


def _embed_part(embed: ResolvedEmbed) -> dict:
    if embed.is_image:
        return {"type": "image_url", "image_url": {"url": embed.data_url}}
    return {"type": "file", "file": {"filename": embed.link, "file_data": embed.data_url}}


def _tool_call_entry(call) -> dict:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
    }


async def format_messages(messages: list[Message], config: StreamConfig, provider: str) -> list[dict]:
    check_embeds(messages, SUPPORTED_MIME_TYPES, provider)

    result: list[dict] = []
    for msg in messages:
        if msg.role == "tool":
            result.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id or "",
                "content": msg.content,
            })
            continue

        embeds = await resolve_embeds(msg, config.resolve_embed)
        if embeds:
            parts: list[dict] = [{"type": "text", "text": msg.content}] if msg.content else []
            parts.extend(_embed_part(e) for e in embeds)
            entry: dict[str, Any] = {"role": msg.role, "content": parts}
        else:
            entry = {"role": msg.role, "content": msg.content}

        if msg.role == "assistant" and msg.tool_calls:
            entry["content"] = msg.content or None
            entry["tool_calls"] = [_tool_call_entry(c) for c in msg.tool_calls]
        result.append(entry)

    return result


def build_request(
    model: str,
    messages: list[dict],
    tools: list[ToolDefinition],
    temperature: Optional[float],
    max_tokens: Optional[int],
) -> dict:
    request: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "stream": True,
    }
    if temperature is not None:
        request["temperature"] = temperature
    if max_tokens is not None:
        request["max_tokens"] = max_tokens
    if tools:
        request["tools"] = [t.to_openai_schema() for t in tools]
        request["tool_choice"] = "auto"
    return request


def apply_chunk(state: StreamState, chunk: dict, provider: str) -> tuple[list[StreamEvent], Optional[str]]:
    """
    Classify one decoded chunk. Returns the content events it produced and
    the finish reason, if the vendor signalled the end of the turn.
    """
    error = chunk.get("error")
    if error:
        message = error.get("message", error) if isinstance(error, dict) else error
        raise ProtocolError(f"{provider} stream error: {message}")

    choices = chunk.get("choices") or []
    if not choices:
        return [], None

    choice = choices[0]
    delta = choice.get("delta") or {}
    events: list[StreamEvent] = []

    for field in REASONING_FIELDS:
        reasoning = delta.get(field)
        if reasoning:
            events.append(state.reasoning_event(reasoning))
            break

    if delta.get("content"):
        events.append(state.content_event(delta["content"]))

    for fragment in delta.get("tool_calls") or []:
        function = fragment.get("function") or {}
        state.tool_calls.add_fragment(
            fragment.get("index", 0),
            call_id=fragment.get("id"),
            name=function.get("name"),
            arguments=function.get("arguments"),
        )

    return events, choice.get("finish_reason") or None


def check_finish_reason(provider: str, finish_reason: str) -> None:
    if finish_reason not in NORMAL_FINISH_REASONS:
        raise UnexpectedStopReason(provider, finish_reason)
