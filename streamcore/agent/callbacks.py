"""
Lifecycle callbacks for a streamed turn.

Every handler is optional and may be a plain function or a coroutine function.
Handlers receive one typed hook payload; the ones that can steer the turn
(`on_tools_request`, `before_stream_start`, `before_chunk`) may return a result
model, everything else returns None.
"""
from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from streamcore.models.base import Message, ToolCall, ToolDefinition


def _now() -> float:
    return time.time()


class _Hook(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


# ── Tool discovery ────────────────────────────────────────────────────────────

class ToolsRequestHook(_Hook):
    provider: str
    model: str
    messages: list[Message]


class ToolsRequestResult(_Hook):
    tools: list[ToolDefinition] = Field(default_factory=list)


# ── Lifecycle ─────────────────────────────────────────────────────────────────

class BeforeStreamStartHook(_Hook):
    messages: list[Message]
    provider: str
    model: str
    tools: list[ToolDefinition] = Field(default_factory=list)
    provider_options: dict[str, Any] = Field(default_factory=dict)


class BeforeStreamStartResult(_Hook):
    """Fields left as None keep the original value."""

    messages: Optional[list[Message]] = None
    tools: Optional[list[ToolDefinition]] = None
    provider_options: Optional[dict[str, Any]] = None
    cancel: bool = False
    cancel_reason: Optional[str] = None


class StreamStartHook(_Hook):
    provider: str
    model: str
    message_count: int
    has_tools: bool
    timestamp: float = Field(default_factory=_now)


class StreamEndHook(_Hook):
    provider: str
    model: str
    total_chunks: int
    # Including chunks dropped by before_chunk
    received_chunks: int
    duration: float
    timestamp: float = Field(default_factory=_now)


# ── Chunks ────────────────────────────────────────────────────────────────────

class BeforeChunkHook(_Hook):
    chunk: str
    index: int
    accumulated: str
    timestamp: float = Field(default_factory=_now)


class BeforeChunkResult(_Hook):
    chunk: Optional[str] = None
    skip: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class AfterChunkHook(_Hook):
    original_chunk: str
    processed_chunk: str
    index: int
    accumulated: str
    accumulated_length: int
    duration: float
    timestamp: float = Field(default_factory=_now)


# ── Tools and errors ──────────────────────────────────────────────────────────

class ToolCallHook(_Hook):
    tool_calls: list[ToolCall]
    messages: list[Message]
    provider: str


class ErrorHook(_Hook):
    error: BaseException
    recoverable: bool = False
    attempt_number: int = 0
    provider: str


@dataclass
class StreamCallbacks:
    on_tools_request: Optional[Callable[[ToolsRequestHook], Any]] = None
    before_stream_start: Optional[Callable[[BeforeStreamStartHook], Any]] = None
    on_stream_start: Optional[Callable[[StreamStartHook], Any]] = None
    before_chunk: Optional[Callable[[BeforeChunkHook], Any]] = None
    after_chunk: Optional[Callable[[AfterChunkHook], Any]] = None
    on_tool_call: Optional[Callable[[ToolCallHook], Any]] = None
    on_error: Optional[Callable[[ErrorHook], Any]] = None
    on_stream_end: Optional[Callable[[StreamEndHook], Any]] = None


async def invoke_callback(callback: Optional[Callable[[Any], Any]], hook: Any) -> Any:
    """Run a sync or async handler to completion. A missing handler returns None."""
    if callback is None:
        return None
    result = callback(hook)
    if inspect.isawaitable(result):
        result = await result
    return result
