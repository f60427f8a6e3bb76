"""
Per-stream accumulation state.

A `StreamState` is created for every `stream_chat()` call and threaded through
the adapter's iteration. It owns the tool-call fragment buffers and the
reasoning multiplexer, and builds the terminal events when the turn ends.
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Hashable, Optional, Union

from streamcore.errors import ProtocolError
from streamcore.models.base import StreamEvent, ToolCall
from streamcore.models.reasoning import CALLOUT, ReasoningDelimiters, ReasoningMultiplexer


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    fragments: list[str] = field(default_factory=list)
    arguments: Optional[dict[str, Any]] = None


class ToolCallAccumulator:
    """
    Collects tool calls keyed by the vendor's call index/identifier.

    Partial-JSON vendors call `add_fragment` once per slice (name and argument
    slices both concatenate in arrival order); vendors that send
    whole calls use `add_complete`. Arguments are parsed once, in `finalize`.
    """

    def __init__(self) -> None:
        self._pending: dict[Hashable, _PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def add_fragment(
        self,
        key: Hashable,
        *,
        call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> None:
        pending = self._pending.setdefault(key, _PendingCall())
        if call_id:
            pending.id = call_id
        if name:
            pending.name += name
        if arguments:
            pending.fragments.append(arguments)

    def add_complete(self, call_id: Optional[str], name: str, arguments: Union[dict, str, None]) -> None:
        key = ("complete", len(self._pending))
        pending = _PendingCall(id=call_id or "", name=name)
        if isinstance(arguments, str):
            pending.fragments.append(arguments)
        else:
            pending.arguments = dict(arguments or {})
        self._pending[key] = pending

    def finalize(self) -> list[ToolCall]:
        calls = []
        for pending in self._pending.values():
            if not pending.name:
                raise ProtocolError("Tool call without a function name")
            arguments = pending.arguments
            if arguments is None:
                arguments = _parse_arguments(pending.name, "".join(pending.fragments))
            calls.append(ToolCall(id=pending.id or new_call_id(), name=pending.name, arguments=arguments))
        self._pending.clear()
        return calls


def _parse_arguments(name: str, raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Malformed arguments for tool call '{name}': {raw[:200]!r}") from exc
    if not isinstance(parsed, dict):
        raise ProtocolError(f"Arguments for tool call '{name}' must be a JSON object")
    return parsed


@dataclass
class StreamState:
    reasoning: ReasoningMultiplexer
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)

    @classmethod
    def fresh(cls, delimiters: ReasoningDelimiters = CALLOUT) -> StreamState:
        return cls(reasoning=ReasoningMultiplexer(delimiters))

    def content_event(self, text: str) -> StreamEvent:
        return StreamEvent.content(self.reasoning.content(text))

    def reasoning_event(self, text: str) -> StreamEvent:
        return StreamEvent.content(self.reasoning.reasoning(text))

    def finish(self) -> list[StreamEvent]:
        """Closing delimiter (if owed), then `tool_calls` or `stream_end`."""
        calls = self.tool_calls.finalize()
        events = []
        closing = self.reasoning.close()
        if closing:
            events.append(StreamEvent.content(closing))
        if calls:
            events.append(StreamEvent.tool_calls(calls))
        else:
            events.append(StreamEvent.stream_end())
        return events
