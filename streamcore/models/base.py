"""
Shared stream vocabulary and the adapter interface.

Every vendor adapter turns a list of `Message` into an async sequence of
`StreamEvent`. `BaseModelAdapter.stream_chat` owns the parts of that contract
that do not depend on the wire protocol:

  - conversation validation before any network call
  - a fresh `StreamState` per call (tool-call buffers + reasoning flag)
  - cancellation raced against every pending read, so a silent vendor
    connection cannot outlive the token
  - exactly one terminal event (`tool_calls` | `error` | `stream_end`)
  - translating any exception into a single `error` event

Subclasses implement `_stream`, which yields only `content` events and returns
when the vendor signals the end of the turn.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel as PydanticModel
from pydantic import ConfigDict, Field

from streamcore.cancellation import CancellationToken
from streamcore.errors import StreamCoreError, UnsupportedInputError
from streamcore.models.reasoning import CALLOUT, ReasoningDelimiters

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant", "tool"]
EventType = Literal["content", "tool_calls", "error", "stream_end"]

TERMINAL_EVENT_TYPES = frozenset({"tool_calls", "error", "stream_end"})


class Embed(PydanticModel):
    """Opaque reference to an attachment; `link` carries the file name."""

    model_config = ConfigDict(frozen=True)

    link: str
    display_text: Optional[str] = None


class ToolCall(PydanticModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolDefinition(PydanticModel):
    """Provider-agnostic function tool."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }

    def to_gemini_declaration(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters_json_schema": self.parameters,
        }


class Message(PydanticModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    embeds: tuple[Embed, ...] = ()
    # role == "tool"
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    # role == "assistant"
    tool_calls: tuple[ToolCall, ...] = ()


class StreamEvent(PydanticModel):
    """One normalized unit of a completion stream."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: EventType
    data: Any = None

    @classmethod
    def content(cls, text: str) -> StreamEvent:
        return cls(type="content", data=text)

    @classmethod
    def tool_calls(cls, calls: list[ToolCall]) -> StreamEvent:
        return cls(type="tool_calls", data=list(calls))

    @classmethod
    def error(cls, cause: BaseException) -> StreamEvent:
        return cls(type="error", data=cause)

    @classmethod
    def stream_end(cls) -> StreamEvent:
        return cls(type="stream_end")

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    @property
    def text(self) -> str:
        return self.data if self.type == "content" else ""

    @property
    def calls(self) -> list[ToolCall]:
        return self.data if self.type == "tool_calls" else []

    @property
    def cause(self) -> Optional[BaseException]:
        return self.data if self.type == "error" else None


EmbedResolver = Callable[[Embed], Awaitable[bytes]]


class StreamConfig(PydanticModel):
    """Per-turn configuration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    callbacks: Optional[_callbacks.StreamCallbacks] = None
    provider_options: dict[str, Any] = Field(default_factory=dict)
    cancellation: Optional[CancellationToken] = None
    resolve_embed: Optional[EmbedResolver] = None


def validate_conversation(messages: list[Message]) -> None:
    """A system message may only appear once, as the first message."""
    if not messages:
        raise UnsupportedInputError("At least one message is required")
    for position, msg in enumerate(messages):
        if msg.role == "system" and position != 0:
            raise UnsupportedInputError("System messages are only allowed as the first message")


def split_system(messages: list[Message]) -> tuple[Optional[str], list[Message]]:
    if messages and messages[0].role == "system":
        return messages[0].content, list(messages[1:])
    return None, list(messages)


async def _anext(events: AsyncIterator[StreamEvent]) -> StreamEvent:
    return await events.__anext__()


async def _next_unless_cancelled(
    events: AsyncIterator[StreamEvent], token: CancellationToken
) -> Optional[StreamEvent]:
    """
    Wait for the next event or the cancellation signal, whichever comes first.

    A read still pending when the token fires is cancelled, which unwinds the
    adapter's `async with` blocks and releases the transport. Returns None in
    that case; raises StopAsyncIteration when the adapter is exhausted.
    """
    if token.cancelled:
        return None
    pending = asyncio.ensure_future(_anext(events))
    signal = asyncio.ensure_future(token.wait())
    interrupted = False
    try:
        await asyncio.wait({pending, signal}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        signal.cancel()
        if not pending.done():
            interrupted = True
            pending.cancel()
            await asyncio.wait({pending})
    if interrupted:
        # Whatever the unwinding transport raised belongs to the cancelled read
        if not pending.cancelled() and pending.exception() is not None:
            logger.debug("cancelled read ended with %r", pending.exception())
        return None
    return pending.result()


class BaseModelAdapter(ABC):
    """Unified interface for all LLM wire protocols."""

    protocol: str = "base"

    def __init__(
        self,
        model_name: str,
        provider: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        delimiters: ReasoningDelimiters = CALLOUT,
    ):
        self.model_name = model_name
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.delimiters = delimiters

    async def stream_chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        config: Optional[StreamConfig] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield StreamEvents for one turn:
          - content: str (zero or more)
          - then exactly one of tool_calls: list[ToolCall] | error: exception | stream_end
        Cancellation ends the sequence early without a terminal event.
        """
        from streamcore.models.state import StreamState

        config = config or StreamConfig()
        token = config.cancellation or CancellationToken()
        state = StreamState.fresh(self.delimiters)
        messages = list(messages)

        if token.cancelled:
            return

        try:
            validate_conversation(messages)
            async with aclosing(self._stream(messages, list(tools or []), config, state, token)) as events:
                while True:
                    try:
                        event = await _next_unless_cancelled(events, token)
                    except StopAsyncIteration:
                        break
                    if event is None or token.cancelled:
                        logger.info("%s stream cancelled: %s", self.provider, token.reason)
                        return
                    yield event
            if token.cancelled:
                logger.info("%s stream cancelled: %s", self.provider, token.reason)
                return
            for event in state.finish():
                yield event
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = self._translate_error(exc)
            logger.warning("%s stream failed: %s", self.provider, error)
            yield StreamEvent.error(error)

    @abstractmethod
    def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        config: StreamConfig,
        state: Any,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        """
        Issue the vendor request and yield `content` events built through
        `state`. Return when the vendor signals the end of the turn; raise on
        abnormal stops or malformed payloads.
        """

    async def aclose(self) -> None:
        """Release the vendor client. The adapter is unusable afterwards."""

    def _translate_error(self, exc: Exception) -> StreamCoreError:
        if isinstance(exc, StreamCoreError):
            return exc
        error = StreamCoreError(f"{self.provider} stream failed: {exc}")
        error.__cause__ = exc
        return error

    def _model(self, config: StreamConfig) -> str:
        return config.model or self.model_name

    def _temperature(self, config: StreamConfig) -> Optional[float]:
        return config.temperature if config.temperature is not None else self.temperature

    def _max_tokens(self, config: StreamConfig) -> Optional[int]:
        return config.max_tokens if config.max_tokens is not None else self.max_tokens


# Resolves the StreamConfig.callbacks annotation; the callbacks module imports this one
from streamcore.agent import callbacks as _callbacks  # noqa: E402
