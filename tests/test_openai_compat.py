"""Tests for the OpenAI-compatible adapter (mocked SDK client)."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from openai.types.chat import ChatCompletionChunk

from streamcore.errors import TransportError, UnexpectedStopReason, UnsupportedInputError
from streamcore.models.base import Embed, Message, StreamConfig, ToolCall, ToolDefinition
from streamcore.models.openai_compat import OpenAICompatAdapter
from streamcore.models.reasoning import CALLOUT
from tests.scripted import collect


def _chunk(delta=None, finish_reason=None, choices=True):
    return ChatCompletionChunk.model_validate({
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 0,
        "model": "gpt-test",
        "choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}] if choices else [],
    })


class FakeStream:
    def __init__(self, chunks, fail_after=None):
        self.chunks = chunks
        self.fail_after = fail_after
        self.closed = False

    async def __aiter__(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise openai.APIConnectionError(request=httpx.Request("POST", "https://api.test/v1"))
            yield chunk

    async def close(self):
        self.closed = True


def _adapter(stream):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=stream)
    return OpenAICompatAdapter(model_name="gpt-test", client=client, provider="deepseek"), client


USER = [Message(role="user", content="hi")]


@pytest.mark.asyncio
async def test_text_deltas_and_stream_end():
    stream = FakeStream([
        _chunk({"role": "assistant", "content": "Hel"}),
        _chunk({"content": "lo"}),
        _chunk({}, finish_reason="stop"),
    ])
    adapter, client = _adapter(stream)
    events = await collect(adapter.stream_chat(USER))
    assert [(e.type, e.data) for e in events] == [("content", "Hel"), ("content", "lo"), ("stream_end", None)]
    assert stream.closed
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "gpt-test"
    assert "tools" not in kwargs


@pytest.mark.asyncio
async def test_reasoning_content_is_multiplexed():
    stream = FakeStream([
        _chunk({"reasoning_content": "think\nmore"}),
        _chunk({"content": "answer"}),
        _chunk({}, finish_reason="stop"),
    ])
    adapter, _ = _adapter(stream)
    events = await collect(adapter.stream_chat(USER))
    text = "".join(e.text for e in events)
    assert text == CALLOUT.opening + "think\n> more" + CALLOUT.closing + "answer"


@pytest.mark.asyncio
async def test_tool_call_fragments_keyed_by_index():
    stream = FakeStream([
        _chunk({"tool_calls": [{"index": 0, "id": "call_a", "type": "function",
                                "function": {"name": "add", "arguments": '{"a":'}}]}),
        _chunk({"tool_calls": [{"index": 1, "id": "call_b", "type": "function",
                                "function": {"name": "now", "arguments": ""}}]}),
        _chunk({"tool_calls": [{"index": 0, "function": {"arguments": "1}"}}]}),
        _chunk({}, finish_reason="tool_calls"),
    ])
    adapter, client = _adapter(stream)
    tools = [ToolDefinition(name="add", description="add numbers")]
    events = await collect(adapter.stream_chat(USER, tools))
    assert [e.type for e in events] == ["tool_calls"]
    calls = events[0].calls
    assert [(c.id, c.name, c.arguments) for c in calls] == [("call_a", "add", {"a": 1}), ("call_b", "now", {})]
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["tools"][0]["function"]["name"] == "add"
    assert kwargs["tool_choice"] == "auto"


@pytest.mark.asyncio
async def test_length_finish_reason_is_error():
    stream = FakeStream([_chunk({"content": "cut"}), _chunk({}, finish_reason="length")])
    adapter, _ = _adapter(stream)
    events = await collect(adapter.stream_chat(USER))
    assert [e.type for e in events] == ["content", "error"]
    assert isinstance(events[-1].cause, UnexpectedStopReason)
    assert events[-1].cause.stop_reason == "length"


@pytest.mark.asyncio
async def test_usage_only_chunk_is_ignored():
    stream = FakeStream([_chunk({"content": "a"}), _chunk(choices=False), _chunk({}, finish_reason="stop")])
    adapter, _ = _adapter(stream)
    events = await collect(adapter.stream_chat(USER))
    assert [e.type for e in events] == ["content", "stream_end"]


@pytest.mark.asyncio
async def test_status_error_becomes_retryable_transport_error():
    response = httpx.Response(429, request=httpx.Request("POST", "https://api.test/v1/chat/completions"))
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        side_effect=openai.RateLimitError("slow down", response=response, body=None)
    )
    adapter = OpenAICompatAdapter(model_name="gpt-test", client=client)
    events = await collect(adapter.stream_chat(USER))
    error = events[-1].cause
    assert isinstance(error, TransportError)
    assert error.status_code == 429
    assert error.retryable
    assert isinstance(error.__cause__, openai.RateLimitError)


@pytest.mark.asyncio
async def test_connection_drop_mid_stream():
    stream = FakeStream([_chunk({"content": "a"}), _chunk({"content": "b"}), _chunk({})], fail_after=2)
    adapter, _ = _adapter(stream)
    events = await collect(adapter.stream_chat(USER))
    assert [e.type for e in events] == ["content", "content", "error"]
    assert events[-1].cause.connection_failed
    assert stream.closed


@pytest.mark.asyncio
async def test_request_carries_embeds_options_and_tool_history():
    stream = FakeStream([_chunk({}, finish_reason="stop")])
    adapter, client = _adapter(stream)

    async def resolve(embed):
        return b"\x89PNG"

    messages = [
        Message(role="system", content="be brief"),
        Message(role="user", content="look", embeds=(Embed(link="chart.png"), Embed(link="paper.pdf"))),
        Message(role="assistant", tool_calls=(ToolCall(id="c1", name="f", arguments={"x": 1}),)),
        Message(role="tool", content="42", tool_call_id="c1", name="f"),
    ]
    config = StreamConfig(resolve_embed=resolve, provider_options={"top_p": 0.5}, temperature=0.2)
    await collect(adapter.stream_chat(messages, config=config))

    kwargs = client.chat.completions.create.call_args.kwargs
    sent = kwargs["messages"]
    assert sent[0] == {"role": "system", "content": "be brief"}
    parts = sent[1]["content"]
    assert parts[0] == {"type": "text", "text": "look"}
    assert parts[1]["image_url"]["url"].startswith("data:image/png;base64,")
    assert parts[2]["type"] == "file"
    assert sent[2]["content"] is None
    assert sent[2]["tool_calls"][0]["function"]["arguments"] == '{"x": 1}'
    assert sent[3] == {"role": "tool", "tool_call_id": "c1", "content": "42"}
    assert kwargs["extra_body"] == {"top_p": 0.5}
    assert kwargs["temperature"] == 0.2


@pytest.mark.asyncio
async def test_unsupported_attachment_rejected_before_request():
    adapter, client = _adapter(FakeStream([]))
    messages = [Message(role="user", content="read", embeds=(Embed(link="notes.docx"),))]
    events = await collect(adapter.stream_chat(messages))
    assert isinstance(events[-1].cause, UnsupportedInputError)
    client.chat.completions.create.assert_not_called()


@pytest.mark.asyncio
async def test_aclose_closes_the_sdk_client():
    adapter, client = _adapter(FakeStream([]))
    client.close = AsyncMock()
    await adapter.aclose()
    client.close.assert_awaited_once()
