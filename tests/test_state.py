"""Tests for tool-call accumulation and end-of-stream events."""

import pytest

from streamcore.errors import ProtocolError
from streamcore.models.reasoning import CALLOUT
from streamcore.models.state import StreamState, ToolCallAccumulator


def test_fragments_concatenate_and_parse_once():
    acc = ToolCallAccumulator()
    acc.add_fragment(0, call_id="call_1", name="add", arguments='{"a":')
    acc.add_fragment(0, arguments="1}")
    calls = acc.finalize()
    assert len(calls) == 1
    assert calls[0].id == "call_1"
    assert calls[0].name == "add"
    assert calls[0].arguments == {"a": 1}


def test_calls_keep_arrival_order_by_key():
    acc = ToolCallAccumulator()
    acc.add_fragment(0, call_id="a", name="first")
    acc.add_fragment(1, call_id="b", name="second", arguments="{}")
    acc.add_fragment(0, arguments='{"x": true}')
    calls = acc.finalize()
    assert [c.name for c in calls] == ["first", "second"]
    assert calls[0].arguments == {"x": True}


def test_empty_arguments_become_empty_object():
    acc = ToolCallAccumulator()
    acc.add_fragment("k", call_id="c", name="ping")
    assert acc.finalize()[0].arguments == {}


def test_complete_calls_get_generated_ids():
    acc = ToolCallAccumulator()
    acc.add_complete(None, "lookup", {"q": "x"})
    acc.add_complete(None, "lookup", '{"q": "y"}')
    calls = acc.finalize()
    assert [c.arguments for c in calls] == [{"q": "x"}, {"q": "y"}]
    assert calls[0].id.startswith("call_")
    assert calls[0].id != calls[1].id


def test_malformed_json_is_a_protocol_error():
    acc = ToolCallAccumulator()
    acc.add_fragment(0, call_id="c", name="f", arguments='{"a": ')
    with pytest.raises(ProtocolError):
        acc.finalize()


def test_non_object_arguments_rejected():
    acc = ToolCallAccumulator()
    acc.add_fragment(0, call_id="c", name="f", arguments="[1, 2]")
    with pytest.raises(ProtocolError):
        acc.finalize()


def test_name_fragments_concatenate_like_arguments():
    acc = ToolCallAccumulator()
    acc.add_fragment(0, call_id="call_1", name="get_", arguments='{"city": ')
    acc.add_fragment(0, name="weather", arguments='"Oslo"}')
    calls = acc.finalize()
    assert calls[0].name == "get_weather"
    assert calls[0].arguments == {"city": "Oslo"}


def test_missing_name_rejected():
    acc = ToolCallAccumulator()
    acc.add_fragment(0, call_id="c", arguments="{}")
    with pytest.raises(ProtocolError):
        acc.finalize()


def test_finish_flushes_closing_marker_before_terminal():
    state = StreamState.fresh(CALLOUT)
    state.reasoning_event("thinking")
    state.tool_calls.add_fragment(0, call_id="c", name="f", arguments="{}")
    events = state.finish()
    assert [e.type for e in events] == ["content", "tool_calls"]
    assert events[0].text == CALLOUT.closing


def test_finish_without_calls_is_stream_end():
    events = StreamState.fresh().finish()
    assert [e.type for e in events] == ["stream_end"]
