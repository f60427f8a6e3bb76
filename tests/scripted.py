"""A vendor-free adapter that replays a fixed script of raw protocol units."""

from __future__ import annotations

from streamcore.models.base import BaseModelAdapter, StreamConfig


class ScriptedAdapter(BaseModelAdapter):
    """
    Steps:
      ("text", str) | ("reasoning", str)
      ("fragment", key, call_id, name, arguments)
      ("call", call_id, name, arguments)
      ("raise", exception)
    """

    protocol = "scripted"

    def __init__(self, steps, model_name="scripted-model", provider="scripted", **kwargs):
        super().__init__(model_name, provider, **kwargs)
        self.steps = list(steps)
        self.requests = 0
        self.seen_messages = None
        self.seen_tools = None
        self.seen_config: StreamConfig | None = None

    async def _stream(self, messages, tools, config, state, token):
        self.requests += 1
        self.seen_messages = messages
        self.seen_tools = tools
        self.seen_config = config
        for step in self.steps:
            if token.cancelled:
                return
            kind = step[0]
            if kind == "text":
                yield state.content_event(step[1])
            elif kind == "reasoning":
                yield state.reasoning_event(step[1])
            elif kind == "fragment":
                _, key, call_id, name, arguments = step
                state.tool_calls.add_fragment(key, call_id=call_id, name=name, arguments=arguments)
            elif kind == "call":
                _, call_id, name, arguments = step
                state.tool_calls.add_complete(call_id, name, arguments)
            elif kind == "raise":
                raise step[1]


async def collect(stream):
    return [event async for event in stream]
