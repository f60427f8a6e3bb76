"""
Agent execution loop.
Handles multi-turn tool use: stream a turn, run the requested tools through the
executor, append the results and stream the continuation turn.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import AsyncIterator, Optional

from streamcore.agent.callbacks import StreamCallbacks, ToolCallHook, ToolsRequestHook, invoke_callback
from streamcore.agent.provider import StreamingProvider
from streamcore.errors import StreamCoreError
from streamcore.models.base import Message, StreamConfig, ToolCall
from streamcore.tools.base import LocalToolExecutor, ToolExecutor, continuation_messages, execute_tool_calls

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 20


async def run_agent(
    provider: StreamingProvider,
    messages: list[Message],
    executor: ToolExecutor,
    config: Optional[StreamConfig] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> AsyncIterator[str]:
    """
    Run the agent loop. Yields text chunks from every turn.
    Raises StreamCoreError when the model still asks for tools after max_iterations turns.
    """
    config = config or StreamConfig()
    callbacks = config.callbacks or StreamCallbacks()
    token = config.cancellation
    working_messages = list(messages)

    async def offer_tools(hook: ToolsRequestHook):
        # A caller-supplied handler wins over the executor's own tool list
        if callbacks.on_tools_request:
            return await invoke_callback(callbacks.on_tools_request, hook)
        if isinstance(executor, LocalToolExecutor):
            return executor.definitions()
        return None

    for iteration in range(max_iterations):
        requested: list[ToolCall] = []

        async def capture(hook: ToolCallHook):
            requested.extend(hook.tool_calls)
            await invoke_callback(callbacks.on_tool_call, hook)

        turn_config = config.model_copy(update={
            "callbacks": dataclasses.replace(callbacks, on_tools_request=offer_tools, on_tool_call=capture),
        })

        assistant_text = ""
        async for chunk in provider.stream(working_messages, turn_config):
            assistant_text += chunk
            yield chunk

        if not requested or (token is not None and token.cancelled):
            return

        logger.info("iteration %d: executing %d tool calls", iteration + 1, len(requested))
        results = await execute_tool_calls(executor, requested, token)
        if token is not None and token.cancelled:
            return
        working_messages = continuation_messages(working_messages, requested, results, assistant_text)

    raise StreamCoreError(f"Max iterations ({max_iterations}) reached")
