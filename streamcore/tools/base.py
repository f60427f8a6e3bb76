"""
Tool execution bridge. Each tool exposes a JSON schema for the model
and an async `run` method; an executor turns ToolCalls into ToolResults,
which re-enter the conversation as `tool` messages.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from streamcore.cancellation import CancellationToken
from streamcore.models.base import Message, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)


class BaseTool(ABC):
    name: str
    description: str
    parameters: dict  # JSON Schema object

    @abstractmethod
    async def run(self, **kwargs: Any) -> str:
        """Execute the tool and return a string result."""

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=self.parameters)


class ToolResult(BaseModel):
    tool_call_id: str
    name: str
    content: str
    success: bool = True
    error: Optional[str] = None

    def to_message(self) -> Message:
        return Message(role="tool", content=self.content, tool_call_id=self.tool_call_id, name=self.name)


@runtime_checkable
class ToolExecutor(Protocol):
    async def execute_tool(self, call: ToolCall, cancellation: Optional[CancellationToken] = None) -> ToolResult:
        ...


class LocalToolExecutor:
    """Runs BaseTool instances in-process. Failures become failed results, never exceptions."""

    def __init__(self, tools: Iterable[BaseTool]):
        self._tools = {t.name: t for t in tools}

    def definitions(self) -> list[ToolDefinition]:
        return [t.definition() for t in self._tools.values()]

    async def execute_tool(self, call: ToolCall, cancellation: Optional[CancellationToken] = None) -> ToolResult:
        tool = self._tools.get(call.name)
        if tool is None:
            message = f"Error: unknown tool '{call.name}'"
            return ToolResult(tool_call_id=call.id, name=call.name, content=message, success=False, error=message)
        try:
            output = await tool.run(**call.arguments)
        except Exception as e:
            logger.warning("tool %s failed: %s", call.name, e)
            message = f"Tool error: {e}"
            return ToolResult(tool_call_id=call.id, name=call.name, content=message, success=False, error=str(e))
        return ToolResult(tool_call_id=call.id, name=call.name, content=output)


async def execute_tool_calls(
    executor: ToolExecutor,
    calls: list[ToolCall],
    cancellation: Optional[CancellationToken] = None,
) -> list[ToolResult]:
    """Run calls in order; stop before the next call once cancelled."""
    results = []
    for call in calls:
        if cancellation is not None and cancellation.cancelled:
            logger.info("tool execution cancelled after %d of %d calls", len(results), len(calls))
            break
        results.append(await executor.execute_tool(call, cancellation))
    return results


def continuation_messages(
    messages: list[Message],
    calls: list[ToolCall],
    results: list[ToolResult],
    assistant_text: str = "",
) -> list[Message]:
    """History for the next turn: prior messages, the assistant's calls, then their results."""
    assistant = Message(role="assistant", content=assistant_text, tool_calls=tuple(calls))
    return [*messages, assistant, *(r.to_message() for r in results)]
