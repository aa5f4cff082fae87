from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass

from loguru import logger

from turnloop.errors import ExternalExecutionRequired, ToolNotFoundError
from turnloop.tool import summarize_tool_call
from turnloop.tool_registry import ToolRegistry
from turnloop.types import Message, Role, ToolCall, ToolResult

DEFAULT_LOOP_THRESHOLD = 3


@dataclass(frozen=True)
class ToolInvocation:
    """Structured outcome of one call: the tool message to persist plus what produced it."""

    message: Message
    result: ToolResult
    loop_detected: bool = False


def _signature(call: ToolCall) -> tuple[str, str]:
    return call.name, json.dumps(call.arguments, sort_keys=True, ensure_ascii=False)


class ToolInvoker:
    """Executes tool calls for one session and breaks repetition loops.

    A call whose name and arguments match each of the previous
    ``loop_threshold - 1`` calls is not executed; the model gets a
    "Loop detected" tool message instead.
    """

    def __init__(self, registry: ToolRegistry, *, session_id: str = "", loop_threshold: int = DEFAULT_LOOP_THRESHOLD):
        if loop_threshold < 2:
            raise ValueError("loop_threshold must be at least 2")
        self._registry = registry
        self._session_id = session_id
        self._loop_threshold = loop_threshold
        self._recent: deque[tuple[str, str]] = deque(maxlen=loop_threshold - 1)

    @property
    def loop_threshold(self) -> int:
        return self._loop_threshold

    def reset(self) -> None:
        self._recent.clear()

    async def execute(self, call: ToolCall) -> Message:
        return (await self.execute_detailed(call)).message

    async def execute_detailed(self, call: ToolCall) -> ToolInvocation:
        tool = self._registry.get(call.name)
        if tool is None:
            raise ToolNotFoundError(call.name)

        signature = _signature(call)
        repeated = len(self._recent) == self._recent.maxlen and all(s == signature for s in self._recent)
        self._recent.append(signature)

        if repeated:
            error = (
                f"Loop detected. Tool '{call.name}' has been called {self._loop_threshold} times in a row "
                "with the exact same arguments. Try different arguments or a different approach."
            )
            logger.warning(f"Loop detected for tool {call.name} (session={self._session_id or '-'})")
            return ToolInvocation(
                message=self._tool_message(call, f"Error: {error}"),
                result=ToolResult.fail(error),
                loop_detected=True,
            )

        if not await tool.can_execute():
            error = f"Tool '{call.name}' cannot be executed right now"
            logger.warning(error)
            return self._failure(call, error)

        try:
            result = await tool.execute(call.arguments)
        except ExternalExecutionRequired:
            logger.info(f"Tool {call.name} requires client-side execution (call_id={call.id})")
            raise
        except Exception as ex:
            logger.error(f"Failed to execute tool {call.name}: {ex}")
            return self._failure(call, f"Failed to execute tool {call.name}: {ex}")

        logger.info(summarize_tool_call(call.name, call.arguments, result))
        if not result.success:
            return ToolInvocation(message=self._tool_message(call, f"Error: {result.error}"), result=result)
        return ToolInvocation(message=self._tool_message(call, result.output or ""), result=result)

    async def execute_all(self, calls: list[ToolCall]) -> list[Message]:
        messages: list[Message] = []
        for call in calls:
            try:
                messages.append(await self.execute(call))
            except ToolNotFoundError as ex:
                logger.warning(str(ex))
                messages.append(self._tool_message(call, f"Error: {ex}"))
        return messages

    def _failure(self, call: ToolCall, error: str) -> ToolInvocation:
        return ToolInvocation(message=self._tool_message(call, f"Error: {error}"), result=ToolResult.fail(error))

    def _tool_message(self, call: ToolCall, content: str) -> Message:
        return Message(
            session_id=self._session_id,
            role=Role.TOOL,
            content=content,
            tool_call_id=call.id,
        )
