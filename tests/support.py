import asyncio
from types import SimpleNamespace
from typing import Any

from turnloop.engine import GenerationEngine
from turnloop.errors import ExternalExecutionRequired
from turnloop.persistence import InMemoryMessageStore
from turnloop.tool_registry import ToolRegistry
from turnloop.types import ModelFragment, ToolCallDelta, ToolResult


class FakeTool:
    def __init__(
        self,
        name: str,
        *,
        results: list[ToolResult] | None = None,
        error: Exception | None = None,
        external: bool = False,
        allowed: bool = True,
        description: str = "",
    ):
        self._name = name
        self._results = list(results or [])
        self._error = error
        self._external = external
        self._allowed = allowed
        self._description = description
        self.calls: list[dict] = []

    @property
    def id(self) -> str:
        return f"fake:{self._name}"

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def requires_permission(self) -> bool:
        return False

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def can_execute(self) -> bool:
        return self._allowed

    async def execute(self, parameters: dict) -> ToolResult:
        self.calls.append(parameters)
        if self._external:
            raise ExternalExecutionRequired(self._name)
        if self._error is not None:
            raise self._error
        if self._results:
            return self._results.pop(0) if len(self._results) > 1 else self._results[0]
        return ToolResult.ok(f"{self._name} ok")


class ScriptedSource:
    """Model-stream source replaying one scripted fragment list per request."""

    def __init__(self, *turns: list[ModelFragment], repeat=None, fail_with: Exception | None = None):
        self._turns = list(turns)
        self._repeat = repeat
        self._fail_with = fail_with
        self.requests: list[SimpleNamespace] = []
        self.closed = 0

    async def stream(self, messages, tools, *, system_prompt=""):
        self.requests.append(SimpleNamespace(messages=list(messages), tools=list(tools), system_prompt=system_prompt))
        n = len(self.requests) - 1
        fragments = self._turns[n] if n < len(self._turns) else self._repeat(n)
        try:
            for fragment in fragments:
                yield fragment
            if self._fail_with is not None:
                raise self._fail_with
        finally:
            self.closed += 1


def text_turn(*chunks: str) -> list[ModelFragment]:
    return [ModelFragment(text=chunk) for chunk in chunks]


def native_call(name: str | None, arguments: str | None = None, *, index: int = 0, call_id: str | None = None) -> ModelFragment:
    return ModelFragment(tool_calls=(ToolCallDelta(index=index, id=call_id, name=name, arguments=arguments),))


def make_engine(source, *tools, **kwargs) -> tuple[GenerationEngine, InMemoryMessageStore]:
    store = InMemoryMessageStore()
    return GenerationEngine(source, ToolRegistry(tools), store, **kwargs), store


def run_chat(engine: GenerationEngine, *args, **kwargs) -> list:
    async def _collect():
        stream = await engine.chat_stream(*args, **kwargs)
        return [event async for event in stream]

    return asyncio.run(_collect())


def stored(store: InMemoryMessageStore, session_id: str) -> list:
    return asyncio.run(store.load_messages(session_id))
