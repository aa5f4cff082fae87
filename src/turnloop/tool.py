from typing import Any, Protocol, runtime_checkable

from turnloop.types import JsonValue, ToolDescriptor, ToolResult


@runtime_checkable
class Tool(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def requires_permission(self) -> bool: ...

    @property
    def parameters_schema(self) -> dict[str, Any]: ...

    async def can_execute(self) -> bool: ...

    async def execute(self, parameters: dict[str, JsonValue]) -> ToolResult: ...


def describe(tool: Tool) -> ToolDescriptor:
    return ToolDescriptor(
        name=tool.name,
        description=tool.description,
        parameters_schema=tool.parameters_schema,
    )


def summarize_tool_call(name: str, parameters: dict[str, JsonValue], result: ToolResult) -> str:
    """Compact one-line description, e.g. ``[read_file(path=notes.md)] -> 45 lines``."""
    shown = ", ".join(f"{key}={str(parameters[key])[:20]}" for key in sorted(parameters)[:3])
    if result.success:
        output = result.output or ""
        lines = len(output.splitlines())
        outcome = f"{lines} lines" if lines > 1 else output[:50]
    else:
        outcome = f"error: {(result.error or 'unknown')[:30]}"
    return f"[{name}({shown})] -> {outcome}"
