from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeAlias
from uuid import uuid4

JsonValue: TypeAlias = "None | bool | int | float | str | list[JsonValue] | dict[str, JsonValue]"


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


def new_id() -> str:
    return str(uuid4())


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"
    SUMMARY = "summary"


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: dict[str, JsonValue] = field(default_factory=dict)
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a tool execution. Exactly one of ``output``/``error`` is set."""

    success: bool
    output: str | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.success and (self.output is None or self.error is not None):
            raise ValueError("A successful ToolResult carries output and no error")
        if not self.success and (self.error is None or self.output is not None):
            raise ValueError("A failed ToolResult carries an error and no output")

    @classmethod
    def ok(cls, output: str) -> ToolResult:
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class Message:
    session_id: str
    role: Role
    content: str = ""
    think: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None
    parent_id: str | None = None
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ToolCallDelta:
    """One streamed piece of a native tool call, keyed by the provider's call index."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class ModelFragment:
    text: str | None = None
    tool_calls: tuple[ToolCallDelta, ...] = ()
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str = ""
    parameters_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass(frozen=True)
class ToolOutputSubmission:
    """Result of a tool the caller executed itself, fed back on the next ``chat_stream``."""

    tool_call_id: str
    output: str
