"""Events yielded by ``GenerationEngine.chat_stream``.

``ChatEvent`` is a closed union; consumers are expected to ``match`` on it
exhaustively. A stream always starts with ``GenerationContext`` and ends with
``GenerationCompleted``, unless the model-stream source fails, in which case
the error is raised out of the iterator instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypeAlias

from turnloop.types import Message, ToolCallDelta, ToolResult


@dataclass(frozen=True)
class GenerationContext:
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Thought:
    """Reasoning text.

    When ``reclassified`` is set, ``text`` is content that was previously
    delivered as ``Delta`` events of the current turn; the caller should move
    it out of the visible answer.
    """

    text: str
    reclassified: bool = False


@dataclass(frozen=True)
class ThoughtCompleted:
    pass


@dataclass(frozen=True)
class Delta:
    text: str


@dataclass(frozen=True)
class ToolCallStarted:
    delta: ToolCallDelta


@dataclass(frozen=True)
class Attempting:
    name: str


@dataclass(frozen=True)
class Succeeded:
    result: ToolResult


@dataclass(frozen=True)
class Failed:
    error: str


ToolExecutionStatus: TypeAlias = Attempting | Succeeded | Failed


@dataclass(frozen=True)
class ToolExecution:
    call_id: str
    status: ToolExecutionStatus


@dataclass(frozen=True)
class ResponseMetadata:
    """Figures for the last model turn of an exchange.

    Token counts are those reported by the provider and stay ``None`` when it
    reports none. ``tokens_per_second`` falls back to an estimate from the
    streamed text in that case.
    """

    model: str = ""
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    duration: float = 0.0
    tokens_per_second: float | None = None


@dataclass(frozen=True)
class GenerationCompleted:
    message: Message | None = None
    turns: int = 0
    metadata: ResponseMetadata | None = None


ChatEvent: TypeAlias = (
    GenerationContext
    | Thought
    | ThoughtCompleted
    | Delta
    | ToolCallStarted
    | ToolExecution
    | GenerationCompleted
)
