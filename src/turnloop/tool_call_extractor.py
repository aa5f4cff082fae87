from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from loguru import logger

from turnloop.types import JsonValue, ToolCall, ToolCallDelta, new_id

_TOOL_CALL_BLOCK = re.compile(r"<tool_call>(.*?)</tool_call>", re.DOTALL | re.IGNORECASE)
_FENCE_BEFORE = re.compile(r"```[\w+-]*[ \t]*(?:\r?\n)?\s*\Z")
_FENCE_AFTER = re.compile(r"\s*```")


@dataclass
class _PendingCall:
    id: str | None = None
    name: str = ""
    argument_parts: list[str] = field(default_factory=list)


class NativeToolCallAccumulator:
    """Collects streamed native tool-call deltas per call index."""

    def __init__(self) -> None:
        self._calls: dict[int, _PendingCall] = {}

    def __bool__(self) -> bool:
        return bool(self._calls)

    def add(self, delta: ToolCallDelta) -> bool:
        """Merge one delta; returns True the first time the call's name becomes known."""
        pending = self._calls.setdefault(delta.index, _PendingCall())
        had_name = bool(pending.name)
        if delta.id:
            pending.id = delta.id
        if delta.name:
            pending.name += delta.name
        if delta.arguments:
            pending.argument_parts.append(delta.arguments)
        return not had_name and bool(pending.name)

    def snapshot(self, index: int) -> ToolCallDelta:
        pending = self._calls[index]
        return ToolCallDelta(
            index=index,
            id=pending.id,
            name=pending.name or None,
            arguments="".join(pending.argument_parts) or None,
        )

    def build(self) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for index in sorted(self._calls):
            pending = self._calls[index]
            if not pending.name:
                logger.warning(f"Dropping native tool call #{index} without a name")
                continue
            raw_args = "".join(pending.argument_parts)
            calls.append(
                ToolCall(
                    id=pending.id or new_id(),
                    name=pending.name,
                    arguments=_parse_arguments(raw_args, pending.name),
                )
            )
        return calls


def _parse_arguments(raw_args: str, tool_name: str) -> dict[str, JsonValue]:
    if not raw_args.strip():
        return {}
    try:
        parsed = json.loads(raw_args)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse arguments for {tool_name}: {raw_args[:200]}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Arguments for {tool_name} are not a JSON object: {raw_args[:200]}")
        return {}
    return parsed


def _decode_textual_call(payload: str) -> ToolCall | None:
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError as ex:
        logger.error(f"Failed to parse tool call JSON: {ex}, raw={payload[:200]}")
        return None
    if not isinstance(obj, dict):
        logger.error(f"Tool call payload is not an object: {payload[:200]}")
        return None

    name = obj.get("name", obj.get("tool"))
    arguments = obj.get("arguments", obj.get("args", {}))
    if not isinstance(name, str) or not name:
        logger.error(f"Tool call payload has no name: {payload[:200]}")
        return None
    if isinstance(arguments, str):
        arguments = _parse_arguments(arguments, name)
    if not isinstance(arguments, dict):
        logger.error(f"Tool call arguments for {name} are not an object")
        return None
    return ToolCall(name=name, arguments=arguments)


def extract_textual_tool_calls(text: str) -> tuple[str, list[ToolCall]]:
    """Find ``<tool_call>{...}</tool_call>`` blocks in visible text.

    Returns the text with every block removed, together with the decoded calls
    in document order. A code fence is removed with its block only when it
    wraps nothing but that block.
    """
    calls: list[ToolCall] = []
    pieces: list[str] = []
    last_end = 0

    for match in _TOOL_CALL_BLOCK.finditer(text):
        start, end = match.span()
        before = _FENCE_BEFORE.search(text, last_end, start)
        after = _FENCE_AFTER.match(text, end)
        if before and after and text.count("```", 0, before.start()) % 2 == 0:
            start, end = before.start(), after.end()

        pieces.append(text[last_end:start])
        last_end = end

        call = _decode_textual_call(match.group(1).strip())
        if call is not None:
            calls.append(call)

    if last_end == 0:
        return text, calls
    pieces.append(text[last_end:])
    return "".join(pieces), calls


@dataclass(frozen=True)
class Extraction:
    clean_text: str
    calls: list[ToolCall]
    textual_calls: list[ToolCall] = field(default_factory=list)


class ToolCallExtractor:
    def extract(self, native: NativeToolCallAccumulator, visible_text: str) -> Extraction:
        native_calls = native.build()
        clean_text, textual_calls = extract_textual_tool_calls(visible_text)
        if native_calls or textual_calls:
            logger.debug(f"Extracted {len(native_calls)} native and {len(textual_calls)} textual tool call(s)")
        return Extraction(clean_text=clean_text, calls=native_calls + textual_calls, textual_calls=textual_calls)
