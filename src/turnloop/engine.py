from __future__ import annotations

import dataclasses
import json
import time
from collections import OrderedDict
from collections.abc import AsyncIterator, Iterable
from contextlib import aclosing

from loguru import logger

from turnloop.errors import ExternalExecutionRequired, InvalidInputError, ToolNotFoundError
from turnloop.events import (
    Attempting,
    ChatEvent,
    Delta,
    Failed,
    GenerationCompleted,
    GenerationContext,
    ResponseMetadata,
    Succeeded,
    Thought,
    ThoughtCompleted,
    ToolCallStarted,
    ToolExecution,
)
from turnloop.persistence import MessageStore
from turnloop.provider import ModelStreamSource
from turnloop.stream_classifier import Channel, ClassifiedDelta, StreamClassifier
from turnloop.tool_call_extractor import NativeToolCallAccumulator, ToolCallExtractor
from turnloop.tool_invoker import DEFAULT_LOOP_THRESHOLD, ToolInvoker
from turnloop.tool_registry import ToolRegistry
from turnloop.types import (
    Message,
    Role,
    TokenUsage,
    ToolCall,
    ToolCallDelta,
    ToolDescriptor,
    ToolOutputSubmission,
    ToolResult,
)

DEFAULT_MAX_TURNS = 5
DEFAULT_SENTINEL_NAMES = ("function_name",)
DEFAULT_MAX_SESSIONS = 1024


class _Turn:
    """Mutable state of one model round-trip."""

    def __init__(self) -> None:
        self.classifier = StreamClassifier()
        self.native = NativeToolCallAccumulator()
        self.thinking_open = False
        self.usage: TokenUsage | None = None
        self.started = time.perf_counter()
        self.duration = 0.0

    def metadata(self, model: str, streamed_text: str) -> ResponseMetadata:
        usage = self.usage or TokenUsage()
        # Rough chars/4 estimate when the provider reports no usage
        completion = usage.completion_tokens if usage.completion_tokens is not None else len(streamed_text) // 4
        return ResponseMetadata(
            model=model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            duration=self.duration,
            tokens_per_second=completion / self.duration if self.duration > 0 else None,
        )

    def close_thought(self) -> list[ChatEvent]:
        if not self.thinking_open:
            return []
        self.thinking_open = False
        return [ThoughtCompleted()]

    def events_for(self, classified: ClassifiedDelta) -> list[ChatEvent]:
        events: list[ChatEvent] = []
        for segment in classified.segments:
            if segment.channel is Channel.THINKING:
                events.append(Thought(segment.text, reclassified=classified.reclassified))
                self.thinking_open = True
            else:
                events.extend(self.close_thought())
                events.append(Delta(segment.text))
        return events


class GenerationEngine:
    """Drives a conversation exchange and reports it as a stream of ``ChatEvent``.

    One ``chat_stream`` call may span several model turns: whenever the model
    asks for tools, they are executed and their results fed back until the
    model answers in plain text, a tool must run on the client, or the turn
    limit is reached.
    """

    def __init__(
        self,
        source: ModelStreamSource,
        registry: ToolRegistry,
        store: MessageStore,
        *,
        system_prompt: str = "",
        model: str = "",
        max_turns: int = DEFAULT_MAX_TURNS,
        loop_threshold: int = DEFAULT_LOOP_THRESHOLD,
        sentinel_names: Iterable[str] = DEFAULT_SENTINEL_NAMES,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ) -> None:
        if max_sessions < 1:
            raise ValueError(f"max_sessions must be at least 1, got {max_sessions}")
        self._source = source
        self._registry = registry
        self._store = store
        self._system_prompt = system_prompt
        self._model = model
        self._max_turns = max_turns
        self._loop_threshold = loop_threshold
        self._sentinel_names = frozenset(sentinel_names)
        self._extractor = ToolCallExtractor()
        self._max_sessions = max_sessions
        # Least recently used first
        self._invokers: OrderedDict[str, ToolInvoker] = OrderedDict()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def store(self) -> MessageStore:
        return self._store

    def invoker_for(self, session_id: str) -> ToolInvoker:
        """Return the session's invoker, keeping at most ``max_sessions`` alive.

        The least recently used session is evicted first; its repetition
        window starts over if it comes back.
        """
        invoker = self._invokers.get(session_id)
        if invoker is not None:
            self._invokers.move_to_end(session_id)
            return invoker
        invoker = ToolInvoker(self._registry, session_id=session_id, loop_threshold=self._loop_threshold)
        self._invokers[session_id] = invoker
        while len(self._invokers) > self._max_sessions:
            evicted, _ = self._invokers.popitem(last=False)
            logger.debug(f"Evicted tool invoker for session {evicted}")
        return invoker

    def reset_session(self, session_id: str) -> None:
        """Forget the session's repetition window. Stored messages are untouched."""
        invoker = self._invokers.pop(session_id, None)
        if invoker is not None:
            invoker.reset()
            logger.debug(f"Reset tool invoker for session {session_id}")

    @property
    def active_sessions(self) -> list[str]:
        return list(self._invokers)

    async def chat_stream(
        self,
        session_id: str,
        message: str,
        tools: list[ToolDescriptor] | None = None,
        max_turns: int | None = None,
        *,
        tool_outputs: list[ToolOutputSubmission] | None = None,
        parent_id: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Validate the request and return its event stream.

        ``tools`` are the descriptors offered to the model this time; ``None``
        offers every registered tool. Raises ``InvalidInputError`` before any
        event is produced when there is neither a message nor tool output to
        continue from.
        """
        if not session_id:
            raise InvalidInputError("session_id must not be empty")
        if not message.strip() and not tool_outputs:
            raise InvalidInputError("Message must not be empty")
        turn_limit = self._max_turns if max_turns is None else max_turns
        if turn_limit < 1:
            raise InvalidInputError(f"max_turns must be at least 1, got {turn_limit}")

        offered = self._registry.descriptors() if tools is None else list(tools)
        return self._generate(
            session_id,
            message,
            offered,
            turn_limit,
            list(tool_outputs or ()),
            parent_id,
        )

    async def _generate(
        self,
        session_id: str,
        message: str,
        tools: list[ToolDescriptor],
        max_turns: int,
        tool_outputs: list[ToolOutputSubmission],
        parent_id: str | None,
    ) -> AsyncIterator[ChatEvent]:
        history = await self._store.load_messages(session_id)
        offered_names = {t.name for t in tools}
        invoker = self.invoker_for(session_id)
        last_id = parent_id

        async def persist(msg: Message) -> Message:
            nonlocal last_id
            if last_id is not None:
                msg = dataclasses.replace(msg, parent_id=last_id)
                last_id = msg.id
            await self._store.save_message(msg)
            history.append(msg)
            return msg

        yield GenerationContext(
            metadata={
                "session_id": session_id,
                "model": self._model,
                "history_length": len(history),
                "tools": sorted(offered_names),
                "max_turns": max_turns,
                "system_prompt": bool(self._system_prompt),
                "tool_outputs": len(tool_outputs),
            }
        )

        for output in tool_outputs:
            await persist(Message(
                session_id=session_id,
                role=Role.TOOL,
                content=output.output,
                tool_call_id=output.tool_call_id,
            ))
        if message.strip():
            await persist(Message(session_id=session_id, role=Role.USER, content=message))

        final: Message | None = None
        metadata: ResponseMetadata | None = None
        turns = 0
        while turns < max_turns:
            turns += 1
            logger.info(f"Session {session_id}: turn {turns}/{max_turns}")
            turn = _Turn()

            async with aclosing(self._stream_turn(turn, history, tools)) as events:
                async for event in events:
                    yield event

            thinking, visible = turn.classifier.finalize()
            metadata = turn.metadata(self._model, (thinking or "") + visible)
            logger.debug(
                f"Session {session_id}: turn {turns} took {metadata.duration:.2f}s, "
                f"prompt_tokens={metadata.prompt_tokens}, completion_tokens={metadata.completion_tokens}"
            )
            extraction = self._extractor.extract(turn.native, visible)
            calls = self._filter_calls(extraction.calls, offered_names)

            textual_ids = {c.id for c in extraction.textual_calls}
            for index, call in enumerate(calls):
                if call.id in textual_ids:
                    yield ToolCallStarted(ToolCallDelta(
                        index=index,
                        id=call.id,
                        name=call.name,
                        arguments=json.dumps(call.arguments, ensure_ascii=False),
                    ))

            final = await persist(Message(
                session_id=session_id,
                role=Role.ASSISTANT,
                content=extraction.clean_text.strip(),
                think=thinking,
                tool_calls=tuple(calls) if calls else None,
            ))
            if not calls:
                break

            paused = False
            for call in calls:
                yield ToolExecution(call.id, Attempting(call.name))
                try:
                    invocation = await invoker.execute_detailed(call)
                except ExternalExecutionRequired:
                    logger.info(f"Session {session_id}: pausing for client execution of {call.name}")
                    paused = True
                    break
                except ToolNotFoundError as ex:
                    logger.warning(str(ex))
                    result = ToolResult.fail(str(ex))
                    tool_message = Message(
                        session_id=session_id,
                        role=Role.TOOL,
                        content=f"Error: {ex}",
                        tool_call_id=call.id,
                    )
                else:
                    result = invocation.result
                    tool_message = invocation.message

                status = Succeeded(result) if result.success else Failed(result.error or "")
                yield ToolExecution(call.id, status)
                await persist(tool_message)
            if paused:
                break
        else:
            logger.warning(f"Session {session_id}: reached turn limit ({max_turns})")

        logger.info(f"Session {session_id}: generation completed after {turns} turn(s)")
        yield GenerationCompleted(message=final, turns=turns, metadata=metadata)

    async def _stream_turn(
        self,
        turn: _Turn,
        history: list[Message],
        tools: list[ToolDescriptor],
    ) -> AsyncIterator[ChatEvent]:
        stream = self._source.stream(list(history), tools, system_prompt=self._system_prompt)
        try:
            async for fragment in stream:
                if fragment.usage is not None:
                    turn.usage = fragment.usage
                if fragment.text:
                    for event in turn.events_for(turn.classifier.process(fragment.text)):
                        yield event
                for delta in fragment.tool_calls:
                    if turn.native.add(delta):
                        for event in turn.close_thought():
                            yield event
                        yield ToolCallStarted(turn.native.snapshot(delta.index))
        except Exception:
            logger.exception("Model stream failed")
            raise
        finally:
            turn.duration = time.perf_counter() - turn.started
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        for event in turn.events_for(turn.classifier.flush()):
            yield event
        for event in turn.close_thought():
            yield event

    def _filter_calls(self, calls: list[ToolCall], offered_names: set[str]) -> list[ToolCall]:
        kept: list[ToolCall] = []
        for call in calls:
            if call.name in self._sentinel_names:
                logger.warning(f"Discarding tool call with placeholder name {call.name!r}")
            elif call.name not in offered_names:
                logger.warning(f"Discarding call to tool {call.name!r}, not offered this turn")
            else:
                kept.append(call)
        return kept
