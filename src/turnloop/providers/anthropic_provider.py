from collections.abc import AsyncIterator

import anthropic
from loguru import logger
from tenacity import retry

from turnloop.providers.common import ReasoningTagger, default_retry_kwargs
from turnloop.types import Message, ModelFragment, Role, TokenUsage, ToolCallDelta, ToolDescriptor


def _append(out: list[dict], role: str, blocks: list[dict]) -> None:
    # The Messages API requires alternating roles; consecutive same-role turns are merged
    if out and out[-1]["role"] == role:
        out[-1]["content"].extend(blocks)
    else:
        out.append({"role": role, "content": blocks})


def _to_anthropic_messages(system_prompt: str, messages: list[Message]) -> tuple[str, list[dict]]:
    """Convert engine messages to the Messages API shape.

    Returns ``(system, messages)``; system and summary messages are folded into
    the system prompt, tool messages become ``tool_result`` blocks of a user turn.
    """
    system_parts = [system_prompt] if system_prompt else []
    out: list[dict] = []

    for msg in messages:
        if msg.role == Role.ASSISTANT:
            blocks: list[dict] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls or ():
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            if blocks:
                _append(out, "assistant", blocks)
        elif msg.role == Role.TOOL:
            _append(out, "user", [{
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content,
                "is_error": msg.content.startswith("Error:"),
            }])
        elif msg.role == Role.USER:
            _append(out, "user", [{"type": "text", "text": msg.content}])
        elif msg.content:
            system_parts.append(msg.content)

    return "\n\n".join(system_parts), out


def _to_anthropic_tools(tools: list[ToolDescriptor]) -> list[dict]:
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.parameters_schema,
        }
        for t in tools
    ]


class AnthropicStreamSource:
    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_tokens: int = 4096,
        temperature: float = 1.0,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def _open_stream(self, kwargs: dict):
        return await self._client.messages.create(**kwargs)

    async def stream(
        self,
        messages: list[Message],
        tools: list[ToolDescriptor],
        *,
        system_prompt: str = "",
    ) -> AsyncIterator[ModelFragment]:
        system, api_messages = _to_anthropic_messages(system_prompt, messages)
        api_tools = _to_anthropic_tools(tools)

        logger.debug(
            f"API request: model={self._model}, max_tokens={self._max_tokens}, "
            f"messages={len(api_messages)}, tools={len(api_tools)}"
        )
        kwargs: dict = dict(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            messages=api_messages,
            stream=True,
        )
        if system:
            kwargs["system"] = system
        if api_tools:
            kwargs["tools"] = api_tools

        events = await self._open_stream(kwargs)
        reasoning = ReasoningTagger()
        stop_reason: str | None = None
        input_tokens: int | None = None

        async with events:
            async for event in events:
                for fragment in self._fragments_for(event, reasoning):
                    yield fragment
                if event.type == "message_start":
                    input_tokens = event.message.usage.input_tokens
                elif event.type == "message_delta":
                    stop_reason = event.delta.stop_reason
                    output_tokens = event.usage.output_tokens
                    yield ModelFragment(usage=TokenUsage(
                        prompt_tokens=input_tokens,
                        completion_tokens=output_tokens,
                        total_tokens=(input_tokens or 0) + output_tokens,
                    ))

        closing = reasoning.close()
        if closing:
            yield ModelFragment(text=closing)
        logger.debug(f"API response: stop_reason={stop_reason}, input_tokens={input_tokens}")

    @staticmethod
    def _fragments_for(event, reasoning: ReasoningTagger) -> list[ModelFragment]:
        if event.type == "content_block_start":
            block = event.content_block
            if block.type == "tool_use":
                return [ModelFragment(
                    text=reasoning.close() or None,
                    tool_calls=(ToolCallDelta(index=event.index, id=block.id, name=block.name),),
                )]
        elif event.type == "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta":
                return [ModelFragment(text=reasoning.close() + delta.text)]
            if delta.type == "thinking_delta":
                return [ModelFragment(text=reasoning.reasoning(delta.thinking))]
            if delta.type == "input_json_delta":
                return [ModelFragment(tool_calls=(ToolCallDelta(index=event.index, arguments=delta.partial_json),))]
        return []
