import json
from collections.abc import AsyncIterator

import openai
from loguru import logger
from tenacity import retry

from turnloop.providers.common import ReasoningTagger, default_retry_kwargs
from turnloop.types import Message, ModelFragment, Role, TokenUsage, ToolCallDelta, ToolDescriptor


def _to_openai_messages(system_prompt: str, messages: list[Message]) -> list[dict]:
    """Convert engine messages to OpenAI chat format. Reasoning text is not sent back."""
    out: list[dict] = []

    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for msg in messages:
        if msg.role == Role.ASSISTANT:
            oai_msg: dict = {"role": "assistant", "content": msg.content or None}
            if msg.tool_calls:
                oai_msg["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments),
                        },
                    }
                    for call in msg.tool_calls
                ]
            out.append(oai_msg)
        elif msg.role == Role.TOOL:
            out.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.content,
            })
        elif msg.role == Role.USER:
            out.append({"role": "user", "content": msg.content})
        else:
            # system and summary messages
            out.append({"role": "system", "content": msg.content})

    return out


def _to_openai_tools(tools: list[ToolDescriptor]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters_schema,
            },
        }
        for t in tools
    ]


class OpenAIStreamSource:
    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_tokens: int = 4096,
        temperature: float = 1.0,
        client: openai.AsyncOpenAI | None = None,
    ):
        self._client = client or openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def _open_stream(self, kwargs: dict):
        return await self._client.chat.completions.create(**kwargs)

    async def stream(
        self,
        messages: list[Message],
        tools: list[ToolDescriptor],
        *,
        system_prompt: str = "",
    ) -> AsyncIterator[ModelFragment]:
        oai_messages = _to_openai_messages(system_prompt, messages)
        oai_tools = _to_openai_tools(tools)

        logger.debug(
            f"API request: model={self._model}, max_tokens={self._max_tokens}, "
            f"messages={len(oai_messages)}, tools={len(oai_tools)}"
        )
        kwargs: dict = dict(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            messages=oai_messages,
            stream=True,
            stream_options={"include_usage": True},
        )
        if oai_tools:
            kwargs["tools"] = oai_tools

        response = await self._open_stream(kwargs)
        reasoning = ReasoningTagger()
        finish_reason: str | None = None
        usage: TokenUsage | None = None

        async with response:
            async for chunk in response:
                # With include_usage the last chunk carries usage and no choices
                if getattr(chunk, "usage", None) is not None:
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens,
                        completion_tokens=chunk.usage.completion_tokens,
                        total_tokens=chunk.usage.total_tokens,
                    )
                    yield ModelFragment(usage=usage)

                choice = chunk.choices[0] if chunk.choices else None
                if choice is None:
                    continue
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

                delta = choice.delta
                if delta is None:
                    continue

                # Some OpenAI-compatible servers stream reasoning separately from content
                reasoning_text = getattr(delta, "reasoning_content", None)
                if reasoning_text:
                    yield ModelFragment(text=reasoning.reasoning(reasoning_text))

                tool_deltas = tuple(
                    ToolCallDelta(
                        index=tc.index,
                        id=tc.id,
                        name=tc.function.name if tc.function else None,
                        arguments=tc.function.arguments if tc.function else None,
                    )
                    for tc in (delta.tool_calls or ())
                )
                if delta.content or tool_deltas:
                    text = reasoning.close() + (delta.content or "")
                    yield ModelFragment(text=text or None, tool_calls=tool_deltas)

        closing = reasoning.close()
        if closing:
            yield ModelFragment(text=closing)
        logger.debug(f"API response: finish_reason={finish_reason}, usage={usage}")
