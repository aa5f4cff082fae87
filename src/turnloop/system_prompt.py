from turnloop.types import ToolDescriptor

_BASE_PROMPT = """\
You are a helpful AI assistant with access to tools.

When the user asks you to do something, use the available tools to accomplish it. \
Think step by step about what tools you need, then use them. You may reason privately \
inside <think>...</think> before answering; that text is not shown as part of your answer.

If a tool call fails, read the error message carefully and try a different approach. \
Never repeat the exact same tool call with the exact same arguments more than twice.

Be concise in your responses. When you've completed a task, briefly summarize what you did."""

_TOOL_CALL_FORMAT = """

If you cannot call tools natively, request a tool by writing exactly one block per call:

<tool_call>
{"name": "function_name", "arguments": {"arg1": "value1"}}
</tool_call>

Replace function_name with the real tool name. Only call these tools:
"""


def build_system_prompt(
    working_directory: str | None = None,
    tools: list[ToolDescriptor] | None = None,
) -> str:
    prompt = _BASE_PROMPT

    if working_directory:
        prompt += f"""

The default working directory is: {working_directory}
When the user references a file by name without a full path, use just the filename; \
the tools resolve it against the working directory."""

    if tools:
        prompt += _TOOL_CALL_FORMAT
        prompt += "\n".join(f"- {t.name}: {t.description}" if t.description else f"- {t.name}" for t in tools)

    return prompt
