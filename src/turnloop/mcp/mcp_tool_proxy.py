import json
from typing import Any

from loguru import logger
from mcp import ClientSession
from mcp.types import TextContent

from turnloop.types import JsonValue, ToolResult


class McpToolProxy:
    """Exposes one tool of a connected MCP server through the Tool contract.

    The registered name is ``<server>__<tool>`` so tools of different servers
    cannot collide. A result flagged ``isError`` by the server becomes a failed
    ``ToolResult``.
    """

    def __init__(
        self,
        server_name: str,
        tool_name: str,
        tool_description: str | None,
        tool_input_schema: dict[str, Any],
        session: ClientSession,
        *,
        read_only: bool = False,
    ):
        self._server_name = server_name
        self._tool_name = tool_name
        self._description = tool_description or ""
        self._input_schema = tool_input_schema
        self._session = session
        self._read_only = read_only

    @property
    def id(self) -> str:
        return f"mcp:{self._server_name}/{self._tool_name}"

    @property
    def name(self) -> str:
        return f"{self._server_name}__{self._tool_name}"

    @property
    def description(self) -> str:
        return self._description

    @property
    def requires_permission(self) -> bool:
        return not self._read_only

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return self._input_schema

    async def can_execute(self) -> bool:
        return self._session is not None

    async def execute(self, parameters: dict[str, JsonValue]) -> ToolResult:
        logger.debug("MCP tool call: {name} | input: {input}", name=self.name, input=json.dumps(parameters, default=str))
        result = await self._session.call_tool(self._tool_name, arguments=parameters)
        logger.debug(
            "MCP raw response: {name} | isError={err} | blocks={count}",
            name=self.name,
            err=result.isError,
            count=len(result.content),
        )
        text_parts = [block.text for block in result.content if isinstance(block, TextContent)]
        output = "\n".join(text_parts) if text_parts else "(no output)"
        if result.isError:
            logger.warning("MCP tool error: {name} | result: {output}", name=self.name, output=output[:500])
            return ToolResult.fail(output)
        return ToolResult.ok(output)
