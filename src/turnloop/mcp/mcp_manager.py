import asyncio
import os
from typing import Any

from loguru import logger
from mcp import ClientSession, StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamable_http_client

from turnloop.mcp.mcp_tool_proxy import McpToolProxy
from turnloop.tool import Tool

_SHUTDOWN_TIMEOUT = 5.0


def _proxies_for(server_name: str, session: ClientSession, listed) -> list[Tool]:
    proxies: list[Tool] = []
    for tool in listed.tools:
        annotations = getattr(tool, "annotations", None)
        proxies.append(McpToolProxy(
            server_name=server_name,
            tool_name=tool.name,
            tool_description=tool.description,
            tool_input_schema=tool.inputSchema,
            session=session,
            read_only=bool(annotations and annotations.readOnlyHint),
        ))
    return proxies


class _ServerConnection:
    """A running server: its session lives inside a task until shutdown is signalled."""

    def __init__(self, name: str):
        self.name = name
        self.tools: list[Tool] = []
        self._ready = asyncio.Event()
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._error: Exception | None = None

    async def wait_ready(self) -> None:
        await self._ready.wait()
        if self._error:
            raise self._error

    async def _serve(self, read_stream, write_stream) -> None:
        async with ClientSession(read_stream, write_stream) as session:
            await session.initialize()
            self.tools = _proxies_for(self.name, session, await session.list_tools())
            self._ready.set()
            await self._shutdown.wait()

    async def _run_stdio(self, config: dict[str, Any]) -> None:
        # Servers inherit the parent environment (including .env secrets) plus per-server overrides
        merged_env = dict(os.environ)
        merged_env.update(config.get("env") or {})
        params = StdioServerParameters(command=config["command"], args=config.get("args", []), env=merged_env)
        async with stdio_client(params) as (read_stream, write_stream):
            await self._serve(read_stream, write_stream)

    async def _run_http(self, config: dict[str, Any]) -> None:
        async with streamable_http_client(config["url"]) as (read_stream, write_stream, _):
            await self._serve(read_stream, write_stream)

    async def start(self, config: dict[str, Any]) -> None:
        transport = config.get("transport", "stdio")

        async def _run():
            try:
                if transport == "stdio":
                    await self._run_stdio(config)
                elif transport == "http":
                    await self._run_http(config)
                else:
                    raise ValueError(f"Unknown transport '{transport}'")
            except Exception as ex:
                self._error = ex
                self._ready.set()

        self._task = asyncio.create_task(_run())

    async def stop(self) -> None:
        if self._task is None or self._task.done():
            return
        # stdio_client's anyio task group may ignore cancellation alone, so signal too
        self._shutdown.set()
        self._task.cancel()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=_SHUTDOWN_TIMEOUT)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass


class McpManager:
    """Connections to every configured MCP server."""

    def __init__(self, server_configs: dict[str, dict[str, Any]]):
        self._server_configs = server_configs
        self._connections: list[_ServerConnection] = []

    async def connect_all(self) -> list[Tool]:
        """Connect to all configured servers and return the discovered tools.

        A server that fails to start is logged and skipped.
        """
        all_tools: list[Tool] = []

        for server_name, config in self._server_configs.items():
            conn = _ServerConnection(server_name)
            self._connections.append(conn)

            try:
                await conn.start(config)
                await conn.wait_ready()
                all_tools.extend(conn.tools)
                logger.info(f"MCP server '{server_name}': {len(conn.tools)} tool(s) discovered")
            except Exception as ex:
                logger.error(f"Failed to connect to MCP server '{server_name}': {ex}")

        return all_tools

    async def close(self) -> None:
        for conn in self._connections:
            logger.debug(f"Shutting down MCP server '{conn.name}'...")
            try:
                await conn.stop()
            except Exception as ex:
                logger.warning(f"MCP server '{conn.name}' shutdown error: {ex}")
        self._connections.clear()
