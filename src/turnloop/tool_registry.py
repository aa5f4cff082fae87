from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from turnloop.tool import Tool, describe
from turnloop.tools.client_tool import ClientTool
from turnloop.tools.list_directory_tool import ListDirectoryTool
from turnloop.tools.read_file_tool import ReadFileTool
from turnloop.tools.write_file_tool import WriteFileTool
from turnloop.types import ToolDescriptor


class ToolRegistry:
    """Name-keyed lookup of the tools the engine may execute.

    Read-only once built; a single registry can be shared by every session.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name: {tool.name!r}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool {tool.name!r} (id={tool.id})")

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def descriptors(self, names: Iterable[str] | None = None) -> list[ToolDescriptor]:
        if names is None:
            return [describe(tool) for tool in self._tools.values()]
        return [describe(self._tools[name]) for name in names if name in self._tools]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


@dataclass(frozen=True)
class ToolGroup:
    enabled: Callable[[dict], bool]
    build: Callable[[dict], list[Tool]]


def _always(_: dict) -> bool:
    return True


def _filesystem_tools(ctx: dict) -> list[Tool]:
    working_directory = ctx["working_directory"]
    return [
        ReadFileTool(working_directory),
        ListDirectoryTool(working_directory),
        WriteFileTool(working_directory),
    ]


def _client_tools_enabled(ctx: dict) -> bool:
    return bool(ctx.get("client_tools"))


def _client_tools(ctx: dict) -> list[Tool]:
    return [ClientTool.from_config(cfg) for cfg in ctx["client_tools"]]


_GROUPS = [
    ToolGroup(enabled=_always, build=_filesystem_tools),
    ToolGroup(enabled=_client_tools_enabled, build=_client_tools),
]


def get_builtin_tools(
    working_directory: str | None = None,
    client_tools: list[dict] | None = None,
) -> list[Tool]:
    ctx = {
        "working_directory": working_directory,
        "client_tools": client_tools or [],
    }

    tools: list[Tool] = []
    for group in _GROUPS:
        if group.enabled(ctx):
            tools.extend(group.build(ctx))
    return tools
