from pathlib import Path
from typing import Any

from turnloop.types import JsonValue, ToolResult


class ListDirectoryTool:
    def __init__(self, working_directory: str | None = None, max_entries: int = 500):
        self._working_directory = working_directory
        self._max_entries = max_entries

    @property
    def id(self) -> str:
        return "list_directory"

    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def description(self) -> str:
        return "List the entries of a directory. Directories are shown with a trailing '/'."

    @property
    def requires_permission(self) -> bool:
        return False

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory to list. Defaults to the working directory.",
                },
            },
        }

    async def can_execute(self) -> bool:
        return True

    async def execute(self, parameters: dict[str, JsonValue]) -> ToolResult:
        raw_path = parameters.get("path") or "."
        if not isinstance(raw_path, str):
            return ToolResult.fail("Parameter 'path' must be a string")

        directory = Path(raw_path)
        if not directory.is_absolute() and self._working_directory:
            directory = Path(self._working_directory) / directory
        if not directory.is_dir():
            return ToolResult.fail(f"Not a directory: {raw_path}")

        try:
            entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        except OSError as ex:
            return ToolResult.fail(f"Error listing directory: {ex}")

        lines = [f"{p.name}/" if p.is_dir() else p.name for p in entries[: self._max_entries]]
        if len(entries) > self._max_entries:
            lines.append(f"... ({len(entries) - self._max_entries} more)")
        return ToolResult.ok("\n".join(lines) if lines else "(empty directory)")
