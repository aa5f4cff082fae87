import os
from pathlib import Path
from typing import Any

from turnloop.types import JsonValue, ToolResult


class ReadFileTool:
    def __init__(self, working_directory: str | None = None, max_chars: int = 100_000):
        self._working_directory = working_directory
        self._max_chars = max_chars

    @property
    def id(self) -> str:
        return "read_file"

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a text file and return it."

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
                    "description": "Absolute or relative path to the file to read",
                },
            },
            "required": ["path"],
        }

    async def can_execute(self) -> bool:
        return True

    async def execute(self, parameters: dict[str, JsonValue]) -> ToolResult:
        path = parameters.get("path")
        if not isinstance(path, str) or not path:
            return ToolResult.fail("Missing required parameter 'path'")

        file_path = self._resolve(path)
        if not file_path.is_file():
            return ToolResult.fail(f"File not found: {path}")
        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as ex:
            return ToolResult.fail(f"Error reading file: {ex}")

        if len(text) > self._max_chars:
            text = text[: self._max_chars] + f"\n\n[TRUNCATED: showing {self._max_chars:,} of {len(text):,} characters]"
        return ToolResult.ok(text)

    def _resolve(self, path: str) -> Path:
        # Relative paths resolve against the working directory when one is configured
        if not os.path.isabs(path) and self._working_directory:
            return Path(self._working_directory) / path
        return Path(path)
