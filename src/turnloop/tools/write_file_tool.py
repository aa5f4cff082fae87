from pathlib import Path
from typing import Any

from turnloop.types import JsonValue, ToolResult


class WriteFileTool:
    def __init__(self, working_directory: str | None = None):
        self._working_directory = working_directory

    @property
    def id(self) -> str:
        return "write_file"

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write content to a file, creating it if it doesn't exist."

    @property
    def requires_permission(self) -> bool:
        return True

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Absolute or relative path to the file to write",
                },
                "content": {
                    "type": "string",
                    "description": "The content to write to the file",
                },
            },
            "required": ["path", "content"],
        }

    async def can_execute(self) -> bool:
        return True

    async def execute(self, parameters: dict[str, JsonValue]) -> ToolResult:
        path = parameters.get("path")
        content = parameters.get("content")
        if not isinstance(path, str) or not path:
            return ToolResult.fail("Missing required parameter 'path'")
        if not isinstance(content, str):
            return ToolResult.fail("Parameter 'content' must be a string")

        file_path = Path(path)
        if not file_path.is_absolute() and self._working_directory:
            file_path = Path(self._working_directory) / file_path
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
        except OSError as ex:
            return ToolResult.fail(f"Error writing file: {ex}")
        return ToolResult.ok(f"Successfully wrote {len(content)} characters to {path}")
