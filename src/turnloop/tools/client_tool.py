from __future__ import annotations

from typing import Any

from turnloop.errors import ExternalExecutionRequired
from turnloop.types import JsonValue, ToolResult


class ClientTool:
    """A tool the model may call but which only the client can run.

    Executing it never happens in this process: ``execute`` raises
    ``ExternalExecutionRequired`` and the engine hands control back to the caller,
    which runs the tool and resumes with a ``ToolOutputSubmission``.
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        parameters_schema: dict[str, Any] | None = None,
        *,
        requires_permission: bool = True,
    ):
        self._name = name
        self._description = description
        self._parameters_schema = parameters_schema or {"type": "object", "properties": {}}
        self._requires_permission = requires_permission

    @classmethod
    def from_config(cls, config: dict) -> ClientTool:
        name = str(config.get("Name", "")).strip()
        if not name:
            raise ValueError(f"Client tool declaration without a Name: {config!r}")
        return cls(
            name=name,
            description=config.get("Description", ""),
            parameters_schema=config.get("Parameters"),
            requires_permission=bool(config.get("RequiresPermission", True)),
        )

    @property
    def id(self) -> str:
        return f"client__{self._name}"

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def requires_permission(self) -> bool:
        return self._requires_permission

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return self._parameters_schema

    async def can_execute(self) -> bool:
        return True

    async def execute(self, parameters: dict[str, JsonValue]) -> ToolResult:
        raise ExternalExecutionRequired(self._name)
