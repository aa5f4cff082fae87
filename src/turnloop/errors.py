class EngineError(Exception):
    """Base class for errors raised by the generation engine."""


class InvalidInputError(EngineError):
    pass


class ToolNotFoundError(EngineError):
    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found")
        self.name = name


class ToolExecutionError(EngineError):
    """Raised by tools to report a failure; converted into an error tool message."""


class ExternalExecutionRequired(EngineError):
    """Signal that a tool must be executed by the caller, outside this process.

    Not a failure: the turn loop pauses and the caller resumes the conversation
    with the tool's output.
    """

    def __init__(self, tool_name: str, reason: str | None = None):
        super().__init__(reason or f"Tool '{tool_name}' must be executed by the client")
        self.tool_name = tool_name
