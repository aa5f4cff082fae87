import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


def _module_filter(modules: list[str] | None):
    """Restrict a sink to records logged from the given module prefixes."""
    if not modules:
        return None
    prefixes = tuple(modules)
    return lambda record: record["name"].startswith(prefixes)


class ConsoleLogConsumer:
    def __init__(self, modules: list[str] | None = None):
        self._filter = _module_filter(modules)

    def register(self, level: str) -> None:
        logger.add(
            sys.stderr,
            level=level,
            filter=self._filter,
            format="<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        )

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class _RotatingFileConsumer:
    kind = ""

    def __init__(
        self,
        path: str,
        rotation: str = "10 MB",
        retention: int = 3,
        modules: list[str] | None = None,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._filter = _module_filter(modules)

    def _sink_options(self) -> dict[str, Any]:
        return {}

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            filter=self._filter,
            rotation=self._rotation,
            retention=self._retention,
            **self._sink_options(),
        )

    def describe(self, level: str) -> str:
        return f"{self.kind} ({self._path}, {level})"


class FileLogConsumer(_RotatingFileConsumer):
    kind = "file"

    def __init__(self, path: str = "turnloop.log", **kwargs: Any):
        super().__init__(path, **kwargs)

    def _sink_options(self) -> dict[str, Any]:
        return {"format": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"}


class JsonLogConsumer(_RotatingFileConsumer):
    """One JSON record per line, for log shippers."""

    kind = "json"

    def __init__(self, path: str = "turnloop.jsonl", **kwargs: Any):
        super().__init__(path, **kwargs)

    def _sink_options(self) -> dict[str, Any]:
        return {"serialize": True}


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
    "json": JsonLogConsumer,
}


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all loguru sinks with the configured consumers.

    Each entry of ``consumers`` names a ``type`` and may override ``level``;
    any other keys are passed to the consumer. ``None`` means console only.
    Returns a description of each registered consumer.
    """
    logger.remove()

    descriptions: list[str] = []
    for config in consumers if consumers is not None else [{"type": "console"}]:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        # Everything except the routing keys belongs to the consumer
        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)

        consumer = cls(**kwargs)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
