from __future__ import annotations

from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

from turnloop.stream_classifier import THINK_CLOSE, THINK_OPEN

MAX_ATTEMPTS = 5


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.0f}s (attempt {attempt}/{MAX_ATTEMPTS})...")


def default_retry_kwargs(exception_types: tuple[type[Exception], ...]) -> dict:
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=10, min=10, max=320),
        "stop": stop_after_attempt(MAX_ATTEMPTS),
        "before_sleep": _on_retry,
        "reraise": True,
    }


class ReasoningTagger:
    """Wraps provider-side reasoning deltas in think tags so they reach the classifier as thinking."""

    def __init__(self) -> None:
        self._open = False

    def reasoning(self, text: str) -> str:
        if self._open:
            return text
        self._open = True
        return THINK_OPEN + text

    def close(self) -> str:
        if not self._open:
            return ""
        self._open = False
        return THINK_CLOSE
