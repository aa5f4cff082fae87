from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
FENCE = "```"


class Channel(StrEnum):
    THINKING = "thinking"
    VISIBLE = "visible"


@dataclass(frozen=True)
class Segment:
    channel: Channel
    text: str


@dataclass(frozen=True)
class ClassifiedDelta:
    """New output produced by one ``process`` call, in stream order."""

    segments: tuple[Segment, ...] = ()
    reclassified: bool = False

    @property
    def thinking(self) -> str | None:
        text = "".join(s.text for s in self.segments if s.channel is Channel.THINKING)
        return text or None

    @property
    def visible(self) -> str | None:
        text = "".join(s.text for s in self.segments if s.channel is Channel.VISIBLE)
        return text or None


class StreamClassifier:
    """Incrementally splits raw model output into thinking and visible text.

    - ``<think>``/``</think>`` switch the active channel; the tags are not emitted.
    - Text between ``` fences is literal: tags inside a code block never switch
      channels. Fences themselves are emitted into the active channel.
    - A tail that could still turn into a delimiter is held back until the next
      fragment resolves it, so tags split across fragments are recognised.
    - A ``</think>`` with no ``<think>`` seen in this stream reclassifies all
      visible text so far as thinking (at most once per stream).
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._pending = ""
        self._in_think = False
        self._in_code = False
        self._think_seen = False
        self._thinking = ""
        self._visible = ""

    @property
    def in_think(self) -> bool:
        return self._in_think

    @property
    def in_code_block(self) -> bool:
        return self._in_code

    def process(self, fragment: str) -> ClassifiedDelta:
        if not fragment:
            return ClassifiedDelta()

        buf = self._pending + fragment
        self._pending = ""
        segments: list[Segment] = []
        reclassified = False
        pos = 0

        while True:
            idx, delimiter = self._next_delimiter(buf, pos)
            if delimiter is None:
                rest = buf[pos:]
                hold = self._held_suffix_length(rest)
                if hold:
                    logger.debug(f"Holding partial delimiter {rest[-hold:]!r}")
                self._emit(rest[: len(rest) - hold], segments)
                self._pending = rest[len(rest) - hold:]
                break

            self._emit(buf[pos:idx], segments)
            pos = idx + len(delimiter)

            if delimiter == FENCE:
                self._emit(FENCE, segments)
                self._in_code = not self._in_code
            elif delimiter == THINK_OPEN:
                self._in_think = True
                self._think_seen = True
            elif self._in_think:
                self._in_think = False
            elif not self._think_seen:
                logger.warning("Orphaned </think> tag; reclassifying visible output as thinking")
                segments = [s for s in segments if s.channel is Channel.THINKING]
                moved = self._visible
                self._visible = ""
                self._thinking += moved
                if moved:
                    segments.append(Segment(Channel.THINKING, moved))
                self._think_seen = True
                reclassified = True
            else:
                logger.debug("Dropping stray </think> tag")

        return ClassifiedDelta(segments=tuple(segments), reclassified=reclassified)

    def flush(self) -> ClassifiedDelta:
        """Release held-back text into the active channel; called when the source ends."""
        segments: list[Segment] = []
        if self._pending:
            self._emit(self._pending, segments)
            self._pending = ""
        return ClassifiedDelta(segments=tuple(segments))

    def finalize(self) -> tuple[str | None, str]:
        self.flush()
        if self._in_think:
            logger.debug("Stream ended inside an unterminated reasoning block")
        thinking = self._thinking.strip()
        return (thinking or None), self._visible.strip()

    def _next_delimiter(self, buf: str, pos: int) -> tuple[int, str | None]:
        best_idx, best = -1, None
        for delimiter in self._active_delimiters():
            idx = buf.find(delimiter, pos)
            if idx != -1 and (best is None or idx < best_idx):
                best_idx, best = idx, delimiter
        return best_idx, best

    def _active_delimiters(self) -> tuple[str, ...]:
        if self._in_code:
            return (FENCE,)
        if self._in_think:
            return (FENCE, THINK_CLOSE)
        return (FENCE, THINK_OPEN, THINK_CLOSE)

    def _held_suffix_length(self, text: str) -> int:
        longest = 0
        for delimiter in self._active_delimiters():
            for size in range(min(len(delimiter) - 1, len(text)), longest, -1):
                if text.endswith(delimiter[:size]):
                    longest = size
                    break
        return longest

    def _emit(self, text: str, segments: list[Segment]) -> None:
        if not text:
            return
        channel = Channel.THINKING if self._in_think else Channel.VISIBLE
        if channel is Channel.THINKING:
            self._thinking += text
        else:
            self._visible += text
        if segments and segments[-1].channel is channel:
            segments[-1] = Segment(channel, segments[-1].text + text)
        else:
            segments.append(Segment(channel, text))
