"""Incremental decoder for the SSE-style wire format.

Wire format:
    event: <type>            (optional)
    data: <fragment>         (one or more, concatenated verbatim)
    <blank line>             (frame terminator)

Chunks may split a frame anywhere, including inside a ``data: `` prefix or
in the middle of a JSON payload; the incomplete tail is kept until the next
feed() call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"
EVENT_PREFIX = "event: "
DATA_PREFIX = "data: "
DONE_SENTINELS = frozenset({"[DONE]", "DONE"})


@dataclass(frozen=True)
class Frame:
    """One complete protocol frame."""

    data: str
    event: str | None = None


class FrameDecoder:
    """Reassembles frames from arbitrarily sized text chunks."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def buffer(self) -> str:
        """Text received but not yet terminated by a blank line."""
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[Frame]:
        """Append chunk and return every frame it completes."""
        self._buffer += chunk
        segments = self._buffer.split(FRAME_DELIMITER)
        self._buffer = segments.pop()

        frames = []
        for segment in segments:
            frame = self._parse_segment(segment)
            if frame is not None:
                frames.append(frame)
        return frames

    @staticmethod
    def _parse_segment(segment: str) -> Frame | None:
        if not segment.strip():
            return None

        event: str | None = None
        data = ""
        for line in segment.split("\n"):
            if line.startswith(EVENT_PREFIX):
                event = line[len(EVENT_PREFIX) :]
            elif line.startswith(DATA_PREFIX):
                data += line[len(DATA_PREFIX) :]

        if not data.strip():
            logger.debug(f"Dropping frame without data (event={event!r})")
            return None
        return Frame(data=data, event=event)
