"""Server-Sent Events frame assembly.

Turns the lines of a text/event-stream body into SseFrame objects. Byte
decoding and line splitting are left to httpx (Response.aiter_lines);
this module only knows about fields and frames, not about what the data
payload means (see events.py for that).

Wire format:
- "field: value" lines accumulate into the current frame
- lines starting with ":" are comments
- a blank line ends the frame
- multiple data lines are joined with \\n
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SseFrame:
    """One blank-line delimited unit of the stream."""

    id: str | None = None
    event: str | None = None
    data: str | None = None
    retry: int | None = None

    @property
    def is_keepalive(self) -> bool:
        """Frames without a data field carry no payload."""
        return self.data is None


class FrameParser:
    """Line-to-frame assembler.

    line() takes one line without its terminator and returns the frame it
    completes, if any. finish() flushes a trailing frame that the server
    did not terminate with a blank line.
    """

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._id: str | None = None
        self._event: str | None = None
        self._data: list[str] | None = None
        self._retry: int | None = None
        self._has_fields = False

    def line(self, line: str) -> SseFrame | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            if self._data is None:
                self._data = []
            self._data.append(value)
        elif name == "id":
            self._id = value
        elif name == "event":
            self._event = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        else:
            logger.debug(f"Ignoring unknown SSE field: {name!r}")
            return None
        self._has_fields = True
        return None

    def finish(self) -> SseFrame | None:
        return self._dispatch()

    def _dispatch(self) -> SseFrame | None:
        if not self._has_fields:
            self._reset()
            return None
        frame = SseFrame(
            id=self._id,
            event=self._event,
            data="\n".join(self._data) if self._data is not None else None,
            retry=self._retry,
        )
        self._reset()
        return frame


async def iter_frames(lines: AsyncIterable[str]) -> AsyncIterator[SseFrame]:
    """Lazily assemble frames from a line source, in arrival order.

    Reads from the source only when the consumer asks for the next frame.
    Exceptions raised by the source propagate.
    """
    parser = FrameParser()

    async for line in lines:
        frame = parser.line(line)
        if frame is not None:
            yield frame

    last = parser.finish()
    if last is not None:
        yield last
