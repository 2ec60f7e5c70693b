"""Inference events and their decoder.

A prompt call answers with a text/event-stream body. Each data frame
holds one JSON-encoded LLMEvent:

    {
        "stream_id": "6f1c...",
        "timestamp": "2023-08-01T10:00:01Z",
        "call_timestamp": "2023-08-01T10:00:00Z",
        "parameters": {"temperature": 0.7},
        "input": "About me: ",
        "llm_uuid": "9a0e...",
        "session": {...},
        "event": {"type": "PromptProgress", "previous": "I am", "next": " a"}
    }

EventDecoder turns the body lines into LLMEvent objects, skipping
keep-alive frames and dropping (but counting) frames it cannot parse.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Literal

import httpx
from pydantic import BaseModel, Field, JsonValue, ValidationError

from .sse import SseFrame, iter_frames

logger = logging.getLogger(__name__)


class LLMSessionStatus(BaseModel):
    """Minimal view of the server-side session that produced an event."""

    id: uuid.UUID
    llm_uuid: uuid.UUID
    user_id: uuid.UUID
    started: datetime
    last_called: datetime
    session_parameters: dict[str, JsonValue] = Field(default_factory=dict)


# Event kinds. The server tags them with CamelCase names; snake_case
# spellings are accepted as well.


class PromptProgress(BaseModel):
    """New text was produced. `previous` is everything before `next`."""

    type: Literal["PromptProgress", "prompt_progress"] = "PromptProgress"
    previous: str
    next: str


class PromptCompletion(BaseModel):
    """Inference finished; `previous` is the full output."""

    type: Literal["PromptCompletion", "prompt_completion"] = "PromptCompletion"
    previous: str


class PromptError(BaseModel):
    type: Literal["PromptError", "prompt_error"] = "PromptError"
    message: str


class Other(BaseModel):
    type: Literal["Other", "other"] = "Other"


LLMEventKind = Annotated[
    PromptProgress | PromptCompletion | PromptError | Other,
    Field(discriminator="type"),
]


class LLMEvent(BaseModel):
    """One inference event with full provenance."""

    stream_id: uuid.UUID
    timestamp: datetime
    call_timestamp: datetime
    parameters: dict[str, JsonValue] = Field(default_factory=dict)
    input: str
    llm_uuid: uuid.UUID
    session: LLMSessionStatus
    event: LLMEventKind

    @property
    def is_final(self) -> bool:
        """Completion and error events close out a prompt."""
        return isinstance(self.event, PromptCompletion | PromptError)


@dataclass
class DecoderStats:
    """Counters kept by an EventDecoder.

    Drops are silent for the consumer, so these make them observable.
    """

    frames: int = 0
    keepalives: int = 0
    events: int = 0
    malformed: int = 0  # data field is not JSON
    rejected: int = 0  # JSON that is not a known event shape
    transport_errors: int = 0

    @property
    def dropped(self) -> int:
        return self.malformed + self.rejected


class EventDecoder:
    """Decodes the lines of an event-stream body into LLMEvents.

    The sequence is lazy (one frame is read per event requested), ends
    when the source ends, and cannot be restarted. Parsing is all or
    nothing per frame: a frame either yields one complete event or none.
    """

    def __init__(self) -> None:
        self.stats = DecoderStats()

    def parse_frame(self, frame: SseFrame) -> LLMEvent | None:
        """Parse a single frame, returning None if it carries no event."""
        self.stats.frames += 1

        if frame.data is None:
            self.stats.keepalives += 1
            logger.debug(f"Skipping keep-alive frame (retry={frame.retry})")
            return None

        try:
            payload = json.loads(frame.data)
        except json.JSONDecodeError as e:
            self.stats.malformed += 1
            logger.warning(
                f"Dropping malformed event frame id={frame.id!r}: {e} "
                f"(dropped so far: {self.stats.dropped})"
            )
            return None

        try:
            event = LLMEvent.model_validate(payload)
        except ValidationError as e:
            self.stats.rejected += 1
            logger.warning(
                f"Dropping unrecognised event frame id={frame.id!r}: "
                f"{e.error_count()} validation error(s) (dropped so far: {self.stats.dropped})"
            )
            return None

        self.stats.events += 1
        return event

    async def decode(self, lines: AsyncIterable[str]) -> AsyncIterator[LLMEvent]:
        """Yield events from the body `lines` in arrival order.

        An httpx error while reading (connection, timeout or content
        decoding) ends the sequence early; events already yielded stay valid.
        """
        try:
            async for frame in iter_frames(lines):
                event = self.parse_frame(frame)
                if event is not None:
                    yield event
        except (httpx.RequestError, httpx.StreamError) as e:
            self.stats.transport_errors += 1
            logger.warning(f"Event stream ended by transport error: {e!r}")
