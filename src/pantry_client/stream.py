"""Streaming call handle.

LLMEventStream issues a streaming request through the dispatcher, takes
ownership of the response body and exposes the decoded events as an async
iterator:

    stream = await session.prompt_session("About me: ")
    async with stream:
        async for event in stream:
            if isinstance(event.event, PromptProgress):
                print(event.event.next, end="", flush=True)

Events are pulled from the wire one frame at a time as the consumer asks
for them. Cancelling is simply not asking any more: the connection is
released when the stream is exhausted, closed, used as a context manager,
or garbage collected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

from .errors import ApiError
from .events import DecoderStats, EventDecoder, LLMEvent
from .transport import DispatchRequest, HeaderPairs, RawResponse, TransportDispatcher

logger = logging.getLogger(__name__)

EVENT_STREAM_HEADERS: HeaderPairs = (
    ("Content-Type", "application/json"),
    ("Accept", "text/event-stream"),
)


class StreamState(str, Enum):
    """Lifecycle of a streaming call once its headers have arrived."""

    ACTIVE = "active"  # headers received, body not exhausted
    ENDED = "ended"


class LLMEventStream:
    """Cancellable, pull-based sequence of LLMEvents for one call."""

    def __init__(self, response: RawResponse, decoder: EventDecoder | None = None) -> None:
        self._response = response
        self._decoder = decoder or EventDecoder()
        self._state = StreamState.ACTIVE
        self._events = _pump(response, self._decoder)

    @classmethod
    async def open(
        cls,
        dispatcher: TransportDispatcher,
        request: DispatchRequest,
        decoder: EventDecoder | None = None,
    ) -> LLMEventStream:
        """Issue a streaming request and wrap its body.

        Raises ApiError (after releasing the connection) if the server
        answers with a non-2xx status.
        """
        response = await dispatcher.dispatch(request)
        if not response.is_success:
            body = await response.read()
            raise ApiError(response.status_code, body.decode("utf-8", errors="replace"))

        logger.debug(f"Event stream opened for {request.path} via {response.channel.value}")
        return cls(response, decoder)

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def stats(self) -> DecoderStats:
        return self._decoder.stats

    def __aiter__(self) -> LLMEventStream:
        return self

    async def __anext__(self) -> LLMEvent:
        if self._state is StreamState.ENDED:
            raise StopAsyncIteration
        try:
            return await self._events.__anext__()
        except StopAsyncIteration:
            self._ended()
            raise
        except BaseException:
            # The generator is finished and its body released either way.
            self._state = StreamState.ENDED
            raise

    def _ended(self) -> None:
        self._state = StreamState.ENDED
        logger.debug(
            f"Event stream ended: {self.stats.events} event(s), "
            f"{self.stats.dropped} dropped, {self.stats.keepalives} keep-alive(s)"
        )

    async def aclose(self) -> None:
        """Stop consuming and release the connection."""
        if self._state is StreamState.ENDED:
            return
        await self._events.aclose()
        # aclose() on a generator that never started skips its finally.
        await self._response.aclose()
        self._ended()

    async def collect(self) -> list[LLMEvent]:
        """Consume the rest of the stream into a list."""
        return [event async for event in self]

    async def __aenter__(self) -> LLMEventStream:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def __del__(self) -> None:
        # Dropped without being exhausted or closed.
        if self._state is StreamState.ENDED:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._response.aclose())
        _closing.add(task)
        task.add_done_callback(_closing.discard)


# Strong references to close tasks scheduled from __del__.
_closing: set[asyncio.Task[None]] = set()


async def _pump(response: RawResponse, decoder: EventDecoder) -> AsyncIterator[LLMEvent]:
    # Must not reference the LLMEventStream, so dropping the handle frees it.
    try:
        async for event in decoder.decode(response.aiter_lines()):
            yield event
    finally:
        await response.aclose()
