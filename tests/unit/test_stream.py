"""Unit tests for the streaming call handle.

Checks that prompting is lazy, that errors surface before any event, and
that every way of abandoning a stream releases its connection.
"""

from __future__ import annotations

import asyncio
import gzip
import uuid

import httpx
import pytest

from pantry_client.errors import ApiError
from pantry_client.events import PromptCompletion, PromptProgress
from pantry_client.stream import LLMEventStream, StreamState

USER_ID = uuid.UUID("3b9f8e2a-1c4d-4e5f-8a6b-7c8d9e0f1a2b")
SESSION_ID = uuid.UUID("0d6a1f5e-7c2b-4b9a-9d3e-5f6a7b8c9d0e")
LLM_UUID = "9a0e7c3e-2b8d-4c8e-8f0a-1d2e3f4a5b6c"

PROGRESS = {"type": "PromptProgress", "previous": "", "next": "I"}
COMPLETION = {"type": "PromptCompletion", "previous": "I am a bot"}


@pytest.fixture
def open_stream(make_api, recording_stream):
    """Open a prompt stream whose body is served chunk by chunk.

    Returns (stream, body, local_recorder).
    """

    async def factory(chunks, status: int = 200) -> tuple[LLMEventStream, object, object]:
        body = recording_stream(chunks)
        api, local, _ = make_api(
            local=lambda request: httpx.Response(
                status, headers={"Content-Type": "text/event-stream"}, stream=body
            )
        )
        stream = await api.prompt_session_stream(
            USER_ID, "secret", SESSION_ID, LLM_UUID, "About me: ", {"temperature": 0.7}
        )
        return stream, body, local

    return factory


class TestOpening:
    """Request shape and error statuses."""

    @pytest.mark.asyncio
    async def test_request_carries_prompt_and_headers(self, open_stream) -> None:
        stream, _, local = await open_stream([])

        sent = local.requests[0]
        assert sent.url.path == "/prompt_session_stream"
        assert sent.headers["accept"] == "text/event-stream"
        assert local.json() == {
            "user_id": str(USER_ID),
            "api_key": "secret",
            "session_id": str(SESSION_ID),
            "llm_uuid": LLM_UUID,
            "prompt": "About me: ",
            "parameters": {"temperature": 0.7},
        }
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_error_status_raises_before_any_event(self, make_api, recording_stream) -> None:
        body = recording_stream([b"llm not found"])
        api, _, _ = make_api(local=lambda request: httpx.Response(404, stream=body))

        with pytest.raises(ApiError) as exc_info:
            await api.prompt_session_stream(USER_ID, "k", SESSION_ID, LLM_UUID, "hi", {})

        assert exc_info.value.status == 404
        assert exc_info.value.message == "llm not found"
        assert body.closed


class TestConsumption:
    """Pull-based delivery."""

    @pytest.mark.asyncio
    async def test_events_in_order(self, open_stream, event_json, data_frame) -> None:
        stream, body, _ = await open_stream(
            [data_frame(event_json(PROGRESS)), data_frame(event_json(COMPLETION))]
        )

        events = await stream.collect()

        assert [type(e.event) for e in events] == [PromptProgress, PromptCompletion]
        assert stream.state is StreamState.ENDED
        assert stream.stats.events == 2
        assert body.closed

    @pytest.mark.asyncio
    async def test_body_is_read_lazily(self, open_stream, event_json, data_frame) -> None:
        stream, body, _ = await open_stream(
            [
                data_frame(event_json(PROGRESS)),
                data_frame(event_json(PROGRESS)),
                data_frame(event_json(COMPLETION)),
            ]
        )
        assert body.reads == 0

        first = await stream.__anext__()

        assert isinstance(first.event, PromptProgress)
        assert body.reads == 1
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_exhausted_stream_stays_ended(self, open_stream, event_json, data_frame) -> None:
        stream, _, _ = await open_stream([data_frame(event_json(COMPLETION))])

        await stream.collect()

        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert await stream.collect() == []

    @pytest.mark.asyncio
    async def test_transport_error_mid_stream_ends_early(
        self, open_stream, event_json, data_frame
    ) -> None:
        stream, body, _ = await open_stream(
            [data_frame(event_json(PROGRESS)), httpx.ReadError("connection reset")]
        )

        events = await stream.collect()

        assert len(events) == 1
        assert stream.stats.transport_errors == 1
        assert body.closed

    @pytest.mark.asyncio
    async def test_corrupt_compressed_body_ends_early(
        self, make_api, recording_stream, event_json, data_frame
    ) -> None:
        body_text = data_frame(event_json(PROGRESS)) + data_frame(event_json(COMPLETION))
        compressed = gzip.compress(body_text)
        # CRC trailer flipped in the last chunk; the frames before it are intact.
        body = recording_stream(
            [compressed[:-8], bytes(b ^ 0xFF for b in compressed[-8:-4]) + compressed[-4:]]
        )
        api, _, _ = make_api(
            local=lambda request: httpx.Response(
                200,
                headers={"Content-Type": "text/event-stream", "Content-Encoding": "gzip"},
                stream=body,
            )
        )
        stream = await api.prompt_session_stream(USER_ID, "k", SESSION_ID, LLM_UUID, "hi", {})

        events = await stream.collect()

        assert [type(e.event) for e in events] == [PromptProgress, PromptCompletion]
        assert stream.stats.transport_errors == 1
        assert stream.state is StreamState.ENDED
        assert body.closed


class TestRelease:
    """Every way of stopping releases the connection."""

    @pytest.mark.asyncio
    async def test_aclose_before_iterating(self, open_stream, event_json, data_frame) -> None:
        stream, body, _ = await open_stream([data_frame(event_json(PROGRESS))])

        await stream.aclose()

        assert body.closed
        assert body.reads == 0
        assert stream.state is StreamState.ENDED

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, open_stream) -> None:
        stream, _, _ = await open_stream([])

        await stream.aclose()
        await stream.aclose()

        assert stream.state is StreamState.ENDED

    @pytest.mark.asyncio
    async def test_context_manager_closes_on_break(
        self, open_stream, event_json, data_frame
    ) -> None:
        stream, body, _ = await open_stream(
            [data_frame(event_json(PROGRESS)), data_frame(event_json(COMPLETION))]
        )

        async with stream:
            async for event in stream:
                assert isinstance(event.event, PromptProgress)
                break

        assert body.closed
        assert body.reads == 1

    @pytest.mark.asyncio
    async def test_dropped_handle_releases_connection(
        self, open_stream, event_json, data_frame
    ) -> None:
        """Abandoning the handle mid-stream is a valid way to cancel."""
        stream, body, _ = await open_stream(
            [data_frame(event_json(PROGRESS)), data_frame(event_json(COMPLETION))]
        )

        async for _event in stream:
            break
        del stream

        for _ in range(5):
            await asyncio.sleep(0)

        assert body.closed
        assert body.reads == 1
