"""Pytest configuration and shared fixtures.

Both channels are faked with httpx.MockTransport. A handler of None on
the local side behaves like an absent socket (ConnectError).
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest

from pantry_client.api import PantryAPI
from pantry_client.transport import EndpointTarget, TransportDispatcher

STREAM_ID = "6f1c2a0e-4d1b-4f43-9a55-0f5b8f3b1e01"
LLM_UUID = "9a0e7c3e-2b8d-4c8e-8f0a-1d2e3f4a5b6c"
SESSION_ID = "0d6a1f5e-7c2b-4b9a-9d3e-5f6a7b8c9d0e"
USER_ID = "3b9f8e2a-1c4d-4e5f-8a6b-7c8d9e0f1a2b"
REQUEST_ID = "5c1d2e3f-4a5b-4c6d-8e7f-9a0b1c2d3e4f"


class RecordingStream(httpx.AsyncByteStream):
    """Response body that records how far it was read and whether it was closed.

    An Exception instance in `chunks` is raised when reached.
    """

    def __init__(self, chunks: list[bytes | Exception]) -> None:
        self._chunks = chunks
        self.reads = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            self.reads += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


Handler = Callable[[httpx.Request], httpx.Response]


def refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("No such file or directory", request=request)


class Recorder:
    """Wraps a handler and keeps every request it saw."""

    def __init__(self, handler: Handler | None) -> None:
        self._handler = handler or refuse
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def json(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


@pytest.fixture
def recording_stream() -> type[RecordingStream]:
    return RecordingStream


@pytest.fixture
def make_dispatcher() -> Callable[..., tuple[TransportDispatcher, Recorder, Recorder]]:
    """Build a dispatcher over fake channels.

    Returns (dispatcher, local_recorder, network_recorder).
    """

    def factory(
        local: Handler | None = None,
        network: Handler | None = None,
    ) -> tuple[TransportDispatcher, Recorder, Recorder]:
        local_rec = Recorder(local)
        network_rec = Recorder(network or refuse)
        dispatcher = TransportDispatcher(
            EndpointTarget("/tmp/pantry-test.sock", "http://pantry.test:9404"),
            local_transport=httpx.MockTransport(local_rec),
            network_transport=httpx.MockTransport(network_rec),
        )
        return dispatcher, local_rec, network_rec

    return factory


@pytest.fixture
def make_api(make_dispatcher: Callable[..., Any]) -> Callable[..., tuple[PantryAPI, Recorder, Recorder]]:
    def factory(
        local: Handler | None = None,
        network: Handler | None = None,
    ) -> tuple[PantryAPI, Recorder, Recorder]:
        dispatcher, local_rec, network_rec = make_dispatcher(local, network)
        return PantryAPI(dispatcher), local_rec, network_rec

    return factory


@pytest.fixture
def session_json() -> dict[str, Any]:
    return {
        "id": SESSION_ID,
        "llm_uuid": LLM_UUID,
        "user_id": USER_ID,
        "started": "2023-08-01T09:59:00Z",
        "last_called": "2023-08-01T10:00:00Z",
        "session_parameters": {"system_prompt": "be brief"},
    }


@pytest.fixture
def event_json(session_json: dict[str, Any]) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Factory for a full LLMEvent payload around an event kind."""

    def factory(kind: dict[str, Any]) -> dict[str, Any]:
        return {
            "stream_id": STREAM_ID,
            "timestamp": "2023-08-01T10:00:01Z",
            "call_timestamp": "2023-08-01T10:00:00Z",
            "parameters": {"temperature": 0.7, "stop": ["\n"], "seed": None},
            "input": "About me: ",
            "llm_uuid": LLM_UUID,
            "session": session_json,
            "event": kind,
        }

    return factory


@pytest.fixture
def data_frame() -> Callable[[dict[str, Any]], bytes]:
    """Encode a payload as one SSE message frame."""

    def encode(payload: dict[str, Any], event_id: str | None = None) -> bytes:
        head = f"id: {event_id}\nevent: message\n" if event_id else ""
        return f"{head}data: {json.dumps(payload)}\n\n".encode()

    return encode


@pytest.fixture
def llm_status_json() -> dict[str, Any]:
    return {
        "id": "openchat-3",
        "family_id": "llama",
        "organization": "openchat",
        "name": "Openchat LLM",
        "homepage": "",
        "license": "llama2",
        "description": "openchat llm",
        "capabilities": {"general": 5, "coding": -1},
        "requirements": "",
        "tags": [],
        "url": "https://example.invalid/openchat.bin",
        "local": True,
        "connector_type": "llmrs",
        "config": {"model_architecture": "llama"},
        "parameters": {},
        "user_parameters": ["sampler_string"],
        "session_parameters": {},
        "user_session_parameters": ["system_prompt"],
        "uuid": LLM_UUID,
        "running": True,
    }
