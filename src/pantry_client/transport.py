"""Dual-transport request dispatcher.

Every request is offered to the local interprocess socket first and, if
that leg fails for any reason, to the network endpoint exactly once.
Callers never learn which channel answered unless they look at
RawResponse.channel.

Dispatch is a two-state machine:

    LOCAL_ATTEMPT --(fails)--> NETWORK_ATTEMPT
         |                          |
      success                 success / failure
         v                          v
      RawResponse        RawResponse / TransportError

There is no retry loop, backoff or jitter beyond that single transition.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from .errors import StreamConsumedError, TransportError

logger = logging.getLogger(__name__)

# Host part is ignored by the UDS transport but httpx needs an absolute URL.
LOCAL_BASE_URL = "http://localhost"

# (name, value) pairs
HeaderPairs = tuple[tuple[str, str], ...]

JSON_HEADERS: HeaderPairs = (("Content-Type", "application/json"),)


class Channel(str, Enum):
    """Which leg delivered a response."""

    LOCAL = "local"
    NETWORK = "network"


class DispatchStage(str, Enum):
    """Dispatcher state machine."""

    LOCAL_ATTEMPT = "local_attempt"
    NETWORK_ATTEMPT = "network_attempt"


@dataclass(frozen=True)
class EndpointTarget:
    """Two addresses for the same logical server.

    Nothing verifies that both reach the same instance; configuration is
    trusted.
    """

    local_address: str
    network_address: str


@dataclass(frozen=True)
class DispatchRequest:
    """An immutable, already serialized request."""

    method: str
    path: str
    body: bytes = b""
    headers: HeaderPairs = JSON_HEADERS


class RawResponse:
    """Status code plus a single-consumption body.

    The body is either read to completion (read) or iterated as decoded
    text lines (aiter_lines); whichever happens first owns it. The underlying
    connection is released when the body is exhausted or aclose() is
    called.
    """

    def __init__(self, response: httpx.Response, channel: Channel) -> None:
        self._response = response
        self.channel = channel
        self._claimed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def is_success(self) -> bool:
        return self._response.is_success

    @property
    def is_closed(self) -> bool:
        return self._response.is_closed

    def _claim(self) -> None:
        if self._claimed:
            raise StreamConsumedError("Response body has already been consumed")
        self._claimed = True

    async def read(self) -> bytes:
        """Read the whole body and release the connection."""
        self._claim()
        try:
            return await self._response.aread()
        finally:
            await self._response.aclose()

    def aiter_lines(self) -> AsyncIterator[str]:
        """Hand the body over as a source of text lines."""
        self._claim()
        return self._response.aiter_lines()

    async def aclose(self) -> None:
        await self._response.aclose()


class TransportDispatcher:
    """Delivers requests over the local socket, falling back to the network.

    Owns two httpx clients. Construct one per facade and close it with
    aclose() (or use it as an async context manager); nothing here is
    process-global.

    Either transport can be injected (e.g. httpx.MockTransport in tests).
    """

    def __init__(
        self,
        target: EndpointTarget,
        *,
        local_timeout: float = 5.0,
        local_transport: httpx.AsyncBaseTransport | None = None,
        network_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.target = target
        self._local = httpx.AsyncClient(
            base_url=LOCAL_BASE_URL,
            transport=local_transport or httpx.AsyncHTTPTransport(uds=target.local_address),
            # Bounded connect/write/pool, unbounded reads so streams can idle.
            timeout=httpx.Timeout(local_timeout, read=None),
        )
        self._network = httpx.AsyncClient(
            base_url=target.network_address,
            transport=network_transport,
            timeout=httpx.Timeout(None),
        )

    async def dispatch(self, request: DispatchRequest) -> RawResponse:
        """Send a request, local channel first.

        Returns the response with its body unread. Raises TransportError
        only when both channels failed.
        """
        stage = DispatchStage.LOCAL_ATTEMPT
        local_error: Exception | None = None

        while True:
            client, channel = self._leg(stage)
            try:
                response = await self._send(client, request)
                return RawResponse(response, channel)
            except (httpx.TransportError, OSError) as e:
                if stage is DispatchStage.LOCAL_ATTEMPT:
                    logger.debug(
                        f"Local channel {self.target.local_address} failed for "
                        f"{request.method} {request.path}: {e!r}; trying network"
                    )
                    local_error = e
                    stage = DispatchStage.NETWORK_ATTEMPT
                    continue

                logger.warning(
                    f"Network channel {self.target.network_address} failed for "
                    f"{request.method} {request.path}: {e!r}"
                )
                raise TransportError(local_error, e) from e

    def _leg(self, stage: DispatchStage) -> tuple[httpx.AsyncClient, Channel]:
        if stage is DispatchStage.LOCAL_ATTEMPT:
            return self._local, Channel.LOCAL
        return self._network, Channel.NETWORK

    @staticmethod
    async def _send(client: httpx.AsyncClient, request: DispatchRequest) -> httpx.Response:
        http_request = client.build_request(
            request.method,
            request.path,
            content=request.body,
            headers=request.headers,
        )
        return await client.send(http_request, stream=True)

    async def aclose(self) -> None:
        await self._local.aclose()
        await self._network.aclose()

    async def __aenter__(self) -> TransportDispatcher:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
