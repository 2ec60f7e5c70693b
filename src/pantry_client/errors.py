"""Exception taxonomy for the Pantry client.

Every failure surfaced by this package derives from PantryError:
- TransportError: neither the local socket nor the network endpoint answered
- DecodingError: a response body was not UTF-8 / JSON / the expected shape
- ApiError: the server answered with a non-2xx status
"""

from __future__ import annotations


class PantryError(Exception):
    """Base class for all client errors."""

    pass


class TransportError(PantryError):
    """Raised when both the local and the network channel failed.

    Keeps both underlying exceptions so diagnostics can tell an absent
    local socket apart from an unreachable network endpoint.
    """

    def __init__(
        self,
        local_error: BaseException | None,
        network_error: BaseException | None,
    ) -> None:
        self.local_error = local_error
        self.network_error = network_error
        super().__init__(self.reason)

    @property
    def reason(self) -> str:
        local = _describe(self.local_error) if self.local_error else "not attempted"
        network = _describe(self.network_error) if self.network_error else "not attempted"
        return f"local channel unreachable ({local}); network channel unreachable ({network})"


class DecodingError(PantryError):
    """Raised when a response body cannot be decoded into the expected type."""

    pass


class ApiError(PantryError):
    """Raised when the server reports an application-level failure."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"API returned {status}: {message}")


class StreamConsumedError(PantryError):
    """Raised when a response body is claimed a second time."""

    pass


def _describe(error: BaseException) -> str:
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
