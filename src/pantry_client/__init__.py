"""Pantry client - async access to a local Pantry LLM server.

Requests go over the server's local socket when it is available and
fall back to its network endpoint otherwise. Prompting returns an async
stream of typed inference events.
"""

from .api import PantryAPI
from .client import LLMSession, PantryClient
from .config import ClientConfig
from .errors import ApiError, DecodingError, PantryError, StreamConsumedError, TransportError
from .events import (
    DecoderStats,
    EventDecoder,
    LLMEvent,
    LLMSessionStatus,
    Other,
    PromptCompletion,
    PromptError,
    PromptProgress,
)
from .models import (
    CapabilityFilter,
    CapabilityType,
    LLMConnectorType,
    LLMFilter,
    LLMPreference,
    LLMRegistryEntry,
    LLMRunningStatus,
    LLMStatus,
    UserInfo,
    UserPermissions,
    UserRequestStatus,
)
from .sse import SseFrame
from .stream import LLMEventStream, StreamState
from .transport import (
    Channel,
    DispatchRequest,
    DispatchStage,
    EndpointTarget,
    RawResponse,
    TransportDispatcher,
)

__all__ = [
    # Facade
    "PantryClient",
    "LLMSession",
    "PantryAPI",
    "ClientConfig",
    # Transport
    "TransportDispatcher",
    "EndpointTarget",
    "DispatchRequest",
    "DispatchStage",
    "RawResponse",
    "Channel",
    # Streaming
    "LLMEventStream",
    "StreamState",
    "EventDecoder",
    "DecoderStats",
    "SseFrame",
    # Events
    "LLMEvent",
    "LLMSessionStatus",
    "PromptProgress",
    "PromptCompletion",
    "PromptError",
    "Other",
    # Models
    "UserInfo",
    "UserPermissions",
    "UserRequestStatus",
    "LLMStatus",
    "LLMRunningStatus",
    "LLMRegistryEntry",
    "LLMConnectorType",
    "LLMFilter",
    "LLMPreference",
    "CapabilityFilter",
    "CapabilityType",
    # Errors
    "PantryError",
    "TransportError",
    "DecodingError",
    "ApiError",
    "StreamConsumedError",
]
