"""Low-level Pantry API wrapper.

One method per server endpoint. Each builds the JSON envelope
({user_id, api_key, ...call fields}), dispatches it over whichever channel
is available and maps the answer:

- 2xx: body parsed into the expected type (DecodingError if it is not)
- otherwise: ApiError(status, body text)

Most callers want PantryClient / LLMSession (client.py) instead.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, TypeVar

import httpx
from pydantic import JsonValue, TypeAdapter, ValidationError
from pydantic_core import to_json

from .config import ClientConfig
from .errors import ApiError, DecodingError, PantryError
from .models import (
    BareModelResponse,
    CreateSessionResponse,
    JsonMap,
    LLMFilter,
    LLMPreference,
    LLMRegistryEntry,
    LLMRunningStatus,
    LLMStatus,
    UserInfo,
    UserPermissions,
    UserRequestStatus,
)
from .stream import EVENT_STREAM_HEADERS, LLMEventStream
from .transport import DispatchRequest, TransportDispatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Endpoint paths
EP_REGISTER_USER = "/register_user"
EP_REQUEST_PERMISSIONS = "/request_permissions"
EP_REQUEST_DOWNLOAD = "/request_download"
EP_REQUEST_LOAD = "/request_load"
EP_REQUEST_LOAD_FLEX = "/request_load_flex"
EP_REQUEST_UNLOAD = "/request_unload"
EP_GET_REQUEST_STATUS = "/get_request_status"
EP_GET_LLM_STATUS = "/get_llm_status"
EP_GET_RUNNING_LLMS = "/get_running_llms"
EP_GET_AVAILABLE_LLMS = "/get_available_llms"
EP_INTERRUPT_SESSION = "/interrupt_session"
EP_LOAD_LLM = "/load_llm"
EP_LOAD_LLM_FLEX = "/load_llm_flex"
EP_UNLOAD_LLM = "/unload_llm"
EP_DOWNLOAD_LLM = "/download_llm"
EP_CREATE_SESSION = "/create_session"
EP_CREATE_SESSION_ID = "/create_session_id"
EP_CREATE_SESSION_FLEX = "/create_session_flex"
EP_PROMPT_SESSION_STREAM = "/prompt_session_stream"
EP_BARE_MODEL = "/bare_model"
EP_BARE_MODEL_FLEX = "/bare_model_flex"

_adapters: dict[Any, TypeAdapter[Any]] = {}


def _adapter(response_type: Any) -> TypeAdapter[Any]:
    if response_type not in _adapters:
        _adapters[response_type] = TypeAdapter(response_type)
    return _adapters[response_type]


def encode_body(payload: dict[str, Any]) -> bytes:
    """Serialize a request envelope (models, UUIDs and enums included)."""
    return to_json(payload)


def decode_body(body: bytes, response_type: type[T] | Any) -> T:
    """Parse a 2xx body into `response_type`.

    Raises DecodingError for invalid UTF-8, invalid JSON or a shape mismatch.
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodingError(f"Response body is not valid UTF-8: {e}") from e
    try:
        return _adapter(response_type).validate_json(text)
    except ValidationError as e:
        raise DecodingError(f"Response body is not a valid {_type_name(response_type)}: {e}") from e


def _type_name(response_type: Any) -> str:
    return getattr(response_type, "__name__", str(response_type))


def _credentials(user_id: uuid.UUID, api_key: str) -> dict[str, Any]:
    return {"user_id": str(user_id), "api_key": api_key}


class PantryAPI:
    """Thin per-endpoint wrapper around a TransportDispatcher.

    Holds no identity; every method takes user_id/api_key explicitly.
    Safe to share between concurrent calls.
    """

    def __init__(self, dispatcher: TransportDispatcher) -> None:
        self.dispatcher = dispatcher

    @classmethod
    def from_config(cls, config: ClientConfig | None = None) -> PantryAPI:
        config = config or ClientConfig.from_env()
        return cls(TransportDispatcher(config.target, local_timeout=config.local_timeout))

    async def aclose(self) -> None:
        await self.dispatcher.aclose()

    async def _call(self, path: str, payload: dict[str, Any], response_type: type[T] | Any) -> T:
        request = DispatchRequest("POST", path, encode_body(payload))
        response = await self.dispatcher.dispatch(request)
        try:
            body = await response.read()
        except (httpx.RequestError, httpx.StreamError) as e:
            raise PantryError(f"Failed reading response from {path}: {e!r}") from e

        if not response.is_success:
            message = body.decode("utf-8", errors="replace")
            logger.debug(f"{path} returned {response.status_code}: {message}")
            raise ApiError(response.status_code, message)

        return decode_body(body, response_type)

    # --- Identity -----------------------------------------------------------

    async def register_user(self, user_name: str) -> UserInfo:
        """Create an API user. Follow up with request_permissions."""
        return await self._call(EP_REGISTER_USER, {"user_name": user_name}, UserInfo)

    async def request_permissions(
        self,
        user_id: uuid.UUID,
        api_key: str,
        requested_permissions: UserPermissions,
    ) -> UserRequestStatus:
        """Ask the system owner for permissions (accepted in the UI)."""
        payload = _credentials(user_id, api_key)
        payload["requested_permissions"] = requested_permissions
        return await self._call(EP_REQUEST_PERMISSIONS, payload, UserRequestStatus)

    async def get_request_status(
        self, user_id: uuid.UUID, api_key: str, request_id: uuid.UUID
    ) -> UserRequestStatus:
        payload = _credentials(user_id, api_key)
        payload["request_id"] = str(request_id)
        return await self._call(EP_GET_REQUEST_STATUS, payload, UserRequestStatus)

    # --- Requests (need owner confirmation) --------------------------------

    async def request_download(
        self, user_id: uuid.UUID, api_key: str, llm_registry_entry: LLMRegistryEntry
    ) -> UserRequestStatus:
        payload = _credentials(user_id, api_key)
        # The server expects the entry as an embedded JSON string.
        payload["llm_registry_entry"] = llm_registry_entry.model_dump_json()
        return await self._call(EP_REQUEST_DOWNLOAD, payload, UserRequestStatus)

    async def request_load(
        self, user_id: uuid.UUID, api_key: str, llm_id: uuid.UUID
    ) -> UserRequestStatus:
        payload = _credentials(user_id, api_key)
        payload["llm_id"] = str(llm_id)
        return await self._call(EP_REQUEST_LOAD, payload, UserRequestStatus)

    async def request_load_flex(
        self,
        user_id: uuid.UUID,
        api_key: str,
        filter: LLMFilter | None = None,
        preference: LLMPreference | None = None,
    ) -> UserRequestStatus:
        payload = _credentials(user_id, api_key)
        payload.update(filter=filter, preference=preference)
        return await self._call(EP_REQUEST_LOAD_FLEX, payload, UserRequestStatus)

    async def request_unload(
        self, user_id: uuid.UUID, api_key: str, llm_id: uuid.UUID
    ) -> UserRequestStatus:
        payload = _credentials(user_id, api_key)
        payload["llm_id"] = str(llm_id)
        return await self._call(EP_REQUEST_UNLOAD, payload, UserRequestStatus)

    # --- LLM inspection -----------------------------------------------------

    async def get_llm_status(
        self, user_id: uuid.UUID, api_key: str, llm_id: uuid.UUID
    ) -> LLMStatus:
        payload = _credentials(user_id, api_key)
        payload["llm_id"] = str(llm_id)
        return await self._call(EP_GET_LLM_STATUS, payload, LLMStatus)

    async def get_running_llms(self, user_id: uuid.UUID, api_key: str) -> list[LLMStatus]:
        return await self._call(
            EP_GET_RUNNING_LLMS, _credentials(user_id, api_key), list[LLMStatus]
        )

    async def get_available_llms(self, user_id: uuid.UUID, api_key: str) -> list[LLMStatus]:
        """Downloaded LLMs. They must be loaded before sessions can use them."""
        return await self._call(
            EP_GET_AVAILABLE_LLMS, _credentials(user_id, api_key), list[LLMStatus]
        )

    # --- Direct LLM management ---------------------------------------------

    async def load_llm(
        self, user_id: uuid.UUID, api_key: str, llm_id: uuid.UUID
    ) -> LLMRunningStatus:
        payload = _credentials(user_id, api_key)
        payload["llm_id"] = str(llm_id)
        return await self._call(EP_LOAD_LLM, payload, LLMRunningStatus)

    async def load_llm_flex(
        self,
        user_id: uuid.UUID,
        api_key: str,
        filter: LLMFilter | None = None,
        preference: LLMPreference | None = None,
    ) -> LLMRunningStatus:
        payload = _credentials(user_id, api_key)
        payload.update(filter=filter, preference=preference)
        return await self._call(EP_LOAD_LLM_FLEX, payload, LLMRunningStatus)

    async def unload_llm(self, user_id: uuid.UUID, api_key: str, llm_id: uuid.UUID) -> LLMStatus:
        payload = _credentials(user_id, api_key)
        payload["llm_id"] = str(llm_id)
        return await self._call(EP_UNLOAD_LLM, payload, LLMStatus)

    async def download_llm(
        self, user_id: uuid.UUID, api_key: str, llm_registry_entry: LLMRegistryEntry
    ) -> JsonValue:
        """Start a download. Returns the server's raw answer."""
        payload = _credentials(user_id, api_key)
        payload["llm_registry_entry"] = llm_registry_entry.model_dump_json()
        return await self._call(EP_DOWNLOAD_LLM, payload, JsonValue)

    # --- Sessions -----------------------------------------------------------

    async def create_session(
        self, user_id: uuid.UUID, api_key: str, user_session_parameters: JsonMap
    ) -> CreateSessionResponse:
        """Create a session on the best currently running LLM."""
        payload = _credentials(user_id, api_key)
        payload["user_session_parameters"] = user_session_parameters
        return await self._call(EP_CREATE_SESSION, payload, CreateSessionResponse)

    async def create_session_id(
        self,
        user_id: uuid.UUID,
        api_key: str,
        llm_id: uuid.UUID,
        user_session_parameters: JsonMap,
    ) -> CreateSessionResponse:
        """Create a session on a specific running LLM."""
        payload = _credentials(user_id, api_key)
        payload.update(llm_id=str(llm_id), user_session_parameters=user_session_parameters)
        return await self._call(EP_CREATE_SESSION_ID, payload, CreateSessionResponse)

    async def create_session_flex(
        self,
        user_id: uuid.UUID,
        api_key: str,
        filter: LLMFilter | None,
        preference: LLMPreference | None,
        user_session_parameters: JsonMap,
    ) -> CreateSessionResponse:
        payload = _credentials(user_id, api_key)
        payload.update(
            filter=filter,
            preference=preference,
            user_session_parameters=user_session_parameters,
        )
        return await self._call(EP_CREATE_SESSION_FLEX, payload, CreateSessionResponse)

    async def prompt_session_stream(
        self,
        user_id: uuid.UUID,
        api_key: str,
        session_id: uuid.UUID,
        llm_uuid: str,
        prompt: str,
        parameters: JsonMap,
    ) -> LLMEventStream:
        """Prompt a session and stream inference events back.

        The server does no pre-prompting; chat-style prompts must be built
        by the caller.
        """
        payload = _credentials(user_id, api_key)
        payload.update(
            session_id=str(session_id),
            llm_uuid=llm_uuid,
            prompt=prompt,
            parameters=parameters,
        )
        request = DispatchRequest(
            "POST",
            EP_PROMPT_SESSION_STREAM,
            encode_body(payload),
            headers=EVENT_STREAM_HEADERS,
        )
        return await LLMEventStream.open(self.dispatcher, request)

    async def interrupt_session(
        self,
        user_id: uuid.UUID,
        api_key: str,
        llm_uuid: uuid.UUID,
        session_id: uuid.UUID,
    ) -> LLMRunningStatus:
        """Ask the server to stop inference after the next token."""
        payload = _credentials(user_id, api_key)
        payload.update(llm_uuid=str(llm_uuid), session_id=str(session_id))
        return await self._call(EP_INTERRUPT_SESSION, payload, LLMRunningStatus)

    # --- Bare models --------------------------------------------------------

    async def bare_model(
        self, user_id: uuid.UUID, api_key: str, llm_id: uuid.UUID
    ) -> BareModelResponse:
        """Path to a model file the caller can run with its own runtime."""
        payload = _credentials(user_id, api_key)
        payload["llm_id"] = str(llm_id)
        return await self._call(EP_BARE_MODEL, payload, BareModelResponse)

    async def bare_model_flex(
        self,
        user_id: uuid.UUID,
        api_key: str,
        filter: LLMFilter | None = None,
        preference: LLMPreference | None = None,
    ) -> BareModelResponse:
        payload = _credentials(user_id, api_key)
        payload.update(filter=filter, preference=preference)
        return await self._call(EP_BARE_MODEL_FLEX, payload, BareModelResponse)
