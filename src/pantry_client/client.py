"""High-level Pantry client.

PantryClient carries an identity (user_id + api_key) and a PantryAPI;
LLMSession is what create_session returns and what gets prompted.

    perms = UserPermissions(perm_session=True, perm_view_llms=True, perm_request_load=True)
    pantry, request = await PantryClient.register("my project", perms)

    # ...the owner accepts the request in the Pantry UI...
    await pantry.wait_for_request(request.id)

    session = await pantry.create_session()
    stream = await session.prompt_session("About me: ")
    async with stream:
        async for event in stream:
            print(event.event)

The API key is the only authentication, so store it securely. Most
capabilities exist both as a request the owner confirms and as a direct
action needing the matching permission.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import JsonValue

from .api import PantryAPI
from .config import ClientConfig
from .errors import DecodingError
from .models import (
    CreateSessionResponse,
    JsonMap,
    LLMFilter,
    LLMPreference,
    LLMRegistryEntry,
    LLMRunningStatus,
    LLMStatus,
    UserPermissions,
    UserRequestStatus,
)
from .stream import LLMEventStream

logger = logging.getLogger(__name__)


def _parse_uuid(value: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise DecodingError(f"Server returned an invalid {what}: {value!r}") from e


@dataclass
class LLMSession:
    """A server-side session bound to one running LLM."""

    user_id: uuid.UUID
    api_key: str
    id: uuid.UUID
    llm_uuid: uuid.UUID
    llm_status: LLMStatus
    api: PantryAPI
    session_parameters: JsonMap = field(default_factory=dict)

    async def prompt_session(
        self, prompt: str, parameters: JsonMap | None = None
    ) -> LLMEventStream:
        """Run inference and stream events back.

        Requires perm_session. Available parameters vary by LLM; see
        llm_status.user_parameters.
        """
        return await self.api.prompt_session_stream(
            self.user_id,
            self.api_key,
            self.id,
            self.llm_status.uuid,
            prompt,
            parameters or {},
        )

    async def interrupt_session(self) -> LLMRunningStatus:
        """Stop inference after the next token.

        An ongoing stream then ends with a completion or error event;
        frames already in flight are still delivered first.
        """
        return await self.api.interrupt_session(self.user_id, self.api_key, self.llm_uuid, self.id)


class PantryClient:
    """Identity plus API access.

    The identity fields are never mutated after construction, so one
    client can serve any number of concurrent calls.
    """

    def __init__(self, user_id: uuid.UUID, api_key: str, api: PantryAPI) -> None:
        self.user_id = user_id
        self.api_key = api_key
        self.api = api

    @classmethod
    async def register(
        cls,
        name: str,
        permissions: UserPermissions,
        config: ClientConfig | None = None,
        api: PantryAPI | None = None,
    ) -> tuple[PantryClient, UserRequestStatus]:
        """Register a new API user and request `permissions` for it.

        Makes two calls: one creating the user, one filing the permission
        request. The request must be accepted in the Pantry UI.
        """
        api = api or PantryAPI.from_config(config)
        info = await api.register_user(name)
        client = cls(_parse_uuid(info.id, "user id"), info.api_key, api)
        logger.info(f"Registered Pantry user {info.name!r} ({client.user_id})")

        status = await client.request_permissions(permissions)
        return client, status

    @classmethod
    def login(
        cls,
        user_id: uuid.UUID,
        api_key: str,
        config: ClientConfig | None = None,
        api: PantryAPI | None = None,
    ) -> PantryClient:
        """Client for an existing user. Makes no calls."""
        return cls(user_id, api_key, api or PantryAPI.from_config(config))

    async def aclose(self) -> None:
        await self.api.aclose()

    async def __aenter__(self) -> PantryClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # --- Sessions -----------------------------------------------------------

    def _session(self, response: CreateSessionResponse) -> LLMSession:
        return LLMSession(
            user_id=self.user_id,
            api_key=self.api_key,
            id=_parse_uuid(response.session_id, "session id"),
            llm_uuid=_parse_uuid(response.llm_status.uuid, "llm uuid"),
            llm_status=response.llm_status,
            api=self.api,
            session_parameters=response.session_parameters,
        )

    async def create_session(self, parameters: JsonMap | None = None) -> LLMSession:
        """Create a session on the best currently running LLM.

        Parameters are applied where the chosen LLM supports them; the
        returned session lists what was actually used.
        """
        response = await self.api.create_session(self.user_id, self.api_key, parameters or {})
        return self._session(response)

    async def create_session_id(
        self, llm_id: uuid.UUID, parameters: JsonMap | None = None
    ) -> LLMSession:
        """Create a session on a specific LLM, which must be running."""
        response = await self.api.create_session_id(
            self.user_id, self.api_key, llm_id, parameters or {}
        )
        return self._session(response)

    async def create_session_flex(
        self,
        filter: LLMFilter | None = None,
        preference: LLMPreference | None = None,
        parameters: JsonMap | None = None,
    ) -> LLMSession:
        response = await self.api.create_session_flex(
            self.user_id, self.api_key, filter, preference, parameters or {}
        )
        return self._session(response)

    # --- LLM inspection -----------------------------------------------------

    async def get_running_llms(self) -> list[LLMStatus]:
        return await self.api.get_running_llms(self.user_id, self.api_key)

    async def get_available_llms(self) -> list[LLMStatus]:
        return await self.api.get_available_llms(self.user_id, self.api_key)

    async def get_llm_status(self, llm_id: uuid.UUID) -> LLMStatus:
        return await self.api.get_llm_status(self.user_id, self.api_key, llm_id)

    # --- Requests -----------------------------------------------------------

    async def get_request_status(self, request_id: uuid.UUID) -> UserRequestStatus:
        return await self.api.get_request_status(self.user_id, self.api_key, request_id)

    async def wait_for_request(
        self,
        request_id: uuid.UUID,
        poll_interval: float = 1.0,
        attempts: int = 120,
    ) -> UserRequestStatus:
        """Poll a request until the owner has handled it.

        Returns the last status seen; check `.accepted`. Gives up after
        `attempts` polls (at least one) and returns the incomplete status.
        """
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")

        status = await self.get_request_status(request_id)
        for _ in range(attempts - 1):
            if status.complete:
                break
            await asyncio.sleep(poll_interval)
            status = await self.get_request_status(request_id)
        return status

    async def request_permissions(self, permissions: UserPermissions) -> UserRequestStatus:
        return await self.api.request_permissions(self.user_id, self.api_key, permissions)

    async def request_download_llm(self, entry: LLMRegistryEntry) -> UserRequestStatus:
        """Ask the owner to download a model. Be comprehensive in `entry`."""
        return await self.api.request_download(self.user_id, self.api_key, entry)

    async def request_load_llm(self, llm_id: uuid.UUID) -> UserRequestStatus:
        return await self.api.request_load(self.user_id, self.api_key, llm_id)

    async def request_load_llm_flex(
        self,
        filter: LLMFilter | None = None,
        preference: LLMPreference | None = None,
    ) -> UserRequestStatus:
        return await self.api.request_load_flex(self.user_id, self.api_key, filter, preference)

    async def request_unload_llm(self, llm_id: uuid.UUID) -> UserRequestStatus:
        return await self.api.request_unload(self.user_id, self.api_key, llm_id)

    # --- Direct actions (need the matching permission) ---------------------

    async def load_llm(self, llm_id: uuid.UUID) -> LLMRunningStatus:
        return await self.api.load_llm(self.user_id, self.api_key, llm_id)

    async def load_llm_flex(
        self,
        filter: LLMFilter | None = None,
        preference: LLMPreference | None = None,
    ) -> LLMRunningStatus:
        return await self.api.load_llm_flex(self.user_id, self.api_key, filter, preference)

    async def unload_llm(self, llm_id: uuid.UUID) -> LLMStatus:
        """Shut an LLM down. Sessions are saved to disk where possible."""
        return await self.api.unload_llm(self.user_id, self.api_key, llm_id)

    async def download_llm(self, entry: LLMRegistryEntry) -> JsonValue:
        return await self.api.download_llm(self.user_id, self.api_key, entry)

    async def bare_model(self, llm_id: uuid.UUID) -> tuple[LLMStatus, str]:
        """(status, path) of a model file to run with your own runtime."""
        response = await self.api.bare_model(self.user_id, self.api_key, llm_id)
        return response.model, response.path

    async def bare_model_flex(
        self,
        filter: LLMFilter | None = None,
        preference: LLMPreference | None = None,
    ) -> tuple[LLMStatus, str]:
        response = await self.api.bare_model_flex(self.user_id, self.api_key, filter, preference)
        return response.model, response.path
