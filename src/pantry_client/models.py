"""Request/response shapes for the Pantry API.

Plain pydantic models mirroring the server's JSON. Parameter maps are
server-defined per model, so they stay dict[str, JsonValue] and are only
interpreted where they are used.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, JsonValue

JsonMap = dict[str, JsonValue]


class CapabilityType(str, Enum):
    """Capability ratings an LLM can carry. 10 is roughly GPT-4 quality."""

    GENERAL = "general"
    ASSISTANT = "assistant"
    WRITING = "writing"
    CODING = "coding"


class LLMConnectorType(str, Enum):
    GENERIC_API = "genericapi"
    LLMRS = "llmrs"
    OPENAI = "openai"


# =============================================================================
# Identity and permissions
# =============================================================================


class UserPermissions(BaseModel):
    """Capability flags requested for (or granted to) an API user.

    perm_session covers both creating and prompting sessions.
    """

    perm_superuser: bool = False
    perm_load_llm: bool = False
    perm_unload_llm: bool = False
    perm_download_llm: bool = False
    perm_session: bool = False
    perm_request_download: bool = False
    perm_request_load: bool = False
    perm_request_unload: bool = False
    perm_view_llms: bool = False
    perm_bare_model: bool = False


class UserInfo(UserPermissions):
    """The registered identity. `id` and `api_key` are needed to log in later."""

    id: str
    name: str
    api_key: str


# =============================================================================
# LLM selection (evaluated server-side)
# =============================================================================


class CapabilityFilter(BaseModel):
    capability: CapabilityType
    value: int


class LLMFilter(BaseModel):
    """Hard requirements. If nothing matches the server answers 404.

    An empty filter allows any LLM.
    """

    llm_uuid: uuid.UUID | None = None
    llm_id: str | None = None
    family_id: str | None = None
    local: bool | None = None
    minimum_capabilities: list[CapabilityFilter] | None = None


class LLMPreference(BaseModel):
    """Soft requirements, applied in order: uuid, llm_id, local, family_id,
    capability_type. Ties are broken by the general capability rating.
    """

    llm_uuid: uuid.UUID | None = None
    llm_id: str | None = None
    local: bool | None = None
    family_id: str | None = None
    capability_type: CapabilityType | None = None


# =============================================================================
# LLM descriptions
# =============================================================================


class LLMStatus(BaseModel):
    """A downloaded LLM as reported by the server."""

    id: str
    family_id: str
    organization: str

    name: str
    homepage: str
    license: str
    description: str

    capabilities: dict[CapabilityType, int] = Field(default_factory=dict)
    requirements: str = ""
    tags: list[str] = Field(default_factory=list)

    url: str = ""

    local: bool
    connector_type: str
    config: JsonMap = Field(default_factory=dict)

    parameters: JsonMap = Field(default_factory=dict)
    user_parameters: list[str] = Field(default_factory=list)
    session_parameters: JsonMap = Field(default_factory=dict)
    user_session_parameters: list[str] = Field(default_factory=list)

    uuid: str
    running: bool


class LLMRunningStatus(BaseModel):
    llm_info: LLMStatus
    uuid: str


class LLMRegistryEntry(BaseModel):
    """Everything needed to download an LLM.

    Most fields may be empty strings, but users see them in the Pantry UI.
    The llmrs connector needs config["model_architecture"].
    """

    id: str
    family_id: str
    organization: str

    name: str
    license: str
    description: str
    homepage: str

    capabilities: dict[str, int] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    requirements: str = ""

    # Overwritten by the server.
    backend_uuid: str = ""
    url: str

    config: JsonMap = Field(default_factory=dict)
    local: bool
    connector_type: LLMConnectorType

    parameters: JsonMap = Field(default_factory=dict)
    user_parameters: list[str] = Field(default_factory=list)

    session_parameters: JsonMap = Field(default_factory=dict)
    user_session_parameters: list[str] = Field(default_factory=list)


# =============================================================================
# User requests (confirmed by the system owner in the UI)
# =============================================================================


class DownloadRequest(BaseModel):
    type: Literal["DownloadRequest"] = "DownloadRequest"
    llm_registry_entry: LLMRegistryEntry


class PermissionRequest(BaseModel):
    type: Literal["PermissionRequest"] = "PermissionRequest"
    requested_permissions: UserPermissions


class LoadRequest(BaseModel):
    type: Literal["LoadRequest"] = "LoadRequest"
    llm_id: str


class UnloadRequest(BaseModel):
    type: Literal["UnloadRequest"] = "UnloadRequest"
    llm_id: str


UserRequestType = Annotated[
    DownloadRequest | PermissionRequest | LoadRequest | UnloadRequest,
    Field(discriminator="type"),
]


class UserRequestStatus(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    timestamp: datetime
    request: UserRequestType
    accepted: bool
    complete: bool


# =============================================================================
# Session and bare model responses
# =============================================================================


class CreateSessionResponse(BaseModel):
    session_parameters: JsonMap = Field(default_factory=dict)
    llm_status: LLMStatus
    session_id: str


class BareModelResponse(BaseModel):
    model: LLMStatus
    path: str
