"""Client configuration.

All settings have defaults matching a stock Pantry install and can be
overridden from the environment:

    PANTRY_SOCKET_PATH    local interprocess socket (default /tmp/pantrylocal.sock)
    PANTRY_BASE_URL       network endpoint (default http://localhost:9404)
    PANTRY_LOCAL_TIMEOUT  seconds bounding connect/write on the local leg
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from .transport import EndpointTarget

DEFAULT_SOCKET_PATH = "/tmp/pantrylocal.sock"
DEFAULT_BASE_URL = "http://localhost:9404"
DEFAULT_LOCAL_TIMEOUT = 5.0

ENV_SOCKET_PATH = "PANTRY_SOCKET_PATH"
ENV_BASE_URL = "PANTRY_BASE_URL"
ENV_LOCAL_TIMEOUT = "PANTRY_LOCAL_TIMEOUT"


@dataclass
class ClientConfig:
    """Where the Pantry server lives and how long the local leg may take.

    Only the local leg is time-bounded. The network leg and streamed reads
    have no timeout; callers wanting one wrap the call themselves.
    """

    socket_path: str = DEFAULT_SOCKET_PATH
    base_url: str = DEFAULT_BASE_URL
    local_timeout: float = DEFAULT_LOCAL_TIMEOUT

    @property
    def target(self) -> EndpointTarget:
        return EndpointTarget(local_address=self.socket_path, network_address=self.base_url)

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientConfig:
        """Build a config from environment variables.

        Keyword overrides that are not None take precedence over the
        environment.
        """
        values: dict[str, Any] = {
            "socket_path": os.environ.get(ENV_SOCKET_PATH, DEFAULT_SOCKET_PATH),
            "base_url": os.environ.get(ENV_BASE_URL, DEFAULT_BASE_URL),
            "local_timeout": float(os.environ.get(ENV_LOCAL_TIMEOUT, DEFAULT_LOCAL_TIMEOUT)),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
