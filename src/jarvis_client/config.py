"""Client configuration.

Values come from explicit arguments first, then ``JARVIS_*`` environment
variables, then the defaults below.
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .auth import TokenGrant

DEFAULT_BASE_URL = "https://jarvis-online.vercel.app/api"
DEFAULT_TIMEOUT = 30.0

# field name -> environment variable
ENV_VARS = {
    "base_url": "JARVIS_BASE_URL",
    "api_key": "JARVIS_API_KEY",
    "timeout": "JARVIS_TIMEOUT",
    "client_id": "JARVIS_CLIENT_ID",
    "realtime_url": "JARVIS_REALTIME_URL",
    "realtime_key": "JARVIS_REALTIME_KEY",
}

TokenProvider = Callable[[], Awaitable["TokenGrant"]]


@dataclass
class JarvisConfig:
    """Configuration for JarvisClient."""

    base_url: str = DEFAULT_BASE_URL
    api_key: str | None = None
    timeout: float = DEFAULT_TIMEOUT  # seconds

    # Identifies this client on the broadcast channel
    client_id: str | None = None

    # Realtime (broadcast) endpoint
    realtime_url: str | None = None
    realtime_key: str | None = None

    # Used when no api_key is set
    get_token: TokenProvider | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        self.base_url = self.base_url.rstrip("/")

    @classmethod
    def from_env(cls, **overrides: Any) -> JarvisConfig:
        """Build a config from the environment; explicit overrides win."""
        values: dict[str, Any] = {}
        for name, env_var in ENV_VARS.items():
            raw = os.environ.get(env_var)
            if raw is None or raw == "":
                continue
            if name == "timeout":
                try:
                    values[name] = float(raw)
                except ValueError as e:
                    raise ConfigurationError(f"{env_var} must be a number, got {raw!r}") from e
            else:
                values[name] = raw

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def merged(self, **changes: Any) -> JarvisConfig:
        """Return a copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        return replace(self, **changes)
