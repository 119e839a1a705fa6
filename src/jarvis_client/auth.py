"""Authentication headers and bearer-token caching.

The token cache is an explicit object owned by whoever composes the client,
with an injectable clock so expiry can be tested without sleeping.

Concurrent refreshes are not serialised: two callers that both observe an
expired token will both call the provider and the last one wins.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from pydantic import BaseModel

from .config import JarvisConfig, TokenProvider

logger = logging.getLogger(__name__)

# Refresh this many seconds before the recorded expiry
REFRESH_MARGIN = 5.0


class TokenGrant(BaseModel):
    """A bearer token and its lifetime in seconds."""

    token: str
    expires_in: float


class TokenCache:
    """Caches one bearer token and refreshes it near expiry."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        refresh_margin: float = REFRESH_MARGIN,
    ):
        self._clock = clock
        self._refresh_margin = refresh_margin
        self._token: str | None = None
        self._expires_at: float | None = None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def expires_at(self) -> float | None:
        return self._expires_at

    def is_stale(self) -> bool:
        """True when there is no token or it is inside the refresh margin."""
        if self._token is None or self._expires_at is None:
            return True
        return self._clock() >= self._expires_at - self._refresh_margin

    async def get(self, provider: TokenProvider) -> str:
        """Return the cached token, fetching a new one from provider if stale."""
        if self._token is not None and not self.is_stale():
            return self._token

        now = self._clock()
        grant = await provider()
        self._token = grant.token
        self._expires_at = now + grant.expires_in
        logger.debug(f"Refreshed bearer token (expires in {grant.expires_in}s)")
        return grant.token

    def invalidate(self) -> None:
        """Forget the cached token."""
        self._token = None
        self._expires_at = None


async def auth_headers(config: JarvisConfig, cache: TokenCache) -> dict[str, str]:
    """Authorization header for a request.

    An api key wins; otherwise a token from config.get_token is used through
    the cache; with neither, no header is sent.
    """
    if config.api_key:
        return {"Authorization": f"Bearer {config.api_key}"}
    if config.get_token is not None:
        token = await cache.get(config.get_token)
        return {"Authorization": f"Bearer {token}"}
    return {}
