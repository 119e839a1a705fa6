"""Tests for bearer-token caching and auth headers."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from jarvis_client.auth import TokenCache, TokenGrant, auth_headers
from jarvis_client.config import JarvisConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTokenCache:
    """Tests for TokenCache."""

    @pytest.mark.asyncio
    async def test_fetches_when_empty(self) -> None:
        clock = FakeClock()
        cache = TokenCache(clock=clock)
        provider = AsyncMock(return_value=TokenGrant(token="t1", expires_in=60))

        token = await cache.get(provider)

        assert token == "t1"
        assert cache.expires_at == 1060.0
        provider.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reuses_fresh_token(self) -> None:
        clock = FakeClock()
        cache = TokenCache(clock=clock)
        provider = AsyncMock(return_value=TokenGrant(token="t1", expires_in=60))

        await cache.get(provider)
        clock.now += 54
        token = await cache.get(provider)

        assert token == "t1"
        assert provider.await_count == 1

    @pytest.mark.asyncio
    async def test_refreshes_inside_margin(self) -> None:
        """A token is refreshed five seconds before it expires."""
        clock = FakeClock()
        cache = TokenCache(clock=clock)
        provider = AsyncMock(
            side_effect=[
                TokenGrant(token="t1", expires_in=60),
                TokenGrant(token="t2", expires_in=60),
            ]
        )

        await cache.get(provider)
        clock.now += 55
        token = await cache.get(provider)

        assert token == "t2"
        assert provider.await_count == 2

    def test_is_stale_when_empty(self) -> None:
        assert TokenCache().is_stale()

    @pytest.mark.asyncio
    async def test_invalidate(self) -> None:
        cache = TokenCache(clock=FakeClock())
        await cache.get(AsyncMock(return_value=TokenGrant(token="t1", expires_in=60)))

        cache.invalidate()

        assert cache.token is None
        assert cache.is_stale()

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self) -> None:
        cache = TokenCache(clock=FakeClock())

        with pytest.raises(RuntimeError):
            await cache.get(AsyncMock(side_effect=RuntimeError("auth down")))
        assert cache.token is None


class TestAuthHeaders:
    """Tests for auth_headers()."""

    @pytest.mark.asyncio
    async def test_api_key_wins(self) -> None:
        provider = AsyncMock()
        config = JarvisConfig(api_key="abc", get_token=provider)

        headers = await auth_headers(config, TokenCache())

        assert headers == {"Authorization": "Bearer abc"}
        provider.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_provider(self) -> None:
        provider = AsyncMock(return_value=TokenGrant(token="tok", expires_in=300))
        config = JarvisConfig(get_token=provider)

        headers = await auth_headers(config, TokenCache(clock=FakeClock()))

        assert headers == {"Authorization": "Bearer tok"}

    @pytest.mark.asyncio
    async def test_no_credentials(self) -> None:
        assert await auth_headers(JarvisConfig(), TokenCache()) == {}
