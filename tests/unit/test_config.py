"""Tests for client configuration."""

from __future__ import annotations

import pytest

from jarvis_client.config import DEFAULT_BASE_URL, ENV_VARS, JarvisConfig
from jarvis_client.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for env_var in ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)


class TestJarvisConfig:
    """Tests for JarvisConfig."""

    def test_defaults(self) -> None:
        config = JarvisConfig()

        assert config.base_url == DEFAULT_BASE_URL
        assert config.api_key is None
        assert config.timeout == 30.0

    def test_trailing_slash_stripped(self) -> None:
        assert JarvisConfig(base_url="http://api.test/").base_url == "http://api.test"

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_rejects_non_positive_timeout(self, timeout: float) -> None:
        with pytest.raises(ConfigurationError):
            JarvisConfig(timeout=timeout)

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("JARVIS_BASE_URL", "http://env.test")
        monkeypatch.setenv("JARVIS_API_KEY", "env-key")
        monkeypatch.setenv("JARVIS_TIMEOUT", "12.5")
        monkeypatch.setenv("JARVIS_CLIENT_ID", "device-1")

        config = JarvisConfig.from_env()

        assert config.base_url == "http://env.test"
        assert config.api_key == "env-key"
        assert config.timeout == 12.5
        assert config.client_id == "device-1"

    def test_overrides_win_over_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("JARVIS_API_KEY", "env-key")

        config = JarvisConfig.from_env(api_key="explicit", base_url=None)

        assert config.api_key == "explicit"
        assert config.base_url == DEFAULT_BASE_URL

    def test_invalid_env_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("JARVIS_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError, match="JARVIS_TIMEOUT"):
            JarvisConfig.from_env()

    def test_merged_returns_copy(self) -> None:
        config = JarvisConfig(api_key="a")

        updated = config.merged(api_key="b", timeout=5)

        assert updated.api_key == "b"
        assert updated.timeout == 5
        assert config.api_key == "a"

    def test_merged_rejects_unknown_field(self) -> None:
        with pytest.raises(ConfigurationError, match="colour"):
            JarvisConfig().merged(colour="blue")

    def test_merged_validates(self) -> None:
        with pytest.raises(ConfigurationError):
            JarvisConfig().merged(timeout=0)
