"""Tests for the enterprise configuration service."""

from unittest.mock import patch

import httpx
import pytest

from grid_cloud.auth import AuthService
from grid_cloud.config import get_config_value, load_config, set_config_value
from grid_cloud.enterprise import EnterpriseConfig, EnterpriseConfigService, merge_settings
from grid_cloud.exceptions import AuthError, NotAuthenticatedError


def _make_client(handler) -> httpx.AsyncClient:
    transport = httpx.MockTransport(handler)
    return httpx.AsyncClient(base_url="http://test", transport=transport)


def _remote(version: int, providers: dict | None = None) -> dict:
    return {
        "providerSettings": providers or {},
        "mcpConfig": {"servers": {"docs": {"command": "docs-mcp"}}, "inputs": []},
        "updatedAt": 1700000000,
        "version": version,
    }


@pytest.fixture
def serve_config():
    """Serve /ide/config with a mutable payload."""
    state: dict = {"payload": _remote(1), "status": 200, "calls": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ide/auth/validate":
            return httpx.Response(200, json={"id": "1", "email": "a@b.c", "tier": "enterprise"})
        state["calls"] += 1
        return httpx.Response(state["status"], json=state["payload"])

    def _create_client(*args, **kwargs) -> httpx.AsyncClient:
        return _make_client(handler)

    with (
        patch("grid_cloud.auth.create_client", side_effect=_create_client),
        patch("grid_cloud.enterprise.create_client", side_effect=_create_client),
    ):
        yield state


@pytest.fixture
def logged_in() -> AuthService:
    """An auth service with a stored key."""
    set_config_value("api_key", "grid_team")
    return AuthService()


class TestMergeSettings:
    """Tests for merge_settings."""

    def test_remote_wins(self):
        """Test remote values replace local ones."""
        merged = merge_settings({"model": "local", "keep": 1}, {"model": "remote"})

        assert merged == {"model": "remote", "keep": 1}

    def test_nested_merge(self):
        """Test nested dicts are merged key by key."""
        local = {"openai": {"apiKey": "mine", "model": "gpt"}}
        remote = {"openai": {"model": "team-model"}, "anthropic": {"enabled": True}}

        merged = merge_settings(local, remote)

        assert merged == {
            "openai": {"apiKey": "mine", "model": "team-model"},
            "anthropic": {"enabled": True},
        }

    def test_inputs_not_modified(self):
        """Test merging is pure."""
        local = {"openai": {"model": "gpt"}}
        remote = {"openai": {"model": "team"}}

        merged = merge_settings(local, remote)
        merged["openai"]["model"] = "changed"

        assert local == {"openai": {"model": "gpt"}}
        assert remote == {"openai": {"model": "team"}}


class TestEnterpriseConfigService:
    """Tests for EnterpriseConfigService."""

    def test_model_aliases(self):
        """Test the wire payload parses."""
        config = EnterpriseConfig.model_validate(_remote(3, {"a": 1}))

        assert config.version == 3
        assert config.provider_settings == {"a": 1}
        assert "docs" in config.mcp_config.servers

    @pytest.mark.asyncio
    async def test_newer_config_is_applied(self, serve_config, logged_in):
        """Test a newer remote version is merged and stored."""
        set_config_value("providers", {"openai": {"apiKey": "mine", "model": "gpt"}})
        serve_config["payload"] = _remote(2, {"openai": {"model": "team-model"}})
        service = EnterpriseConfigService(logged_in)

        assert await service.sync_config() is True

        assert service.local_version() == 2
        assert get_config_value("providers") == {
            "openai": {"apiKey": "mine", "model": "team-model"}
        }
        stored = service.get_config()
        assert stored is not None
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_same_or_older_version_is_ignored(self, serve_config, logged_in):
        """Test the local copy is kept unless the remote one is newer."""
        set_config_value("enterprise_config_version", 5)
        serve_config["payload"] = _remote(5, {"model": "remote"})
        service = EnterpriseConfigService(logged_in)

        assert await service.sync_config() is False
        serve_config["payload"] = _remote(4, {"model": "remote"})
        assert await service.sync_config() is False

        assert "providers" not in load_config()
        assert service.local_version() == 5

    @pytest.mark.asyncio
    async def test_logged_out_does_nothing(self, serve_config):
        """Test no request is made without a credential."""
        service = EnterpriseConfigService(AuthService())

        assert await service.sync_config() is False
        assert serve_config["calls"] == 0

        with pytest.raises(NotAuthenticatedError):
            await service.fetch_config()

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self, serve_config, logged_in):
        """Test a refused fetch raises and leaves the config alone."""
        serve_config["status"] = 403
        serve_config["payload"] = {"error": "Enterprise tier required"}
        service = EnterpriseConfigService(logged_in)

        with pytest.raises(AuthError, match="Enterprise tier required"):
            await service.sync_config()

        assert service.local_version() == 0

    @pytest.mark.asyncio
    async def test_login_triggers_refresh(self, serve_config):
        """Test logging in refreshes the configuration in the background."""
        auth = AuthService()
        service = EnterpriseConfigService(auth)

        await auth.login("grid_team")

        assert service.pending is not None
        assert await service.pending is True
        assert service.local_version() == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_fail_login(self, serve_config):
        """Test a config error after login is swallowed by the background refresh."""
        serve_config["status"] = 500
        auth = AuthService()
        service = EnterpriseConfigService(auth)

        user = await auth.login("grid_team")

        assert user.tier == "enterprise"
        assert await service.pending is False

    def test_login_without_event_loop(self, logged_in):
        """Test the login hook is a no-op outside an event loop."""
        service = EnterpriseConfigService(logged_in)

        service._on_login(None)

        assert service.pending is None
