"""Enterprise configuration pulled from the cloud and merged into local settings."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grid_cloud import events
from grid_cloud.auth import AuthService
from grid_cloud.client import create_client, request_json
from grid_cloud.config import get_config_value, load_config, save_config
from grid_cloud.exceptions import GridCloudError, NotAuthenticatedError, ProtocolError

logger = logging.getLogger(__name__)

CONFIG_KEY = "enterprise_config"
VERSION_KEY = "enterprise_config_version"
PROVIDERS_KEY = "providers"


class McpConfig(BaseModel):
    """MCP server definitions distributed with the enterprise config."""

    servers: dict[str, Any] = Field(default_factory=dict)
    inputs: list[Any] = Field(default_factory=list)


class EnterpriseConfig(BaseModel):
    """Team-wide configuration published by an enterprise admin."""

    model_config = ConfigDict(populate_by_name=True)

    provider_settings: dict[str, Any] = Field(default_factory=dict, alias="providerSettings")
    mcp_config: McpConfig = Field(default_factory=McpConfig, alias="mcpConfig")
    updated_at: int | None = Field(default=None, alias="updatedAt")
    version: int = 0


def merge_settings(local: dict[str, Any], remote: dict[str, Any]) -> dict[str, Any]:
    """Merge remote settings over local ones; remote wins.

    Nested dictionaries are merged key by key, any other remote value
    replaces the local one. Keys only present locally are kept. Neither
    input is modified.
    """
    applied = copy.deepcopy(local)
    for key, value in remote.items():
        if isinstance(value, dict) and isinstance(applied.get(key), dict):
            applied[key] = merge_settings(applied[key], value)
        else:
            applied[key] = copy.deepcopy(value)
    return applied


class EnterpriseConfigService:
    """Keeps the local copy of the enterprise configuration current."""

    def __init__(self, auth: AuthService) -> None:
        self.auth = auth
        self.pending: asyncio.Task[bool] | None = None
        self.auth.events.subscribe(events.LOGIN, self._on_login)

    def _on_login(self, _user: Any = None) -> None:
        """Refresh the configuration in the background after a login."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping config refresh on login")
            return
        self.pending = loop.create_task(self._sync_after_login())

    async def _sync_after_login(self) -> bool:
        try:
            return await self.sync_config()
        except GridCloudError:
            # Already logged by sync_config; a failed refresh must not fail the login
            return False

    def local_version(self) -> int:
        """Version of the configuration applied locally, 0 if none."""
        return int(get_config_value(VERSION_KEY, 0) or 0)

    def get_config(self) -> EnterpriseConfig | None:
        """Return the locally stored enterprise configuration."""
        data = get_config_value(CONFIG_KEY)
        if not data:
            return None
        return EnterpriseConfig.model_validate(data)

    async def fetch_config(self) -> EnterpriseConfig:
        """Download the enterprise configuration.

        Raises:
            NotAuthenticatedError: If no API key is stored
            AuthError, NetworkError, ProtocolError: On request failures
        """
        api_key = self.auth.get_credential()
        if api_key is None:
            raise NotAuthenticatedError("Not logged in")

        async with create_client(api_key) as client:
            data = await request_json(client, "GET", "/ide/config")

        try:
            return EnterpriseConfig.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Malformed enterprise config: {e}") from e

    def apply_config(self, remote: EnterpriseConfig) -> dict[str, Any]:
        """Persist a configuration and merge its provider settings.

        Returns:
            The provider settings now in effect
        """
        config = load_config()
        applied = merge_settings(config.get(PROVIDERS_KEY, {}), remote.provider_settings)
        config[PROVIDERS_KEY] = applied
        config[CONFIG_KEY] = remote.model_dump(by_alias=True)
        config[VERSION_KEY] = remote.version
        save_config(config)
        logger.info("Enterprise configuration updated to version %d", remote.version)
        return applied

    async def sync_config(self) -> bool:
        """Fetch the remote configuration and apply it if it is newer.

        The server is the source of truth: a local version newer than the
        remote one is left alone and not pushed.

        Returns:
            True if a new configuration was applied
        """
        if not self.auth.is_authenticated():
            return False

        try:
            remote = await self.fetch_config()
        except GridCloudError as e:
            logger.error("Config sync failed: %s", e)
            raise

        local_version = self.local_version()
        if remote.version > local_version:
            logger.info("Applying new config version: %d -> %d", local_version, remote.version)
            self.apply_config(remote)
            return True
        return False
