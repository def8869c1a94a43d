"""API key authentication against the GRID cloud API."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grid_cloud import events
from grid_cloud.client import create_client, request_json
from grid_cloud.config import delete_config_value, get_config_value, set_config_value
from grid_cloud.events import EventBus
from grid_cloud.exceptions import AuthError, ProtocolError

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "grid_"
API_KEY_CONFIG_KEY = "api_key"


class User(BaseModel):
    """The account an API key belongs to."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    email: str
    tier: Literal["free", "pro", "enterprise", "founder"]
    team_id: str | None = Field(default=None, alias="teamId")
    is_team_admin: bool = Field(default=False, alias="isTeamAdmin")


class AuthService:
    """Holds the credential and announces login/logout to subscribers."""

    def __init__(self, bus: EventBus | None = None) -> None:
        self.events = bus or EventBus()
        self._user: User | None = None

    @property
    def user(self) -> User | None:
        """The validated user of this session, if any."""
        return self._user

    def get_credential(self) -> str | None:
        """Return the stored API key, or None when not authenticated."""
        api_key = get_config_value(API_KEY_CONFIG_KEY)
        if not api_key:
            return None
        return str(api_key)

    def is_authenticated(self) -> bool:
        """Check if an API key is stored."""
        return self.get_credential() is not None

    async def validate(self, api_key: str) -> User:
        """Ask the server who an API key belongs to.

        Raises:
            AuthError: If the key has the wrong format or the server refuses it
            NetworkError: If the server cannot be reached
            ProtocolError: If the response is not a user object
        """
        if not api_key.startswith(API_KEY_PREFIX):
            raise AuthError(f"Invalid API Key format. Must start with {API_KEY_PREFIX}")

        async with create_client() as client:
            data = await request_json(client, "POST", "/ide/auth/validate", json={"apiKey": api_key})

        try:
            return User.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Malformed user in validation response: {e}") from e

    async def login(self, api_key: str) -> User:
        """Validate and store an API key, then emit ``login``."""
        user = await self.validate(api_key)
        set_config_value(API_KEY_CONFIG_KEY, api_key)
        self._user = user
        logger.info("Logged in as %s (%s)", user.email, user.tier)
        self.events.emit(events.LOGIN, user)
        return user

    async def restore(self) -> User | None:
        """Re-validate a stored key at startup.

        Returns:
            The user, or None when no key is stored
        """
        api_key = self.get_credential()
        if api_key is None:
            return None
        self._user = await self.validate(api_key)
        self.events.emit(events.LOGIN, self._user)
        return self._user

    def logout(self) -> None:
        """Forget the stored API key and emit ``logout``."""
        delete_config_value(API_KEY_CONFIG_KEY)
        self._user = None
        logger.info("Logged out of GRID Cloud")
        self.events.emit(events.LOGOUT)
