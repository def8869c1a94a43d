"""Async HTTP client helpers shared by the API services."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from grid_cloud.config import get_api_base_url, get_request_timeout
from grid_cloud.exceptions import AuthError, NetworkError, ProtocolError

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = frozenset({401, 402, 403})


def get_server_url() -> str:
    """Return the configured API base URL."""
    return get_api_base_url()


def build_headers(api_key: str | None) -> dict[str, str]:
    """Build request headers carrying the API key in both accepted forms."""
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
        headers["x-api-key"] = api_key
    return headers


def create_client(api_key: str | None = None, timeout: float | None = None) -> httpx.AsyncClient:
    """Create an async HTTP client with configured base URL and headers."""
    return httpx.AsyncClient(
        base_url=get_server_url(),
        headers=build_headers(api_key),
        timeout=timeout if timeout is not None else get_request_timeout(),
    )


def _error_message(response: httpx.Response) -> str | None:
    """Extract a server supplied error message, if the body has one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def check_response(response: httpx.Response) -> None:
    """Map an unsuccessful response onto the client error taxonomy.

    Raises:
        AuthError: For 401/402/403 responses
        ProtocolError: For any other non-2xx response
    """
    if response.is_success:
        return

    message = _error_message(response)
    if response.status_code in AUTH_STATUS_CODES:
        raise AuthError(
            message or "Upgrade to Pro to use this feature",
            status_code=response.status_code,
        )
    raise ProtocolError(
        f"API Error {response.status_code}: {message or response.reason_phrase}",
        status_code=response.status_code,
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """Send a request and return the decoded JSON body.

    Raises:
        NetworkError: If the request could not be completed
        AuthError: If the server rejected the credential or tier
        ProtocolError: For unexpected status codes or non-JSON bodies
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise NetworkError(f"Request to {url} timed out") from e
    except httpx.RequestError as e:
        raise NetworkError(f"Request to {url} failed: {e}") from e

    check_response(response)

    try:
        return response.json()
    except ValueError as e:
        raise ProtocolError(f"Response from {url} is not valid JSON") from e
