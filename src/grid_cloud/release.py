"""Register a build artifact with the releases API."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

from grid_cloud.client import check_response
from grid_cloud.exceptions import NetworkError, NotAuthenticatedError
from grid_cloud.sync.hashing import fingerprint_file

logger = logging.getLogger(__name__)

DEFAULT_RELEASES_URL = "https://grideditor.com/api/releases"
FALLBACK_DOWNLOAD_BASE = "https://grideditor.com/downloads"


@dataclass
class ReleaseData:
    """Release metadata sent to the releases API."""

    version: str
    channel: str
    platform: str
    arch: str
    url: str
    sha256: str
    published_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API requests."""
        return asdict(self)


def get_releases_url() -> str:
    """Return the releases endpoint, overridable with GRID_API_URL."""
    return os.environ.get("GRID_API_URL") or DEFAULT_RELEASES_URL


def get_api_secret() -> str:
    """Return the publishing secret from GRID_API_SECRET.

    Raises:
        NotAuthenticatedError: If the variable is not set
    """
    secret = os.environ.get("GRID_API_SECRET")
    if not secret:
        raise NotAuthenticatedError("GRID_API_SECRET environment variable is not set.")
    return secret


def build_download_url(version: str, filename: str, repo: str | None) -> str:
    """Download URL of an artifact: its GitHub release asset, or the website fallback."""
    if repo:
        return f"https://github.com/{repo}/releases/download/{version}/{filename}"
    logger.warning("No repo provided, using generic download location")
    return f"{FALLBACK_DOWNLOAD_BASE}/{filename}"


def build_release(
    version: str,
    file_path: Path,
    channel: str = "stable",
    platform: str = "windows",
    arch: str = "x64",
    repo: str | None = None,
) -> ReleaseData:
    """Checksum an artifact and describe it as a release.

    Raises:
        FileNotFoundError: If the artifact does not exist
    """
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {file_path}")

    checksum = fingerprint_file(file_path)
    logger.info("SHA256 of %s: %s", file_path.name, checksum)
    return ReleaseData(
        version=version,
        channel=channel,
        platform=platform,
        arch=arch,
        url=build_download_url(version, file_path.name, repo),
        sha256=checksum,
        published_at=datetime.now(UTC).isoformat(),
    )


async def publish_release(
    release: ReleaseData,
    secret: str,
    url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """POST release metadata to the releases API.

    A successful response without a JSON body is treated as ``{}``.

    Raises:
        AuthError, ProtocolError: On non-2xx responses
        NetworkError: If the API cannot be reached
    """
    target = url or get_releases_url()
    headers = {"Authorization": f"Bearer {secret}", "Content-Type": "application/json"}
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=60.0)
    try:
        response = await http.post(target, json=release.to_dict(), headers=headers)
    except httpx.RequestError as e:
        raise NetworkError(f"Could not reach {target}: {e}") from e
    finally:
        if owns_client:
            await http.aclose()

    check_response(response)
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
