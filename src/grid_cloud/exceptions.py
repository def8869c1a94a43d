"""Client-level exception types.

Convention:
- ``AuthError`` - the server refused the credential or the account tier.
  Never retried; the user has to re-authenticate or upgrade.
- ``NetworkError`` - the request did not complete (connection failure,
  timeout). Retried with backoff inside a sync cycle.
- ``ProtocolError`` - the server answered with something the client cannot
  use (unexpected status, malformed body, fingerprint mismatch). Aborts the
  cycle with local state unchanged.

Local file access failures are plain ``OSError`` and only exclude the
affected path from the current cycle.
"""

from __future__ import annotations


class GridCloudError(Exception):
    """Base class for all client errors."""

    kind = "error"


class NotAuthenticatedError(GridCloudError):
    """Raised when an operation needs a credential and none is stored."""

    kind = "not-authenticated"


class AuthError(GridCloudError):
    """Raised on HTTP 401/402/403 responses."""

    kind = "auth"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(GridCloudError):
    """Raised when the server cannot be reached or the request times out."""

    kind = "network"


class ProtocolError(GridCloudError):
    """Raised for unexpected status codes or malformed responses."""

    kind = "protocol"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
