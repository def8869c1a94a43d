"""Sync protocol between a local workspace and the cloud copy.

One round trip per cycle: the client sends its change set together with the
opaque cursor of the last successful sync, and the server answers with the
paths it accepted or rejected, the files the client has to download, and the
next cursor. The server arbitrates conflicts; locally the server copy always
wins.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, TypeVar

import anyio
import httpx
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from grid_cloud.cache.manager import CacheManager
from grid_cloud.cache.models import CachedWorkspace
from grid_cloud.cache.tracker import LocalStateTracker
from grid_cloud.client import create_client, request_json
from grid_cloud.exceptions import NetworkError, ProtocolError
from grid_cloud.sync.detector import ChangeKind, ChangeSet, FileChange
from grid_cloud.sync.hashing import fingerprint_bytes, fingerprint_file
from grid_cloud.sync.resolver import ConflictReport, ConflictResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = (NetworkError,),
) -> T:
    """Await ``func`` with exponential backoff between failed attempts.

    Args:
        func: Coroutine factory to call on every attempt.
        max_attempts: Total number of attempts, at least one.
        initial_backoff: Delay before the second attempt in seconds.
        max_backoff: Upper bound for the delay.
        backoff_multiplier: Factor applied to the delay after each failure.
        retryable_exceptions: Exception types that trigger a retry.

    Returns:
        Result of the first successful attempt.

    Raises:
        The last exception once all attempts failed.
    """
    attempts = max(1, max_attempts)
    backoff = initial_backoff

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retryable_exceptions as e:
            if attempt == attempts:
                logger.error("All %d attempts failed: %s", attempts, e)
                raise
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                attempt,
                attempts,
                e,
                backoff,
            )
            await anyio.sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")


class RejectedPath(BaseModel):
    """A change the server refused to apply."""

    path: str
    reason: str = "rejected by server"


class Download(BaseModel):
    """A file the client has to write (or delete) locally."""

    path: str
    content: str = ""
    fingerprint: str | None = None
    encoding: Literal["utf-8", "base64"] = "utf-8"
    deleted: bool = False

    def decode(self) -> bytes:
        """Return the raw file bytes.

        Raises:
            ProtocolError: If the content does not decode
        """
        if self.encoding == "base64":
            try:
                return base64.b64decode(self.content, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ProtocolError(f"Download for {self.path} is not valid base64") from e
        try:
            return self.content.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ProtocolError(f"Download for {self.path} is not valid UTF-8 text") from e


class SyncResult(BaseModel):
    """Server response of a sync round trip."""

    accepted: list[str] = Field(default_factory=list)
    rejected: list[RejectedPath] = Field(default_factory=list)
    downloads: list[Download] = Field(default_factory=list)
    cursor: str | None = Field(default=None, validation_alias=AliasChoices("cursor", "timestamp"))

    @field_validator("accepted", mode="before")
    @classmethod
    def _accepted_paths(cls, value: Any) -> Any:
        """Accept both plain paths and ``{"path": ...}`` objects."""
        if isinstance(value, list):
            return [item["path"] if isinstance(item, dict) and "path" in item else item for item in value]
        return value

    @field_validator("cursor", mode="before")
    @classmethod
    def _cursor_as_string(cls, value: Any) -> Any:
        """Keep the cursor opaque, whatever JSON type the server used."""
        if value is None or isinstance(value, str):
            return value
        return str(value)


@dataclass
class PreparedDownload:
    """A validated download, ready to be written.

    ``data`` is None for a server-side deletion.
    """

    path: str
    target: Path
    data: bytes | None
    fingerprint: str | None


@dataclass
class OutgoingRequest:
    """Request body plus the changes it actually carries."""

    payload: dict[str, Any]
    changes: ChangeSet = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class ApplyResult:
    """Outcome of applying a SyncResult to disk and tracker."""

    accepted: list[str] = field(default_factory=list)
    rejected: list[RejectedPath] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    conflicts: ConflictReport = field(default_factory=ConflictReport)
    cursor_advanced: bool = False


def resolve_local_path(root: Path, rel_path: str) -> Path | None:
    """Resolve a server-provided path within ``root``.

    Only normalized forward-slash paths are accepted, the form the Change
    Detector records them in. Returns None for anything else and for paths
    that resolve outside the root.
    """
    if not rel_path or rel_path.startswith("/") or "\\" in rel_path or "\x00" in rel_path:
        return None
    if any(part in ("", ".", "..") for part in rel_path.split("/")):
        return None
    try:
        local_path = (root / rel_path).resolve()
    except (OSError, ValueError):
        return None
    if not local_path.is_relative_to(root.resolve()) or local_path == root.resolve():
        return None
    return local_path


def write_file_atomic(target: Path, data: bytes) -> None:
    """Write ``data`` to ``target`` durably, creating parent directories.

    The bytes go to a temporary dot-file next to the target which is then
    renamed over it, so readers never see a partially written file.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".grid-tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class SyncClient:
    """HTTP client for the workspace endpoints."""

    def __init__(self, api_key: str) -> None:
        """Initialize the sync client."""
        self._api_key = api_key
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SyncClient:
        """Enter async context manager."""
        self._client = create_client(self._api_key)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("SyncClient not initialized - use as context manager")
        return self._client

    async def list_workspaces(self) -> list[dict[str, Any]]:
        """List the cloud workspaces of the current user."""
        data = await request_json(self._require_client(), "GET", "/workspaces")
        if isinstance(data, dict):
            data = data.get("workspaces", [])
        if not isinstance(data, list):
            raise ProtocolError("Workspace list response is not a list")
        return data

    async def create_workspace(self, name: str, path: str) -> dict[str, Any]:
        """Register a new cloud workspace."""
        data = await request_json(
            self._require_client(), "POST", "/workspaces", json={"name": name, "path": path}
        )
        if isinstance(data, dict) and isinstance(data.get("workspace"), dict):
            data = data["workspace"]
        if not isinstance(data, dict) or "id" not in data:
            raise ProtocolError("Workspace creation response has no workspace id")
        return data

    async def sync(self, workspace_id: str, payload: dict[str, Any]) -> SyncResult:
        """Send the change set and cursor, returning the validated response.

        Raises:
            AuthError: On 401/402/403
            NetworkError: If the request could not be completed
            ProtocolError: On other failures or a malformed body
        """
        data = await request_json(
            self._require_client(), "POST", f"/workspaces/{workspace_id}/sync", json=payload
        )
        try:
            return SyncResult.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Malformed sync response: {e}") from e


class SyncProtocol:
    """Runs a sync round trip and applies the result to disk and cache.

    Nothing is written before the whole response has been validated, file
    records are updated only after the file is on disk, and the cursor is
    advanced last.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        root: Path,
        api_key: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        resolver: ConflictResolver | None = None,
    ) -> None:
        self._cache = cache_manager
        self.root = root
        self._api_key = api_key
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self._resolver = resolver or ConflictResolver()

    def build_request(self, workspace: CachedWorkspace, changes: ChangeSet) -> OutgoingRequest:
        """Build the request body, attaching file contents to uploads.

        A file that vanished or changed since it was fingerprinted is left
        out; the next scan picks it up again.
        """
        request = OutgoingRequest(payload={})
        entries: list[dict[str, Any]] = []

        for change in changes:
            entry = change.to_dict()
            if change.kind != ChangeKind.DELETED:
                try:
                    data = (self.root / change.path).read_bytes()
                except OSError as e:
                    logger.warning("Skipping %s: %s", change.path, e)
                    request.skipped.append((change.path, str(e)))
                    continue
                if fingerprint_bytes(data) != change.fingerprint:
                    logger.info("Skipping %s: modified during scan", change.path)
                    request.skipped.append((change.path, "modified during scan"))
                    continue
                entry["content"] = base64.b64encode(data).decode("ascii")
                entry["encoding"] = "base64"
            entries.append(entry)
            request.changes.append(change)

        request.payload = {"changes": entries, "cursor": workspace.last_synced_at}
        return request

    async def exchange(self, workspace: CachedWorkspace, request: OutgoingRequest) -> SyncResult:
        """Perform the round trip, retrying network failures with backoff."""

        async def _attempt() -> SyncResult:
            async with SyncClient(self._api_key) as client:
                return await client.sync(workspace.workspace_id, request.payload)

        return await retry_with_backoff(
            _attempt,
            max_attempts=self.max_attempts,
            initial_backoff=self.initial_backoff,
        )

    def prepare_downloads(self, result: SyncResult) -> list[PreparedDownload]:
        """Validate every download before anything touches the disk.

        Raises:
            ProtocolError: On unsafe paths, undecodable content or a
                fingerprint that does not match the content
        """
        prepared: list[PreparedDownload] = []
        for download in result.downloads:
            target = resolve_local_path(self.root, download.path)
            if target is None:
                raise ProtocolError(f"Download path escapes the workspace: {download.path}")
            if download.deleted:
                prepared.append(PreparedDownload(download.path, target, None, None))
                continue
            data = download.decode()
            fingerprint = fingerprint_bytes(data)
            if download.fingerprint is not None and download.fingerprint != fingerprint:
                raise ProtocolError(
                    f"Fingerprint mismatch for {download.path}: "
                    f"expected {download.fingerprint}, got {fingerprint}"
                )
            prepared.append(PreparedDownload(download.path, target, data, fingerprint))
        return prepared

    def _unsent_edit(
        self, tracker: LocalStateTracker, download: PreparedDownload
    ) -> FileChange | None:
        """Describe the local edit a download would discard, if any.

        The file on disk is an edit when it matches neither the last synced
        fingerprint nor the server copy. An unreadable file counts as an edit
        with an unknown fingerprint.
        """
        if not download.target.is_file():
            return None
        try:
            local = fingerprint_file(download.target)
        except OSError as e:
            logger.warning("Cannot read %s before overwriting it: %s", download.path, e)
            local = None
        record = tracker.get(download.path)
        synced = record.synced_fingerprint if record is not None else None
        if local is not None and local in (synced, download.fingerprint):
            return None
        kind = ChangeKind.CREATED if record is None else ChangeKind.MODIFIED
        return FileChange(download.path, kind, local)

    def apply(
        self,
        workspace: CachedWorkspace,
        changes: ChangeSet,
        result: SyncResult,
    ) -> ApplyResult:
        """Apply a server response to disk and to the Local State Tracker.

        Raises:
            ProtocolError: If the response fails validation; nothing has been
                written in that case
        """
        prepared = self.prepare_downloads(result)
        outcome = ApplyResult(rejected=list(result.rejected))
        tracker = self._cache.tracker(workspace.workspace_id)
        sent = {change.path: change for change in changes}

        # Local edits that were not sent (skipped or changed mid-scan) lose too
        unsent = [
            edit
            for edit in (self._unsent_edit(tracker, d) for d in prepared if d.path not in sent)
            if edit is not None
        ]
        outcome.conflicts = self._resolver.resolve(
            [*changes, *unsent], [(d.path, d.fingerprint) for d in prepared]
        )

        self._cache.mark_needs_resync(workspace)

        for download in prepared:
            try:
                if download.data is None:
                    download.target.unlink(missing_ok=True)
                    tracker.remove(download.path)
                else:
                    write_file_atomic(download.target, download.data)
                    tracker.record_synced(
                        download.path, download.fingerprint or fingerprint_bytes(download.data)
                    )
            except OSError as e:
                logger.error("Failed to apply download %s: %s", download.path, e)
                outcome.failed.append((download.path, str(e)))
                continue
            outcome.downloaded.append(download.path)

        downloaded = {d.path for d in prepared}
        for path in result.accepted:
            if path in downloaded:
                continue
            change = sent.get(path)
            if change is None:
                record = tracker.get(path)
                if record is not None and record.tombstone:
                    # Late confirmation of a deletion sent in an earlier cycle
                    tracker.remove(path)
                    outcome.accepted.append(path)
                else:
                    logger.debug("Server accepted unknown path %s", path)
                continue
            if change.kind == ChangeKind.DELETED:
                tracker.remove(path)
            elif change.fingerprint is not None:
                tracker.record_synced(path, change.fingerprint)
            outcome.accepted.append(path)

        rejected_paths = {r.path for r in outcome.rejected}
        for rejected in outcome.rejected:
            logger.warning("Server rejected %s: %s", rejected.path, rejected.reason)
            if rejected.path not in sent:
                tracker.unmark_deleted(rejected.path)

        answered = downloaded | set(result.accepted) | rejected_paths
        for change in changes:
            if change.path in answered:
                continue
            logger.info("Server did not confirm %s of %s", change.kind.value, change.path)
            if change.kind == ChangeKind.DELETED:
                tracker.mark_deleted(change.path)
            elif change.fingerprint is not None:
                tracker.record_pending(change.path, change.fingerprint)

        if outcome.failed:
            logger.error(
                "Cursor not advanced: %d download(s) could not be written", len(outcome.failed)
            )
        else:
            self._cache.advance_cursor(workspace, result.cursor)
            outcome.cursor_advanced = True
        return outcome
