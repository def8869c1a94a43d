"""Workspace synchronization service.

Ties the Change Detector, the Sync Protocol and the cache together behind a
single-flight gate: at most one sync cycle per workspace is in flight, and a
cycle triggered meanwhile (by the timer or by the user) is skipped, not
queued.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from grid_cloud import events
from grid_cloud.cache.manager import CacheManager
from grid_cloud.cache.models import CachedWorkspace
from grid_cloud.config import get_sync_max_attempts
from grid_cloud.events import EventBus
from grid_cloud.exceptions import GridCloudError
from grid_cloud.sync.detector import ChangeDetector, IgnorePredicate
from grid_cloud.sync.protocol import (
    DEFAULT_INITIAL_BACKOFF,
    SyncClient,
    SyncProtocol,
)

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 5 * 60.0  # seconds


class CredentialProvider(Protocol):
    """What the service needs from the auth layer."""

    events: EventBus

    def get_credential(self) -> str | None:
        """Return the bearer credential, or None when logged out."""
        ...


class CycleStatus(str, Enum):
    """Outcome of a sync cycle."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class CycleReport:
    """End-of-cycle report; the single place errors of a cycle surface."""

    status: CycleStatus
    accepted: list[str] = field(default_factory=list)
    rejected: list[tuple[str, str]] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    overwritten: list[str] = field(default_factory=list)
    skipped_paths: list[tuple[str, str]] = field(default_factory=list)
    error_kind: str | None = None
    error_message: str | None = None
    cursor: str | None = None

    @property
    def success(self) -> bool:
        """Check if the cycle completed."""
        return self.status == CycleStatus.SUCCEEDED

    @property
    def had_conflicts(self) -> bool:
        """Check if local edits were overwritten by the server."""
        return len(self.overwritten) > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for event payloads and logging."""
        return {
            "status": self.status.value,
            "accepted": list(self.accepted),
            "rejected": [{"path": p, "reason": r} for p, r in self.rejected],
            "downloaded": list(self.downloaded),
            "overwritten": list(self.overwritten),
            "skipped_paths": [{"path": p, "reason": r} for p, r in self.skipped_paths],
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "cursor": self.cursor,
        }


class WorkspaceService:
    """Synchronizes one local workspace root with its cloud copy."""

    def __init__(
        self,
        auth: CredentialProvider,
        root: Path,
        cache_manager: CacheManager | None = None,
        bus: EventBus | None = None,
        ignore: IgnorePredicate | None = None,
        confirm_create: Callable[[str], bool] | None = None,
        max_attempts: int | None = None,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    ) -> None:
        """Initialize the workspace service.

        Args:
            auth: Credential provider; its ``logout`` event stops auto sync
            root: Local workspace root directory
            cache_manager: Cache manager to use. If None, creates a new one.
            bus: Event bus for cycle notifications. Defaults to the auth bus.
            ignore: Predicate on relative paths excluded from sync
            confirm_create: Asked with the workspace name before registering
                a new cloud workspace. If None, workspaces are never created.
            max_attempts: Network attempts per cycle (default from config)
            initial_backoff: First retry delay in seconds
        """
        self.auth = auth
        self.root = root.resolve()
        self._cache = cache_manager or CacheManager()
        self._own_cache = cache_manager is None
        self.events = bus or auth.events
        self.ignore = ignore
        self.confirm_create = confirm_create
        self.max_attempts = max_attempts if max_attempts is not None else get_sync_max_attempts()
        self.initial_backoff = initial_backoff
        self._in_flight = False
        self._auto_sync_task: asyncio.Task[None] | None = None
        self._unsubscribe_logout = auth.events.subscribe(events.LOGOUT, self.stop_auto_sync)

    def close(self) -> None:
        """Stop scheduling and release resources."""
        self.stop_auto_sync()
        self._unsubscribe_logout()
        if self._own_cache:
            self._cache.close()

    @property
    def is_syncing(self) -> bool:
        """Check if a sync cycle is in flight."""
        return self._in_flight

    @property
    def auto_sync_running(self) -> bool:
        """Check if periodic sync is scheduled."""
        return self._auto_sync_task is not None and not self._auto_sync_task.done()

    def current_workspace(self) -> CachedWorkspace | None:
        """Return the locally known cloud workspace for the root, if any."""
        return self._cache.get_workspace_for_root(self.root)

    async def ensure_workspace(self, api_key: str) -> CachedWorkspace | None:
        """Find or register the cloud workspace for the local root.

        Matches the local cache by root path first, then the server's list
        by name; registers a new workspace only if ``confirm_create`` agrees.

        Returns:
            The workspace, or None when it does not exist and was not created
        """
        workspace = self.current_workspace()
        if workspace is not None:
            return workspace

        name = self.root.name
        async with SyncClient(api_key) as client:
            remote = next(
                (w for w in await client.list_workspaces() if w.get("name") == name),
                None,
            )
            if remote is None:
                if self.confirm_create is None or not self.confirm_create(name):
                    logger.info("Workspace %r not found in cloud and not created", name)
                    return None
                remote = await client.create_workspace(name, str(self.root))
                logger.info("Created cloud workspace %r (%s)", name, remote["id"])

        return self._cache.cache_workspace(remote, self.root)

    async def sync_now(self) -> CycleReport:
        """Run one sync cycle unless one is already in flight.

        Returns:
            The end-of-cycle report; ``SKIPPED`` when coalesced into a
            running cycle or when not authenticated
        """
        if self._in_flight:
            logger.debug("Sync already in flight for %s, skipping", self.root)
            return self._skip("sync already in progress")

        self._in_flight = True
        try:
            return await self._run_cycle()
        finally:
            self._in_flight = False

    def _skip(self, reason: str) -> CycleReport:
        report = CycleReport(status=CycleStatus.SKIPPED, error_message=reason)
        self.events.emit(events.CYCLE_SKIPPED, report)
        return report

    async def _run_cycle(self) -> CycleReport:
        api_key = self.auth.get_credential()
        if api_key is None:
            return self._skip("not authenticated")

        self.events.emit(events.CYCLE_STARTED, self.root)
        logger.info("Syncing workspace %s", self.root)

        try:
            workspace = await self.ensure_workspace(api_key)
            if workspace is None:
                return self._skip("workspace is not registered in the cloud")

            tracker = self._cache.tracker(workspace.workspace_id)
            # Hashing, file writes and cache commits run off the event loop
            detector = ChangeDetector(self.root, tracker, self.ignore)
            detection = await asyncio.to_thread(detector.detect)

            protocol = SyncProtocol(
                self._cache,
                self.root,
                api_key,
                max_attempts=self.max_attempts,
                initial_backoff=self.initial_backoff,
            )
            request = await asyncio.to_thread(protocol.build_request, workspace, detection.changes)
            result = await protocol.exchange(workspace, request)
            applied = await asyncio.to_thread(protocol.apply, workspace, request.changes, result)
        except GridCloudError as e:
            logger.error("Sync failed (%s): %s", e.kind, e)
            report = CycleReport(
                status=CycleStatus.FAILED,
                error_kind=e.kind,
                error_message=str(e),
            )
            self.events.emit(events.CYCLE_FAILED, report)
            return report

        report = CycleReport(
            status=CycleStatus.SUCCEEDED if applied.cursor_advanced else CycleStatus.FAILED,
            accepted=applied.accepted,
            rejected=[(r.path, r.reason) for r in applied.rejected],
            downloaded=applied.downloaded,
            overwritten=applied.conflicts.overwritten,
            skipped_paths=detection.skipped + request.skipped + applied.failed,
            cursor=workspace.last_synced_at,
        )
        if applied.cursor_advanced:
            self.events.emit(events.CYCLE_SUCCEEDED, report)
        else:
            report.error_kind = "io"
            report.error_message = "Some downloads could not be written; will retry"
            self.events.emit(events.CYCLE_FAILED, report)
        return report

    def start_auto_sync(self, interval: float = DEFAULT_SYNC_INTERVAL) -> None:
        """Run ``sync_now`` every ``interval`` seconds in the background.

        Must be called from a running event loop. Does nothing if already
        running.
        """
        if self.auto_sync_running:
            return
        self._auto_sync_task = asyncio.get_running_loop().create_task(self._auto_sync_loop(interval))
        logger.info("Auto sync started (every %.0fs)", interval)

    def stop_auto_sync(self) -> None:
        """Stop periodic scheduling; an in-flight cycle finishes on its own."""
        if self._auto_sync_task is None:
            return
        self._auto_sync_task.cancel()
        self._auto_sync_task = None
        logger.info("Auto sync stopped")

    async def _auto_sync_loop(self, interval: float) -> None:
        this_task = asyncio.current_task()
        while self._auto_sync_task is this_task:
            await asyncio.sleep(interval)
            cycle = asyncio.ensure_future(self.sync_now())
            try:
                # Shielded: cancelling the schedule must not abort the cycle
                await asyncio.shield(cycle)
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("Scheduled sync cycle crashed")
