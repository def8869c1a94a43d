"""Cache manager facade for sync operations."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from grid_cloud.cache.models import CachedWorkspace
from grid_cloud.cache.repositories import FileRecordRepository, WorkspaceRepository
from grid_cloud.cache.tracker import LocalStateTracker


class CacheManager:
    """Facade for all cache operations.

    Owns one session shared by the workspace and file record repositories,
    so cursor updates and file records land in the same database.
    """

    def __init__(self) -> None:
        """Initialize the cache manager."""
        self.workspaces = WorkspaceRepository()
        self.files = FileRecordRepository(session=self.workspaces.session)

    def close(self) -> None:
        """Close the shared session."""
        self.files.close()
        self.workspaces.close()

    def tracker(self, workspace_id: str) -> LocalStateTracker:
        """Return the Local State Tracker for a workspace."""
        return LocalStateTracker(self.files, workspace_id)

    # Workspace operations
    def get_workspace_for_root(self, root: Path) -> CachedWorkspace | None:
        """Get the workspace registered for a local root directory."""
        return self.workspaces.get_by_root_path(str(root.resolve()))

    def get_all_workspaces(self) -> list[CachedWorkspace]:
        """Get all locally registered workspaces."""
        return self.workspaces.get_all()

    def cache_workspace(self, data: dict[str, Any], root: Path) -> CachedWorkspace:
        """Cache a workspace from a server response.

        The cursor is only taken from the server payload when the workspace
        is new; an existing local cursor is never moved by this call.

        Args:
            data: Server workspace object
            root: Local workspace root directory

        Returns:
            The cached workspace
        """
        workspace_id = str(data["id"])
        existing = self.workspaces.get_by_workspace_id(workspace_id)
        if existing is None:
            existing = self.workspaces.get_by_root_path(str(root.resolve()))

        if existing is None:
            workspace = CachedWorkspace(
                workspace_id=workspace_id,
                name=data.get("name") or root.name,
                root_path=str(root.resolve()),
                updated_at=data.get("updated_at"),
                last_synced_at=data.get("last_synced_at"),
                needs_resync=False,
            )
        else:
            workspace = existing
            workspace.workspace_id = workspace_id
            workspace.name = data.get("name") or workspace.name
            workspace.root_path = str(root.resolve())
            workspace.updated_at = data.get("updated_at", workspace.updated_at)

        workspace.set_settings_dict(data.get("settings"))
        self.workspaces.set(workspace)
        return workspace

    def mark_needs_resync(self, workspace: CachedWorkspace) -> None:
        """Flag a workspace as being mid-application of a sync result."""
        workspace.needs_resync = True
        self.workspaces.set(workspace)

    def advance_cursor(self, workspace: CachedWorkspace, cursor: str | None) -> None:
        """Store the new cursor and clear the resync flag in one commit."""
        if cursor is not None:
            workspace.last_synced_at = cursor
        workspace.needs_resync = False
        self.workspaces.set(workspace)

    def reset_workspace(self, workspace: CachedWorkspace) -> int:
        """Forget every file record and the cursor, forcing a full resync.

        Returns:
            Number of file records removed
        """
        removed = self.tracker(workspace.workspace_id).clear()
        workspace.last_synced_at = None
        workspace.needs_resync = False
        self.workspaces.set(workspace)
        return removed
