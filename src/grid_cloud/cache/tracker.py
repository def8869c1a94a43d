"""Local State Tracker: what the client last knew the server to have."""

from __future__ import annotations

from datetime import UTC, datetime

from grid_cloud.cache.models import FileRecord
from grid_cloud.cache.repositories import FileRecordRepository


class LocalStateTracker:
    """Per-workspace view over the persisted file records.

    Every mutation is committed immediately, so a record is either fully
    updated or not updated at all. Callers serialize access through the
    workspace sync gate.
    """

    def __init__(self, repository: FileRecordRepository, workspace_id: str) -> None:
        self._repo = repository
        self.workspace_id = workspace_id

    def get(self, path: str) -> FileRecord | None:
        """Return the record for ``path``, if tracked."""
        return self._repo.get(self.workspace_id, path)

    def upsert(self, record: FileRecord) -> FileRecord:
        """Insert ``record`` or copy its state onto the existing record for its path.

        Returns:
            The persisted record
        """
        record.workspace_id = self.workspace_id
        existing = self.get(record.path)
        if existing is None or existing is record:
            target = record
        else:
            existing.fingerprint = record.fingerprint
            existing.synced_fingerprint = record.synced_fingerprint
            existing.tombstone = bool(record.tombstone)
            target = existing
        if target.tombstone is None:
            target.tombstone = False
        target.last_synced = datetime.now(UTC)
        self._repo.set(target)
        return target

    def record_synced(self, path: str, fingerprint: str) -> FileRecord:
        """Record that local and server copy of ``path`` both have ``fingerprint``."""
        return self.upsert(
            FileRecord(
                path=path,
                fingerprint=fingerprint,
                synced_fingerprint=fingerprint,
                tombstone=False,
            )
        )

    def remove(self, path: str) -> bool:
        """Forget ``path``.

        Returns:
            True if a record was removed
        """
        existing = self.get(path)
        if existing is None:
            return False
        self._repo.delete(existing)
        return True

    def record_pending(self, path: str, fingerprint: str) -> FileRecord | None:
        """Record local content the server has not confirmed yet.

        The synced fingerprint is kept, so the record reads as dirty until
        a later cycle settles it. Untracked paths are left alone.
        """
        existing = self.get(path)
        if existing is None:
            return None
        existing.fingerprint = fingerprint
        self._repo.set(existing)
        return existing

    def mark_deleted(self, path: str) -> bool:
        """Tombstone ``path``: its deletion was sent but not confirmed.

        Returns:
            True if the path was tracked
        """
        existing = self.get(path)
        if existing is None:
            return False
        if not existing.tombstone:
            existing.tombstone = True
            self._repo.set(existing)
        return True

    def unmark_deleted(self, path: str) -> bool:
        """Clear the tombstone of ``path`` so its deletion is sent again.

        Returns:
            True if a tombstone was cleared
        """
        existing = self.get(path)
        if existing is None or not existing.tombstone:
            return False
        existing.tombstone = False
        self._repo.set(existing)
        return True

    def pending(self) -> list[FileRecord]:
        """Return the records with changes the server has not confirmed."""
        return [record for record in self.all_records() if record.is_dirty]

    def all_paths(self) -> set[str]:
        """Return every tracked path."""
        return self._repo.get_paths(self.workspace_id)

    def all_records(self) -> list[FileRecord]:
        """Return every tracked record, ordered by path."""
        return self._repo.get_for_workspace(self.workspace_id)

    def clear(self) -> int:
        """Forget every path of the workspace.

        Returns:
            Number of records removed
        """
        return self._repo.delete_for_workspace(self.workspace_id)
