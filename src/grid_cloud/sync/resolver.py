"""Conflict resolution between outgoing changes and server downloads.

The server copy always wins: a path that was changed locally and is also in
the server's downloads is overwritten locally, and the path is
reported once at the end of the cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from grid_cloud.sync.detector import ChangeKind, FileChange

logger = logging.getLogger(__name__)


class ConflictResolution(str, Enum):
    """How a conflict was resolved."""

    SERVER_WINS = "server_wins"


@dataclass(frozen=True)
class SyncConflict:
    """A path changed both locally and on the server since the last cursor."""

    path: str
    local_fingerprint: str | None
    server_fingerprint: str | None
    local_deleted: bool = False
    resolution: ConflictResolution = ConflictResolution.SERVER_WINS


@dataclass
class ConflictReport:
    """Conflicts of one sync cycle."""

    conflicts: list[SyncConflict] = field(default_factory=list)

    @property
    def overwritten(self) -> list[str]:
        """Local edits discarded in favour of the server copy."""
        return [c.path for c in self.conflicts]

    @property
    def had_conflicts(self) -> bool:
        """Check if there were any conflicts."""
        return len(self.conflicts) > 0

    def __contains__(self, path: object) -> bool:
        return any(c.path == path for c in self.conflicts)


class ConflictResolver:
    """Detects conflicting paths and applies the server-wins policy."""

    def resolve(
        self,
        changes: Iterable[FileChange],
        downloads: Iterable[tuple[str, str | None]],
    ) -> ConflictReport:
        """Match outgoing changes against server downloads.

        Args:
            changes: Local changes a download would discard: the change set
                that was sent plus local edits that were not sent
            downloads: ``(path, server fingerprint)`` pairs from the response;
                a ``None`` fingerprint stands for a server-side deletion

        Returns:
            The conflicts, ordered by path
        """
        outgoing = {change.path: change for change in changes}
        report = ConflictReport()
        for path, server_fingerprint in downloads:
            change = outgoing.get(path)
            if change is None:
                continue
            local_deleted = change.kind == ChangeKind.DELETED
            # Both sides converged on the same outcome
            if local_deleted and server_fingerprint is None:
                continue
            if not local_deleted and change.fingerprint == server_fingerprint:
                continue
            report.conflicts.append(
                SyncConflict(
                    path=path,
                    local_fingerprint=None if local_deleted else change.fingerprint,
                    server_fingerprint=server_fingerprint,
                    local_deleted=local_deleted,
                )
            )

        report.conflicts.sort(key=lambda c: c.path)
        if report.had_conflicts:
            logger.warning(
                "Server copy won for %d locally modified path(s): %s",
                len(report.conflicts),
                ", ".join(report.overwritten),
            )
        return report
