"""Change detection between the workspace directory and the state tracker."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from grid_cloud.cache.tracker import LocalStateTracker
from grid_cloud.sync.hashing import fingerprint_file

logger = logging.getLogger(__name__)

IgnorePredicate = Callable[[str], bool]


class ChangeKind(str, Enum):
    """Kind of change to a workspace path."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileChange:
    """A single path-level change.

    For deletions ``fingerprint`` is the last synced fingerprint.
    """

    path: str
    kind: ChangeKind
    fingerprint: str | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API requests."""
        return {
            "path": self.path,
            "kind": self.kind.value,
            "fingerprint": self.fingerprint,
        }


ChangeSet = list[FileChange]


@dataclass
class DetectionResult:
    """Changes found by a scan plus the paths that could not be read."""

    changes: ChangeSet = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """Check if there is nothing to push."""
        return len(self.changes) == 0


def default_ignore(path: str) -> bool:
    """Ignore dot-files and anything inside dot-directories (``.git``, ...)."""
    return any(part.startswith(".") for part in path.split("/"))


def order_changes(changes: list[FileChange]) -> ChangeSet:
    """Order a change set: deletions first, then creations and modifications.

    Each group is sorted by path so the result is deterministic.
    """
    return sorted(changes, key=lambda c: (c.kind != ChangeKind.DELETED, c.path))


def scan_workspace(root: Path, ignore: IgnorePredicate = default_ignore) -> list[str]:
    """List the relative, forward-slash paths of all files under ``root``."""
    paths: list[str] = []
    for dirpath, dirs, files in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else f"{rel_dir}/"
        dirs[:] = sorted(d for d in dirs if not ignore(f"{prefix}{d}"))
        for filename in files:
            rel = f"{prefix}{filename}"
            if ignore(rel):
                continue
            if (Path(dirpath) / filename).is_file():
                paths.append(rel)
    return sorted(paths)


class ChangeDetector:
    """Diff the files under a workspace root against the Local State Tracker."""

    def __init__(
        self,
        root: Path,
        tracker: LocalStateTracker,
        ignore: IgnorePredicate | None = None,
    ) -> None:
        self.root = root
        self.tracker = tracker
        self.ignore = ignore or default_ignore

    def detect(self) -> DetectionResult:
        """Compute the ordered change set for the current filesystem state.

        Files that cannot be read are left out and reported in ``skipped``;
        they are picked up again by the next scan. Tombstoned paths are
        awaiting the server and are not reported as deleted again. The
        tracker is not modified.
        """
        result = DetectionResult()
        records = {record.path: record for record in self.tracker.all_records()}
        present: set[str] = set()
        changes: list[FileChange] = []

        for rel in scan_workspace(self.root, self.ignore):
            present.add(rel)
            try:
                fingerprint = fingerprint_file(self.root / rel)
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", rel, e)
                result.skipped.append((rel, str(e)))
                continue

            record = records.get(rel)
            if record is None or record.tombstone:
                # A tombstoned path that is back was recreated after its deletion
                changes.append(FileChange(rel, ChangeKind.CREATED, fingerprint))
            elif fingerprint != record.synced_fingerprint:
                changes.append(FileChange(rel, ChangeKind.MODIFIED, fingerprint))

        for path, record in records.items():
            # Unreadable paths are in ``present`` too, so they are never deleted
            if path in present or record.tombstone:
                continue
            changes.append(FileChange(path, ChangeKind.DELETED, record.synced_fingerprint))

        result.changes = order_changes(changes)
        logger.debug(
            "Detected %d change(s) under %s (%d skipped)",
            len(result.changes),
            self.root,
            len(result.skipped),
        )
        return result
