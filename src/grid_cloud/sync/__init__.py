"""Workspace synchronization engine."""

from grid_cloud.sync.detector import ChangeDetector, ChangeKind, FileChange
from grid_cloud.sync.protocol import SyncClient, SyncProtocol, SyncResult
from grid_cloud.sync.resolver import ConflictReport, ConflictResolver, SyncConflict
from grid_cloud.sync.service import CycleReport, CycleStatus, WorkspaceService

__all__ = [
    "ChangeDetector",
    "ChangeKind",
    "ConflictReport",
    "ConflictResolver",
    "CycleReport",
    "CycleStatus",
    "FileChange",
    "SyncClient",
    "SyncConflict",
    "SyncProtocol",
    "SyncResult",
    "WorkspaceService",
]
