"""Local cache models for workspace sync state."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class CacheBase(DeclarativeBase):
    """Base class for all cache SQLAlchemy models."""

    # Type annotation map for common types
    type_annotation_map: ClassVar[dict[type, Any]] = {
        datetime: DateTime(timezone=True),
    }


class CachedWorkspace(CacheBase):
    """Local mirror of a cloud workspace registration."""

    __tablename__ = "cached_workspaces"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    # Mirror server Workspace fields
    workspace_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    root_path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    settings_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON object as string
    updated_at: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Opaque server cursor; never interpreted as a timestamp
    last_synced_at: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Set while a sync result is being applied, cleared with the cursor advance
    needs_resync: Mapped[bool] = mapped_column(default=False, nullable=False)

    def get_settings_dict(self) -> dict[str, Any]:
        """Parse settings JSON string to dict."""
        if self.settings_json:
            try:
                result = json.loads(self.settings_json)
                return result if isinstance(result, dict) else {}
            except json.JSONDecodeError:
                return {}
        return {}

    def set_settings_dict(self, settings: dict[str, Any] | None) -> None:
        """Convert settings dict to JSON string."""
        self.settings_json = json.dumps(settings or {})


class FileRecord(CacheBase):
    """Last known synced state of a single workspace file.

    ``synced_fingerprint`` is what the server was last confirmed to have.
    ``fingerprint`` is the local content last sent for the path; it differs
    while an upload awaits confirmation. ``tombstone`` marks a deletion that
    was sent but not confirmed.
    """

    __tablename__ = "file_records"
    __table_args__ = (UniqueConstraint("workspace_id", "path", name="uq_file_record_path"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    workspace_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    path: Mapped[str] = mapped_column(String(1024), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    synced_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tombstone: Mapped[bool] = mapped_column(default=False, nullable=False)
    last_synced: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def is_dirty(self) -> bool:
        """True when local content is known to differ from the server copy."""
        return self.tombstone or self.fingerprint != self.synced_fingerprint
