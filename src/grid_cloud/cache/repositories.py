"""Repository pattern for cache operations."""

from __future__ import annotations

from typing import Generic, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from grid_cloud.cache.database import get_cache_session, init_cache_db
from grid_cloud.cache.models import CacheBase, CachedWorkspace, FileRecord

# Type variable for cache entities
T = TypeVar("T", bound=CacheBase)


class CacheRepository(Generic[T]):
    """Base repository for cache operations."""

    def __init__(self, model_class: type[T], session: Session | None = None):
        """Initialize the cache repository.

        Args:
            model_class: The SQLAlchemy model class for this repository
            session: Session to share with other repositories. If None, one
                is opened lazily.
        """
        self.model_class = model_class
        self._session = session
        self._own_session = session is None

    def _get_session(self) -> Session:
        """Get or create a database session."""
        if self._session is None:
            init_cache_db()  # Ensure DB is initialized
            self._session = get_cache_session()
        return self._session

    @property
    def session(self) -> Session:
        """The session used by this repository."""
        return self._get_session()

    def close(self) -> None:
        """Close the database session if this repository opened it."""
        if self._session and self._own_session:
            self._session.close()
            self._session = None

    def get_all(self) -> list[T]:
        """Get all cached items."""
        session = self._get_session()
        stmt = select(self.model_class)
        return list(session.execute(stmt).scalars().all())

    def set(self, item: T) -> None:
        """Save or update a cached item.

        Args:
            item: The item to save
        """
        session = self._get_session()
        session.add(item)
        session.commit()

    def set_many(self, items: list[T]) -> None:
        """Save or update multiple cached items in one transaction.

        Args:
            items: The items to save
        """
        session = self._get_session()
        session.add_all(items)
        session.commit()

    def delete(self, item: T) -> None:
        """Delete an item from the cache.

        Args:
            item: The item to delete
        """
        session = self._get_session()
        session.delete(item)
        session.commit()


class WorkspaceRepository(CacheRepository[CachedWorkspace]):
    """Repository for cached workspace registrations."""

    def __init__(self, session: Session | None = None):
        """Initialize the workspace repository."""
        super().__init__(CachedWorkspace, session)

    def get_by_workspace_id(self, workspace_id: str) -> CachedWorkspace | None:
        """Get a workspace by its server identifier.

        Args:
            workspace_id: The server workspace id to look up

        Returns:
            The cached workspace or None if not found
        """
        session = self._get_session()
        stmt = select(CachedWorkspace).where(CachedWorkspace.workspace_id == workspace_id)
        return session.execute(stmt).scalar_one_or_none()

    def get_by_root_path(self, root_path: str) -> CachedWorkspace | None:
        """Get the workspace registered for a local root directory.

        Args:
            root_path: Absolute path of the workspace root

        Returns:
            The cached workspace or None if not found
        """
        session = self._get_session()
        stmt = select(CachedWorkspace).where(CachedWorkspace.root_path == root_path)
        return session.execute(stmt).scalar_one_or_none()


class FileRecordRepository(CacheRepository[FileRecord]):
    """Repository for per-file sync records."""

    def __init__(self, session: Session | None = None):
        """Initialize the file record repository."""
        super().__init__(FileRecord, session)

    def get(self, workspace_id: str, path: str) -> FileRecord | None:
        """Get the record for a path within a workspace."""
        session = self._get_session()
        stmt = select(FileRecord).where(
            FileRecord.workspace_id == workspace_id,
            FileRecord.path == path,
        )
        return session.execute(stmt).scalar_one_or_none()

    def get_for_workspace(self, workspace_id: str) -> list[FileRecord]:
        """Get all records of a workspace, ordered by path."""
        session = self._get_session()
        stmt = (
            select(FileRecord)
            .where(FileRecord.workspace_id == workspace_id)
            .order_by(FileRecord.path)
        )
        return list(session.execute(stmt).scalars().all())

    def get_paths(self, workspace_id: str) -> set[str]:
        """Get the set of tracked paths of a workspace."""
        session = self._get_session()
        stmt = select(FileRecord.path).where(FileRecord.workspace_id == workspace_id)
        return set(session.execute(stmt).scalars().all())

    def delete_for_workspace(self, workspace_id: str) -> int:
        """Delete every record of a workspace.

        Returns:
            Number of records deleted
        """
        session = self._get_session()
        result = session.execute(delete(FileRecord).where(FileRecord.workspace_id == workspace_id))
        session.commit()
        return int(result.rowcount or 0)
