"""SQLite storage for workspace cursors and the Local State Tracker."""

from functools import lru_cache
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session

from grid_cloud.cache.models import CacheBase
from grid_cloud.config import get_config_dir


def get_cache_db_path() -> Path:
    """Get path to the local cache database.

    Returns:
        Path to ~/.config/grid-cloud/cache.db
    """
    return get_config_dir() / "cache.db"


def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    # A committed file record must survive a crash before the cursor moves
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


@lru_cache(maxsize=4)
def _engine_for(db_url: str) -> Engine:
    # Sync cycles touch the cache from worker threads
    engine = create_engine(db_url, echo=False, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def get_cache_engine() -> Engine:
    """Get the SQLAlchemy engine for the cache database.

    One engine is shared per database file, so every session of the
    process uses the same connection pool.
    """
    return _engine_for(f"sqlite:///{get_cache_db_path()}")


def init_cache_db() -> None:
    """Create the cache tables if they don't exist."""
    CacheBase.metadata.create_all(get_cache_engine())


def get_cache_session() -> Session:
    """Open a new session on the cache database."""
    return Session(get_cache_engine())
