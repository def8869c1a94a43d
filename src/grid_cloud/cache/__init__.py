"""Local cache for workspace sync state."""

from grid_cloud.cache.database import (
    get_cache_db_path,
    get_cache_engine,
    get_cache_session,
    init_cache_db,
)
from grid_cloud.cache.manager import CacheManager
from grid_cloud.cache.models import CachedWorkspace, FileRecord
from grid_cloud.cache.tracker import LocalStateTracker

__all__ = [
    "CacheManager",
    "CachedWorkspace",
    "FileRecord",
    "LocalStateTracker",
    "get_cache_db_path",
    "get_cache_engine",
    "get_cache_session",
    "init_cache_db",
]
