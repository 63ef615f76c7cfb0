"""Session state storage.

Four interchangeable backends behind ``SessionStorage``:
- file: one JSON file per session (default)
- redis: SETEX with native expiry
- database: one row per session in a relational table
- cache: any get/set/delete cache client
"""

from .base import (
    SessionState,
    SessionStorage,
    is_valid_session_id,
    new_session_id,
)
from .cache_store import CacheBackend, CacheSessionStorage, MemoryCache
from .database_store import DatabaseSessionStorage
from .factory import create_session_storage
from .file_store import FileSessionStorage
from .redis_store import RedisSessionStorage

__all__ = [
    "CacheBackend",
    "CacheSessionStorage",
    "DatabaseSessionStorage",
    "FileSessionStorage",
    "MemoryCache",
    "RedisSessionStorage",
    "SessionState",
    "SessionStorage",
    "create_session_storage",
    "is_valid_session_id",
    "new_session_id",
]
