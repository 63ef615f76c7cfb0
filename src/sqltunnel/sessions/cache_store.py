"""Session storage on top of a shared cache.

Any object with ``get(key)``, ``set(key, value, ttl)`` and ``delete(key)``
can back this storage (a host application's cache client, for instance).
``MemoryCache`` is a process-local implementation for single-process
deployments and tests.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from .base import SESSION_KEY_PREFIX, SessionState, SessionStorage

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheBackend(Protocol):
    """Minimal cache client interface."""

    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCache:
    """Thread-safe in-process cache with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._items: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._items[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class CacheSessionStorage(SessionStorage):
    """Stores session dictionaries in a cache with the session lifetime as TTL."""

    def __init__(
        self,
        cache: CacheBackend,
        lifetime: int = 3600,
        prefix: str = SESSION_KEY_PREFIX,
    ):
        self.cache = cache
        self.lifetime = lifetime
        self.prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def get(self, session_id: str) -> SessionState:
        data = self.cache.get(self._key(session_id))
        if data is None:
            return SessionState()
        return SessionState.from_dict(data)

    def save(self, session_id: str, state: SessionState) -> None:
        self.cache.set(self._key(session_id), state.to_dict(), self.lifetime)

    def delete(self, session_id: str) -> None:
        self.cache.delete(self._key(session_id))

    def cleanup(self) -> int:
        # The cache expires entries through their TTL
        return 0
