"""Client-side cache of select results.

Entries are keyed by a fingerprint of ``(query, bindings)``. Invalidation
is coarse: any write clears everything, so there is no dependency
tracking to get wrong.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


def fingerprint(query: str, bindings: Sequence[Any]) -> str:
    """Deterministic digest of a query and its bindings."""
    canonical = json.dumps(
        [query, list(bindings)], separators=(",", ":"), sort_keys=True, default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    results: list[dict[str, Any]]
    expires_at: float


class ResultCache:
    """TTL cache with a size bound.

    When a new entry would exceed ``max_size``, expired entries are swept
    first; if the cache is still full the oldest entries are evicted.
    """

    def __init__(
        self,
        ttl: float = 60.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, query: str, bindings: Sequence[Any] = ()) -> list[dict[str, Any]] | None:
        """Return a copy of the live cached results, or None."""
        entry = self._entries.get(fingerprint(query, bindings))
        if entry is None or entry.expires_at <= self._clock():
            return None
        return copy.deepcopy(entry.results)

    def put(self, query: str, bindings: Sequence[Any], results: list[dict[str, Any]]) -> None:
        key = fingerprint(query, bindings)
        entry = CacheEntry(copy.deepcopy(results), self._clock() + self.ttl)
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_size:
                self._sweep_locked()
            while len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            if self._entries:
                logger.debug(f"Invalidating {len(self._entries)} cached results")
            self._entries.clear()

    def sweep(self) -> int:
        """Drop expired entries, returning how many were removed."""
        with self._lock:
            return self._sweep_locked()

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)
