"""Redis-backed session storage; expiry is native (SETEX)."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from .base import SESSION_KEY_PREFIX, SessionState, SessionStorage

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)


class RedisSessionStorage(SessionStorage):
    """Stores sessions as JSON strings under ``<prefix><session-id>``."""

    def __init__(
        self,
        client: redis.Redis,
        lifetime: int = 3600,
        prefix: str = SESSION_KEY_PREFIX,
    ):
        self.client = client
        self.lifetime = lifetime
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, lifetime: int = 3600) -> RedisSessionStorage:
        import redis

        return cls(redis.Redis.from_url(url), lifetime=lifetime)

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def get(self, session_id: str) -> SessionState:
        raw = self.client.get(self._key(session_id))
        if raw is None:
            return SessionState()
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return SessionState.from_dict(json.loads(raw))
        except json.JSONDecodeError:
            logger.warning(f"Unreadable session record for {session_id}, treating as empty")
            return SessionState()

    def save(self, session_id: str, state: SessionState) -> None:
        self.client.setex(self._key(session_id), self.lifetime, json.dumps(state.to_dict()))

    def delete(self, session_id: str) -> None:
        self.client.delete(self._key(session_id))

    def cleanup(self) -> int:
        # Keys expire through their TTL
        return 0
