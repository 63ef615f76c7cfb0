"""Session state and the storage contract shared by all backends."""

from __future__ import annotations

import random
import re
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

SESSION_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
SESSION_KEY_PREFIX = "sqltunnel_session:"


def new_session_id() -> str:
    """Mint a 128-bit random session token (32 hex characters)."""
    return secrets.token_hex(16)


def is_valid_session_id(session_id: Any) -> bool:
    """Check that a session id has the minted shape.

    Guards every backend against path traversal and key injection.
    """
    return isinstance(session_id, str) and SESSION_ID_PATTERN.match(session_id) is not None


@dataclass(frozen=True)
class SessionState:
    """Transaction depth of one session.

    ``in_transaction`` is derived, so ``in_transaction == (transaction_level > 0)``
    always holds.
    """

    transaction_level: int = 0

    def __post_init__(self) -> None:
        if self.transaction_level < 0:
            raise ValueError("transaction_level must be non-negative")

    @property
    def in_transaction(self) -> bool:
        return self.transaction_level > 0

    def at_level(self, level: int) -> SessionState:
        return SessionState(transaction_level=max(level, 0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "in_transaction": self.in_transaction,
            "transaction_level": self.transaction_level,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SessionState:
        """Rebuild state from a stored record.

        Anything unreadable counts as "not in a transaction".
        """
        if not isinstance(data, dict):
            return cls()
        try:
            level = int(data.get("transaction_level") or 0)
        except (TypeError, ValueError):
            level = 0
        if level <= 0 and data.get("in_transaction") is True:
            level = 1
        return cls(transaction_level=max(level, 0))


class SessionStorage(ABC):
    """Persistence of per-session transaction depth.

    Contract:
    - get() on an absent or expired session returns an empty SessionState
    - save() replaces the stored state and refreshes its lifetime
    - delete() is idempotent
    - cleanup() is called once per request; backends decide how often to act
    """

    lifetime: int

    @abstractmethod
    def get(self, session_id: str) -> SessionState: ...

    @abstractmethod
    def save(self, session_id: str, state: SessionState) -> None: ...

    @abstractmethod
    def delete(self, session_id: str) -> None: ...

    @abstractmethod
    def cleanup(self) -> int:
        """Remove expired sessions, returning how many were removed."""
        ...


class ProbabilisticCleanup:
    """Sweep gate for backends without native expiry.

    A sweep runs on roughly ``probability`` of calls, which avoids a
    background sweeper at the cost of bounded staleness.
    """

    def __init__(self, probability: float, rand: Callable[[], float] | None = None):
        if not 0.0 <= probability <= 1.0:
            raise ValueError("cleanup probability must be between 0 and 1")
        self.probability = probability
        self._rand = rand or random.random

    def should_sweep(self) -> bool:
        if self.probability <= 0.0:
            return False
        return self._rand() < self.probability
