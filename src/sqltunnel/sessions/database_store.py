"""Relational-table session storage through SQLAlchemy Core.

Table layout (created on first use when missing):

    id          VARCHAR(64) PRIMARY KEY
    data        TEXT        JSON encoded SessionState
    created_at  DATETIME    UTC
    updated_at  DATETIME    UTC
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine

from .base import ProbabilisticCleanup, SessionState, SessionStorage

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # Naive UTC so values compare the same on every dialect
    return datetime.now(UTC).replace(tzinfo=None)


def session_table(name: str, metadata: MetaData | None = None) -> Table:
    """Build the session table definition."""
    return Table(
        name,
        metadata or MetaData(),
        Column("id", String(64), primary_key=True),
        Column("data", Text, nullable=False),
        Column("created_at", DateTime, nullable=False),
        Column("updated_at", DateTime, nullable=False, index=True),
    )


class DatabaseSessionStorage(SessionStorage):
    """One row per session; expired rows are swept probabilistically."""

    def __init__(
        self,
        engine: Engine,
        table: str = "remote_db_sessions",
        lifetime: int = 3600,
        cleanup_probability: float = 0.01,
        *,
        rand: Callable[[], float] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.engine = engine
        self.table = session_table(table)
        self.lifetime = lifetime
        self._sweeper = ProbabilisticCleanup(cleanup_probability, rand)
        self._clock = clock
        self._table_ready = False
        self._ready_lock = threading.Lock()

    def _ensure_table(self) -> None:
        if self._table_ready:
            return
        with self._ready_lock:
            if not self._table_ready:
                self.table.metadata.create_all(self.engine, checkfirst=True)
                self._table_ready = True

    def _expiry_cutoff(self) -> datetime:
        return self._clock() - timedelta(seconds=self.lifetime)

    def get(self, session_id: str) -> SessionState:
        self._ensure_table()
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.table.c.data, self.table.c.updated_at).where(
                    self.table.c.id == session_id
                )
            ).first()

        if row is None or row.updated_at < self._expiry_cutoff():
            return SessionState()

        try:
            return SessionState.from_dict(json.loads(row.data))
        except json.JSONDecodeError:
            logger.warning(f"Unreadable session row for {session_id}, treating as empty")
            return SessionState()

    def save(self, session_id: str, state: SessionState) -> None:
        self._ensure_table()
        now = self._clock()
        data = json.dumps(state.to_dict())
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(self.table.c.id).where(self.table.c.id == session_id)
            ).first()
            if exists:
                conn.execute(
                    update(self.table)
                    .where(self.table.c.id == session_id)
                    .values(data=data, updated_at=now)
                )
            else:
                conn.execute(
                    insert(self.table).values(
                        id=session_id, data=data, created_at=now, updated_at=now
                    )
                )

    def delete(self, session_id: str) -> None:
        self._ensure_table()
        with self.engine.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.id == session_id))

    def cleanup(self) -> int:
        if not self._sweeper.should_sweep():
            return 0
        return self.sweep()

    def sweep(self) -> int:
        """Delete every row not updated within the lifetime."""
        self._ensure_table()
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(self.table).where(self.table.c.updated_at < self._expiry_cutoff())
            )
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Removed {removed} expired session rows")
        return removed
