"""Connection-style facade over ``RemoteDatabaseClient``.

Gives application code the familiar select/insert/statement surface and
nested transactions. Every BEGIN, COMMIT and ROLLBACK is sent to the
server, which maps nesting onto savepoints; the level tracked here mirrors
the server's so callers can inspect it without a round trip.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from ..errors import QueryError
from ..protocol.envelope import QueryType
from .client import RemoteDatabaseClient

logger = logging.getLogger(__name__)


class RemoteConnection:
    """Database connection whose queries execute on a remote endpoint."""

    def __init__(self, client: RemoteDatabaseClient):
        self.client = client
        self._transaction_level = 0
        self._last_insert_id: str | int | None = None
        self._pretending = False
        self._pretended: list[tuple[str, list[Any]]] = []

    # =========================================================================
    # Queries
    # =========================================================================

    def select(self, query: str, bindings: Sequence[Any] = ()) -> list[dict[str, Any]]:
        if self._record(query, bindings):
            return []
        return self.client.send(query, bindings, QueryType.SELECT).results or []

    def select_one(self, query: str, bindings: Sequence[Any] = ()) -> dict[str, Any] | None:
        rows = self.select(query, bindings)
        return rows[0] if rows else None

    def cursor(self, query: str, bindings: Sequence[Any] = ()) -> Iterator[dict[str, Any]]:
        """Yield rows one at a time; the full result is fetched up front."""
        yield from self.select(query, bindings)

    def insert(self, query: str, bindings: Sequence[Any] = ()) -> bool:
        if self._record(query, bindings):
            return True
        result = self.client.send(query, bindings, QueryType.INSERT)
        if result.last_insert_id is not None:
            self._last_insert_id = result.last_insert_id
        return True

    def statement(self, query: str, bindings: Sequence[Any] = ()) -> bool:
        if self._record(query, bindings):
            return True
        return self.client.send(query, bindings, QueryType.STATEMENT).success

    def affecting_statement(self, query: str, bindings: Sequence[Any] = ()) -> int:
        """Run an UPDATE/DELETE style statement and return the affected row count."""
        if self._record(query, bindings):
            return 0
        result = self.client.send(query, bindings, QueryType.AFFECTING)
        return int(result.rows_affected or 0)

    def unprepared(self, query: str) -> bool:
        if self._record(query, ()):
            return True
        return self.client.send(query, (), QueryType.UNPREPARED).success

    @property
    def last_insert_id(self) -> str | int | None:
        return self._last_insert_id

    # =========================================================================
    # Transactions
    # =========================================================================

    @property
    def transaction_level(self) -> int:
        return self._transaction_level

    def begin_transaction(self) -> None:
        self._send_transaction("BEGIN")
        self._transaction_level += 1

    def commit(self) -> None:
        if self._transaction_level == 0:
            logger.warning("commit() called with no open transaction")
        self._send_transaction("COMMIT")
        self._transaction_level = max(0, self._transaction_level - 1)

    def rollback(self) -> None:
        if self._transaction_level == 0:
            logger.warning("rollback() called with no open transaction")
        self._send_transaction("ROLLBACK")
        self._transaction_level = max(0, self._transaction_level - 1)

    @contextmanager
    def transaction(self) -> Iterator[RemoteConnection]:
        """Run a block in a transaction, committing on success.

        Any exception rolls the block back and is re-raised.
        """
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    def _send_transaction(self, statement: str) -> None:
        if self._record(statement, ()):
            return
        self.client.send(statement, (), QueryType.TRANSACTION)

    # =========================================================================
    # Connection
    # =========================================================================

    def server_version(self) -> str:
        try:
            row = self.select_one("SELECT VERSION() AS version")
        except QueryError as e:
            logger.debug(f"Could not read server version: {e.message}")
            return "Unknown"
        if not row or row.get("version") is None:
            return "Unknown"
        return str(row["version"])

    def disconnect(self) -> None:
        """Forget the remote session; the next query starts a new one."""
        self.client.clear_session()
        self._transaction_level = 0

    # =========================================================================
    # Dry run
    # =========================================================================

    @contextmanager
    def pretend(self) -> Iterator[list[tuple[str, list[Any]]]]:
        """Record queries instead of sending them.

        Yields the list the recorded ``(query, bindings)`` pairs are
        appended to.
        """
        previous, self._pretending = self._pretending, True
        recorded: list[tuple[str, list[Any]]] = []
        saved, self._pretended = self._pretended, recorded
        try:
            yield recorded
        finally:
            self._pretending = previous
            self._pretended = saved

    @property
    def pretending(self) -> bool:
        return self._pretending

    def _record(self, query: str, bindings: Sequence[Any]) -> bool:
        if not self._pretending:
            return False
        self._pretended.append((query, list(bindings)))
        return True
