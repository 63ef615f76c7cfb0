"""Engine driver backed by a SQLAlchemy engine.

Queries use ``?`` positional placeholders on the wire; they are rewritten to
the DBAPI's paramstyle before execution. Statements outside an explicit
transaction are committed immediately.
"""

from __future__ import annotations

import base64
import logging
import re
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.base import RootTransaction
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from .driver import ExecutionResult
from .errors import EngineError
from .protocol.envelope import QueryType
from .sessions.base import SessionState

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def adapt_placeholders(query: str, paramstyle: str) -> str:
    """Rewrite ``?`` placeholders outside string literals for ``paramstyle``.

    For the ``format`` and ``pyformat`` styles every literal ``%`` is doubled,
    including inside quotes.
    """
    if paramstyle == "qmark":
        return query

    out: list[str] = []
    quote: str | None = None
    index = 0
    for char in query:
        if quote:
            if char == "%" and paramstyle in ("format", "pyformat"):
                out.append("%%")
            else:
                out.append(char)
            if char == quote:
                quote = None
            continue
        if char in ("'", '"', "`"):
            quote = char
            out.append(char)
        elif char == "?":
            index += 1
            if paramstyle in ("format", "pyformat"):
                out.append("%s")
            elif paramstyle == "numeric":
                out.append(f":{index}")
            else:
                out.append(f":p{index}")
        elif char == "%" and paramstyle in ("format", "pyformat"):
            out.append("%%")
        else:
            out.append(char)
    return "".join(out)


def to_json_value(value: Any) -> Any:
    """Convert a column value to something JSON can carry."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime | date | dt_time):
        return value.isoformat()
    if isinstance(value, bytes | bytearray | memoryview):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class SQLAlchemyDriver:
    """Runs statements on one SQLAlchemy connection."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._connection: Connection | None = None
        self._transaction: RootTransaction | None = None

    @property
    def connection(self) -> Connection:
        if self._connection is None or self._connection.closed:
            self._connection = self.engine.connect()
            self._transaction = None
        return self._connection

    def _parameters(self, bindings: Sequence[Any]) -> tuple[Any, ...] | dict[str, Any]:
        if self.engine.dialect.paramstyle == "named":
            return {f"p{i}": value for i, value in enumerate(bindings, start=1)}
        return tuple(bindings)

    def execute(self, query: str, bindings: Sequence[Any], mode: QueryType) -> ExecutionResult:
        conn = self.connection
        explicit = self.in_transaction()
        try:
            if mode is QueryType.UNPREPARED:
                result = conn.exec_driver_sql(query)
            else:
                sql = adapt_placeholders(query, self.engine.dialect.paramstyle)
                result = conn.exec_driver_sql(sql, self._parameters(bindings))

            rows = None
            if result.returns_rows:
                rows = [
                    {key: to_json_value(value) for key, value in row.items()}
                    for row in result.mappings().all()
                ]
            rows_affected = result.rowcount if result.rowcount is not None else None
            last_insert_id = None
            if mode is QueryType.INSERT:
                last_insert_id = result.lastrowid

            if not explicit and conn.in_transaction():
                conn.commit()
        except DBAPIError as e:
            self._discard_implicit(explicit)
            code = e.orig.args[0] if e.orig is not None and e.orig.args else 0
            raise EngineError(str(e.orig or e), code if isinstance(code, int) else 0) from e
        except SQLAlchemyError as e:
            self._discard_implicit(explicit)
            raise EngineError(str(e)) from e

        if mode is QueryType.SELECT:
            return ExecutionResult(rows=rows or [])
        if mode is QueryType.INSERT:
            return ExecutionResult(rows_affected=rows_affected, last_insert_id=last_insert_id)
        return ExecutionResult(rows=rows, rows_affected=rows_affected)

    def _discard_implicit(self, explicit: bool) -> None:
        if not explicit and self._connection is not None and self._connection.in_transaction():
            self._connection.rollback()

    def begin(self) -> None:
        conn = self.connection
        if conn.in_transaction():
            conn.commit()
        self._transaction = conn.begin()

    def commit(self) -> None:
        if self._transaction is None:
            raise EngineError("There is no active transaction")
        try:
            self._transaction.commit()
        finally:
            self._transaction = None

    def rollback(self) -> None:
        if self._transaction is None:
            raise EngineError("There is no active transaction")
        try:
            self._transaction.rollback()
        finally:
            self._transaction = None

    def _savepoint_sql(self, template: str, name: str) -> None:
        if not _IDENTIFIER.match(name):
            raise EngineError(f"Invalid savepoint name: {name!r}")
        self.connection.exec_driver_sql(template.format(name=name))

    def savepoint(self, name: str) -> None:
        self._savepoint_sql("SAVEPOINT {name}", name)

    def rollback_to_savepoint(self, name: str) -> None:
        self._savepoint_sql("ROLLBACK TO SAVEPOINT {name}", name)

    def release_savepoint(self, name: str) -> None:
        self._savepoint_sql("RELEASE SAVEPOINT {name}", name)

    def in_transaction(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    def close(self) -> None:
        """Roll back anything open and return the connection to the pool."""
        if self._connection is not None and not self._connection.closed:
            self._connection.close()
        self._connection = None
        self._transaction = None


class SQLAlchemyDriverProvider:
    """Hands out one driver per session.

    A session that ends a request inside a transaction keeps its connection
    pinned until the transaction finishes. Pins idle for longer than
    ``pin_timeout`` are closed, which rolls their transaction back.
    """

    def __init__(
        self,
        engine: Engine,
        pin_timeout: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.pin_timeout = pin_timeout
        self._clock = clock
        self._pinned: dict[str, tuple[SQLAlchemyDriver, float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> SQLAlchemyDriverProvider:
        from sqlalchemy import create_engine

        return cls(create_engine(url, pool_pre_ping=True), **kwargs)

    @property
    def pinned_sessions(self) -> list[str]:
        with self._lock:
            return list(self._pinned)

    def acquire(self, session_id: str) -> SQLAlchemyDriver:
        with self._lock:
            pinned = self._pinned.pop(session_id, None)
        if pinned is not None:
            return pinned[0]
        return SQLAlchemyDriver(self.engine)

    def release(self, session_id: str, driver: SQLAlchemyDriver, state: SessionState) -> None:
        if driver.in_transaction():
            with self._lock:
                self._pinned[session_id] = (driver, self._clock())
        else:
            driver.close()
        self._expire_pins()

    def _expire_pins(self) -> None:
        cutoff = self._clock() - self.pin_timeout
        with self._lock:
            stale = [sid for sid, (_, last_used) in self._pinned.items() if last_used < cutoff]
            drivers = [self._pinned.pop(sid)[0] for sid in stale]
        for session_id, driver in zip(stale, drivers, strict=True):
            logger.warning(f"Closing idle pinned connection for session {session_id}")
            driver.close()

    def close(self) -> None:
        """Close every pinned connection and dispose of the engine pool."""
        with self._lock:
            drivers = [driver for driver, _ in self._pinned.values()]
            self._pinned.clear()
        for driver in drivers:
            driver.close()
        self.engine.dispose()
