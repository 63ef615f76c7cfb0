"""Engine driver interface consumed by the endpoint.

The endpoint never talks to a database directly. It asks a
``DriverProvider`` for the ``Driver`` bound to a session, runs the request
items on it, then hands it back together with the session's new state so
the provider can decide whether the underlying connection stays pinned.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .protocol.envelope import QueryType
from .sessions.base import SessionState


@dataclass
class ExecutionResult:
    """What a driver returns for one statement."""

    rows: list[dict[str, Any]] | None = None
    rows_affected: int | None = None
    last_insert_id: str | int | None = None


@runtime_checkable
class Driver(Protocol):
    """Minimal engine surface: statement execution plus native transactions."""

    def execute(self, query: str, bindings: Sequence[Any], mode: QueryType) -> ExecutionResult: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def savepoint(self, name: str) -> None: ...

    def rollback_to_savepoint(self, name: str) -> None: ...

    def release_savepoint(self, name: str) -> None: ...

    def in_transaction(self) -> bool: ...


class DriverProvider(Protocol):
    """Hands out the driver bound to a session for the span of one request."""

    def acquire(self, session_id: str) -> Driver: ...

    def release(self, session_id: str, driver: Driver, state: SessionState) -> None: ...


class StaticDriverProvider:
    """Serves the same driver to every session.

    Suitable for single-connection embedding and tests.
    """

    def __init__(self, driver: Driver):
        self.driver = driver

    def acquire(self, session_id: str) -> Driver:
        return self.driver

    def release(self, session_id: str, driver: Driver, state: SessionState) -> None:
        return None
