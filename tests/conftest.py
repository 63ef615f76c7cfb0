"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from sqltunnel.config import ServerConfig, SessionDriver, SessionStorageConfig
from sqltunnel.driver import ExecutionResult, StaticDriverProvider
from sqltunnel.encryption import PayloadCipher
from sqltunnel.errors import EngineError
from sqltunnel.protocol.envelope import QueryType
from sqltunnel.server.handler import EndpointHandler, EndpointRequest
from sqltunnel.sessions import CacheSessionStorage, MemoryCache

API_KEY = "test-api-key"
RAW_KEY = bytes(range(32))
ENCRYPTION_KEY = base64.b64encode(RAW_KEY).decode("ascii")


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


class RecordingDriver:
    """In-memory driver that records every call.

    ``failures`` maps a query string to the exception its execution raises.
    """

    def __init__(self, rows: list[dict[str, Any]] | None = None):
        self.rows = rows if rows is not None else [{"x": 1}]
        self.calls: list[tuple[Any, ...]] = []
        self.failures: dict[str, Exception] = {}
        self.open = False

    def execute(self, query: str, bindings: Sequence[Any], mode: QueryType) -> ExecutionResult:
        self.calls.append(("execute", query, list(bindings), mode))
        if query in self.failures:
            raise self.failures[query]
        if mode is QueryType.SELECT:
            return ExecutionResult(rows=[dict(row) for row in self.rows])
        if mode is QueryType.INSERT:
            return ExecutionResult(rows_affected=1, last_insert_id=42)
        return ExecutionResult(rows_affected=3)

    def begin(self) -> None:
        self.calls.append(("begin",))
        self.open = True

    def commit(self) -> None:
        if not self.open:
            raise EngineError("There is no active transaction")
        self.calls.append(("commit",))
        self.open = False

    def rollback(self) -> None:
        if not self.open:
            raise EngineError("There is no active transaction")
        self.calls.append(("rollback",))
        self.open = False

    def savepoint(self, name: str) -> None:
        self.calls.append(("savepoint", name))

    def rollback_to_savepoint(self, name: str) -> None:
        self.calls.append(("rollback_to", name))

    def release_savepoint(self, name: str) -> None:
        self.calls.append(("release", name))

    def in_transaction(self) -> bool:
        return self.open

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def driver() -> RecordingDriver:
    return RecordingDriver()


@pytest.fixture
def cipher() -> PayloadCipher:
    return PayloadCipher(RAW_KEY)


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(
        api_key=API_KEY,
        encryption_key=ENCRYPTION_KEY,
        session=SessionStorageConfig(driver=SessionDriver.CACHE),
    )


@pytest.fixture
def storage() -> CacheSessionStorage:
    return CacheSessionStorage(MemoryCache())


@pytest.fixture
def handler(
    server_config: ServerConfig, storage: CacheSessionStorage, driver: RecordingDriver
) -> EndpointHandler:
    return EndpointHandler(server_config, storage, StaticDriverProvider(driver))


@pytest.fixture
def make_request(cipher: PayloadCipher) -> Callable[..., EndpointRequest]:
    """Build an authenticated, encrypted POST for the handler."""

    def _make(
        payload: dict[str, Any],
        *,
        api_key: str = API_KEY,
        client_host: str | None = "127.0.0.1",
        headers: dict[str, str] | None = None,
    ) -> EndpointRequest:
        all_headers = {"X-API-Key": api_key, "Content-Type": "application/json"}
        all_headers.update(headers or {})
        body = json.dumps({"data": cipher.encrypt(payload)}).encode("utf-8")
        return EndpointRequest("POST", all_headers, client_host, body)

    return _make
