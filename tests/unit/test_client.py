"""Tests for RemoteDatabaseClient over a mocked HTTP transport."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from conftest import API_KEY, ENCRYPTION_KEY

from sqltunnel.config import ClientConfig
from sqltunnel.encryption import PayloadCipher
from sqltunnel.errors import (
    AuthorizationError,
    ConfigurationError,
    EnvelopeError,
    QueryError,
    TransportError,
)
from sqltunnel.protocol.envelope import QueryType
from sqltunnel.sdk import RemoteDatabaseClient, ResultCache

ENDPOINT = "https://db.example.com/remote-db-endpoint"
SID = "0123456789abcdef0123456789abcdef"

Responder = Callable[[dict[str, Any]], dict[str, Any]]


class FakeEndpoint:
    """MockTransport handler that decrypts requests and encrypts replies."""

    def __init__(self, cipher: PayloadCipher, responder: Responder | None = None):
        self.cipher = cipher
        self.responder = responder or (lambda payload: {"success": True, "session_id": SID, "results": []})
        self.payloads: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        envelope = json.loads(request.content)
        payload = self.cipher.decrypt(envelope["data"])
        self.payloads.append(payload)
        self.headers.append(request.headers)
        return httpx.Response(200, json={"data": self.cipher.encrypt(self.responder(payload))})


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    sleeps: list[float] | None = None,
    **overrides: Any,
) -> RemoteDatabaseClient:
    config = ClientConfig(endpoint=ENDPOINT, api_key=API_KEY, encryption_key=ENCRYPTION_KEY)
    for name, value in overrides.items():
        setattr(config, name, value)
    http = httpx.Client(transport=httpx.MockTransport(handler))
    sink = sleeps if sleeps is not None else []
    return RemoteDatabaseClient(config, http_client=http, sleep=sink.append, clock=lambda: 1234.5)


# =============================================================================
# Configuration
# =============================================================================


class TestConstruction:
    def test_missing_endpoint(self) -> None:
        with pytest.raises(ConfigurationError, match="endpoint"):
            RemoteDatabaseClient(ClientConfig(endpoint="", api_key="k", encryption_key=ENCRYPTION_KEY))

    def test_bad_key(self) -> None:
        with pytest.raises(ConfigurationError, match="32 bytes"):
            RemoteDatabaseClient(ClientConfig(endpoint=ENDPOINT, api_key="k", encryption_key="short"))

    def test_cache_created_from_config(self, cipher: PayloadCipher) -> None:
        client = make_client(FakeEndpoint(cipher), cache_enabled=True, cache_ttl=5, cache_max_size=7)
        assert isinstance(client.cache, ResultCache)
        assert client.cache.max_size == 7


# =============================================================================
# Single requests
# =============================================================================


class TestSend:
    def test_request_shape(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher)
        client = make_client(endpoint)
        client.send("SELECT * FROM t WHERE id = ?", [7])

        assert endpoint.payloads == [
            {"query": "SELECT * FROM t WHERE id = ?", "bindings": [7], "type": "select", "sent_at": 1234.5}
        ]
        assert endpoint.headers[0]["x-api-key"] == API_KEY
        assert endpoint.headers[0]["content-type"] == "application/json"

    def test_session_id_is_adopted_and_sent(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher)
        client = make_client(endpoint)
        client.send("SELECT 1")
        assert client.session_id == SID

        client.send("SELECT 2")
        assert endpoint.payloads[1]["session_id"] == SID

        client.clear_session()
        client.send("SELECT 3")
        assert "session_id" not in endpoint.payloads[2] or endpoint.payloads[2]["session_id"] is None

    def test_results(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(
            cipher, lambda p: {"success": True, "session_id": SID, "results": [{"x": 1}]}
        )
        result = make_client(endpoint).send("SELECT 1 AS x")
        assert result.results == [{"x": 1}]

    def test_failure_raises_query_error(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(
            cipher,
            lambda p: {"success": False, "session_id": SID, "error": "no such table: t", "code": 1146},
        )
        client = make_client(endpoint)
        with pytest.raises(QueryError) as excinfo:
            client.send("SELECT * FROM t", [1])

        assert excinfo.value.message == "no such table: t"
        assert excinfo.value.code == 1146
        assert excinfo.value.query == "SELECT * FROM t"
        assert excinfo.value.bindings == [1]
        assert "(SQL: SELECT * FROM t)" in str(excinfo.value)
        assert client.session_id == SID

    @pytest.mark.parametrize(
        ("status", "error_type"),
        [(401, AuthorizationError), (403, AuthorizationError), (400, EnvelopeError), (500, ConfigurationError)],
    )
    def test_http_errors(self, status: int, error_type: type[Exception]) -> None:
        def reject(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": "nope", "code": status})

        with pytest.raises(error_type, match="nope"):
            make_client(reject).send("SELECT 1")

    def test_missing_data_field(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json={"success": True}))
        with pytest.raises(QueryError, match="Invalid response format"):
            client.send("SELECT 1")

    def test_undecryptable_response(self) -> None:
        other = PayloadCipher(b"\x09" * 32)
        client = make_client(
            lambda request: httpx.Response(200, json={"data": other.encrypt({"success": True})})
        )
        with pytest.raises(QueryError, match="Encryption/Decryption error"):
            client.send("SELECT 1")


class TestRetry:
    def test_retry_exhaustion(self) -> None:
        attempts: list[int] = []

        def refuse(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("connection refused", request=request)

        sleeps: list[float] = []
        client = make_client(refuse, sleeps=sleeps, retry_attempts=3)
        with pytest.raises(TransportError) as excinfo:
            client.send("SELECT 1")

        assert len(attempts) == 3
        assert sleeps == pytest.approx([0.1, 0.2])
        assert excinfo.value.query == "SELECT 1"

    def test_recovers_after_transient_failure(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher)
        calls = {"n": 0}

        def flaky(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return endpoint(request)

        sleeps: list[float] = []
        assert make_client(flaky, sleeps=sleeps).send("SELECT 1").success
        assert sleeps == pytest.approx([0.1])

    def test_http_errors_are_not_retried(self) -> None:
        calls: list[int] = []

        def reject(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(401, json={"error": "Unauthorized", "code": 401})

        with pytest.raises(AuthorizationError):
            make_client(reject).send("SELECT 1")
        assert len(calls) == 1


# =============================================================================
# Result cache
# =============================================================================


class TestCaching:
    @pytest.fixture
    def endpoint(self, cipher: PayloadCipher) -> FakeEndpoint:
        return FakeEndpoint(
            cipher, lambda p: {"success": True, "session_id": SID, "results": [{"n": 1}], "rows_affected": 1}
        )

    def test_repeat_select_is_served_from_cache(self, endpoint: FakeEndpoint) -> None:
        client = make_client(endpoint, cache_enabled=True)
        first = client.send("SELECT n FROM t WHERE id = ?", [1])
        second = client.send("SELECT n FROM t WHERE id = ?", [1])
        assert len(endpoint.payloads) == 1
        assert second.results == first.results

    def test_different_bindings_miss(self, endpoint: FakeEndpoint) -> None:
        client = make_client(endpoint, cache_enabled=True)
        client.send("SELECT n FROM t WHERE id = ?", [1])
        client.send("SELECT n FROM t WHERE id = ?", [2])
        assert len(endpoint.payloads) == 2

    def test_write_invalidates(self, endpoint: FakeEndpoint) -> None:
        client = make_client(endpoint, cache_enabled=True)
        client.send("SELECT n FROM t")
        client.send("UPDATE t SET n = 2", type=QueryType.AFFECTING)
        client.send("SELECT n FROM t")
        assert len(endpoint.payloads) == 3

    def test_entries_expire(self, endpoint: FakeEndpoint) -> None:
        now = [0.0]
        config = ClientConfig(endpoint=ENDPOINT, api_key=API_KEY, encryption_key=ENCRYPTION_KEY)
        client = RemoteDatabaseClient(
            config,
            http_client=httpx.Client(transport=httpx.MockTransport(endpoint)),
            cache=ResultCache(ttl=10, clock=lambda: now[0]),
        )
        client.send("SELECT n FROM t")
        now[0] = 11.0
        client.send("SELECT n FROM t")
        assert len(endpoint.payloads) == 2

    def test_cached_results_are_copies(self, endpoint: FakeEndpoint) -> None:
        client = make_client(endpoint, cache_enabled=True)
        client.send("SELECT n FROM t").results[0]["n"] = 99  # type: ignore[index]
        assert client.send("SELECT n FROM t").results == [{"n": 1}]


# =============================================================================
# Batching
# =============================================================================


def batch_responder(payload: dict[str, Any]) -> dict[str, Any]:
    results = []
    for item in payload["queries"]:
        if "bad" in item["query"]:
            results.append({"success": False, "error": "syntax error", "code": 1064})
        else:
            results.append({"success": True, "results": [{"q": item["query"]}]})
    return {"success": True, "session_id": SID, "results": results}


class TestBatching:
    def test_send_batch(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher, batch_responder)
        client = make_client(endpoint)
        results = client.send_batch(
            [
                ("SELECT 1",),
                ("SELECT bad", [], "select"),
                {"query": "UPDATE t SET a = ?", "bindings": [1], "type": "affecting"},
            ]
        )

        assert [r.success for r in results] == [True, False, True]
        assert results[1].code == 1064
        payload = endpoint.payloads[0]
        assert payload["batch"] is True
        assert [q["type"] for q in payload["queries"]] == ["select", "select", "affecting"]
        assert client.session_id == SID

    def test_mismatched_result_count(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher, lambda p: {"success": True, "session_id": SID, "results": []})
        with pytest.raises(QueryError, match="Batch response"):
            make_client(endpoint).send_batch([("SELECT 1",)])

    def test_empty_batch_sends_nothing(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher)
        assert make_client(endpoint).send_batch([]) == []
        assert endpoint.payloads == []

    def test_flush_batched(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher, batch_responder)
        client = make_client(endpoint, batching_enabled=True)
        client.queue("SELECT 1")
        client.queue("SELECT 2")
        assert client.pending == 2

        results = client.flush()
        assert len(results) == 2
        assert len(endpoint.payloads) == 1
        assert client.pending == 0

    def test_flush_sequential_collects_failures(self, cipher: PayloadCipher) -> None:
        def responder(payload: dict[str, Any]) -> dict[str, Any]:
            if "bad" in payload["query"]:
                return {"success": False, "session_id": SID, "error": "syntax error", "code": 1064}
            return {"success": True, "session_id": SID, "results": []}

        endpoint = FakeEndpoint(cipher, responder)
        client = make_client(endpoint)
        client.queue("SELECT bad")
        client.queue("SELECT 1")

        results = client.flush()
        assert [r.success for r in results] == [False, True]
        assert results[0].error == "syntax error"
        assert len(endpoint.payloads) == 2

    def test_flush_sequential_requeues_after_rejection(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher)
        calls: list[int] = []

        def reject_second(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) == 2:
                return httpx.Response(401, json={"error": "Unauthorized", "code": 401})
            return endpoint(request)

        client = make_client(reject_second)
        for n in range(4):
            client.queue(f"SELECT {n}")

        with pytest.raises(AuthorizationError):
            client.flush()

        assert client.pending == 3
        assert [p["query"] for p in endpoint.payloads] == ["SELECT 0"]

        results = client.flush()
        assert len(results) == 3
        assert [p["query"] for p in endpoint.payloads] == ["SELECT 0", "SELECT 1", "SELECT 2", "SELECT 3"]

    def test_flush_batched_requeues_on_transport_failure(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(refuse, batching_enabled=True, retry_attempts=1)
        client.queue("SELECT 1")
        client.queue("SELECT 2")

        with pytest.raises(TransportError):
            client.flush()
        assert client.pending == 2

    def test_batch_with_write_clears_cache(self, cipher: PayloadCipher) -> None:
        endpoint = FakeEndpoint(cipher, batch_responder)
        client = make_client(endpoint, cache_enabled=True)
        client.send_batch([("SELECT 1",)])
        assert client.cache is not None and len(client.cache) == 1

        client.send_batch([("DELETE FROM t", [], "affecting")])
        assert len(client.cache) == 0
