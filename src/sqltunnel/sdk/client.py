"""Client dispatcher for the remote database endpoint.

Builds encrypted envelopes, posts them with bounded retry, tracks the
session id the server hands back, and optionally caches select results
and batches queued operations.

Usage:
    config = ClientConfig(endpoint="https://db.example.com/remote-db-endpoint",
                          api_key="...", encryption_key="...")
    with RemoteDatabaseClient(config) as client:
        rows = client.send("SELECT id FROM users WHERE email = ?", ["a@b.c"]).results

Retries are not content aware: a write whose connection dropped after the
server ran it will run again when retried.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import httpx

from ..config import ClientConfig
from ..encryption import PayloadCipher
from ..errors import (
    AuthorizationError,
    ConfigurationError,
    DecryptionError,
    EncryptionError,
    EnvelopeError,
    QueryError,
    RemoteDatabaseError,
    TransportError,
)
from ..protocol.envelope import (
    QueryItem,
    QueryResult,
    QueryType,
    parse_response,
    parse_result,
)
from .cache import ResultCache

logger = logging.getLogger(__name__)

# Seconds slept after the n-th failed attempt is RETRY_BACKOFF * n
RETRY_BACKOFF = 0.1

ItemLike = QueryItem | tuple[Any, ...] | dict[str, Any]


def _was_answered(error: RemoteDatabaseError) -> bool:
    """True when the endpoint ran the request and reported a query failure."""
    return isinstance(error, QueryError) and not isinstance(error, TransportError)


def _status_error(status: int, message: str) -> RemoteDatabaseError:
    if status in (401, 403):
        return AuthorizationError(message, status_code=status)
    if status in (400, 405):
        return EnvelopeError(message, status_code=status)
    if status == 500:
        return ConfigurationError(message)
    return TransportError(message, status, status_code=status)


class RemoteDatabaseClient:
    """Sends queries to the remote endpoint."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        http_client: httpx.Client | None = None,
        cache: ResultCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        if not config.endpoint:
            raise ConfigurationError("Remote endpoint URL is not configured")
        if not config.api_key:
            raise ConfigurationError("API key is not configured")
        try:
            self._cipher = PayloadCipher.from_config(config.encryption_key)
        except EncryptionError as e:
            raise ConfigurationError(e.message) from e

        self.config = config
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(
            timeout=config.timeout, verify=config.verify_ssl
        )
        if cache is None and config.cache_enabled:
            cache = ResultCache(ttl=config.cache_ttl, max_size=config.cache_max_size)
        self.cache = cache
        self._sleep = sleep
        self._clock = clock
        self._session_id: str | None = None
        self._queue: list[QueryItem] = []

    # =========================================================================
    # Session handling
    # =========================================================================

    @property
    def session_id(self) -> str | None:
        """Session id last returned by the server."""
        return self._session_id

    def set_session_id(self, session_id: str | None) -> None:
        self._session_id = session_id

    def clear_session(self) -> None:
        self._session_id = None

    # =========================================================================
    # Single requests
    # =========================================================================

    def send(
        self,
        query: str,
        bindings: Sequence[Any] = (),
        type: QueryType | str = QueryType.SELECT,
    ) -> QueryResult:
        """Execute one statement remotely.

        Raises:
            QueryError: The server reported a failure for the statement
            TransportError: The endpoint was unreachable after all retries
            AuthorizationError / EnvelopeError / ConfigurationError: The
                endpoint rejected the request before running it
        """
        query_type = QueryType(type)
        bindings = list(bindings)

        if self.cache is not None:
            if query_type.is_read:
                cached = self.cache.get(query, bindings)
                if cached is not None:
                    logger.debug("Serving select from result cache")
                    return QueryResult(session_id=self._session_id, results=cached)
            else:
                self.cache.clear()

        payload: dict[str, Any] = {
            "query": query,
            "bindings": bindings,
            "type": query_type.value,
        }
        body = self._post(payload, query, bindings)
        result = parse_result(body)
        self._raise_for_failure(result, query, bindings)

        if self.cache is not None and query_type.is_read:
            self.cache.put(query, bindings, result.results or [])
        return result

    # =========================================================================
    # Batching
    # =========================================================================

    def send_batch(self, items: Iterable[ItemLike]) -> list[QueryResult]:
        """Execute several statements in one round trip.

        Results come back in request order; each one carries its own
        success flag, so a failed item does not raise.
        """
        queries = [self._coerce_item(item) for item in items]
        if not queries:
            return []

        if self.cache is not None and any(not q.type.is_read for q in queries):
            self.cache.clear()

        payload: dict[str, Any] = {
            "batch": True,
            "queries": [q.model_dump(mode="json") for q in queries],
        }
        summary = "; ".join(q.query for q in queries)
        body = self._post(payload, summary, [])

        response = parse_response(body, batch=True)
        if isinstance(response, QueryResult):
            self._raise_for_failure(response, summary, [])
            raise QueryError("Invalid batch response from remote endpoint.", query=summary)

        if len(response.results) != len(queries):
            raise QueryError(
                f"Batch response has {len(response.results)} results "
                f"for {len(queries)} queries",
                query=summary,
            )

        if self.cache is not None:
            for query, result in zip(queries, response.results, strict=True):
                if query.type.is_read and result.success:
                    self.cache.put(query.query, query.bindings, result.results or [])
        return response.results

    def queue(
        self,
        query: str,
        bindings: Sequence[Any] = (),
        type: QueryType | str = QueryType.SELECT,
    ) -> None:
        """Queue an operation for the next ``flush()``."""
        self._queue.append(QueryItem(query=query, bindings=list(bindings), type=QueryType(type)))

    @property
    def pending(self) -> int:
        return len(self._queue)

    def flush(self) -> list[QueryResult]:
        """Send queued operations, as one batch when batching is enabled.

        A failed query becomes a failed result. Any other error aborts the
        flush and puts the unanswered items back at the front of the queue.
        """
        items, self._queue = self._queue, []
        if not items:
            return []
        if self.config.batching_enabled:
            try:
                return self.send_batch(items)
            except RemoteDatabaseError as e:
                if not _was_answered(e):
                    self._queue[:0] = items
                raise

        results: list[QueryResult] = []
        for index, item in enumerate(items):
            try:
                results.append(self.send(item.query, item.bindings, item.type))
            except RemoteDatabaseError as e:
                if not _was_answered(e):
                    self._queue[:0] = items[index:]
                    raise
                results.append(QueryResult.failure(e.message, e.code or 0))
        return results

    @staticmethod
    def _coerce_item(item: ItemLike) -> QueryItem:
        if isinstance(item, QueryItem):
            return item
        if isinstance(item, dict):
            return QueryItem.model_validate(item)
        query, *rest = item
        bindings = rest[0] if rest else []
        query_type = rest[1] if len(rest) > 1 else QueryType.SELECT
        return QueryItem(query=query, bindings=list(bindings), type=QueryType(query_type))

    # =========================================================================
    # Wire
    # =========================================================================

    def _headers(self) -> dict[str, str]:
        return {
            "X-API-Key": self.config.api_key,
            "Content-Type": "application/json",
        }

    def _post(self, payload: dict[str, Any], query: str, bindings: list[Any]) -> dict[str, Any]:
        """Encrypt, post with retry, and return the decrypted response body."""
        if self._session_id:
            payload["session_id"] = self._session_id
        payload["sent_at"] = self._clock()

        envelope = {"data": self._cipher.encrypt(payload)}
        attempts = max(1, self.config.retry_attempts)

        for attempt in range(1, attempts + 1):
            try:
                response = self._http.post(
                    self.config.endpoint, headers=self._headers(), json=envelope
                )
            except httpx.TransportError as e:
                if attempt >= attempts:
                    raise TransportError(
                        f"HTTP request failed after {attempts} attempts: {e}",
                        query=query,
                        bindings=bindings,
                    ) from e
                delay = RETRY_BACKOFF * attempt
                logger.warning(
                    f"Request to {self.config.endpoint} failed ({e.__class__.__name__}), "
                    f"retrying in {delay:.1f}s ({attempt}/{attempts})"
                )
                self._sleep(delay)
                continue

            return self._open_response(response, query, bindings)

        # Unreachable: the loop either returns or raises
        raise TransportError(f"Request failed after {attempts} attempts", query=query)

    def _open_response(
        self, response: httpx.Response, query: str, bindings: list[Any]
    ) -> dict[str, Any]:
        try:
            envelope = response.json()
        except ValueError:
            envelope = None

        if response.status_code != 200:
            message = f"HTTP {response.status_code}"
            if isinstance(envelope, dict) and envelope.get("error"):
                message = str(envelope["error"])
            raise _status_error(response.status_code, message)

        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), str):
            raise QueryError(
                "Invalid response format from remote endpoint.", query=query, bindings=bindings
            )

        try:
            body = self._cipher.decrypt(envelope["data"])
        except DecryptionError as e:
            raise QueryError(
                f"Encryption/Decryption error: {e.message}", query=query, bindings=bindings
            ) from e

        if not isinstance(body, dict):
            raise QueryError(
                "Invalid response format from remote endpoint.", query=query, bindings=bindings
            )

        if body.get("session_id"):
            self._session_id = body["session_id"]
        return body

    @staticmethod
    def _raise_for_failure(result: QueryResult, query: str, bindings: list[Any]) -> None:
        if not result.success:
            raise QueryError(
                result.error or "Unknown error",
                result.code or 0,
                query=query,
                bindings=bindings,
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> RemoteDatabaseClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
