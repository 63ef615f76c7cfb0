"""Endpoint request handling.

``EndpointHandler.handle`` processes one inbound call:

1. validate key configuration (500)
2. check the caller against the IP allow-list (403)
3. answer GET with the capability description, reject other non-POST (405)
4. check the API key in constant time (401)
5. parse the ``{"data": ...}`` envelope (400)
6. decrypt and validate the payload (400)
7. resolve or mint the session and load its state
8. run each item, transaction items through the state machine
9. persist the session state and give the store a chance to clean up
10. encrypt the response (plaintext 500 if that fails)

The handler is synchronous; the HTTP route runs it in a worker thread.
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic_core import PydanticSerializationError

from ..config import ServerConfig
from ..driver import Driver, DriverProvider
from ..encryption import KEY_SIZE, PayloadCipher, decode_key
from ..errors import (
    AuthorizationError,
    ConfigurationError,
    DecryptionError,
    EncryptionError,
    EngineError,
    EnvelopeError,
    RemoteDatabaseError,
)
from ..protocol.envelope import (
    BatchRequest,
    BatchResponse,
    QueryItem,
    QueryRequest,
    QueryResult,
    QueryType,
    parse_request,
)
from ..sessions.base import SessionState, SessionStorage, is_valid_session_id, new_session_id
from ..transactions import TransactionStateMachine, parse_transaction_statement
from .network import address_in, parse_networks, resolve_client_ip

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"

CAPABILITIES: dict[str, Any] = {
    "message": "Remote HTTP Database Endpoint",
    "status": "active",
    "method": "POST",
    "required_headers": {
        "X-API-Key": "Your API key",
        "Content-Type": "application/json",
    },
    "query_types": [t.value for t in QueryType],
    "batch": True,
}


@dataclass
class EndpointRequest:
    """Transport-neutral view of an inbound HTTP call."""

    method: str
    headers: Mapping[str, str] = field(default_factory=dict)
    client_host: str | None = None
    body: bytes = b""

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}


@dataclass
class EndpointResponse:
    """Status code plus JSON body."""

    status_code: int
    body: dict[str, Any]

    @classmethod
    def error(cls, message: str, status_code: int) -> EndpointResponse:
        return cls(status_code, {"error": message, "code": status_code})

    @classmethod
    def from_exception(cls, exc: RemoteDatabaseError) -> EndpointResponse:
        return cls.error(exc.message, exc.status_code)


class MethodNotAllowed(EnvelopeError):
    status_code = 405


class EndpointHandler:
    """Server-side orchestration of the remote query protocol."""

    def __init__(
        self,
        config: ServerConfig,
        storage: SessionStorage,
        drivers: DriverProvider,
        *,
        state_machine: TransactionStateMachine | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.storage = storage
        self.drivers = drivers
        self.state_machine = state_machine or TransactionStateMachine()
        self._clock = clock
        self._allowed = parse_networks(config.allowed_ips)
        self._trusted = parse_networks(config.trusted_proxies)

    # =========================================================================
    # Entry point
    # =========================================================================

    def handle(self, request: EndpointRequest) -> EndpointResponse:
        """Process one inbound call; never raises."""
        try:
            cipher = self._load_cipher()
            self._check_origin(request)

            if request.method == "GET":
                return EndpointResponse(200, dict(CAPABILITIES))
            if request.method != "POST":
                raise MethodNotAllowed("Method not allowed")

            self._authenticate(request)
            message = self._open_envelope(request, cipher)
        except RemoteDatabaseError as e:
            return EndpointResponse.from_exception(e)

        return self._execute(message, cipher)

    # =========================================================================
    # Pre-decryption checks
    # =========================================================================

    def _load_cipher(self) -> PayloadCipher:
        if not self.config.api_key or not self.config.encryption_key:
            raise ConfigurationError("Server configuration error")

        key = decode_key(self.config.encryption_key)
        if len(key) != KEY_SIZE:
            raise ConfigurationError("Encryption key must be 32 bytes")
        return PayloadCipher(key)

    def _check_origin(self, request: EndpointRequest) -> None:
        if not self._allowed:
            return

        client_ip = resolve_client_ip(request.client_host, request.headers, self._trusted)
        if not address_in(client_ip, self._allowed):
            logger.warning(f"Rejected request from {client_ip}: not in allow-list")
            raise AuthorizationError("Forbidden: IP address not allowed", status_code=403)

    def _authenticate(self, request: EndpointRequest) -> None:
        provided = request.headers.get(API_KEY_HEADER, "")
        if not hmac.compare_digest(
            provided.encode("utf-8"), self.config.api_key.encode("utf-8")
        ):
            raise AuthorizationError("Unauthorized")

    def _open_envelope(
        self, request: EndpointRequest, cipher: PayloadCipher
    ) -> QueryRequest | BatchRequest:
        try:
            envelope = json.loads(request.body or b"null")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise EnvelopeError("Invalid request format") from e

        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), str):
            raise EnvelopeError("Invalid request format")

        try:
            payload = cipher.decrypt(envelope["data"])
        except DecryptionError as e:
            raise EnvelopeError(f"Decryption failed: {e.message}") from e

        message = parse_request(payload)
        self._check_freshness(message)

        if message.session_id is not None and not is_valid_session_id(message.session_id):
            raise EnvelopeError("Invalid session_id")
        return message

    def _check_freshness(self, message: QueryRequest | BatchRequest) -> None:
        max_age = self.config.max_message_age
        if max_age is None:
            return
        if message.sent_at is None:
            raise EnvelopeError("Message timestamp missing")
        if abs(self._clock() - message.sent_at) > max_age:
            raise EnvelopeError("Message is outside the accepted time window")

    # =========================================================================
    # Execution
    # =========================================================================

    def _execute(
        self, message: QueryRequest | BatchRequest, cipher: PayloadCipher
    ) -> EndpointResponse:
        session_id = message.session_id or new_session_id()
        if message.session_id is None:
            logger.debug(f"Minted session {session_id}")

        try:
            state = self.storage.get(session_id)
        except Exception as e:
            logger.error(f"Failed to load session {session_id}: {e}")
            return EndpointResponse.error("Session storage error", 500)

        try:
            driver = self.drivers.acquire(session_id)
        except Exception as e:
            logger.error(f"Failed to acquire a database connection: {e}")
            return EndpointResponse.error(f"Database connection failed: {e}", 500)

        try:
            if isinstance(message, BatchRequest):
                results: list[QueryResult] = []
                for item in message.queries:
                    result, state = self._run_item(item, state, driver)
                    results.append(result)
                response: BatchResponse | QueryResult = BatchResponse(
                    session_id=session_id, results=results
                )
            else:
                response, state = self._run_item(message, state, driver)
                response.session_id = session_id
        finally:
            self.drivers.release(session_id, driver, state)

        try:
            self.storage.save(session_id, state)
        except Exception as e:
            logger.error(f"Failed to save session {session_id}: {e}")
            return EndpointResponse.error("Session storage error", 500)

        try:
            self.storage.cleanup()
        except Exception as e:
            logger.error(f"Session cleanup failed: {e}")

        try:
            return EndpointResponse(200, {"data": cipher.encrypt(response.to_wire())})
        except PydanticSerializationError as e:
            logger.error(f"Failed to serialize response for session {session_id}: {e}")
            return EndpointResponse.error(f"Encryption failed: {e}", 500)
        except EncryptionError as e:
            logger.error(f"Failed to encrypt response for session {session_id}: {e}")
            return EndpointResponse.error(f"Encryption failed: {e.message}", 500)

    def _run_item(
        self, item: QueryItem, state: SessionState, driver: Driver
    ) -> tuple[QueryResult, SessionState]:
        """Run one item; engine failures become a failed result."""
        try:
            if item.type is QueryType.TRANSACTION:
                statement = parse_transaction_statement(item.query)
                return QueryResult(), self.state_machine.apply(statement, state, driver)

            outcome = driver.execute(item.query, item.bindings, item.type)
        except EngineError as e:
            return QueryResult.failure(e.message, e.code), state
        except Exception as e:
            logger.debug(f"Driver raised {e.__class__.__name__} for {item.type.value} item")
            error = EngineError.from_exception(e)
            return QueryResult.failure(error.message, error.code), state

        if item.type is QueryType.SELECT:
            return QueryResult(results=outcome.rows or []), state
        if item.type is QueryType.INSERT:
            return (
                QueryResult(
                    rows_affected=outcome.rows_affected,
                    last_insert_id=outcome.last_insert_id,
                ),
                state,
            )
        return QueryResult(rows_affected=outcome.rows_affected), state
