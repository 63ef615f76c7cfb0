"""Error taxonomy shared by the client and the endpoint.

Every error maps onto an HTTP status for the endpoint and onto the
plaintext ``{"error": ..., "code": ...}`` body used before decryption.

- ConfigurationError: missing or malformed keys (500, never retried)
- AuthorizationError: bad API key (401) or disallowed origin (403)
- EnvelopeError: malformed JSON, missing ``data`` or invalid payload (400)
- CryptoError: encryption / decryption failure (400)
- EngineError: the database driver raised while running an item
- QueryError / TransportError: client side, carry the query for diagnostics
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class RemoteDatabaseError(Exception):
    """Base class for all sqltunnel errors."""

    status_code: int = 500

    def __init__(self, message: str, code: int | None = None, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.code = code if code is not None else self.status_code

    def to_dict(self) -> dict[str, Any]:
        """Plaintext error body."""
        return {"error": self.message, "code": self.code}


class ConfigurationError(RemoteDatabaseError):
    """Server or client is missing required key material or settings."""

    status_code = 500


class AuthorizationError(RemoteDatabaseError):
    """Request rejected for its credential (401) or its origin (403)."""

    status_code = 401


class EnvelopeError(RemoteDatabaseError):
    """The outer envelope or the decrypted payload is malformed."""

    status_code = 400


class CryptoError(RemoteDatabaseError):
    """Authenticated encryption failed."""

    status_code = 400


class EncryptionError(CryptoError):
    """Bad key material or a value that cannot be serialized."""

    status_code = 500


class DecryptionError(CryptoError):
    """Malformed base64, failed tag verification or undecodable plaintext."""

    status_code = 400


class EngineError(RemoteDatabaseError):
    """The engine driver rejected a query item."""

    status_code = 200

    def __init__(self, message: str, code: int | None = 0):
        super().__init__(message, code)

    @classmethod
    def from_exception(cls, exc: Exception) -> EngineError:
        code = getattr(exc, "code", None)
        if not isinstance(code, int):
            code = 0
        return cls(str(exc) or exc.__class__.__name__, code)


class QueryError(RemoteDatabaseError):
    """A query failed on the remote side or never reached it.

    Carries the original query and bindings so callers can log what failed.
    """

    def __init__(
        self,
        message: str,
        code: int | None = 0,
        *,
        query: str = "",
        bindings: Sequence[Any] = (),
        status_code: int | None = None,
    ):
        super().__init__(message, code, status_code=status_code)
        self.query = query
        self.bindings = list(bindings)

    def __str__(self) -> str:
        if not self.query:
            return self.message
        return f"{self.message} (SQL: {self.query})"


class TransportError(QueryError):
    """Connection failure or timeout after the retry budget was spent."""

    status_code = 503
