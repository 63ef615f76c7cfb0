"""Request and response shapes of the remote query protocol.

The outer transport object is always ``{"data": "<base64 AEAD blob>"}``.
The models here describe the plaintext inside the blob.

Single request:
    {"query": "SELECT 1", "bindings": [], "type": "select", "session_id": "..."}

Batch request:
    {"batch": true, "queries": [{"query": ..., "bindings": ..., "type": ...}],
     "session_id": "..."}

Response:
    {"success": true, "session_id": "...", "results": [{"x": 1}]}
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import EnvelopeError

Scalar = str | int | float | bool | None


class QueryType(str, Enum):
    """Execution mode of a query item."""

    SELECT = "select"
    INSERT = "insert"
    STATEMENT = "statement"
    AFFECTING = "affecting"
    UNPREPARED = "unprepared"
    TRANSACTION = "transaction"

    @property
    def is_read(self) -> bool:
        return self is QueryType.SELECT


class QueryItem(BaseModel):
    """One statement to execute."""

    model_config = ConfigDict(extra="ignore")

    query: str
    bindings: list[Scalar] = Field(default_factory=list)
    type: QueryType = QueryType.SELECT


class QueryRequest(QueryItem):
    """A single-statement request."""

    session_id: str | None = None
    sent_at: float | None = None


class BatchRequest(BaseModel):
    """Several statements executed in order within one session."""

    model_config = ConfigDict(extra="ignore")

    batch: Literal[True] = True
    queries: list[QueryItem]
    session_id: str | None = None
    sent_at: float | None = None


class QueryResult(BaseModel):
    """Outcome of a single item.

    ``session_id`` is set on top-level responses and left out of the
    per-item bodies of a batch response.
    """

    success: bool = True
    session_id: str | None = None
    results: list[dict[str, Any]] | None = None
    rows_affected: int | None = None
    last_insert_id: str | int | None = None
    error: str | None = None
    code: int | None = None

    @classmethod
    def failure(cls, error: str, code: int = 0) -> QueryResult:
        return cls(success=False, error=error, code=code)

    def to_wire(self) -> dict[str, Any]:
        """Body with absent fields omitted."""
        return self.model_dump(mode="json", exclude_none=True)


class BatchResponse(BaseModel):
    """Response to a ``BatchRequest``; items are in request order."""

    success: bool = True
    session_id: str | None = None
    results: list[QueryResult] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "session_id": self.session_id,
            "results": [item.to_wire() for item in self.results],
        }


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"{location}: {first.get('msg', 'invalid value')}"
    return first.get("msg", "invalid value")


def parse_request(payload: Any) -> QueryRequest | BatchRequest:
    """Validate a decrypted request payload.

    Raises:
        EnvelopeError: If the payload is not a valid single or batch request
    """
    if not isinstance(payload, dict):
        raise EnvelopeError("Invalid payload: expected an object")

    try:
        if payload.get("batch"):
            return BatchRequest.model_validate(payload)
        return QueryRequest.model_validate(payload)
    except ValidationError as e:
        raise EnvelopeError(f"Invalid payload: {_describe(e)}") from e


def _check_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise EnvelopeError("Invalid response: expected an object")
    return payload


def parse_result(payload: Any) -> QueryResult:
    """Validate a decrypted single-query response payload."""
    try:
        return QueryResult.model_validate(_check_object(payload))
    except ValidationError as e:
        raise EnvelopeError(f"Invalid response: {_describe(e)}") from e


def parse_response(payload: Any, *, batch: bool = False) -> QueryResult | BatchResponse:
    """Validate a decrypted response payload.

    A batch call may still get a single failed result back when the whole
    batch was rejected.
    """
    payload = _check_object(payload)
    if not (batch and payload.get("success", True) and isinstance(payload.get("results"), list)):
        return parse_result(payload)

    try:
        return BatchResponse.model_validate(payload)
    except ValidationError as e:
        raise EnvelopeError(f"Invalid response: {_describe(e)}") from e
