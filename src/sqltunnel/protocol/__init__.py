"""Wire protocol for sqltunnel.

The encrypted plaintext carries either a single request or a batch, and the
server answers with a result body (or one body per batch item).
"""

from .envelope import (
    BatchRequest,
    BatchResponse,
    QueryItem,
    QueryRequest,
    QueryResult,
    QueryType,
    Scalar,
    parse_request,
    parse_response,
    parse_result,
)

__all__ = [
    "BatchRequest",
    "BatchResponse",
    "QueryItem",
    "QueryRequest",
    "QueryResult",
    "QueryType",
    "Scalar",
    "parse_request",
    "parse_response",
    "parse_result",
]
