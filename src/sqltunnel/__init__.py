"""sqltunnel - run SQL on a remote database over an encrypted HTTP channel.

Client side:
    RemoteDatabaseClient  - envelope dispatch with retry, batching and caching
    RemoteConnection      - connection-style facade with transactions

Server side:
    create_app            - Starlette application serving the endpoint
    EndpointHandler       - transport-neutral request handling
"""

__version__ = "0.1.0"

from .config import ClientConfig, ServerConfig, SessionDriver, SessionStorageConfig  # noqa: E402
from .encryption import PayloadCipher, generate_key  # noqa: E402
from .errors import (  # noqa: E402
    AuthorizationError,
    ConfigurationError,
    CryptoError,
    DecryptionError,
    EncryptionError,
    EngineError,
    EnvelopeError,
    QueryError,
    RemoteDatabaseError,
    TransportError,
)
from .protocol import QueryResult, QueryType  # noqa: E402
from .sdk import RemoteConnection, RemoteDatabaseClient, ResultCache  # noqa: E402

__all__ = [
    "__version__",
    # Configuration
    "ClientConfig",
    "ServerConfig",
    "SessionDriver",
    "SessionStorageConfig",
    # Client
    "RemoteConnection",
    "RemoteDatabaseClient",
    "ResultCache",
    # Protocol
    "PayloadCipher",
    "QueryResult",
    "QueryType",
    "generate_key",
    # Errors
    "AuthorizationError",
    "ConfigurationError",
    "CryptoError",
    "DecryptionError",
    "EncryptionError",
    "EngineError",
    "EnvelopeError",
    "QueryError",
    "RemoteDatabaseError",
    "TransportError",
]
