"""Client side of the remote query protocol."""

from .cache import ResultCache, fingerprint
from .client import RemoteDatabaseClient
from .connection import RemoteConnection

__all__ = [
    "RemoteConnection",
    "RemoteDatabaseClient",
    "ResultCache",
    "fingerprint",
]
