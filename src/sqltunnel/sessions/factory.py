"""Construction of the configured session storage backend."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..config import SessionDriver, SessionStorageConfig
from ..errors import ConfigurationError
from .base import SessionStorage
from .cache_store import CacheBackend, CacheSessionStorage, MemoryCache
from .database_store import DatabaseSessionStorage
from .file_store import FileSessionStorage
from .redis_store import RedisSessionStorage

logger = logging.getLogger(__name__)


def _lookup(resources: Mapping[Any, Any] | None, name: Any, kind: str) -> Any:
    if not resources or name not in resources:
        raise ConfigurationError(f"No {kind} named {name!r} is configured for session storage")
    return resources[name]


def create_session_storage(
    config: SessionStorageConfig,
    *,
    redis_clients: Mapping[str, Any] | None = None,
    engines: Mapping[str, Any] | None = None,
    caches: Mapping[str | None, CacheBackend] | None = None,
) -> SessionStorage:
    """Create the backend selected by ``config.driver``.

    Args:
        config: Backend selection and parameters
        redis_clients: Named ``redis.Redis`` clients (redis driver)
        engines: Named SQLAlchemy engines (database driver)
        caches: Named cache stores (cache driver); a process-local
            MemoryCache is used for the default store when none is given

    Raises:
        ConfigurationError: For an unknown driver or a missing named resource
    """
    try:
        driver = SessionDriver(config.driver)
    except ValueError as e:
        raise ConfigurationError(f"Unsupported session driver: {config.driver}") from e

    logger.debug(f"Using {driver.value} session storage")

    if driver is SessionDriver.FILE:
        return FileSessionStorage(
            config.directory,
            lifetime=config.lifetime,
            cleanup_probability=config.cleanup_probability,
        )

    if driver is SessionDriver.REDIS:
        client = _lookup(redis_clients, config.connection, "redis connection")
        return RedisSessionStorage(client, lifetime=config.lifetime)

    if driver is SessionDriver.DATABASE:
        engine = _lookup(engines, config.connection, "database connection")
        return DatabaseSessionStorage(
            engine,
            table=config.table,
            lifetime=config.lifetime,
            cleanup_probability=config.cleanup_probability,
        )

    if config.store is None and not caches:
        cache: CacheBackend = MemoryCache()
    else:
        cache = _lookup(caches, config.store, "cache store")
    return CacheSessionStorage(cache, lifetime=config.lifetime)
