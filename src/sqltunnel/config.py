"""Configuration for the client and the endpoint.

Values come from explicit construction or from ``SQLTUNNEL_*`` environment
variables via ``from_env()``. List values are comma separated.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigurationError

DEFAULT_ENDPOINT_PATH = "/remote-db-endpoint"
DEFAULT_SESSION_LIFETIME = 3600
DEFAULT_CLEANUP_PROBABILITY = 0.01

_TRUTHY = ("1", "true", "yes", "on")


class SessionDriver(str, Enum):
    """Available session state backends."""

    FILE = "file"
    REDIS = "redis"
    DATABASE = "database"
    CACHE = "cache"


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUTHY


def _env_float(env: Mapping[str, str], name: str, default: float | None) -> float | None:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_driver(env: Mapping[str, str]) -> SessionDriver:
    value = (env.get("SQLTUNNEL_SESSION_DRIVER") or "file").strip().lower()
    try:
        return SessionDriver(value)
    except ValueError as e:
        raise ConfigurationError(f"Unsupported session driver: {value}") from e


def split_list(value: str | None) -> list[str]:
    """Split a comma separated setting, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class ClientConfig:
    """Settings for ``RemoteDatabaseClient``."""

    endpoint: str
    api_key: str
    encryption_key: str | bytes
    timeout: float = 30.0
    verify_ssl: bool = True
    retry_attempts: int = 3

    # Result cache (selects only)
    cache_enabled: bool = False
    cache_ttl: float = 60.0
    cache_max_size: int = 1000

    batching_enabled: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ClientConfig:
        env = os.environ if env is None else env
        return cls(
            endpoint=env.get("SQLTUNNEL_ENDPOINT", ""),
            api_key=env.get("SQLTUNNEL_API_KEY", ""),
            encryption_key=env.get("SQLTUNNEL_ENCRYPTION_KEY", ""),
            timeout=_env_float(env, "SQLTUNNEL_TIMEOUT", 30.0) or 30.0,
            verify_ssl=_env_bool(env, "SQLTUNNEL_VERIFY_SSL", True),
            retry_attempts=_env_int(env, "SQLTUNNEL_RETRY_ATTEMPTS", 3),
            cache_enabled=_env_bool(env, "SQLTUNNEL_CACHE_ENABLED", False),
            cache_ttl=_env_float(env, "SQLTUNNEL_CACHE_TTL", 60.0) or 60.0,
            cache_max_size=_env_int(env, "SQLTUNNEL_CACHE_MAX_SIZE", 1000),
            batching_enabled=_env_bool(env, "SQLTUNNEL_BATCHING", False),
        )


@dataclass
class SessionStorageConfig:
    """Backend selection and backend-specific parameters."""

    driver: SessionDriver = SessionDriver.FILE
    lifetime: int = DEFAULT_SESSION_LIFETIME
    cleanup_probability: float = DEFAULT_CLEANUP_PROBABILITY

    # file
    directory: str | None = None
    # database
    table: str = "remote_db_sessions"
    # cache: named cache store, None for the default store
    store: str | None = None
    # redis / database: named connection
    connection: str = "default"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> SessionStorageConfig:
        env = os.environ if env is None else env
        return cls(
            driver=_env_driver(env),
            lifetime=_env_int(env, "SQLTUNNEL_SESSION_LIFETIME", DEFAULT_SESSION_LIFETIME),
            cleanup_probability=_env_float(
                env, "SQLTUNNEL_SESSION_CLEANUP_PROBABILITY", DEFAULT_CLEANUP_PROBABILITY
            )
            or 0.0,
            directory=env.get("SQLTUNNEL_SESSION_DIRECTORY") or None,
            table=env.get("SQLTUNNEL_SESSION_TABLE") or "remote_db_sessions",
            store=env.get("SQLTUNNEL_SESSION_CACHE_STORE") or None,
            connection=env.get("SQLTUNNEL_SESSION_CONNECTION") or "default",
        )


@dataclass
class ServerConfig:
    """Settings for the endpoint."""

    api_key: str = ""
    encryption_key: str | bytes = ""
    endpoint_path: str = DEFAULT_ENDPOINT_PATH
    allowed_ips: list[str] = field(default_factory=list)
    trusted_proxies: list[str] = field(default_factory=list)
    # Reject messages whose sent_at is further than this from server time
    max_message_age: float | None = None
    session: SessionStorageConfig = field(default_factory=SessionStorageConfig)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ServerConfig:
        env = os.environ if env is None else env
        return cls(
            api_key=env.get("SQLTUNNEL_API_KEY", ""),
            encryption_key=env.get("SQLTUNNEL_ENCRYPTION_KEY", ""),
            endpoint_path=env.get("SQLTUNNEL_ENDPOINT_PATH") or DEFAULT_ENDPOINT_PATH,
            allowed_ips=split_list(env.get("SQLTUNNEL_ALLOWED_IPS")),
            trusted_proxies=split_list(env.get("SQLTUNNEL_TRUSTED_PROXIES")),
            max_message_age=_env_float(env, "SQLTUNNEL_MAX_MESSAGE_AGE", None),
            session=SessionStorageConfig.from_env(env),
        )
