"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from sqltunnel.config import (
    ClientConfig,
    ServerConfig,
    SessionDriver,
    SessionStorageConfig,
    split_list,
)
from sqltunnel.errors import ConfigurationError


def test_split_list() -> None:
    assert split_list(None) == []
    assert split_list(" 10.0.0.0/8, ,127.0.0.1 ") == ["10.0.0.0/8", "127.0.0.1"]


class TestClientConfig:
    def test_defaults(self) -> None:
        config = ClientConfig.from_env({})
        assert config.endpoint == ""
        assert config.timeout == 30.0
        assert config.verify_ssl is True
        assert config.retry_attempts == 3
        assert config.cache_enabled is False
        assert config.batching_enabled is False

    def test_from_env(self) -> None:
        config = ClientConfig.from_env(
            {
                "SQLTUNNEL_ENDPOINT": "https://db.example.com/remote-db-endpoint",
                "SQLTUNNEL_API_KEY": "k",
                "SQLTUNNEL_ENCRYPTION_KEY": "e",
                "SQLTUNNEL_TIMEOUT": "5",
                "SQLTUNNEL_VERIFY_SSL": "false",
                "SQLTUNNEL_RETRY_ATTEMPTS": "1",
                "SQLTUNNEL_CACHE_ENABLED": "yes",
                "SQLTUNNEL_CACHE_TTL": "10",
                "SQLTUNNEL_CACHE_MAX_SIZE": "5",
                "SQLTUNNEL_BATCHING": "1",
            }
        )
        assert config.endpoint.endswith("/remote-db-endpoint")
        assert config.timeout == 5.0
        assert config.verify_ssl is False
        assert config.retry_attempts == 1
        assert config.cache_enabled is True
        assert config.cache_ttl == 10.0
        assert config.cache_max_size == 5
        assert config.batching_enabled is True


class TestServerConfig:
    def test_defaults(self) -> None:
        config = ServerConfig.from_env({})
        assert config.endpoint_path == "/remote-db-endpoint"
        assert config.allowed_ips == []
        assert config.max_message_age is None
        assert config.session.driver is SessionDriver.FILE
        assert config.session.lifetime == 3600
        assert config.session.cleanup_probability == 0.01

    def test_from_env(self) -> None:
        config = ServerConfig.from_env(
            {
                "SQLTUNNEL_API_KEY": "k",
                "SQLTUNNEL_ENDPOINT_PATH": "/db",
                "SQLTUNNEL_ALLOWED_IPS": "10.0.0.0/8,127.0.0.1",
                "SQLTUNNEL_TRUSTED_PROXIES": "10.0.0.1",
                "SQLTUNNEL_MAX_MESSAGE_AGE": "300",
                "SQLTUNNEL_SESSION_DRIVER": "Redis",
                "SQLTUNNEL_SESSION_LIFETIME": "120",
                "SQLTUNNEL_SESSION_CONNECTION": "sessions",
            }
        )
        assert config.endpoint_path == "/db"
        assert config.allowed_ips == ["10.0.0.0/8", "127.0.0.1"]
        assert config.trusted_proxies == ["10.0.0.1"]
        assert config.max_message_age == 300.0
        assert config.session == SessionStorageConfig(
            driver=SessionDriver.REDIS, lifetime=120, connection="sessions"
        )

    def test_unknown_session_driver(self) -> None:
        with pytest.raises(ConfigurationError, match="memcached"):
            ServerConfig.from_env({"SQLTUNNEL_SESSION_DRIVER": "memcached"})
