"""sqltunnel server application.

Creates the Starlette ASGI application:
- /health - Liveness check
- <endpoint_path> - Remote database endpoint (default /remote-db-endpoint)

With no arguments everything is built from ``SQLTUNNEL_*`` environment
variables; ``SQLTUNNEL_DATABASE_URL`` names the database queries run on.
"""

from __future__ import annotations

import logging
import os

from starlette.applications import Starlette
from starlette.routing import Route

from .config import ServerConfig, SessionDriver
from .driver import DriverProvider
from .errors import ConfigurationError
from .routes import endpoint_routes, health_routes
from .server.handler import EndpointHandler
from .sessions import SessionStorage, create_session_storage

logger = logging.getLogger(__name__)


def _storage_from_env(config: ServerConfig) -> SessionStorage:
    """Build the session backend, wiring named resources from the environment."""
    redis_clients = {}
    engines = {}

    if config.session.driver is SessionDriver.REDIS:
        import redis

        url = os.environ.get("SQLTUNNEL_REDIS_URL", "redis://localhost:6379/0")
        redis_clients[config.session.connection] = redis.Redis.from_url(url)

    if config.session.driver is SessionDriver.DATABASE:
        from sqlalchemy import create_engine

        url = os.environ.get("SQLTUNNEL_SESSION_DATABASE_URL") or os.environ.get(
            "SQLTUNNEL_DATABASE_URL"
        )
        if not url:
            raise ConfigurationError("SQLTUNNEL_DATABASE_URL is required for database sessions")
        engines[config.session.connection] = create_engine(url, pool_pre_ping=True)

    return create_session_storage(config.session, redis_clients=redis_clients, engines=engines)


def _drivers_from_env(config: ServerConfig) -> DriverProvider:
    from .sqlalchemy_driver import SQLAlchemyDriverProvider

    url = os.environ.get("SQLTUNNEL_DATABASE_URL")
    if not url:
        raise ConfigurationError("SQLTUNNEL_DATABASE_URL is not set")
    return SQLAlchemyDriverProvider.from_url(url, pin_timeout=float(config.session.lifetime))


def create_app(
    config: ServerConfig | None = None,
    *,
    storage: SessionStorage | None = None,
    drivers: DriverProvider | None = None,
) -> Starlette:
    """Create the sqltunnel server application.

    Args:
        config: Endpoint settings; read from the environment when omitted
        storage: Session backend; built from ``config.session`` when omitted
        drivers: Engine driver provider; a SQLAlchemy provider for
                 ``SQLTUNNEL_DATABASE_URL`` when omitted

    Returns:
        Configured Starlette application
    """
    if config is None:
        config = ServerConfig.from_env()
    if storage is None:
        storage = _storage_from_env(config)
    if drivers is None:
        drivers = _drivers_from_env(config)

    handler = EndpointHandler(config, storage, drivers)

    routes: list[Route] = []
    routes.extend(health_routes)
    routes.extend(endpoint_routes(handler, config.endpoint_path))

    logger.info(f"Remote database endpoint mounted at {config.endpoint_path}")

    app = Starlette(routes=routes)
    app.state.handler = handler
    return app
