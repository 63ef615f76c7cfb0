"""HTTP API routes."""

from .endpoint import endpoint_routes
from .health import health_routes

__all__ = [
    "endpoint_routes",
    "health_routes",
]
