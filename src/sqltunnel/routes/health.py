"""Liveness endpoint.

Unauthenticated; reports only liveness and the package version.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .. import __version__


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "service": "sqltunnel", "version": __version__})


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]
