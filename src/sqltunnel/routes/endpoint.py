"""The remote database endpoint route.

Every method is routed to the handler so that configuration and origin
checks run before the method check, and GET can describe the endpoint.
"""

from __future__ import annotations

import logging

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..server.handler import EndpointHandler, EndpointRequest

logger = logging.getLogger(__name__)

ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def endpoint_routes(handler: EndpointHandler, path: str) -> list[Route]:
    """Build the route list serving ``handler`` at ``path``."""

    async def remote_db_endpoint(request: Request) -> JSONResponse:
        inbound = EndpointRequest(
            method=request.method,
            headers=dict(request.headers),
            client_host=request.client.host if request.client else None,
            body=await request.body(),
        )
        outbound = await run_in_threadpool(handler.handle, inbound)
        if outbound.status_code != 200:
            logger.debug(f"{request.method} {path} -> {outbound.status_code}")
        return JSONResponse(outbound.body, status_code=outbound.status_code)

    return [Route(path, remote_db_endpoint, methods=ROUTED_METHODS)]
