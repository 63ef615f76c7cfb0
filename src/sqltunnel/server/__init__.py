"""Server side of sqltunnel: request handling and origin checks."""

from .handler import CAPABILITIES, EndpointHandler, EndpointRequest, EndpointResponse

__all__ = [
    "CAPABILITIES",
    "EndpointHandler",
    "EndpointRequest",
    "EndpointResponse",
]
