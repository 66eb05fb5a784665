"""Base HTTP gateway.

Usage:
    from authgateway.api import HttpGateway

    async with HttpGateway(settings) as gateway:
        items = await gateway.api_request("GET", "/items")
"""

from .client import (
    AuthExpiredError,
    GatewayError,
    HttpError,
    HttpGateway,
    TransportError,
)

__all__ = [
    "HttpGateway",
    "GatewayError",
    "TransportError",
    "HttpError",
    "AuthExpiredError",
]
