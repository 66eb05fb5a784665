"""Authentication module - OAuth2 bearer session on top of the base gateway.

Usage:
    from authgateway.auth import AuthGateway

    async with AuthGateway(settings) as gateway:
        gateway.on_session_invalidated(handle_logout)
        profile = await gateway.request("GET", "/me")
"""

from .manager import (
    AuthGateway,
    RefreshError,
    SessionInvalidated,
    SessionInvalidatedError,
    SessionState,
)
from .session import TokenSession

__all__ = [
    "AuthGateway",
    "RefreshError",
    "SessionInvalidated",
    "SessionInvalidatedError",
    "SessionState",
    "TokenSession",
]
