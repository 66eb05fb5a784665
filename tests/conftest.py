"""Shared test fixtures for the authgateway test suite."""

from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from authgateway.auth import AuthGateway
from authgateway.config import GatewaySettings
from authgateway.oauth import MemoryStore

BASE_URL = "https://api.test"
CLIENT_ID = "client_test123"

STORED_TOKEN = {
    "access_token": "old_access_token",
    "refresh_token": "refresh_token_abc",
    "expires_in": 3600,
    "token_type": "bearer",
    "scope": None,
    "user_id": "1",
}

REFRESHED_TOKEN = {
    "access_token": "new_access_token",
    "expires_in": 3600,
    "token_type": "bearer",
    "scope": None,
    "user_id": "1",
}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings pointing at the fake API with a throwaway config dir."""
    return GatewaySettings(
        base_url=BASE_URL,
        client_id=CLIENT_ID,
        login_url=None,
        config_dir=str(tmp_path),
    )


@pytest.fixture
def store():
    """Empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def authenticated_store():
    """In-memory store holding a token record plus unrelated app state."""
    return MemoryStore({"token": STORED_TOKEN, "preferences": {"theme": "dark"}})


@pytest.fixture
def sent():
    """Requests seen by the fake server, in order."""
    return []


@pytest_asyncio.fixture
async def make_gateway(settings, sent):
    """Factory building an AuthGateway on top of an httpx.MockTransport.

    The handler receives each httpx.Request and returns an httpx.Response
    (or a coroutine producing one). Every request is appended to ``sent``.
    """
    gateways: list[AuthGateway] = []

    def _make(
        handler: Callable[[httpx.Request], Any],
        store: MemoryStore | None = None,
        **overrides,
    ) -> AuthGateway:
        async def recording_handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            result = handler(request)
            if not isinstance(result, httpx.Response):
                result = await result
            return result

        gateway_settings = settings.model_copy(update=overrides) if overrides else settings
        gateway = AuthGateway(
            gateway_settings,
            store=store if store is not None else MemoryStore(),
            transport=httpx.MockTransport(recording_handler),
        )
        gateways.append(gateway)
        return gateway

    yield _make

    for gateway in gateways:
        await gateway.aclose()


def token_requests(sent: list[httpx.Request]) -> list[httpx.Request]:
    """Requests that hit the token endpoint."""
    return [r for r in sent if r.url.path == "/oauth/token"]


def api_requests(sent: list[httpx.Request]) -> list[httpx.Request]:
    """Requests other than the token endpoint."""
    return [r for r in sent if r.url.path != "/oauth/token"]


def expiring_api(
    valid_token: str = REFRESHED_TOKEN["access_token"],
    refresh_response: httpx.Response | None = None,
    body: Any = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Handler whose API accepts only ``valid_token`` and whose token endpoint refreshes."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return refresh_response or httpx.Response(200, json=REFRESHED_TOKEN)
        if request.headers.get("Authorization") != f"Bearer {valid_token}":
            return httpx.Response(401, json={"error": "invalid_token", "message": "Token expired"})
        return httpx.Response(200, json=body if body is not None else {"ok": True})

    return handler
