"""Base HTTP gateway - builds requests, sends them through httpx, parses results.

The gateway is deliberately small: it knows how to turn ``(method, path, data,
headers)`` into an httpx request, how to decode the body, and how to turn a
non-2xx response into a normalized ``GatewayError``. Authentication lives in
``authgateway.auth.manager.AuthGateway``, which extends this class.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import GatewaySettings

logger = logging.getLogger(__name__)

METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

# Methods whose dict payload is sent as a query string rather than a body.
QUERY_METHODS = ("GET", "DELETE")


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Normalized error view handed to callers that prefer data over exceptions."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "response": self.response,
        }


class TransportError(GatewayError):
    """Network or decode failure before a usable response was available."""

    pass


class HttpError(GatewayError):
    """Server answered with a non-2xx status."""

    pass


class AuthExpiredError(HttpError):
    """Server answered 401 Unauthorized."""

    pass


class HttpGateway:
    """Thin async gateway over ``httpx.AsyncClient``.

    Usage:
        async with HttpGateway(settings) as gateway:
            items = await gateway.api_request("GET", "/items", {"limit": 10})

    Subclasses hook into two places:
        - ``build_request_options`` to decorate outgoing requests
        - ``handle_response`` to intercept responses before the default handling
    """

    DEFAULT_HEADERS = {
        "Accept": "application/json",
    }

    def __init__(
        self,
        settings: GatewaySettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the gateway.

        Args:
            settings: GatewaySettings (reads the environment if not provided)
            client: Pre-built httpx client; the gateway will not close it
            transport: Custom httpx transport (used by tests via httpx.MockTransport)
        """
        self.settings = settings or GatewaySettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpGateway":
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if the gateway created it."""
        if self._owns_client:
            await self._client.aclose()

    def get_config(self) -> GatewaySettings:
        """Static configuration this gateway was built with."""
        return self.settings

    # Request building

    def build_base_request_options(
        self, method: str, path: str, data: Any = None
    ) -> dict[str, Any]:
        """Build the keyword arguments for ``httpx.AsyncClient.request``."""
        method = method.upper()
        options: dict[str, Any] = {
            "method": method,
            "url": path,
            "headers": dict(self.DEFAULT_HEADERS),
        }

        if data is None:
            return options

        if isinstance(data, (str, bytes)):
            options["content"] = data
        elif method in QUERY_METHODS and isinstance(data, dict):
            if data:
                options["params"] = data
        else:
            options["json"] = data
            options["headers"]["Content-Type"] = "application/json"

        return options

    def build_request_options(
        self, method: str, path: str, data: Any = None
    ) -> dict[str, Any]:
        """Options for an outgoing request. Subclasses decorate these."""
        return self.build_base_request_options(method, path, data)

    # Sending

    async def send(
        self,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[httpx.Response, Any]:
        """Perform one HTTP exchange and return the response with its parsed body.

        Raises:
            TransportError: If the request fails or a JSON body cannot be decoded
        """
        options = self.build_request_options(method, path, data)
        if headers:
            options["headers"].update(headers)

        try:
            response = await self._client.request(**options)
        except httpx.HTTPError as e:
            raise TransportError(f"{options['method']} {path} failed: {e}") from e

        return response, self.parse_body(response)

    def parse_body(self, response: httpx.Response) -> Any:
        """Decode a response body: JSON when declared, text otherwise."""
        if not response.content:
            return {}

        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            return response.text

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"Invalid JSON body ({response.status_code})",
                response.status_code,
                response.text[:500],
            ) from e

    async def api_request(
        self,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make an API request and return the parsed body.

        Raises:
            ValueError: If the method is not supported
            GatewayError: On transport failure or non-2xx status
        """
        method = method.upper()
        if method not in METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        response, body = await self.send(method, path, data, headers)
        return await self.handle_response(response, body, method, path, data, headers)

    # Response handling

    async def handle_response(
        self,
        response: httpx.Response,
        body: Any,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Return the body of a successful response, delegate errors to ``handle_error``."""
        if response.is_success:
            return body
        return await self.handle_error(response, body, method, path, data, headers)

    async def handle_error(
        self,
        response: httpx.Response,
        body: Any,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Raise a normalized error for a non-2xx response."""
        status = response.status_code
        message = _error_message(body) or response.reason_phrase or "Request failed"

        logger.debug("%s %s returned %s", method, path, status)

        if status == 401:
            raise AuthExpiredError(f"Unauthorized: {message}", status, body)
        raise HttpError(f"API error {status}: {message}", status, body)


def _error_message(body: Any) -> str | None:
    """Best-effort error message from a decoded error body."""
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        return None
    if isinstance(body, str) and body.strip():
        return body.strip()[:200]
    return None
