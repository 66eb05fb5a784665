"""Token session manager - an HttpGateway that keeps an OAuth2 session alive.

Every outgoing request carries the stored access token. A 401 response starts
(or joins) a single shared refresh exchange; when it succeeds the original
request is replayed once with the new token. When it fails the store is wiped
and subscribers receive a ``SessionInvalidated`` event telling them where the
user has to log in again.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

from ..api.client import GatewayError, HttpGateway
from ..config import GatewaySettings
from ..oauth.storage import FileStore, KeyValueStore, TokenRecord
from .session import TokenSession

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class SessionState(str, Enum):
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class SessionInvalidated:
    """Terminal signal: the session is gone and the user must log in again."""

    redirect_url: str
    reason: str


class RefreshError(GatewayError):
    """The refresh exchange did not produce a usable token."""

    pass


class SessionInvalidatedError(GatewayError):
    """Raised to callers instead of suspending them, when configured to."""

    def __init__(self, event: SessionInvalidated):
        super().__init__(f"Session invalidated: {event.reason}", 401)
        self.event = event

    @property
    def redirect_url(self) -> str:
        return self.event.redirect_url


SessionListener = Callable[[SessionInvalidated], Any]


class AuthGateway(HttpGateway):
    """Gateway that attaches, refreshes and invalidates an OAuth2 bearer session.

    Usage:
        gateway = AuthGateway(settings, store=FileStore(settings.session_file))
        gateway.on_session_invalidated(lambda event: open_browser(event.redirect_url))

        async with gateway:
            gateway.start_session(token_payload_from_login)
            items = await gateway.request("GET", "/items")

    Concurrent 401s share one refresh exchange. A request rejected with a token
    that has since been rotated is replayed without a new exchange.

    When the session cannot be refreshed the pending ``request`` call does not
    return: the caller is expected to be torn down by whoever handles
    ``SessionInvalidated``. Closing the gateway cancels such calls. Set
    ``reject_on_invalidation`` to raise ``SessionInvalidatedError`` instead.
    """

    def __init__(
        self,
        settings: GatewaySettings | None = None,
        *,
        store: KeyValueStore | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_session_invalidated: SessionListener | None = None,
    ):
        super().__init__(settings, client=client, transport=transport)
        if store is None:
            store = FileStore(self.settings.session_file)
        self.session = TokenSession(store, self.settings.token_storage_key)

        self._pending_refresh: asyncio.Task | None = None
        self._listeners: list[SessionListener] = []
        self._stranded: set[asyncio.Future] = set()
        self._last_invalidation: SessionInvalidated | None = None
        # Authorization value whose refresh failed; cleared when a session starts.
        self._rejected_authorization: str | None = None

        if on_session_invalidated:
            self.on_session_invalidated(on_session_invalidated)

    async def aclose(self) -> None:
        """Cancel suspended callers and any refresh in flight, then close the client."""
        for waiter in list(self._stranded):
            waiter.cancel()
        if self._pending_refresh and not self._pending_refresh.done():
            self._pending_refresh.cancel()
        await super().aclose()

    @property
    def state(self) -> SessionState:
        if self._pending_refresh is not None and not self._pending_refresh.done():
            return SessionState.REFRESHING
        if self.session.exists:
            return SessionState.AUTHENTICATED
        return SessionState.UNAUTHENTICATED

    # Session lifecycle

    def on_session_invalidated(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session invalidation. Returns an unsubscribe callable.

        Listeners may be plain functions or coroutine functions.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start_session(self, payload: dict[str, Any]) -> TokenRecord:
        """Store a token payload issued by the login flow."""
        record = self.session.start(payload)
        self._rejected_authorization = None
        logger.info("Session started")
        return record

    def end_session(self) -> None:
        """Log out locally: wipe the store without signalling invalidation."""
        self.session.clear()
        logger.info("Session cleared")

    # Requests

    async def request(
        self,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make an authenticated API request and return the parsed body.

        Raises:
            ValueError: If the method is not GET, POST, PUT, PATCH or DELETE
            HttpError: On a non-2xx status other than a recoverable 401
            TransportError: On network or decode failure
            SessionInvalidatedError: Only with ``reject_on_invalidation``
        """
        return await self.api_request(method, path, data, headers)

    def build_request_options(
        self, method: str, path: str, data: Any = None
    ) -> dict[str, Any]:
        """Base options plus ``Authorization`` when a token is stored."""
        options = self.build_base_request_options(method, path, data)

        record = self.session.load()
        if record:
            options["headers"]["Authorization"] = self._authorization_value(record)

        return options

    async def send(
        self,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[httpx.Response, Any]:
        """Send with the session's credentials; caller ``Authorization`` headers are dropped."""
        if headers:
            headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
        return await super().send(method, path, data, headers)

    async def handle_response(
        self,
        response: httpx.Response,
        body: Any,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Route 401 to the refresh flow, everything else to the default handling."""
        if response.status_code == 401:
            return await self.handle_401(response, method, path, data, headers)
        return await super().handle_response(response, body, method, path, data, headers)

    async def handle_401(
        self,
        response: httpx.Response,
        method: str,
        path: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Refresh the session and replay the rejected request once.

        The replay goes straight to the default response handling, so a second
        401 is raised as ``AuthExpiredError`` instead of refreshing again.
        """
        record = self.session.load()
        if self._pending_refresh is None and record is None and self._rejected_by_failed_refresh(response):
            logger.debug("%s %s was sent with a token whose refresh already failed", method, path)
            return await self._abandon(method, path)

        if self._pending_refresh is None and record and self._is_stale(response, record):
            logger.debug("Replaying %s %s with the already rotated token", method, path)
        else:
            record = await self.refresh_session()

        if record is None:
            return await self._abandon(method, path)

        retry_response, retry_body = await self.send(method, path, data, headers)
        return await super().handle_response(
            retry_response, retry_body, method, path, data, headers
        )

    # Refresh

    async def refresh_session(self) -> TokenRecord | None:
        """Run the refresh exchange, or join the one already in flight.

        Returns:
            The refreshed record, or None if the session was invalidated
        """
        task = self._pending_refresh
        if task is None:
            task = asyncio.ensure_future(self._run_refresh())
            task.add_done_callback(self._refresh_settled)
            self._pending_refresh = task
        else:
            logger.debug("Joining token refresh already in flight")

        # A cancelled caller must not cancel the exchange other callers share.
        return await asyncio.shield(task)

    def _refresh_settled(self, task: asyncio.Task) -> None:
        if self._pending_refresh is task:
            self._pending_refresh = None

    async def _run_refresh(self) -> TokenRecord | None:
        record = self.session.load()
        if record is None:
            await self._invalidate("no stored token")
            return None

        logger.info("Refreshing access token")
        try:
            payload = await self._exchange_refresh_token(record)
        except GatewayError as e:
            logger.warning("Refresh exchange rejected: %s", e)
            self._rejected_authorization = self._authorization_value(record)
            await self._invalidate(e.message)
            return None

        record = self.session.merge(payload)
        logger.info("Access token refreshed")
        return record

    async def _exchange_refresh_token(self, record: TokenRecord) -> dict[str, Any]:
        """POST the refresh grant and return the token response.

        Raises:
            RefreshError: If no refresh token is stored or the response is unusable
            TransportError: If the exchange itself fails
        """
        if not record.can_refresh:
            raise RefreshError("No refresh token stored")

        payload = urlencode({
            "client_id": self.settings.client_id,
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
        })
        response, body = await self.send(
            "POST",
            self.settings.token_path,
            payload,
            {"Content-Type": FORM_CONTENT_TYPE},
        )

        if not response.is_success:
            raise RefreshError(
                f"Token refresh failed: {response.status_code}",
                response.status_code,
                body,
            )

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise RefreshError(
                "Invalid token response: missing access_token",
                response.status_code,
                body,
            )

        return body

    # Invalidation

    async def _invalidate(self, reason: str) -> None:
        self.session.clear()
        event = SessionInvalidated(redirect_url=self.settings.redirect_url, reason=reason)
        self._last_invalidation = event
        logger.warning("Session invalidated (%s), login required at %s", reason, event.redirect_url)

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Session invalidation listener failed")

    async def _abandon(self, method: str, path: str) -> Any:
        """Leave the caller of an unrecoverable request suspended (or reject it)."""
        event = self._last_invalidation or SessionInvalidated(
            redirect_url=self.settings.redirect_url, reason="session invalidated"
        )
        if self.settings.reject_on_invalidation:
            raise SessionInvalidatedError(event)

        logger.debug("%s %s suspended until the session is re-established", method, path)
        waiter = asyncio.get_running_loop().create_future()
        self._stranded.add(waiter)
        try:
            return await waiter
        finally:
            self._stranded.discard(waiter)

    # Helpers

    def _authorization_value(self, record: TokenRecord) -> str:
        return f"{self.settings.authorization_header_prefix}{record.access_token}"

    def _rejected_by_failed_refresh(self, response: httpx.Response) -> bool:
        """True when the rejected request carried the token a failed refresh gave up on."""
        if self._rejected_authorization is None:
            return False
        try:
            sent = response.request.headers.get("Authorization")
        except RuntimeError:
            return False
        return sent == self._rejected_authorization

    def _is_stale(self, response: httpx.Response, record: TokenRecord) -> bool:
        """True when the rejected request was sent with a token other than the stored one."""
        try:
            sent = response.request.headers.get("Authorization")
        except RuntimeError:
            # Response not tied to a request; assume it used the stored token.
            return False
        return sent != self._authorization_value(record)
