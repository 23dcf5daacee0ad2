"""Network Gateway — httpx client with bearer auth and coalesced token refresh.

Every request goes out with the stored access token. When a request comes
back 401 the gateway obtains a new token and retries it once:

- if a refresh is already in flight, the request waits in a FIFO queue and
  resumes with that refresh's token (or its error);
- if the stored token already differs from the one the request carried,
  someone refreshed in the meantime and the request retries with it;
- otherwise this request becomes the refresher: exactly one refresh call,
  then the whole queue is settled with the outcome.

The flag check and the flag set happen with no suspension point between
them, which is what keeps N concurrent 401s down to one refresh call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from teachlink.config import Settings
from teachlink.errors import NetworkError, NoRefreshToken, SessionExpired
from teachlink.storage.secure_store import CredentialStore

logger = logging.getLogger(__name__)

RefreshHandler = Callable[[], Awaitable[str]]


async def _no_refresh_handler() -> str:
    raise NoRefreshToken()


class RefreshQueue:
    """In-flight flag plus the waiters parked behind it."""

    def __init__(self):
        self._refreshing = False
        self._waiters: list[asyncio.Future[str]] = []

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    @property
    def pending(self) -> int:
        return len(self._waiters)

    def begin(self) -> None:
        if self._refreshing:
            raise RuntimeError("refresh already in flight")
        self._refreshing = True

    def wait(self) -> asyncio.Future[str]:
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        return future

    def settle(self, token: str | None, error: BaseException | None = None) -> None:
        """Resolve or reject every waiter, in arrival order, then clear the flag."""
        waiters, self._waiters = self._waiters, []
        self._refreshing = False
        for future in waiters:
            if future.done():  # caller went away
                continue
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(token)


class NetworkGateway:
    """HTTP client for the TeachLink backend."""

    def __init__(
        self,
        store: CredentialStore,
        base_url: str,
        *,
        timeout: float = 10.0,
        refresh_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._store = store
        self._refresh_handler: RefreshHandler = _no_refresh_handler
        self._refresh_timeout = refresh_timeout
        self._queue = RefreshQueue()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        store: CredentialStore,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> NetworkGateway:
        return cls(
            store,
            settings.api_base_url,
            timeout=settings.request_timeout,
            refresh_timeout=settings.refresh_timeout,
            transport=transport,
        )

    def set_refresh_handler(self, handler: RefreshHandler) -> None:
        """Install the coroutine that performs one refresh and returns the new access token."""
        self._refresh_handler = handler

    @property
    def refreshing(self) -> bool:
        return self._queue.refreshing

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> NetworkGateway:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Public API
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        authenticate: bool = True,
        refresh_on_401: bool = True,
    ) -> httpx.Response:
        request = self._client.build_request(method, path, json=json, params=params)
        return await self.dispatch(
            request, authenticate=authenticate, refresh_on_401=refresh_on_401
        )

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def dispatch(
        self,
        request: httpx.Request,
        *,
        authenticate: bool = True,
        refresh_on_401: bool = True,
    ) -> httpx.Response:
        """Send *request*, refreshing the token and retrying once on 401.

        Args:
            request: A request built by this gateway's client.
            authenticate: Attach the stored bearer token (absent token is fine).
            refresh_on_401: Take part in refresh-and-retry. Auth endpoints turn
                this off so a rejected login never triggers a refresh.

        Raises:
            httpx.HTTPStatusError: for error responses other than a
                refreshable 401, unchanged.
            httpx.TransportError: for connectivity failures, unchanged.
            SessionExpired: when the retried request is rejected again.
            Whatever the refresh raised, when the refresh failed.
        """
        sent_token = await self._attach_token(request) if authenticate else None
        response = await self._send(request)

        if response.status_code == 401 and authenticate and refresh_on_401:
            logger.debug("401 on %s %s, refreshing", request.method, request.url.path)
            token = await self._fresh_token(sent_token)
            response = await self._send(self._with_token(request, token))
            if response.status_code == 401:
                logger.warning(
                    "Still unauthorized after refresh: %s %s", request.method, request.url.path
                )
                try:
                    response.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    raise SessionExpired() from exc

        self._check(response)
        return response

    # =========================================================================
    # Interceptors
    # =========================================================================

    async def _attach_token(self, request: httpx.Request) -> str | None:
        token = await self._store.get_access_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        return token

    @staticmethod
    def _with_token(request: httpx.Request, token: str) -> httpx.Request:
        retry = httpx.Request(
            request.method,
            request.url,
            headers=request.headers.copy(),
            content=request.content,
            extensions=request.extensions,
        )
        retry.headers["Authorization"] = f"Bearer {token}"
        return retry

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self._client.send(request)
        except httpx.TransportError as e:
            logger.warning(
                "API not reachable (%s %s): %s", request.method, request.url.path, e
            )
            raise

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if not response.is_error:
            return
        if response.status_code == 401:
            logger.debug("401 on %s", response.request.url.path)
        else:
            logger.error(
                "API error %d on %s %s: %s",
                response.status_code,
                response.request.method,
                response.request.url.path,
                response.text[:200],
            )
        response.raise_for_status()

    # =========================================================================
    # Refresh coalescing
    # =========================================================================

    async def _fresh_token(self, sent_token: str | None) -> str:
        current = await self._store.get_access_token()
        if not self._queue.refreshing and current and current != sent_token:
            # Refreshed by someone else since this request went out
            return current
        return await self.refresh()

    async def refresh(self) -> str:
        """Perform one refresh, or join the one already in flight.

        Returns the new access token. Every joined caller gets the same
        token or the same exception.
        """
        # No await between the flag check and begin()
        if self._queue.refreshing:
            logger.debug("Refresh in flight, queueing (%d waiting)", self._queue.pending + 1)
            return await self._queue.wait()

        self._queue.begin()
        try:
            token = await self._run_refresh()
        except asyncio.CancelledError:
            self._queue.settle(None, NetworkError("Token refresh was cancelled."))
            raise
        except Exception as e:
            logger.info("Token refresh failed: %s", e)
            self._queue.settle(None, e)
            raise
        self._queue.settle(token)
        return token

    async def _run_refresh(self) -> str:
        if self._refresh_timeout is None:
            return await self._refresh_handler()
        try:
            return await asyncio.wait_for(self._refresh_handler(), self._refresh_timeout)
        except TimeoutError:
            raise NetworkError("Token refresh timed out.") from None
