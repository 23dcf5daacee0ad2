# Tests for net/gateway.py — bearer attach, 401 refresh coalescing, error passthrough.
# Created: 2026-03-05

import asyncio

import httpx
import pytest
from conftest import make_session

from teachlink.errors import NetworkError, NoRefreshToken, SessionExpired
from teachlink.net.gateway import NetworkGateway, RefreshQueue


class CountingRefresher:
    """Refresh handler that rotates the stub's token after a short delay."""

    def __init__(self, store, api, delay=0.01, error=None):
        self.store = store
        self.api = api
        self.delay = delay
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.api.current_access = "AT2"
        await self.store.save_session(make_session("AT2", "RT2"))
        return "AT2"


@pytest.fixture
async def signed_in(store, api):
    await store.save_session(make_session("AT1", "RT1"))
    api.current_access = "AT1"


# ---------------------------------------------------------------------------
# Request interceptor
# ---------------------------------------------------------------------------


async def test_attaches_bearer_token(gateway, api, signed_in):
    resp = await gateway.get("/courses")
    assert resp.status_code == 200
    assert api.seen_auth == ["Bearer AT1"]


async def test_no_token_means_unauthenticated_request(gateway, api):
    resp = await gateway.get("/public")
    assert resp.json() == {"ok": True}
    assert api.seen_auth == [None]


async def test_authenticate_false_skips_header(gateway, api, signed_in):
    await gateway.get("/public", authenticate=False)
    assert api.seen_auth == [None]


# ---------------------------------------------------------------------------
# Refresh coalescing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("n", [1, 2, 5, 20])
async def test_concurrent_401s_trigger_one_refresh(gateway, store, api, signed_in, n):
    refresher = CountingRefresher(store, api)
    gateway.set_refresh_handler(refresher)
    api.current_access = "AT_SERVER_ROTATED"  # every AT1 request now 401s

    responses = await asyncio.gather(*(gateway.get("/courses") for _ in range(n)))

    assert refresher.calls == 1
    assert [r.json()["auth"] for r in responses] == ["Bearer AT2"] * n
    assert not gateway.refreshing


async def test_two_requests_reissued_with_new_token(gateway, store, api, signed_in):
    refresher = CountingRefresher(store, api)
    gateway.set_refresh_handler(refresher)
    api.current_access = "ROTATED"

    first, second = await asyncio.gather(gateway.get("/courses"), gateway.get("/courses"))

    assert refresher.calls == 1
    assert first.status_code == second.status_code == 200
    assert api.seen_auth.count("Bearer AT2") == 2


async def test_refresh_failure_fans_out_same_error(gateway, store, api, signed_in):
    error = SessionExpired("Refresh token revoked")
    refresher = CountingRefresher(store, api, error=error)
    gateway.set_refresh_handler(refresher)
    api.current_access = "ROTATED"

    results = await asyncio.gather(
        *(gateway.get("/courses") for _ in range(4)), return_exceptions=True
    )

    assert refresher.calls == 1
    assert all(r is error for r in results)
    assert not gateway.refreshing


async def test_queue_is_reusable_after_failure(gateway, store, api, signed_in):
    refresher = CountingRefresher(store, api, error=NetworkError())
    gateway.set_refresh_handler(refresher)
    api.current_access = "ROTATED"

    with pytest.raises(NetworkError):
        await gateway.get("/courses")

    refresher.error = None
    resp = await gateway.get("/courses")
    assert resp.status_code == 200
    assert refresher.calls == 2


async def test_retried_at_most_once(gateway, store, api, signed_in):
    async def useless_refresh():
        return "STILL_WRONG"

    gateway.set_refresh_handler(useless_refresh)
    api.current_access = "ROTATED"

    with pytest.raises(SessionExpired) as exc_info:
        await gateway.get("/courses")

    assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)
    assert len(api.seen_auth) == 2


async def test_skips_refresh_when_token_already_rotated(store, api, signed_in):
    refresher = CountingRefresher(store, api)

    async def rotate_then_reject(request):
        if request.url.path == "/courses" and not api.seen_auth:
            # Another caller refreshed while this request was on the wire
            await store.save_session(make_session("AT2", "RT2"))
            api.current_access = "AT2"
        return await api.handle(request)

    gw = NetworkGateway(store, "http://test", transport=httpx.MockTransport(rotate_then_reject))
    gw.set_refresh_handler(refresher)
    try:
        resp = await gw.get("/courses")
    finally:
        await gw.aclose()

    assert resp.status_code == 200
    assert refresher.calls == 0
    assert api.seen_auth == ["Bearer AT1", "Bearer AT2"]


async def test_refresh_on_401_false_propagates_401(gateway, store, api, signed_in):
    refresher = CountingRefresher(store, api)
    gateway.set_refresh_handler(refresher)
    api.current_access = "ROTATED"

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await gateway.get("/courses", refresh_on_401=False)

    assert exc_info.value.response.status_code == 401
    assert refresher.calls == 0


async def test_default_handler_raises_no_refresh_token(gateway, api, signed_in):
    api.current_access = "ROTATED"
    with pytest.raises(NoRefreshToken):
        await gateway.get("/courses")


async def test_refresh_timeout_rejects_queue(store, api, signed_in):
    gw = NetworkGateway(
        store, "http://test", refresh_timeout=0.05, transport=api.transport()
    )
    gw.set_refresh_handler(CountingRefresher(store, api, delay=5))
    api.current_access = "ROTATED"
    try:
        results = await asyncio.gather(
            gw.get("/courses"), gw.get("/courses"), return_exceptions=True
        )
    finally:
        await gw.aclose()

    assert all(isinstance(r, NetworkError) for r in results)
    assert results[0] is results[1]
    assert not gw.refreshing


# ---------------------------------------------------------------------------
# Error passthrough
# ---------------------------------------------------------------------------


async def test_server_error_passes_through(gateway, store, api, signed_in):
    refresher = CountingRefresher(store, api)
    gateway.set_refresh_handler(refresher)

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await gateway.get("/boom")

    assert exc_info.value.response.status_code == 500
    assert refresher.calls == 0


async def test_transport_error_passes_through(gateway, api):
    api.offline = True
    with pytest.raises(httpx.ConnectError):
        await gateway.get("/courses")


# ---------------------------------------------------------------------------
# RefreshQueue
# ---------------------------------------------------------------------------


class TestRefreshQueue:
    async def test_settle_resolves_in_order(self):
        queue = RefreshQueue()
        queue.begin()
        waiters = [queue.wait() for _ in range(3)]
        queue.settle("TOKEN")
        assert [w.result() for w in waiters] == ["TOKEN"] * 3
        assert not queue.refreshing
        assert queue.pending == 0

    async def test_settle_skips_cancelled_waiters(self):
        queue = RefreshQueue()
        queue.begin()
        gone, waiting = queue.wait(), queue.wait()
        gone.cancel()
        queue.settle(None, NetworkError())
        assert isinstance(waiting.exception(), NetworkError)

    def test_begin_twice_is_a_bug(self):
        queue = RefreshQueue()
        queue.begin()
        with pytest.raises(RuntimeError):
            queue.begin()
