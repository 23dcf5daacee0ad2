# Shared fixtures: in-memory credential store, stub backend, device fakes.
# Created: 2026-03-05

import asyncio
import itertools
import json

import httpx
import pytest

from teachlink.auth.biometrics import BiometricOutcome, BiometricType
from teachlink.auth.models import AuthTokens, AuthUser, Session, now_ms
from teachlink.net.gateway import NetworkGateway
from teachlink.payments.store import SheetOutcome, SheetResult, StoreTransaction
from teachlink.storage.secure_store import CredentialStore, MemoryBackend

HOUR_MS = 3_600_000

USER = {"id": "1", "name": "Ada Lovelace", "email": "a@b.com"}


def make_session(access="AT1", refresh="RT1", expires_in_ms=HOUR_MS) -> Session:
    return Session(
        user=AuthUser.from_dict(USER),
        tokens=AuthTokens(access, refresh, now_ms() + expires_in_ms),
    )


def auth_body(access: str, refresh: str, expires_in_ms: int = HOUR_MS, user=USER) -> dict:
    return {
        "user": user,
        "tokens": {
            "accessToken": access,
            "refreshToken": refresh,
            "expiresAt": now_ms() + expires_in_ms,
        },
    }


class FlakyBackend(MemoryBackend):
    """Memory backend that fails reads or writes for chosen keys."""

    def __init__(self, fail_set=(), fail_get=()):
        super().__init__()
        self.fail_set = set(fail_set)
        self.fail_get = set(fail_get)

    async def get(self, key):
        if key in self.fail_get:
            raise OSError("keychain locked")
        return await super().get(key)

    async def set(self, key, value):
        if key in self.fail_set:
            raise OSError("disk full")
        await super().set(key, value)


class StubAPI:
    """In-process stand-in for the TeachLink backend, served via httpx.MockTransport."""

    def __init__(self):
        self.password = "x"
        self.current_access = "AT1"
        self.valid_refresh = {"RT1"}
        self.refresh_delay = 0.01
        self.refresh_status = 200
        self.logout_status = 200
        self.offline = False
        self.validation = {"valid": True}
        self.validation_status = 200
        self.user = dict(USER)

        self.refresh_calls = 0
        self.login_calls = 0
        self.logout_calls = 0
        self.seen_auth: list[str | None] = []
        self._rotation = itertools.count(2)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("offline", request=request)

        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/auth/login":
            self.login_calls += 1
            if body.get("password") != self.password:
                return httpx.Response(401, json={"message": "Wrong password, try again"})
            return httpx.Response(200, json=auth_body(self.current_access, "RT1", user=self.user))

        if path == "/auth/social":
            return httpx.Response(200, json=auth_body(self.current_access, "RT1", user=self.user))

        if path == "/auth/refresh":
            self.refresh_calls += 1
            await asyncio.sleep(self.refresh_delay)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"message": "nope"})
            if body.get("refreshToken") not in self.valid_refresh:
                return httpx.Response(401, json={"message": "Refresh token revoked"})
            n = next(self._rotation)
            self.current_access = f"AT{n}"
            self.valid_refresh = {f"RT{n}"}
            return httpx.Response(200, json=auth_body(f"AT{n}", f"RT{n}", user=self.user))

        if path == "/auth/logout":
            self.logout_calls += 1
            return httpx.Response(self.logout_status, json={})

        if path == "/courses":
            header = request.headers.get("Authorization")
            self.seen_auth.append(header)
            await asyncio.sleep(0)
            if header != f"Bearer {self.current_access}":
                return httpx.Response(401, json={"message": "Unauthorized"})
            return httpx.Response(200, json={"courses": [], "auth": header})

        if path == "/public":
            self.seen_auth.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"ok": True})

        if path == "/boom":
            return httpx.Response(500, json={"message": "Internal error"})

        if path == "/payments/validate":
            return httpx.Response(self.validation_status, json=self.validation)

        return httpx.Response(404, json={"message": "Not found"})


class FakeBiometrics:
    def __init__(self, outcome=BiometricOutcome.SUCCESS, hardware=True, enrolled=True):
        self.outcome = outcome
        self.hardware = hardware
        self.enrolled = enrolled
        self.types = {BiometricType.FINGERPRINT}
        self.prompts: list[str] = []

    async def has_hardware(self):
        return self.hardware

    async def is_enrolled(self):
        return self.enrolled

    async def supported_types(self):
        return self.types

    async def authenticate(self, prompt):
        self.prompts.append(prompt)
        return self.outcome


class FakeSheet:
    def __init__(self):
        self.outcome = SheetOutcome.COMPLETED
        self.error: str | None = None
        self.purchased_at = None
        self.available: list[StoreTransaction] = []
        self.requests: list[str] = []
        self.connected = False
        self._txn = itertools.count(1)

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.connected = False

    async def request_subscription(self, sku):
        return self._result(sku)

    async def request_purchase(self, sku):
        return self._result(sku)

    async def get_available_purchases(self):
        return list(self.available)

    def _result(self, sku):
        self.requests.append(sku)
        if self.outcome != SheetOutcome.COMPLETED:
            return SheetResult(self.outcome, error=self.error)
        n = next(self._txn)
        return SheetResult(
            SheetOutcome.COMPLETED,
            StoreTransaction(
                product_id=sku,
                transaction_id=f"txn_{n}",
                receipt=f"receipt-{n}",
                platform="ios",
                purchased_at=self.purchased_at,
            ),
        )


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return CredentialStore(backend)


@pytest.fixture
def api():
    return StubAPI()


@pytest.fixture
async def gateway(store, api):
    gw = NetworkGateway(store, "http://test", transport=api.transport())
    yield gw
    await gw.aclose()
