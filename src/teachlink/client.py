# TeachLinkClient — wires store, gateway, session and entitlements together.
# Created: 2026-03-05

from __future__ import annotations

import logging
from typing import Any

import httpx

from teachlink.auth.biometrics import BiometricAuthenticator
from teachlink.auth.session import SessionManager
from teachlink.config import Settings, get_config_dir, get_settings
from teachlink.net.gateway import NetworkGateway
from teachlink.payments.entitlements import EntitlementManager
from teachlink.payments.ledger import PurchaseLedger
from teachlink.payments.store import PurchaseSheet
from teachlink.storage.secure_store import (
    CredentialStore,
    EncryptedFileBackend,
    SecureStorageBackend,
)

logger = logging.getLogger(__name__)


class TeachLinkClient:
    """One object per app process.

    Usage::

        async with TeachLinkClient.from_settings() as client:
            session = await client.session.restore_session()
    """

    def __init__(
        self,
        store: CredentialStore,
        gateway: NetworkGateway,
        session: SessionManager,
        entitlements: EntitlementManager,
    ):
        self.store = store
        self.gateway = gateway
        self.session = session
        self.entitlements = entitlements

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        backend: SecureStorageBackend | None = None,
        biometrics: BiometricAuthenticator | None = None,
        purchase_sheet: PurchaseSheet | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> TeachLinkClient:
        settings = settings or get_settings()
        base = get_config_dir(settings)
        if backend is None:
            backend = EncryptedFileBackend(base / "secure", settings.storage_key)

        store = CredentialStore(backend)
        gateway = NetworkGateway.from_settings(store, settings, transport=transport)
        session = SessionManager(
            store, gateway, biometrics, expiry_margin=settings.session_expiry_margin
        )
        entitlements = EntitlementManager(
            PurchaseLedger(base / "payments"),
            purchase_sheet,
            gateway,
            platform=settings.platform,
        )
        logger.debug("Client ready for %s", settings.api_base_url)
        return cls(store, gateway, session, entitlements)

    async def aclose(self) -> None:
        await self.entitlements.close()
        await self.gateway.aclose()

    async def __aenter__(self) -> TeachLinkClient:
        await self.entitlements.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
