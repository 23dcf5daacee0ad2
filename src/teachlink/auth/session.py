"""Session Manager — login, biometric re-auth, silent refresh, restore, logout.

Created: 2026-03-03

State machine::

    SIGNED_OUT -> AUTHENTICATING -> SIGNED_IN -> (REFRESHING) -> SIGNED_IN | SIGNED_OUT

The manager registers itself as the gateway's refresh handler, so the
gateway's coalescing queue is the only way a refresh reaches the network.
A Session is only ever replaced wholesale, and only after the Credential
Store has accepted every field of it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import httpx

from teachlink.auth.biometrics import (
    BiometricAuthenticator,
    BiometricOutcome,
    BiometricType,
    NoBiometrics,
    primary_biometric_type,
)
from teachlink.auth.models import Session, SessionState
from teachlink.auth.remote import AuthAPI
from teachlink.errors import (
    BiometricCancelled,
    BiometricFailed,
    BiometricNotEnabled,
    BiometricUnavailable,
    CredentialWriteError,
    NetworkError,
    NoRefreshToken,
    SessionExpired,
    TeachLinkError,
)
from teachlink.net.gateway import NetworkGateway
from teachlink.storage.secure_store import CredentialStore

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState, SessionState], None]


class SessionManager:
    """Owns the authenticated session for the whole app."""

    def __init__(
        self,
        store: CredentialStore,
        gateway: NetworkGateway,
        biometrics: BiometricAuthenticator | None = None,
        *,
        expiry_margin: int = 30,
    ):
        self._store = store
        self._gateway = gateway
        self._api = AuthAPI(gateway)
        self._biometrics = biometrics or NoBiometrics()
        self._margin = expiry_margin
        self._session: Session | None = None
        self._state = SessionState.SIGNED_OUT
        self._listeners: list[StateListener] = []
        gateway.set_refresh_handler(self._perform_refresh)

    # -- observation ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_signed_in(self) -> bool:
        return self._session is not None

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to state transitions. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set_state(self, new: SessionState) -> None:
        old, self._state = self._state, new
        if old == new:
            return
        logger.debug("Session state %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("Session state listener failed")

    def _settle_state(self) -> None:
        self._set_state(SessionState.SIGNED_IN if self._session else SessionState.SIGNED_OUT)

    # -- credential login ----------------------------------------------------

    async def login(self, email: str, password: str, remember_me: bool = False) -> Session:
        """Sign in with email and password.

        Raises:
            InvalidCredentials: server rejected the credentials (message as-is).
            NetworkError: server unreachable or misbehaving.
            CredentialWriteError: the session could not be persisted.
        """
        self._set_state(SessionState.AUTHENTICATING)
        try:
            session = await self._api.login(email, password)
            await self._establish(session)
        finally:
            self._settle_state()

        await self._save_remember_me(remember_me, email)
        logger.info("Signed in as user %s", session.user.id)
        return session

    async def login_with_social(
        self, provider: str, id_token: str, access_token: str | None = None
    ) -> Session:
        """Sign in with a Google or Apple identity token."""
        self._set_state(SessionState.AUTHENTICATING)
        try:
            session = await self._api.social(provider, id_token, access_token)
            await self._establish(session)
        finally:
            self._settle_state()
        logger.info("Signed in via %s as user %s", provider, session.user.id)
        return session

    async def _save_remember_me(self, remember_me: bool, email: str) -> None:
        try:
            if remember_me:
                await self._store.set_remember_me(True)
                await self._store.save_remembered_email(email)
            else:
                await self._store.set_remember_me(False)
                await self._store.forget_remembered_email()
        except CredentialWriteError as e:
            # Session is already established; a lost preference is not worth failing login
            logger.warning("Could not save remember-me preference: %s", e)

    async def get_remembered_email(self) -> str | None:
        if not await self._store.is_remember_me_enabled():
            return None
        return await self._store.get_remembered_email()

    # -- biometrics ----------------------------------------------------------

    async def login_with_biometrics(self) -> Session:
        """Unlock with biometrics, reusing the cached session when still valid.

        No network call is made when the cached session has more than the
        expiry margin left. Otherwise falls through to a silent refresh.
        """
        if not await self._store.is_biometric_enabled():
            raise BiometricNotEnabled()

        self._set_state(SessionState.AUTHENTICATING)
        try:
            outcome = await self._biometrics.authenticate("Authenticate to sign in")
            _raise_for_outcome(outcome, BiometricFailed())

            cached = await self._store.load_session()
            if cached is not None and cached.is_valid(self._margin):
                self._session = cached
                logger.info("Biometric unlock with cached session")
                return cached
        finally:
            self._settle_state()

        logger.info("Cached session expired, refreshing silently")
        return await self.refresh_session()

    async def enable_biometrics(self) -> None:
        """Turn on biometric login after a fresh successful challenge."""
        if not await self.is_biometric_available():
            raise BiometricUnavailable()

        outcome = await self._biometrics.authenticate("Authenticate to enable biometric login")
        _raise_for_outcome(
            outcome, BiometricFailed("Could not verify identity. Biometric login not enabled.")
        )

        await self._store.set_biometric_enabled(True)
        logger.info("Biometric login enabled")

    async def disable_biometrics(self) -> None:
        await self._store.set_biometric_enabled(False)
        logger.info("Biometric login disabled")

    async def is_biometric_available(self) -> bool:
        if not await self._biometrics.has_hardware():
            return False
        return await self._biometrics.is_enrolled()

    async def get_supported_biometric_type(self) -> BiometricType:
        return primary_biometric_type(await self._biometrics.supported_types())

    # -- refresh / restore ---------------------------------------------------

    async def refresh_session(self) -> Session:
        """Replace the session using the stored refresh token.

        Joins a refresh already in flight instead of starting a second one.

        Raises:
            NoRefreshToken: nothing to refresh with (session is cleared).
            SessionExpired: server rejected the refresh token (session is cleared).
            NetworkError: transient; the stored session is left as it was.
        """
        await self._gateway.refresh()
        if self._session is None:
            raise SessionExpired()
        return self._session

    async def _perform_refresh(self) -> str:
        """Gateway refresh handler: one refresh call, returns the new access token."""
        refresh_token = await self._store.get_refresh_token()
        if not refresh_token:
            await self._sign_out_locally()
            raise NoRefreshToken()

        if self._state == SessionState.SIGNED_IN:
            self._set_state(SessionState.REFRESHING)
        try:
            session = await self._api.refresh(refresh_token)
        except SessionExpired:
            logger.warning("Refresh token rejected, signing out")
            await self._sign_out_locally()
            raise
        except NetworkError:
            self._settle_state()
            raise

        try:
            await self._establish(session)
        finally:
            self._settle_state()
        logger.info("Session refreshed for user %s", session.user.id)
        return session.access_token

    async def restore_session(self) -> Session | None:
        """Bring back the session on app launch.

        Returns None when there is nothing to restore or the silent refresh
        did not work out; a missing session on cold start is normal.
        """
        cached = await self._store.load_session()
        if cached is not None and cached.is_valid(self._margin):
            self._session = cached
            self._settle_state()
            logger.info("Session restored from secure storage")
            return cached

        if not await self._store.get_refresh_token():
            return None

        logger.info("Session expired, attempting silent refresh")
        try:
            return await self.refresh_session()
        except TeachLinkError as e:
            logger.warning("Session restore failed: %s", e)
            return None

    # -- logout --------------------------------------------------------------

    async def logout(self) -> None:
        """Sign out. Server notification is best-effort; local cleanup always runs.

        Biometric and remember-me preferences keep their pre-logout values.
        """
        try:
            if await self._store.get_access_token():
                try:
                    await self._api.logout()
                except (httpx.HTTPError, TeachLinkError) as e:
                    logger.warning("Server logout failed, clearing locally anyway: %s", e)
        finally:
            await self._clear_session()
            logger.info("Logged out")

    async def _clear_session(self) -> None:
        preferences = await self._store.snapshot_preferences()
        self._session = None
        try:
            await self._store.clear_all()
            await self._store.restore_preferences(preferences)
        finally:
            self._set_state(SessionState.SIGNED_OUT)

    async def _sign_out_locally(self) -> None:
        """Forced sign-out after an irrecoverable refresh failure."""
        self._session = None
        try:
            await self._store.clear_session()
        finally:
            self._set_state(SessionState.SIGNED_OUT)

    # -- helpers -------------------------------------------------------------

    async def _establish(self, session: Session) -> None:
        try:
            await self._store.save_session(session)
        except CredentialWriteError:
            # save_session removed every session key; nothing half-written is left
            self._session = None
            raise
        self._session = session


def _raise_for_outcome(outcome: BiometricOutcome, failure: BiometricFailed) -> None:
    if outcome == BiometricOutcome.CANCELLED:
        raise BiometricCancelled()
    if outcome != BiometricOutcome.SUCCESS:
        raise failure
