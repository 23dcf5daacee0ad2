# Credential Store — encrypted key/value persistence for tokens, user and preferences.
# Created: 2026-03-02
#
# Failure policy: reads never raise (a broken or missing value is "absent"),
# writes raise CredentialWriteError, removes are best-effort and logged.

from __future__ import annotations

import asyncio
import json
import logging
import os
import stat
from pathlib import Path
from typing import Protocol

from cryptography.fernet import Fernet

from teachlink.auth.models import AuthTokens, AuthUser, Session
from teachlink.errors import CredentialWriteError

logger = logging.getLogger(__name__)

_PREFIX = "teachlink_"


class Keys:
    """Logical storage keys."""

    ACCESS_TOKEN = f"{_PREFIX}access_token"
    REFRESH_TOKEN = f"{_PREFIX}refresh_token"
    SESSION_EXPIRES_AT = f"{_PREFIX}session_expires_at"
    USER_DATA = f"{_PREFIX}user_data"
    BIOMETRIC_ENABLED = f"{_PREFIX}biometric_enabled"
    REMEMBERED_EMAIL = f"{_PREFIX}remembered_email"
    REMEMBER_ME = f"{_PREFIX}remember_me"

    SESSION = (ACCESS_TOKEN, REFRESH_TOKEN, SESSION_EXPIRES_AT, USER_DATA)
    PREFERENCES = (BIOMETRIC_ENABLED, REMEMBER_ME, REMEMBERED_EMAIL)
    ALL = SESSION + PREFERENCES


class SecureStorageBackend(Protocol):
    """Device secure key/value storage (keychain, keystore, encrypted files)."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryBackend:
    """In-process backend. Nothing survives the process."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


class EncryptedFileBackend:
    """Fernet-encrypted file per key at ``{directory}/{key}.enc``.

    Files and the generated key file are chmod 0600 (owner-only).
    """

    def __init__(self, directory: Path, key: str | bytes | None = None):
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self._fernet = Fernet(key if key is not None else self._load_or_create_key())

    def _load_or_create_key(self) -> bytes:
        key_path = self.directory / ".key"
        if key_path.exists():
            return key_path.read_bytes().strip()
        key = Fernet.generate_key()
        key_path.write_bytes(key)
        os.chmod(key_path, stat.S_IRUSR | stat.S_IWUSR)
        logger.info("Generated new secure storage key at %s", key_path)
        return key

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.enc"

    async def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return self._fernet.decrypt(path.read_bytes()).decode()

    async def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(self._fernet.encrypt(value.encode()))
        os.chmod(tmp, stat.S_IRUSR | stat.S_IWUSR)
        tmp.replace(path)

    async def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class CredentialStore:
    """Typed access to session material and login preferences.

    Session writes go through ``save_session`` which writes every field in
    order, reads the result back, and removes all session keys if anything
    failed, so ``load_session`` sees either a full session or none.
    """

    def __init__(self, backend: SecureStorageBackend):
        self._backend = backend
        self._session_lock = asyncio.Lock()

    # -- raw contract ------------------------------------------------------

    async def get(self, key: str) -> str | None:
        try:
            return await self._backend.get(key)
        except Exception as e:
            logger.error("Secure storage read failed for %r: %s", key, e)
            return None

    async def set(self, key: str, value: str) -> None:
        try:
            await self._backend.set(key, value)
        except Exception as e:
            logger.error("Secure storage write failed for %r: %s", key, e)
            raise CredentialWriteError(key, e) from e

    async def remove(self, key: str) -> None:
        try:
            await self._backend.remove(key)
        except Exception as e:
            logger.error("Secure storage remove failed for %r: %s", key, e)

    async def clear_all(self) -> None:
        """Remove every known key, preferences included."""
        for key in Keys.ALL:
            await self.remove(key)
        logger.info("Secure storage: all auth data cleared")

    # -- session -------------------------------------------------------------

    async def save_session(self, session: Session) -> None:
        """Persist all session fields or none of them.

        Raises:
            CredentialWriteError: naming the first field that failed.
        """
        fields = (
            (Keys.ACCESS_TOKEN, session.tokens.access_token),
            (Keys.REFRESH_TOKEN, session.tokens.refresh_token),
            (Keys.SESSION_EXPIRES_AT, str(session.tokens.expires_at)),
            (Keys.USER_DATA, json.dumps(session.user.to_dict())),
        )
        async with self._session_lock:
            try:
                for key, value in fields:
                    await self.set(key, value)
                stored = await self._read_session()
                if stored != session:
                    raise CredentialWriteError("session")
            except CredentialWriteError:
                await self._remove_session_keys()
                raise

    async def load_session(self) -> Session | None:
        """Return the stored session, or None unless every field is present."""
        async with self._session_lock:
            return await self._read_session()

    async def clear_session(self) -> None:
        async with self._session_lock:
            await self._remove_session_keys()

    async def _read_session(self) -> Session | None:
        access_token = await self.get(Keys.ACCESS_TOKEN)
        refresh_token = await self.get(Keys.REFRESH_TOKEN)
        expires_at = await self.get_session_expires_at()
        user = await self.get_user()
        if not (access_token and refresh_token and expires_at is not None and user):
            return None
        return Session(
            user=user,
            tokens=AuthTokens(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
            ),
        )

    async def _remove_session_keys(self) -> None:
        for key in Keys.SESSION:
            await self.remove(key)

    async def get_access_token(self) -> str | None:
        return await self.get(Keys.ACCESS_TOKEN)

    async def get_refresh_token(self) -> str | None:
        return await self.get(Keys.REFRESH_TOKEN)

    async def get_session_expires_at(self) -> int | None:
        raw = await self.get(Keys.SESSION_EXPIRES_AT)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    async def get_user(self) -> AuthUser | None:
        raw = await self.get(Keys.USER_DATA)
        if not raw:
            return None
        try:
            return AuthUser.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            return None

    async def is_session_valid(self, margin_seconds: int = 30) -> bool:
        session = await self.load_session()
        return session is not None and session.is_valid(margin_seconds)

    # -- preferences ---------------------------------------------------------

    async def is_biometric_enabled(self) -> bool:
        return await self.get(Keys.BIOMETRIC_ENABLED) == "1"

    async def set_biometric_enabled(self, enabled: bool) -> None:
        await self.set(Keys.BIOMETRIC_ENABLED, "1" if enabled else "0")

    async def is_remember_me_enabled(self) -> bool:
        return await self.get(Keys.REMEMBER_ME) == "1"

    async def set_remember_me(self, enabled: bool) -> None:
        await self.set(Keys.REMEMBER_ME, "1" if enabled else "0")

    async def get_remembered_email(self) -> str | None:
        return await self.get(Keys.REMEMBERED_EMAIL)

    async def save_remembered_email(self, email: str) -> None:
        await self.set(Keys.REMEMBERED_EMAIL, email)

    async def forget_remembered_email(self) -> None:
        await self.remove(Keys.REMEMBERED_EMAIL)

    async def snapshot_preferences(self) -> dict[str, str | None]:
        """Raw values of the keys that outlive a session."""
        return {key: await self.get(key) for key in Keys.PREFERENCES}

    async def restore_preferences(self, snapshot: dict[str, str | None]) -> None:
        for key, value in snapshot.items():
            if value is None:
                await self.remove(key)
            else:
                await self.set(key, value)
