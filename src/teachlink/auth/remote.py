# Remote Auth API — /auth/* endpoints over the Network Gateway.
# Created: 2026-03-03

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from teachlink.auth.models import Session
from teachlink.auth.schemas import (
    AuthResultPayload,
    LoginRequest,
    RefreshRequest,
    SocialLoginRequest,
)
from teachlink.errors import AuthError, InvalidCredentials, NetworkError, SessionExpired
from teachlink.net.gateway import NetworkGateway

logger = logging.getLogger(__name__)

ENDPOINTS: dict[str, str] = {
    "login": "/auth/login",
    "logout": "/auth/logout",
    "refresh": "/auth/refresh",
    "social": "/auth/social",
}

SOCIAL_PROVIDERS = ("google", "apple")

_REJECTED = (400, 401, 403)


def _server_message(response: httpx.Response) -> str | None:
    """Pull the human-readable error out of an error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class AuthAPI:
    """Maps the backend's auth endpoints onto Sessions and taxonomy errors."""

    def __init__(self, gateway: NetworkGateway):
        self._gateway = gateway

    async def login(self, email: str, password: str) -> Session:
        body = LoginRequest(email=email, password=password)
        return await self._session_call(ENDPOINTS["login"], body, rejected=InvalidCredentials)

    async def refresh(self, refresh_token: str) -> Session:
        body = RefreshRequest(refresh_token=refresh_token)
        return await self._session_call(ENDPOINTS["refresh"], body, rejected=SessionExpired)

    async def social(
        self, provider: str, id_token: str, access_token: str | None = None
    ) -> Session:
        if provider not in SOCIAL_PROVIDERS:
            raise ValueError(f"Unknown social provider: {provider}")
        body = SocialLoginRequest(provider=provider, id_token=id_token, access_token=access_token)
        return await self._session_call(ENDPOINTS["social"], body, rejected=InvalidCredentials)

    async def logout(self) -> None:
        """Tell the server the session is over. The response body is ignored."""
        await self._gateway.post(ENDPOINTS["logout"], refresh_on_401=False)

    async def _session_call(
        self, path: str, body: BaseModel, *, rejected: type[AuthError]
    ) -> Session:
        payload: dict[str, Any] = body.model_dump(by_alias=True, exclude_none=True)
        try:
            response = await self._gateway.post(
                path, json=payload, authenticate=False, refresh_on_401=False
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in _REJECTED:
                raise rejected(_server_message(exc.response)) from exc
            raise NetworkError(f"Server error ({status}). Please try again later.") from exc
        except httpx.TransportError as exc:
            raise NetworkError() from exc

        try:
            return AuthResultPayload.model_validate(response.json()).to_session()
        except (ValueError, ValidationError) as exc:
            logger.error("Malformed response from %s: %s", path, exc)
            raise NetworkError("Unexpected response from server.") from exc
