# Auth API wire schemas.
# Created: 2026-03-02

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from teachlink.auth.models import AuthTokens, AuthUser, Session


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserPayload(_Wire):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str = ""
    email: str = ""
    avatar_url: str | None = Field(default=None, alias="avatarUrl")
    role: str | None = None


class TokensPayload(_Wire):
    access_token: str = Field(..., alias="accessToken", min_length=1)
    refresh_token: str = Field(..., alias="refreshToken", min_length=1)
    expires_at: int = Field(..., alias="expiresAt", description="Epoch milliseconds")


class AuthResultPayload(_Wire):
    """Body of /auth/login, /auth/refresh and /auth/social responses."""

    user: UserPayload
    tokens: TokensPayload

    def to_session(self) -> Session:
        return Session(
            user=AuthUser(
                id=self.user.id,
                name=self.user.name,
                email=self.user.email,
                avatar_url=self.user.avatar_url,
                role=self.user.role,
            ),
            tokens=AuthTokens(
                access_token=self.tokens.access_token,
                refresh_token=self.tokens.refresh_token,
                expires_at=self.tokens.expires_at,
            ),
        )


class LoginRequest(_Wire):
    email: str
    password: str


class RefreshRequest(_Wire):
    refresh_token: str = Field(..., alias="refreshToken")


class SocialLoginRequest(_Wire):
    provider: str
    id_token: str = Field(..., alias="idToken")
    access_token: str | None = Field(default=None, alias="accessToken")
