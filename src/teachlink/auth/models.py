# Session data model — user snapshot + token pair.
# Created: 2026-03-02

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class SessionState(str, Enum):
    """Session Manager lifecycle."""

    SIGNED_OUT = "signed_out"
    AUTHENTICATING = "authenticating"
    SIGNED_IN = "signed_in"
    REFRESHING = "refreshing"  # Silent refresh while signed in


@dataclass(frozen=True)
class AuthUser:
    """Identity snapshot, replaced on every login/refresh."""

    id: str
    name: str
    email: str
    avatar_url: str | None = None
    role: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name, "email": self.email}
        if self.avatar_url is not None:
            data["avatarUrl"] = self.avatar_url
        if self.role is not None:
            data["role"] = self.role
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthUser:
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            email=data.get("email", ""),
            avatar_url=data.get("avatarUrl"),
            role=data.get("role"),
        )


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str
    expires_at: int  # epoch ms; local validity checks only


@dataclass(frozen=True)
class Session:
    """A fully-present session. There is no partial Session object."""

    user: AuthUser
    tokens: AuthTokens

    @property
    def access_token(self) -> str:
        return self.tokens.access_token

    def is_valid(self, margin_seconds: int = 30, now: int | None = None) -> bool:
        """True if the access token is still good for at least *margin_seconds*."""
        now = now_ms() if now is None else now
        return self.tokens.expires_at > now + margin_seconds * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user.to_dict(),
            "tokens": {
                "accessToken": self.tokens.access_token,
                "refreshToken": self.tokens.refresh_token,
                "expiresAt": self.tokens.expires_at,
            },
        }

    def __repr__(self) -> str:
        # Keep token material out of logs and tracebacks
        return f"Session(user={asdict(self.user)!r}, expires_at={self.tokens.expires_at})"
