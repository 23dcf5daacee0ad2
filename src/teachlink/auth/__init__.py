"""Authentication: session model, remote auth API, biometrics, Session Manager."""

from teachlink.auth.models import AuthTokens, AuthUser, Session, SessionState

__all__ = ["AuthTokens", "AuthUser", "Session", "SessionState"]
