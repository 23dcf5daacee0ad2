"""Error taxonomy for the session and entitlement core.

Every failure a caller can act on has its own class. Cancellations carry the
``Cancelled`` marker and never inherit from the matching hard-failure class,
so ``except BiometricFailed`` does not catch a user dismissing the prompt.

UI code should go through ``user_message()`` rather than ``str(exc)``.
"""

from __future__ import annotations

__all__ = [
    "TeachLinkError",
    "Cancelled",
    "AuthError",
    "InvalidCredentials",
    "NetworkError",
    "NoRefreshToken",
    "SessionExpired",
    "BiometricNotEnabled",
    "BiometricUnavailable",
    "BiometricFailed",
    "BiometricCancelled",
    "PaymentsError",
    "UnknownProduct",
    "PurchaseFailed",
    "PurchaseCancelled",
    "RestoreFailed",
    "StorageError",
    "CredentialWriteError",
    "user_message",
    "offers_password_fallback",
]


class TeachLinkError(Exception):
    """Base class for all client-core errors."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Cancelled:
    """Marker for outcomes the user chose (dismissed a sheet or prompt)."""


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthError(TeachLinkError):
    default_message = "Authentication failed."


class InvalidCredentials(AuthError):
    """Server rejected the credentials. The message is the server's, as-is."""

    default_message = "Invalid email or password."


class NetworkError(AuthError):
    default_message = "Network error. Please check your connection and retry."


class NoRefreshToken(AuthError):
    default_message = "No refresh token available. Please log in again."


class SessionExpired(AuthError):
    default_message = "Your session has expired. Please log in again."


class BiometricNotEnabled(AuthError):
    default_message = "Biometric login is not enabled. Please enable it in settings."


class BiometricUnavailable(AuthError):
    default_message = "Biometric authentication is not available on this device."


class BiometricFailed(AuthError):
    default_message = "Biometric authentication failed."


class BiometricCancelled(Cancelled, AuthError):
    default_message = "Authentication cancelled."


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentsError(TeachLinkError):
    default_message = "Payment error."


class UnknownProduct(PaymentsError):
    def __init__(self, product_id: str):
        super().__init__(f"Unknown product: {product_id}")
        self.product_id = product_id


class PurchaseFailed(PaymentsError):
    default_message = "Purchase failed. Please try again."


class PurchaseCancelled(Cancelled, PaymentsError):
    default_message = "Purchase cancelled."


class RestoreFailed(PaymentsError):
    default_message = "Could not restore purchases. Please try again."


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(TeachLinkError):
    default_message = "Could not access secure storage."


class CredentialWriteError(StorageError):
    """A secure-storage write failed; ``key`` names the field."""

    def __init__(self, key: str, cause: BaseException | None = None):
        super().__init__(f"Failed to write secure storage key {key!r}")
        self.key = key
        self.cause = cause


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------


def user_message(exc: BaseException) -> str | None:
    """Short, human-readable text for *exc*, or None when nothing should be shown."""
    if isinstance(exc, Cancelled):
        return None
    if isinstance(exc, UnknownProduct):
        # Catalogue mismatch is a build problem, not something the user can fix
        return PurchaseFailed.default_message
    if isinstance(exc, StorageError):
        return StorageError.default_message
    if isinstance(exc, TeachLinkError):
        return exc.message
    return TeachLinkError.default_message


def offers_password_fallback(exc: BaseException) -> bool:
    return isinstance(exc, BiometricFailed)
