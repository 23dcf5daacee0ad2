# Tests for errors.py
# Created: 2026-03-06

import pytest

from teachlink.errors import (
    AuthError,
    BiometricCancelled,
    BiometricFailed,
    Cancelled,
    CredentialWriteError,
    InvalidCredentials,
    NetworkError,
    PaymentsError,
    PurchaseCancelled,
    PurchaseFailed,
    SessionExpired,
    TeachLinkError,
    UnknownProduct,
    offers_password_fallback,
    user_message,
)


class TestHierarchy:
    def test_cancellations_are_not_failures(self):
        assert not issubclass(BiometricCancelled, BiometricFailed)
        assert not issubclass(PurchaseCancelled, PurchaseFailed)
        assert issubclass(BiometricCancelled, AuthError)
        assert issubclass(PurchaseCancelled, PaymentsError)

    @pytest.mark.parametrize("exc", [BiometricCancelled(), PurchaseCancelled()])
    def test_cancellations_share_marker(self, exc):
        assert isinstance(exc, Cancelled)
        assert isinstance(exc, TeachLinkError)

    def test_default_message(self):
        assert SessionExpired().message == SessionExpired.default_message
        assert str(NetworkError()) == NetworkError.default_message

    def test_custom_message(self):
        assert InvalidCredentials("Account locked").message == "Account locked"


class TestUserMessage:
    def test_cancelled_shows_nothing(self):
        assert user_message(BiometricCancelled()) is None
        assert user_message(PurchaseCancelled()) is None

    def test_server_message_passed_through(self):
        assert user_message(InvalidCredentials("Wrong password, try again")) == (
            "Wrong password, try again"
        )

    def test_unknown_product_looks_like_purchase_failure(self):
        assert user_message(UnknownProduct("x")) == PurchaseFailed.default_message

    def test_storage_details_hidden(self):
        exc = CredentialWriteError("teachlink_access_token", OSError("disk full"))
        assert "teachlink_access_token" in str(exc)
        assert "teachlink_access_token" not in user_message(exc)

    def test_foreign_exception(self):
        assert user_message(KeyError("boom")) == TeachLinkError.default_message


def test_password_fallback_only_on_biometric_failure():
    assert offers_password_fallback(BiometricFailed())
    assert not offers_password_fallback(BiometricCancelled())
    assert not offers_password_fallback(SessionExpired())
