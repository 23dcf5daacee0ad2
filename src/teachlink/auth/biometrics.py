# Biometric capability boundary (Face ID / Touch ID / fingerprint).
# Created: 2026-03-03
#
# Matching happens in the device OS. The core only sees the outcome.

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Protocol


class BiometricOutcome(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"  # User dismissed the prompt or chose "Use password"
    FAILED = "failed"


class BiometricType(str, Enum):
    FACE = "face"
    FINGERPRINT = "fingerprint"
    IRIS = "iris"
    NONE = "none"


# Highest first
_TYPE_PRIORITY = (BiometricType.FACE, BiometricType.FINGERPRINT, BiometricType.IRIS)


class BiometricAuthenticator(Protocol):
    """Device biometric challenge."""

    async def has_hardware(self) -> bool: ...

    async def is_enrolled(self) -> bool: ...

    async def supported_types(self) -> set[BiometricType]: ...

    async def authenticate(self, prompt: str) -> BiometricOutcome: ...


class NoBiometrics:
    """Stand-in for devices (and CLIs) without a biometric sensor."""

    async def has_hardware(self) -> bool:
        return False

    async def is_enrolled(self) -> bool:
        return False

    async def supported_types(self) -> set[BiometricType]:
        return set()

    async def authenticate(self, prompt: str) -> BiometricOutcome:
        return BiometricOutcome.FAILED


def primary_biometric_type(types: Iterable[BiometricType]) -> BiometricType:
    """Pick the type to advertise in the UI."""
    available = set(types)
    for candidate in _TYPE_PRIORITY:
        if candidate in available:
            return candidate
    return BiometricType.NONE
