# Purchase sheet boundary — App Store / Play Store native purchase UI.
# Created: 2026-03-04

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class SheetOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"  # User closed the sheet
    FAILED = "failed"


@dataclass(frozen=True)
class StoreTransaction:
    """A transaction as reported by the platform store."""

    product_id: str
    transaction_id: str
    receipt: str
    platform: str
    purchased_at: datetime | None = None


@dataclass(frozen=True)
class SheetResult:
    outcome: SheetOutcome
    transaction: StoreTransaction | None = None
    error: str | None = None


class PurchaseSheet(Protocol):
    """Native purchase flow. Every call hands control to store UI."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def request_subscription(self, sku: str) -> SheetResult: ...

    async def request_purchase(self, sku: str) -> SheetResult: ...

    async def get_available_purchases(self) -> list[StoreTransaction]: ...
