"""Local purchase ledger.

Created: 2026-03-04

Storage layout::

    {base_path}/
        purchases.json      # JSON array of purchase records, newest first
        subscription_tier   # current tier string

Design notes:
- Records are append-only; only ``status`` is ever rewritten
- In-memory copy loaded once, written through on every change
- Atomic writes using temp file + rename
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from teachlink.payments.catalogue import SubscriptionTier

logger = logging.getLogger(__name__)


class PurchaseType(str, Enum):
    SUBSCRIPTION = "subscription"
    ONE_TIME = "one_time"


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    RESTORED = "restored"


def generate_id() -> str:
    return f"pur_{uuid.uuid4().hex}"


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime. Naive values are taken as device local time."""
    return value.astimezone(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class PurchaseRecord:
    """One purchase event. Identity fields never change once written."""

    id: str
    product_id: str
    transaction_id: str
    amount: float
    currency: str
    type: PurchaseType
    status: PurchaseStatus
    purchased_at: datetime
    platform: str
    expires_at: datetime | None = None
    receipt_data: str | None = None

    def __post_init__(self):
        # Stores may report naive local timestamps
        object.__setattr__(self, "purchased_at", as_utc(self.purchased_at))
        if self.expires_at is not None:
            object.__setattr__(self, "expires_at", as_utc(self.expires_at))

    def is_active(self, now: datetime | None = None) -> bool:
        """True for a subscription whose expiry is still ahead of *now*."""
        if self.expires_at is None:
            return False
        return self.expires_at > (now or utc_now())

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "productId": self.product_id,
            "transactionId": self.transaction_id,
            "amount": self.amount,
            "currency": self.currency,
            "type": self.type.value,
            "status": self.status.value,
            "purchasedAt": self.purchased_at.isoformat(),
            "platform": self.platform,
        }
        if self.expires_at is not None:
            data["expiresAt"] = self.expires_at.isoformat()
        if self.receipt_data is not None:
            data["receiptData"] = self.receipt_data
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchaseRecord:
        return cls(
            id=data["id"],
            product_id=data["productId"],
            transaction_id=data["transactionId"],
            amount=float(data["amount"]),
            currency=data.get("currency", "USD"),
            type=PurchaseType(data["type"]),
            status=PurchaseStatus(data["status"]),
            purchased_at=_parse_dt(data["purchasedAt"]),
            platform=data.get("platform", "ios"),
            expires_at=_parse_dt(data.get("expiresAt")),
            receipt_data=data.get("receiptData"),
        )


class PurchaseLedger:
    """File-backed purchase history plus the cached subscription tier."""

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._purchases_file = base_path / "purchases.json"
        self._tier_file = base_path / "subscription_tier"
        self._records: list[PurchaseRecord] = self._load()

    # -- file I/O ------------------------------------------------------------

    def _load(self) -> list[PurchaseRecord]:
        if not self._purchases_file.exists():
            return []
        try:
            raw = json.loads(self._purchases_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Error loading %s: %s", self._purchases_file, e)
            return []

        records = []
        for item in raw if isinstance(raw, list) else []:
            try:
                records.append(PurchaseRecord.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping unreadable purchase record: %s", e)
        logger.debug("Loaded %d purchase records", len(records))
        return records

    def _write(self, path: Path, text: str) -> None:
        temp_path = path.with_suffix(".tmp")
        try:
            temp_path.write_text(text, encoding="utf-8")
            temp_path.replace(path)
        except OSError as e:
            logger.error("Error saving %s: %s", path, e)
            temp_path.unlink(missing_ok=True)
            raise

    def _persist(self, records: list[PurchaseRecord]) -> None:
        data = [r.to_dict() for r in records]
        self._write(self._purchases_file, json.dumps(data, indent=2, ensure_ascii=False))

    # -- records -------------------------------------------------------------

    async def history(self) -> list[PurchaseRecord]:
        """All records, newest first."""
        return list(self._records)

    async def find_by_transaction(self, transaction_id: str) -> PurchaseRecord | None:
        for record in self._records:
            if record.transaction_id == transaction_id:
                return record
        return None

    async def append(self, record: PurchaseRecord) -> None:
        for existing in self._records:
            if record.id == existing.id or record.transaction_id == existing.transaction_id:
                raise ValueError(f"Purchase {record.id} / {record.transaction_id} already recorded")
        records = [record, *self._records]
        self._persist(records)
        self._records = records

    async def set_status(self, record_ids: set[str], status: PurchaseStatus) -> int:
        """Rewrite the status of the given records. Returns how many changed."""
        changed = 0
        records = list(self._records)
        for index, record in enumerate(records):
            if record.id in record_ids and record.status != status:
                records[index] = replace(record, status=status)
                changed += 1
        if changed:
            self._persist(records)
            self._records = records
        return changed

    # -- tier ----------------------------------------------------------------

    async def get_tier(self) -> SubscriptionTier:
        if not self._tier_file.exists():
            return SubscriptionTier.FREE
        try:
            return SubscriptionTier(self._tier_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return SubscriptionTier.FREE

    async def set_tier(self, tier: SubscriptionTier) -> None:
        self._write(self._tier_file, tier.value)

    async def clear(self) -> None:
        self._records = []
        self._purchases_file.unlink(missing_ok=True)
        self._tier_file.unlink(missing_ok=True)
