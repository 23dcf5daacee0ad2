"""Entitlement Manager — purchases, restore and subscription tier.

Created: 2026-03-04

The tier is never trusted on its own: it is re-derived from the local
ledger whenever it is read or the ledger changes, so it always matches the
newest active subscription record.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from teachlink.errors import (
    PurchaseCancelled,
    PurchaseFailed,
    RestoreFailed,
    TeachLinkError,
    UnknownProduct,
)
from teachlink.net.gateway import NetworkGateway
from teachlink.payments.catalogue import (
    SubscriptionPlan,
    SubscriptionTier,
    find_one_time_product,
    find_plan,
    get_products,
)
from teachlink.payments.ledger import (
    PurchaseLedger,
    PurchaseRecord,
    PurchaseStatus,
    PurchaseType,
    as_utc,
    generate_id,
    utc_now,
)
from teachlink.payments.store import PurchaseSheet, SheetOutcome, SheetResult, StoreTransaction

logger = logging.getLogger(__name__)

VALIDATE_ENDPOINT = "/payments/validate"

_ENTITLING = (PurchaseStatus.COMPLETED, PurchaseStatus.RESTORED)


class ReceiptValidation(BaseModel):
    """Body of POST /payments/validate."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    valid: bool
    expiry: datetime | None = None
    product_id: str | None = Field(default=None, alias="productId")
    tier: SubscriptionTier | None = None
    error: str | None = None

    @field_validator("expiry")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


@dataclass(frozen=True)
class RestoreResult:
    count: int
    tier: SubscriptionTier
    message: str


def derive_tier(records: Iterable[PurchaseRecord], now: datetime | None = None) -> SubscriptionTier:
    """Tier implied by the newest unexpired completed/restored subscription."""
    now = now or utc_now()
    best: PurchaseRecord | None = None
    best_plan: SubscriptionPlan | None = None
    for record in records:
        if record.type != PurchaseType.SUBSCRIPTION or record.status not in _ENTITLING:
            continue
        if not record.is_active(now):
            continue
        plan = find_plan(record.product_id)
        if plan is None:
            continue
        if best is None or record.purchased_at > best.purchased_at:
            best, best_plan = record, plan
    return best_plan.tier if best_plan else SubscriptionTier.FREE


def _purchase_time(transaction: StoreTransaction) -> datetime:
    if transaction.purchased_at is None:
        return utc_now()
    return as_utc(transaction.purchased_at)


class EntitlementManager:
    """Tracks what the user has bought and what that entitles them to."""

    def __init__(
        self,
        ledger: PurchaseLedger,
        sheet: PurchaseSheet | None = None,
        gateway: NetworkGateway | None = None,
        *,
        platform: str = "ios",
    ):
        self._ledger = ledger
        self._sheet = sheet
        self._gateway = gateway
        self._platform = platform
        self._connected = False

    async def initialize(self) -> None:
        """Open the store connection. Call once at app start."""
        if self._connected or self._sheet is None:
            return
        await self._sheet.connect()
        self._connected = True

    async def close(self) -> None:
        if self._connected and self._sheet is not None:
            await self._sheet.disconnect()
        self._connected = False

    # -- reads ---------------------------------------------------------------

    async def get_subscription_tier(self) -> SubscriptionTier:
        """Current tier from the local ledger. Never touches the network."""
        return await self._sync_tier()

    async def get_purchase_history(self) -> list[PurchaseRecord]:
        return await self._ledger.history()

    def get_products(self, product_ids: Iterable[str]) -> list[SubscriptionPlan]:
        return get_products(product_ids)

    @staticmethod
    def is_subscription_active(record: PurchaseRecord) -> bool:
        return record.is_active()

    # -- purchases -----------------------------------------------------------

    async def purchase_subscription(self, product_id: str) -> PurchaseRecord:
        """Buy a subscription plan through the native sheet.

        Raises:
            UnknownProduct: *product_id* is not in the catalogue.
            PurchaseCancelled: the user closed the sheet (show nothing).
            PurchaseFailed: the store or receipt validation failed.
        """
        plan = find_plan(product_id)
        if plan is None:
            raise UnknownProduct(product_id)

        sheet = self._require_sheet()
        transaction = await self._run_sheet(sheet.request_subscription, plan.product_id)
        await self._validate_purchase(transaction)

        purchased_at = _purchase_time(transaction)
        record = PurchaseRecord(
            id=generate_id(),
            product_id=plan.product_id,
            transaction_id=transaction.transaction_id,
            amount=plan.price,
            currency=plan.currency,
            type=PurchaseType.SUBSCRIPTION,
            status=PurchaseStatus.COMPLETED,
            purchased_at=purchased_at,
            platform=transaction.platform or self._platform,
            expires_at=purchased_at + plan.period.duration,
            receipt_data=transaction.receipt,
        )
        await self._record(record)
        tier = await self._sync_tier()
        logger.info("Subscribed to %s, tier is now %s", plan.id, tier.value)
        return record

    async def purchase_product(self, product_id: str) -> PurchaseRecord:
        """Buy a one-time product. Does not change the tier."""
        product = find_one_time_product(product_id)
        if product is None:
            raise UnknownProduct(product_id)

        sheet = self._require_sheet()
        transaction = await self._run_sheet(sheet.request_purchase, product.product_id)
        await self._validate_purchase(transaction)

        record = PurchaseRecord(
            id=generate_id(),
            product_id=product.product_id,
            transaction_id=transaction.transaction_id,
            amount=product.price,
            currency=product.currency,
            type=PurchaseType.ONE_TIME,
            status=PurchaseStatus.COMPLETED,
            purchased_at=_purchase_time(transaction),
            platform=transaction.platform or self._platform,
            receipt_data=transaction.receipt,
        )
        await self._record(record)
        logger.info("Purchased %s", product.id)
        return record

    def _require_sheet(self) -> PurchaseSheet:
        if self._sheet is None:
            raise PurchaseFailed("In-app purchases are not available on this device.")
        return self._sheet

    async def _run_sheet(
        self, request: Callable[[str], Awaitable[SheetResult]], sku: str
    ) -> StoreTransaction:
        try:
            result = await request(sku)
        except Exception as e:
            logger.error("Purchase sheet error for %s: %s", sku, e)
            raise PurchaseFailed() from e

        if result.outcome == SheetOutcome.CANCELLED:
            logger.info("Purchase of %s cancelled by user", sku)
            raise PurchaseCancelled()
        if result.outcome != SheetOutcome.COMPLETED or result.transaction is None:
            logger.warning("Purchase of %s failed: %s", sku, result.error)
            raise PurchaseFailed(result.error)
        return result.transaction

    async def _validate_purchase(self, transaction: StoreTransaction) -> None:
        if self._gateway is None:
            return
        try:
            validation = await self.validate_receipt(
                transaction.receipt, transaction.platform, transaction.product_id
            )
        except (httpx.HTTPError, TeachLinkError, ValidationError, ValueError) as e:
            logger.error("Receipt validation for %s failed: %s", transaction.product_id, e)
            raise PurchaseFailed("Could not verify your purchase. Please try again.") from e
        if not validation.valid:
            raise PurchaseFailed(validation.error or "Purchase could not be verified.")

    async def _record(self, record: PurchaseRecord) -> None:
        try:
            await self._ledger.append(record)
        except ValueError as e:
            raise PurchaseFailed("This purchase has already been recorded.") from e
        except OSError as e:
            raise PurchaseFailed("Could not save your purchase on this device.") from e

    # -- receipts ------------------------------------------------------------

    async def validate_receipt(
        self, receipt: str, platform: str, product_id: str | None = None
    ) -> ReceiptValidation:
        """Ask the backend to verify a store receipt with Apple / Google."""
        if self._gateway is None:
            raise RuntimeError("Receipt validation needs a network gateway")
        payload = {"receipt": receipt, "platform": platform}
        if product_id is not None:
            payload["productId"] = product_id
        response = await self._gateway.post(VALIDATE_ENDPOINT, json=payload)
        return ReceiptValidation.model_validate(response.json())

    # -- restore -------------------------------------------------------------

    async def restore_purchases(self) -> RestoreResult:
        """Re-derive entitlements and mark completed purchases as restored.

        Running it twice in a row gives the same count and tier. Finding
        nothing is a normal outcome, not an error.

        Raises:
            RestoreFailed: the store or the local ledger could not be read/written.
        """
        if self._sheet is not None:
            await self._import_store_purchases()

        try:
            history = await self._ledger.history()
            restorable = [r for r in history if r.status in _ENTITLING]
            await self._ledger.set_status(
                {r.id for r in restorable if r.status == PurchaseStatus.COMPLETED},
                PurchaseStatus.RESTORED,
            )
            tier = await self._sync_tier()
        except OSError as e:
            logger.error("Restore failed writing ledger: %s", e)
            raise RestoreFailed() from e

        count = len(restorable)
        if count == 0:
            message = "Nothing to Restore"
        else:
            message = f"{count} purchase{'s' if count > 1 else ''} restored successfully."
        logger.info("Restore complete: %d record(s), tier %s", count, tier.value)
        return RestoreResult(count=count, tier=tier, message=message)

    async def _import_store_purchases(self) -> None:
        """Add store transactions this device has never recorded."""
        try:
            available = await self._sheet.get_available_purchases()
        except Exception as e:
            logger.error("Could not fetch available purchases: %s", e)
            raise RestoreFailed() from e

        for transaction in available:
            if await self._ledger.find_by_transaction(transaction.transaction_id):
                continue
            plan = find_plan(transaction.product_id)
            product = find_one_time_product(transaction.product_id)
            if plan is None and product is None:
                logger.warning(
                    "Skipping store purchase of unknown product %s", transaction.product_id
                )
                continue

            validation = await self._validate_for_restore(transaction)
            if validation is not None and not validation.valid:
                logger.info(
                    "Store purchase %s did not validate, skipping", transaction.transaction_id
                )
                continue

            purchased_at = _purchase_time(transaction)
            expires_at = None
            if plan is not None:
                if validation is not None and validation.expiry is not None:
                    expires_at = validation.expiry
                else:
                    expires_at = purchased_at + plan.period.duration

            record = PurchaseRecord(
                id=generate_id(),
                product_id=(plan or product).product_id,
                transaction_id=transaction.transaction_id,
                amount=plan.price if plan else product.price,
                currency=plan.currency if plan else product.currency,
                type=PurchaseType.SUBSCRIPTION if plan else PurchaseType.ONE_TIME,
                status=PurchaseStatus.RESTORED,
                purchased_at=purchased_at,
                platform=transaction.platform or self._platform,
                expires_at=expires_at,
                receipt_data=transaction.receipt,
            )
            try:
                await self._ledger.append(record)
            except (ValueError, OSError) as e:
                raise RestoreFailed() from e

    async def _validate_for_restore(
        self, transaction: StoreTransaction
    ) -> ReceiptValidation | None:
        if self._gateway is None:
            return None
        try:
            return await self.validate_receipt(
                transaction.receipt, transaction.platform, transaction.product_id
            )
        except (httpx.HTTPError, TeachLinkError, ValidationError, ValueError) as e:
            logger.error("Receipt validation during restore failed: %s", e)
            raise RestoreFailed() from e

    # -- housekeeping --------------------------------------------------------

    async def clear_payment_data(self) -> None:
        await self._ledger.clear()

    async def _sync_tier(self) -> SubscriptionTier:
        tier = derive_tier(await self._ledger.history())
        if await self._ledger.get_tier() != tier:
            await self._ledger.set_tier(tier)
        return tier
