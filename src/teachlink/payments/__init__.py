"""In-app purchases: catalogue, local ledger, Entitlement Manager."""

from teachlink.payments.catalogue import SubscriptionTier
from teachlink.payments.entitlements import EntitlementManager, RestoreResult, derive_tier
from teachlink.payments.ledger import PurchaseLedger, PurchaseRecord, PurchaseStatus, PurchaseType

__all__ = [
    "EntitlementManager",
    "PurchaseLedger",
    "PurchaseRecord",
    "PurchaseStatus",
    "PurchaseType",
    "RestoreResult",
    "SubscriptionTier",
    "derive_tier",
]
