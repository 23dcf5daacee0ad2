# Product catalogue — subscription plans and one-time products.
# Created: 2026-03-04
#
# Product IDs must match App Store Connect / Google Play Console exactly.

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"

    @property
    def duration(self) -> timedelta:
        return timedelta(days=30 if self is BillingPeriod.MONTHLY else 365)


class ProductIds:
    """Store product identifiers."""

    PRO_MONTHLY = "com.teachlink.subscription.pro.monthly"
    PRO_ANNUAL = "com.teachlink.subscription.pro.annual"
    PREMIUM_MONTHLY = "com.teachlink.subscription.premium.monthly"
    PREMIUM_ANNUAL = "com.teachlink.subscription.premium.annual"
    COURSE_BUNDLE = "com.teachlink.course.bundle.starter"


@dataclass(frozen=True)
class SubscriptionPlan:
    id: str
    product_id: str
    name: str
    tier: SubscriptionTier
    price: float
    currency: str
    period: BillingPeriod
    trial_days: int | None = None
    savings: str | None = None
    features: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OneTimeProduct:
    id: str
    product_id: str
    name: str
    price: float
    currency: str


_PRO_FEATURES = (
    "Access all 500+ courses",
    "Offline downloads",
    "Completion certificates",
    "Priority support",
    "No ads",
)
_PREMIUM_FEATURES = (
    "Everything in Pro",
    "Live sessions with instructors",
    "Personalised learning path",
    "Exclusive premium content",
    "Early access to new courses",
)

SUBSCRIPTION_PLANS: tuple[SubscriptionPlan, ...] = (
    SubscriptionPlan(
        id="pro_monthly",
        product_id=ProductIds.PRO_MONTHLY,
        name="Pro",
        tier=SubscriptionTier.PRO,
        price=9.99,
        currency="USD",
        period=BillingPeriod.MONTHLY,
        trial_days=7,
        features=_PRO_FEATURES,
    ),
    SubscriptionPlan(
        id="pro_annual",
        product_id=ProductIds.PRO_ANNUAL,
        name="Pro Annual",
        tier=SubscriptionTier.PRO,
        price=79.99,
        currency="USD",
        period=BillingPeriod.ANNUAL,
        trial_days=14,
        savings="Save 33%",
        features=_PRO_FEATURES + ("33% savings vs monthly",),
    ),
    SubscriptionPlan(
        id="premium_monthly",
        product_id=ProductIds.PREMIUM_MONTHLY,
        name="Premium",
        tier=SubscriptionTier.PREMIUM,
        price=19.99,
        currency="USD",
        period=BillingPeriod.MONTHLY,
        trial_days=7,
        features=_PREMIUM_FEATURES,
    ),
    SubscriptionPlan(
        id="premium_annual",
        product_id=ProductIds.PREMIUM_ANNUAL,
        name="Premium Annual",
        tier=SubscriptionTier.PREMIUM,
        price=159.99,
        currency="USD",
        period=BillingPeriod.ANNUAL,
        trial_days=14,
        savings="Save 33%",
        features=_PREMIUM_FEATURES + ("33% savings vs monthly",),
    ),
)

ONE_TIME_PRODUCTS: tuple[OneTimeProduct, ...] = (
    OneTimeProduct(
        id="course_bundle_starter",
        product_id=ProductIds.COURSE_BUNDLE,
        name="Starter Course Bundle",
        price=29.99,
        currency="USD",
    ),
)

_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}


def find_plan(product_id: str) -> SubscriptionPlan | None:
    """Look up a plan by store product ID or by plan ID."""
    for plan in SUBSCRIPTION_PLANS:
        if product_id in (plan.product_id, plan.id):
            return plan
    return None


def find_one_time_product(product_id: str) -> OneTimeProduct | None:
    for product in ONE_TIME_PRODUCTS:
        if product_id in (product.product_id, product.id):
            return product
    return None


def get_products(product_ids: Iterable[str]) -> list[SubscriptionPlan]:
    wanted = set(product_ids)
    return [p for p in SUBSCRIPTION_PLANS if p.product_id in wanted]


def format_price(amount: float, currency: str = "USD") -> str:
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    if symbol is None:
        return f"{amount:,.2f} {currency.upper()}"
    return f"{symbol}{amount:,.2f}"
