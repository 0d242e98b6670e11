"""Pydantic models for the product catalog, transactions and entitlement status."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from photo_converter.core.errors import PurchaseFailureReason


class PeriodKind(str, Enum):
    """Billing period of a product."""

    weekly = "weekly"
    monthly = "monthly"
    one_time = "one_time"

    @classmethod
    def from_product_id(cls, product_id: str) -> "PeriodKind":
        """Infer the period from identifiers such as ``heic_converter_monthly``."""

        if "weekly" in product_id:
            return cls.weekly
        if "monthly" in product_id:
            return cls.monthly
        return cls.one_time


class Product(BaseModel):
    """A purchasable product as described by the storefront."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_price: str
    period: PeriodKind

    @model_validator(mode="before")
    @classmethod
    def fill_period(cls, data: Any) -> Any:
        """Derive the period from the id when the storefront leaves it out."""

        if isinstance(data, dict) and data.get("period") is None and "id" in data:
            return {**data, "period": PeriodKind.from_product_id(str(data["id"]))}
        return data

    @property
    def title(self) -> str:
        if self.period is PeriodKind.weekly:
            return "Weekly"
        if self.period is PeriodKind.monthly:
            return "Monthly"
        return "Lifetime"


class Transaction(BaseModel):
    """A purchase event issued by the storefront."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    product_id: str
    purchased_at: datetime


class SignedTransaction(BaseModel):
    """Transaction as delivered by the storefront, not yet trusted."""

    model_config = ConfigDict(frozen=True)

    token: str


class PurchaseRecord(BaseModel):
    """Audit view of a transaction after verification."""

    product_id: str
    verified: bool
    transaction_id: str


class EntitlementStatus(BaseModel):
    """Subscription status derived from verified current entitlements."""

    model_config = ConfigDict(frozen=True)

    is_subscribed: bool = False
    active_product_ids: FrozenSet[str] = Field(default_factory=frozenset)

    @classmethod
    def from_transactions(cls, transactions: list[Transaction]) -> "EntitlementStatus":
        """Build a fresh status from the full set of verified entitlements."""

        product_ids = frozenset(t.product_id for t in transactions)
        return cls(is_subscribed=len(transactions) > 0, active_product_ids=product_ids)


class StorefrontPurchaseKind(str, Enum):
    success = "success"
    cancelled = "cancelled"
    pending = "pending"
    failed = "failed"


class StorefrontPurchaseResult(BaseModel):
    """Raw result of a storefront purchase call."""

    kind: StorefrontPurchaseKind
    signed: Optional[SignedTransaction] = None
    message: Optional[str] = None


class PurchaseOutcomeKind(str, Enum):
    entitled = "entitled"
    cancelled = "cancelled"
    pending = "pending"
    failed = "failed"


class PurchaseOutcome(BaseModel):
    """Result of ``EntitlementManager.purchase`` as seen by callers."""

    kind: PurchaseOutcomeKind
    transaction: Optional[Transaction] = None
    reason: Optional[PurchaseFailureReason] = None

    @classmethod
    def entitled(cls, transaction: Transaction) -> "PurchaseOutcome":
        return cls(kind=PurchaseOutcomeKind.entitled, transaction=transaction)

    @classmethod
    def cancelled(cls) -> "PurchaseOutcome":
        return cls(kind=PurchaseOutcomeKind.cancelled)

    @classmethod
    def pending(cls) -> "PurchaseOutcome":
        return cls(kind=PurchaseOutcomeKind.pending)

    @classmethod
    def failed(cls, reason: PurchaseFailureReason) -> "PurchaseOutcome":
        return cls(kind=PurchaseOutcomeKind.failed, reason=reason)


class PurchaseRequest(BaseModel):
    """Payload accepted by the purchase endpoint."""

    product_id: str


class EntitlementStatusResponse(BaseModel):
    """API view of the current entitlement status."""

    is_subscribed: bool
    active_product_ids: list[str]
    purchased_products: list[Product] = Field(default_factory=list)
