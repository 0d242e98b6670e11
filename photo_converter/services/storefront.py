"""Storefront gateway and an in-process implementation.

The platform storefront is an external collaborator; the entitlement manager
only sees the :class:`Storefront` protocol. :class:`LocalStorefront` plays the
platform's part for development and tests: it signs the transactions it
issues with the shared secret, keeps the set of current entitlements and
publishes an update stream.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Protocol, Sequence, cast

from photo_converter.core.errors import StorefrontError
from photo_converter.core.logging import get_logger
from photo_converter.core.security import sign_payload
from photo_converter.models.store import (
    Product,
    SignedTransaction,
    StorefrontPurchaseKind,
    StorefrontPurchaseResult,
    Transaction,
)

logger = get_logger(__name__)


class Storefront(Protocol):
    async def fetch_products(self, product_ids: Sequence[str]) -> List[Product]:
        """Return catalog entries for ``product_ids``; unknown ids are omitted."""

    async def purchase(self, product: Product) -> StorefrontPurchaseResult:
        """Run the platform purchase flow for ``product``."""

    async def sync_entitlements(self) -> None:
        """Ask the platform to resynchronise entitlements (restore)."""

    def current_entitlements(self) -> AsyncIterator[SignedTransaction]:
        """Yield the transactions backing currently active entitlements."""

    def updates(self) -> AsyncIterator[SignedTransaction]:
        """Yield transactions as they arrive, for as long as the platform runs."""

    async def finish(self, transaction: Transaction) -> None:
        """Acknowledge a transaction so the platform stops redelivering it."""


_CLOSED = object()


class LocalStorefront:
    """In-process storefront with scripted outcomes and failure injection."""

    def __init__(self, products: Sequence[Product], signing_secret: str) -> None:
        self._products: Dict[str, Product] = {p.id: p for p in products}
        self._secret = signing_secret
        self._entitlements: Dict[str, SignedTransaction] = {}
        self._restorable: Dict[str, SignedTransaction] = {}
        self._updates: asyncio.Queue[object] = asyncio.Queue()
        self._scripted: List[StorefrontPurchaseResult] = []
        self.fetch_failures = 0
        self.sync_failures = 0
        self.sync_calls = 0
        self.finished: List[str] = []

    # -- platform side controls ----------------------------------------

    def sign(self, product_id: str, *, transaction_id: Optional[str] = None) -> SignedTransaction:
        """Issue a transaction for ``product_id`` signed with the shared secret."""

        claims = Transaction(
            transaction_id=transaction_id or f"txn_{uuid.uuid4().hex}",
            product_id=product_id,
            purchased_at=datetime.now(timezone.utc),
        ).model_dump(mode="json")
        return SignedTransaction(token=sign_payload(claims, self._secret))

    def grant(self, signed: SignedTransaction) -> None:
        """Make ``signed`` a current entitlement and announce it on the update stream."""

        self._entitlements[signed.token] = signed
        self._updates.put_nowait(signed)

    def publish(self, signed: SignedTransaction) -> None:
        """Announce ``signed`` on the update stream without entitling it."""

        self._updates.put_nowait(signed)

    def add_restorable(self, signed: SignedTransaction) -> None:
        """Register a purchase that only shows up after ``sync_entitlements``."""

        self._restorable[signed.token] = signed

    def revoke_all(self) -> None:
        self._entitlements.clear()

    def script_purchase(self, result: StorefrontPurchaseResult) -> None:
        """Queue the result returned by the next ``purchase`` call."""

        self._scripted.append(result)

    def close(self) -> None:
        """End the update stream."""

        self._updates.put_nowait(_CLOSED)

    # -- Storefront protocol -------------------------------------------

    async def fetch_products(self, product_ids: Sequence[str]) -> List[Product]:
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise StorefrontError("product request failed")
        return [self._products[pid] for pid in product_ids if pid in self._products]

    async def purchase(self, product: Product) -> StorefrontPurchaseResult:
        if self._scripted:
            result = self._scripted.pop(0)
            if result.kind is StorefrontPurchaseKind.success and result.signed is not None:
                self._entitlements[result.signed.token] = result.signed
            return result
        if product.id not in self._products:
            return StorefrontPurchaseResult(kind=StorefrontPurchaseKind.failed, message="unknown product")

        signed = self.sign(product.id)
        self._entitlements[signed.token] = signed
        return StorefrontPurchaseResult(kind=StorefrontPurchaseKind.success, signed=signed)

    async def sync_entitlements(self) -> None:
        self.sync_calls += 1
        if self.sync_failures > 0:
            self.sync_failures -= 1
            raise StorefrontError("sync failed")
        self._entitlements.update(self._restorable)
        self._restorable.clear()

    async def current_entitlements(self) -> AsyncIterator[SignedTransaction]:
        for signed in list(self._entitlements.values()):
            yield signed

    async def updates(self) -> AsyncIterator[SignedTransaction]:
        while True:
            item = await self._updates.get()
            if item is _CLOSED:
                logger.debug("storefront_updates_closed")
                return
            yield cast(SignedTransaction, item)

    async def finish(self, transaction: Transaction) -> None:
        self.finished.append(transaction.transaction_id)
