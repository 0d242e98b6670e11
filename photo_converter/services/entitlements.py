"""Entitlement reconciliation against the storefront.

``EntitlementManager`` owns the product catalog and the derived
``EntitlementStatus``. Both are written only by the manager's owner task,
which drains a queue of commands; explicit purchase/restore calls and the
background update listener all hand their work to that queue. Status is
always rebuilt from the storefront's full set of current entitlements.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from photo_converter.core.errors import PurchaseFailureReason, StorefrontError, VerificationFailed
from photo_converter.core.logging import get_logger
from photo_converter.models.store import (
    EntitlementStatus,
    Product,
    PurchaseOutcome,
    PurchaseRecord,
    SignedTransaction,
    StorefrontPurchaseKind,
    Transaction,
)
from photo_converter.services.storefront import Storefront
from photo_converter.services.transaction_verifier import TransactionVerifier

logger = get_logger(__name__)

T = TypeVar("T")

_Command = Tuple[Callable[[], Awaitable[Any]], "asyncio.Future[Any]"]


class EntitlementManager:
    """Explicitly constructed owner of subscription status.

    Use ``await manager.start()`` / ``await manager.close()`` or
    ``async with manager:``. ``close`` cancels the update listener once and is
    safe to call again.
    """

    def __init__(
        self,
        storefront: Storefront,
        verifier: TransactionVerifier,
        product_ids: Sequence[str],
        *,
        storefront_timeout: Optional[float] = None,
    ) -> None:
        self._storefront = storefront
        self._verifier = verifier
        self._product_ids = tuple(product_ids)
        self._timeout = storefront_timeout

        self._catalog: Tuple[Product, ...] = ()
        self._status = EntitlementStatus()
        self._records: Tuple[PurchaseRecord, ...] = ()

        self._commands: Optional[asyncio.Queue[Optional[_Command]]] = None
        self._owner_task: Optional[asyncio.Task[None]] = None
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._closed = False

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        """Start the owner task, load the catalog and status, then listen for updates."""

        if self._closed:
            raise RuntimeError("entitlement manager is closed")
        if self._owner_task is not None:
            return
        self._commands = asyncio.Queue()
        self._owner_task = asyncio.create_task(self._run_owner(self._commands), name="entitlements-owner")
        await self.refresh_catalog()
        await self._submit(self._recompute)
        self._listener_task = asyncio.create_task(self._listen(), name="entitlements-listener")
        logger.info("entitlement_manager_started", products=len(self._catalog))

    async def close(self) -> None:
        """Cancel the listener, drain the owner and wait for both to end."""

        if self._closed:
            return
        self._closed = True

        listener = self._listener_task
        if listener is not None and not listener.done():
            listener.cancel()
        if listener is not None:
            await asyncio.gather(listener, return_exceptions=True)

        if self._owner_task is not None and self._commands is not None:
            self._commands.put_nowait(None)
            await asyncio.gather(self._owner_task, return_exceptions=True)
        logger.info("entitlement_manager_closed")

    async def __aenter__(self) -> "EntitlementManager":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def listener_running(self) -> bool:
        return self._listener_task is not None and not self._listener_task.done()

    # -- read side -----------------------------------------------------

    @property
    def status(self) -> EntitlementStatus:
        return self._status

    @property
    def is_subscribed(self) -> bool:
        return self._status.is_subscribed

    @property
    def active_product_ids(self) -> frozenset[str]:
        return self._status.active_product_ids

    @property
    def products(self) -> Tuple[Product, ...]:
        return self._catalog

    @property
    def purchased_products(self) -> List[Product]:
        """Catalog products backing the active entitlements."""

        return [p for p in self._catalog if p.id in self._status.active_product_ids]

    @property
    def records(self) -> Tuple[PurchaseRecord, ...]:
        """Every transaction seen in the last recomputation, verified or not."""

        return self._records

    def get_product(self, product_id: str) -> Optional[Product]:
        return next((p for p in self._catalog if p.id == product_id), None)

    # -- operations ----------------------------------------------------

    async def refresh_catalog(self) -> bool:
        """Reload products; on failure the previous catalog stays in place."""

        return await self._submit(self._load_catalog)

    async def purchase(self, product: Product) -> PurchaseOutcome:
        """Buy ``product`` and fold the verified transaction into status."""

        if self._closed:
            return PurchaseOutcome.failed(PurchaseFailureReason.manager_closed)
        try:
            result = await self._call(self._storefront.purchase(product))
        except (StorefrontError, asyncio.TimeoutError) as exc:
            logger.warning("purchase_storefront_failed", product_id=product.id, error=str(exc))
            return PurchaseOutcome.failed(PurchaseFailureReason.storefront_error)

        if result.kind is StorefrontPurchaseKind.cancelled:
            return PurchaseOutcome.cancelled()
        if result.kind is StorefrontPurchaseKind.pending:
            return PurchaseOutcome.pending()
        if result.kind is StorefrontPurchaseKind.failed:
            logger.info("purchase_failed", product_id=product.id, message=result.message)
            return PurchaseOutcome.failed(PurchaseFailureReason.storefront_error)

        if result.signed is None:
            logger.warning("purchase_missing_transaction", product_id=product.id)
            return PurchaseOutcome.failed(PurchaseFailureReason.verification_failed)
        try:
            transaction = self._verifier.check_verified(result.signed)
        except VerificationFailed as exc:
            logger.warning("purchase_verification_failed", product_id=product.id, error=str(exc))
            return PurchaseOutcome.failed(PurchaseFailureReason.verification_failed)

        try:
            await self._submit(self._recompute)
        except RuntimeError:
            # left unfinished so the storefront redelivers it
            logger.warning("purchase_after_close", transaction_id=transaction.transaction_id)
            return PurchaseOutcome.failed(PurchaseFailureReason.manager_closed)
        await self._finish(transaction)
        logger.info("purchase_entitled", product_id=product.id, transaction_id=transaction.transaction_id)
        return PurchaseOutcome.entitled(transaction)

    async def purchase_by_id(self, product_id: str) -> PurchaseOutcome:
        product = self.get_product(product_id)
        if product is None:
            return PurchaseOutcome.failed(PurchaseFailureReason.unknown_product)
        return await self.purchase(product)

    async def restore_purchases(self) -> EntitlementStatus:
        """Resynchronise with the storefront and rebuild status."""

        try:
            await self._call(self._storefront.sync_entitlements())
        except (StorefrontError, asyncio.TimeoutError) as exc:
            logger.warning("restore_purchases_failed", error=str(exc))
            return self._status
        return await self._submit(self._recompute)

    # -- owner ---------------------------------------------------------

    async def _submit(self, command: Callable[[], Awaitable[T]]) -> T:
        """Run ``command`` on the owner task and return its result."""

        if self._commands is None or self._owner_task is None or self._owner_task.done():
            raise RuntimeError("entitlement manager is not running")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._commands.put_nowait((command, future))
        return await future

    async def _run_owner(self, commands: "asyncio.Queue[Optional[_Command]]") -> None:
        while True:
            item = await commands.get()
            if item is None:
                return
            command, future = item
            try:
                result = await command()
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

    async def _load_catalog(self) -> bool:
        try:
            products = await self._call(self._storefront.fetch_products(self._product_ids))
        except (StorefrontError, asyncio.TimeoutError) as exc:
            logger.warning("catalog_refresh_failed", error=str(exc), stale_products=len(self._catalog))
            return False
        self._catalog = tuple(products)
        logger.info("catalog_refreshed", products=[p.id for p in products])
        return True

    async def _recompute(self) -> EntitlementStatus:
        """Rebuild status from scratch out of the verified current entitlements."""

        try:
            verified, records = await self._call(self._collect_entitlements())
        except (StorefrontError, asyncio.TimeoutError) as exc:
            logger.error("entitlement_enumeration_failed", error=str(exc))
            return self._status

        self._status = EntitlementStatus.from_transactions(list(verified.values()))
        self._records = tuple(records)
        logger.info(
            "entitlements_recomputed",
            is_subscribed=self._status.is_subscribed,
            active_product_ids=sorted(self._status.active_product_ids),
        )
        return self._status

    async def _collect_entitlements(self) -> Tuple[dict[str, Transaction], List[PurchaseRecord]]:
        verified: dict[str, Transaction] = {}
        records: List[PurchaseRecord] = []
        async for signed in self._storefront.current_entitlements():
            records.append(self._verifier.classify(signed))
            try:
                transaction = self._verifier.check_verified(signed)
            except VerificationFailed:
                logger.warning("entitlement_verification_failed")
                continue
            verified[transaction.transaction_id] = transaction
        return verified, records

    # -- listener ------------------------------------------------------

    async def _listen(self) -> None:
        """Verify each transaction on the update stream until cancelled."""

        try:
            async for signed in self._storefront.updates():
                await self._handle_update(signed)
        except StorefrontError as exc:
            logger.error("entitlement_listener_failed", error=str(exc))
        logger.info("entitlement_listener_stopped")

    async def _handle_update(self, signed: SignedTransaction) -> None:
        try:
            transaction = self._verifier.check_verified(signed)
        except VerificationFailed as exc:
            logger.warning("transaction_update_rejected", error=str(exc))
            return
        await self._submit(self._recompute)
        await self._finish(transaction)

    # -- helpers -------------------------------------------------------

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, self._timeout)

    async def _finish(self, transaction: Transaction) -> None:
        try:
            await self._call(self._storefront.finish(transaction))
        except (StorefrontError, asyncio.TimeoutError) as exc:
            logger.warning("transaction_finish_failed", transaction_id=transaction.transaction_id, error=str(exc))
