from __future__ import annotations

import asyncio
from typing import AsyncIterator

import pytest

from photo_converter.core.errors import PurchaseFailureReason
from photo_converter.models.store import (
    PeriodKind,
    Product,
    PurchaseOutcomeKind,
    SignedTransaction,
    StorefrontPurchaseKind,
    StorefrontPurchaseResult,
)
from photo_converter.services.entitlements import EntitlementManager
from photo_converter.services.storefront import LocalStorefront
from photo_converter.services.transaction_verifier import TransactionVerifier
from tests.helpers import PRODUCT_IDS, SIGNING_SECRET, eventually, forged_transaction

WEEKLY, MONTHLY, LIFETIME = PRODUCT_IDS


def make_manager(storefront: LocalStorefront, verifier: TransactionVerifier, **kwargs) -> EntitlementManager:
    return EntitlementManager(storefront, verifier, PRODUCT_IDS, **kwargs)


class SlowStorefront(LocalStorefront):
    async def purchase(self, product: Product) -> StorefrontPurchaseResult:
        await asyncio.sleep(1)
        return await super().purchase(product)


class StalledEntitlementsStorefront(LocalStorefront):
    async def current_entitlements(self) -> AsyncIterator[SignedTransaction]:
        await asyncio.sleep(10)
        async for signed in super().current_entitlements():
            yield signed


@pytest.mark.asyncio
async def test_start_loads_catalog_and_empty_status(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        assert [p.id for p in manager.products] == PRODUCT_IDS
        assert not manager.is_subscribed
        assert manager.active_product_ids == frozenset()
        assert manager.listener_running


@pytest.mark.asyncio
async def test_forged_transaction_never_subscribes(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.publish(forged_transaction(MONTHLY, "txn_forged_update"))
        genuine = storefront.sign(WEEKLY, transaction_id="txn_genuine")
        storefront.grant(genuine)

        await eventually(lambda: bool(storefront.finished))

        assert manager.active_product_ids == frozenset({WEEKLY})
        assert storefront.finished == ["txn_genuine"]


@pytest.mark.asyncio
async def test_forged_current_entitlement_is_ignored_on_restore(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.add_restorable(forged_transaction(LIFETIME))

        status = await manager.restore_purchases()

        assert not status.is_subscribed
        assert [record.verified for record in manager.records] == [False]


@pytest.mark.asyncio
async def test_granted_monthly_subscription_survives_repeated_restores(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.grant(storefront.sign(MONTHLY, transaction_id="txn_monthly"))
        await eventually(lambda: manager.is_subscribed)

        first = await manager.restore_purchases()
        second = await manager.restore_purchases()

        assert first == second
        assert first.is_subscribed
        assert first.active_product_ids == frozenset({MONTHLY})
        assert [p.id for p in manager.purchased_products] == [MONTHLY]
        assert storefront.sync_calls == 2


@pytest.mark.asyncio
async def test_same_transaction_is_counted_once(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        signed = storefront.sign(WEEKLY, transaction_id="txn_dup")
        storefront.grant(signed)
        storefront.add_restorable(storefront.sign(WEEKLY, transaction_id="txn_dup"))

        status = await manager.restore_purchases()

        assert status.active_product_ids == frozenset({WEEKLY})


@pytest.mark.asyncio
async def test_purchase_entitles_and_finishes(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        outcome = await manager.purchase_by_id(LIFETIME)

        assert outcome.kind is PurchaseOutcomeKind.entitled
        assert outcome.transaction.product_id == LIFETIME
        assert manager.is_subscribed
        assert storefront.finished == [outcome.transaction.transaction_id]


@pytest.mark.asyncio
async def test_purchase_with_forged_transaction_fails_verification(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.script_purchase(
            StorefrontPurchaseResult(kind=StorefrontPurchaseKind.success, signed=forged_transaction(MONTHLY))
        )

        outcome = await manager.purchase_by_id(MONTHLY)
        status = await manager.restore_purchases()

        assert outcome.kind is PurchaseOutcomeKind.failed
        assert outcome.reason is PurchaseFailureReason.verification_failed
        assert not status.is_subscribed
        assert storefront.finished == []


@pytest.mark.asyncio
async def test_success_without_transaction_fails_verification(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.script_purchase(StorefrontPurchaseResult(kind=StorefrontPurchaseKind.success))

        outcome = await manager.purchase_by_id(WEEKLY)

        assert outcome.reason is PurchaseFailureReason.verification_failed


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("kind", "expected"),
    [
        (StorefrontPurchaseKind.cancelled, PurchaseOutcomeKind.cancelled),
        (StorefrontPurchaseKind.pending, PurchaseOutcomeKind.pending),
        (StorefrontPurchaseKind.failed, PurchaseOutcomeKind.failed),
    ],
)
async def test_non_success_purchases_leave_status_alone(storefront, verifier, kind, expected) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.script_purchase(StorefrontPurchaseResult(kind=kind, message="nope"))

        outcome = await manager.purchase_by_id(MONTHLY)

        assert outcome.kind is expected
        assert outcome.transaction is None
        assert not manager.is_subscribed


@pytest.mark.asyncio
async def test_unknown_product_is_refused(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        outcome = await manager.purchase_by_id("heic_converter_daily")

        assert outcome.kind is PurchaseOutcomeKind.failed
        assert outcome.reason is PurchaseFailureReason.unknown_product


@pytest.mark.asyncio
async def test_slow_storefront_purchase_times_out(verifier) -> None:
    storefront = SlowStorefront(
        [Product(id=pid, display_price="$1.00") for pid in PRODUCT_IDS], SIGNING_SECRET
    )
    async with make_manager(storefront, verifier, storefront_timeout=0.05) as manager:
        outcome = await manager.purchase_by_id(WEEKLY)

        assert outcome.reason is PurchaseFailureReason.storefront_error
        assert not manager.is_subscribed


@pytest.mark.asyncio
async def test_stalled_entitlement_enumeration_times_out(verifier) -> None:
    storefront = StalledEntitlementsStorefront(
        [Product(id=pid, display_price="$1.00") for pid in PRODUCT_IDS], SIGNING_SECRET
    )
    manager = make_manager(storefront, verifier, storefront_timeout=0.05)
    try:
        await asyncio.wait_for(manager.start(), 1.0)
        storefront.add_restorable(storefront.sign(WEEKLY))

        status = await asyncio.wait_for(manager.restore_purchases(), 1.0)

        assert not status.is_subscribed
        assert manager.listener_running
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_catalog_failure_at_start_leaves_it_empty(storefront, verifier) -> None:
    storefront.fetch_failures = 1
    async with make_manager(storefront, verifier) as manager:
        assert manager.products == ()
        assert manager.listener_running

        assert await manager.refresh_catalog()
        assert len(manager.products) == 3


@pytest.mark.asyncio
async def test_catalog_failure_keeps_stale_products(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        before = manager.products
        storefront.fetch_failures = 1

        assert not await manager.refresh_catalog()
        assert manager.products == before
        assert manager.get_product(MONTHLY).period is PeriodKind.monthly


@pytest.mark.asyncio
async def test_restore_picks_up_restorable_purchases(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.add_restorable(storefront.sign(WEEKLY))
        assert not manager.is_subscribed

        status = await manager.restore_purchases()

        assert status.is_subscribed
        assert manager.status == status


@pytest.mark.asyncio
async def test_failed_sync_keeps_current_status(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        await manager.purchase_by_id(MONTHLY)
        storefront.sync_failures = 1
        storefront.revoke_all()

        status = await manager.restore_purchases()

        assert status.is_subscribed


@pytest.mark.asyncio
async def test_status_is_rebuilt_wholesale_after_revocation(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        await manager.purchase_by_id(WEEKLY)
        await manager.purchase_by_id(MONTHLY)
        assert manager.active_product_ids == frozenset({WEEKLY, MONTHLY})

        storefront.revoke_all()
        status = await manager.restore_purchases()

        assert not status.is_subscribed
        assert status.active_product_ids == frozenset()
        assert manager.purchased_products == []


@pytest.mark.asyncio
async def test_close_is_idempotent_and_stops_the_listener(storefront, verifier) -> None:
    manager = make_manager(storefront, verifier)
    await manager.start()
    assert manager.listener_running

    await manager.close()
    await manager.close()

    assert not manager.listener_running
    with pytest.raises(RuntimeError):
        await manager.restore_purchases()
    with pytest.raises(RuntimeError):
        await manager.start()


@pytest.mark.asyncio
async def test_purchase_after_close_is_reported_not_raised(storefront, verifier) -> None:
    manager = make_manager(storefront, verifier)
    await manager.start()
    await manager.close()

    outcome = await manager.purchase_by_id(MONTHLY)

    assert outcome.kind is PurchaseOutcomeKind.failed
    assert outcome.reason is PurchaseFailureReason.manager_closed
    assert storefront.finished == []


@pytest.mark.asyncio
async def test_listener_ends_with_the_update_stream(storefront, verifier) -> None:
    async with make_manager(storefront, verifier) as manager:
        storefront.close()

        await eventually(lambda: not manager.listener_running)
        # explicit operations still work without the listener
        assert (await manager.purchase_by_id(WEEKLY)).kind is PurchaseOutcomeKind.entitled


def test_period_is_derived_from_product_id() -> None:
    weekly = Product(id=WEEKLY, display_price="$2.99")
    lifetime = Product(id=LIFETIME, display_price="$19.99")
    explicit = Product(id="bundle", display_price="$1.00", period=PeriodKind.monthly)

    assert weekly.period is PeriodKind.weekly and weekly.title == "Weekly"
    assert lifetime.period is PeriodKind.one_time and lifetime.title == "Lifetime"
    assert explicit.period is PeriodKind.monthly
