"""Routes for the product catalog, purchases and subscription status."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from photo_converter.api.dependencies import get_auth_dependency, get_context
from photo_converter.core.container import AppContext
from photo_converter.models.store import EntitlementStatusResponse, Product, PurchaseOutcome, PurchaseRequest
from photo_converter.services.entitlements import EntitlementManager

router = APIRouter(prefix="/entitlements", tags=["entitlements"], dependencies=[Depends(get_auth_dependency)])


def _status_response(manager: EntitlementManager) -> EntitlementStatusResponse:
    status = manager.status
    return EntitlementStatusResponse(
        is_subscribed=status.is_subscribed,
        active_product_ids=sorted(status.active_product_ids),
        purchased_products=manager.purchased_products,
    )


@router.get("", response_model=EntitlementStatusResponse, summary="Current subscription status")
async def get_status(context: AppContext = Depends(get_context)) -> EntitlementStatusResponse:
    return _status_response(context.entitlements)


@router.get("/products", response_model=List[Product], summary="Product catalog")
async def list_products(context: AppContext = Depends(get_context)) -> List[Product]:
    return list(context.entitlements.products)


@router.post("/products/refresh", response_model=List[Product], summary="Reload the product catalog")
async def refresh_products(context: AppContext = Depends(get_context)) -> List[Product]:
    await context.entitlements.refresh_catalog()
    return list(context.entitlements.products)


@router.post("/purchase", response_model=PurchaseOutcome, summary="Purchase a product")
async def purchase(payload: PurchaseRequest, context: AppContext = Depends(get_context)) -> PurchaseOutcome:
    """Outcomes other than ``entitled`` are returned as data, not HTTP errors."""

    return await context.entitlements.purchase_by_id(payload.product_id)


@router.post("/restore", response_model=EntitlementStatusResponse, summary="Restore previous purchases")
async def restore(context: AppContext = Depends(get_context)) -> EntitlementStatusResponse:
    await context.entitlements.restore_purchases()
    return _status_response(context.entitlements)
