"""API router aggregator."""

from fastapi import APIRouter

from photo_converter.api.routes import conversions, entitlements, jobs

api_router = APIRouter()
api_router.include_router(conversions.router)
api_router.include_router(jobs.router)
api_router.include_router(entitlements.router)
