"""Application context: builds the collaborators and owns their lifetime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from photo_converter.core.config import Settings
from photo_converter.core.logging import get_logger
from photo_converter.db.migrations import create_session_factory
from photo_converter.models.job import ConversionFormat
from photo_converter.models.store import Product
from photo_converter.services.conversion_session import ConversionSession
from photo_converter.services.entitlements import EntitlementManager
from photo_converter.services.export import ExportSink
from photo_converter.services.image_encoder import ImageEncoder
from photo_converter.services.job_store import JobStore, SqlJobStore
from photo_converter.services.sessions import SessionRegistry
from photo_converter.services.storefront import LocalStorefront, Storefront
from photo_converter.services.transaction_verifier import TransactionVerifier

logger = get_logger(__name__)

LOCAL_PRICES = {
    "heic_converter_weekly": "$2.99",
    "heic_converter_monthly": "$4.99",
    "heic_converter_lifetime": "$19.99",
}


def local_catalog(product_ids: list[str]) -> list[Product]:
    """Products served by the in-process storefront."""

    return [Product(id=pid, display_price=LOCAL_PRICES.get(pid, "$0.99")) for pid in product_ids]


@dataclass
class AppContext:
    """Everything a request handler needs, constructed once per application."""

    settings: Settings
    encoder: ImageEncoder
    job_store: JobStore
    export_sink: ExportSink
    entitlements: EntitlementManager
    storefront: Storefront
    sessions: SessionRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.sessions = SessionRegistry(self.new_session)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        job_store: Optional[JobStore] = None,
        storefront: Optional[Storefront] = None,
    ) -> "AppContext":
        encoder = ImageEncoder(webp_policy=settings.webp_policy)
        if job_store is None:
            job_store = SqlJobStore(create_session_factory(settings.database_url))
        if storefront is None:
            storefront = LocalStorefront(
                local_catalog(settings.product_ids), settings.transaction_signing_secret
            )
        entitlements = EntitlementManager(
            storefront,
            TransactionVerifier(settings.transaction_signing_secret),
            settings.product_ids,
            storefront_timeout=settings.storefront_timeout_seconds,
        )
        return cls(
            settings=settings,
            encoder=encoder,
            job_store=job_store,
            export_sink=ExportSink(settings.export_dir),
            entitlements=entitlements,
            storefront=storefront,
        )

    def new_session(self) -> ConversionSession:
        return ConversionSession(
            self.encoder,
            self.job_store,
            export_sink=self.export_sink,
            archival_format=ConversionFormat(self.settings.archival_format.upper()),
            encode_delay_seconds=self.settings.encode_delay_seconds,
            encode_timeout_seconds=self.settings.encode_timeout_seconds,
        )

    async def start(self) -> None:
        await self.entitlements.start()
        logger.info("app_context_started", environment=self.settings.environment)

    async def close(self) -> None:
        await self.sessions.close_all()
        await self.entitlements.close()
        if isinstance(self.storefront, LocalStorefront):
            self.storefront.close()
        logger.info("app_context_closed")
