"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photo_converter.api.dependencies import get_auth_dependency, get_context
from photo_converter.api.router import api_router
from photo_converter.core.config import Settings, settings as default_settings
from photo_converter.core.container import AppContext
from photo_converter.core.logging import configure_logging, get_logger

logger = get_logger(__name__)

ContextFactory = Callable[[Settings], AppContext]


def create_app(
    settings: Optional[Settings] = None,
    *,
    context_factory: ContextFactory = AppContext.from_settings,
) -> FastAPI:
    """Build the application; the context is created and torn down by the lifespan."""

    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        context = context_factory(settings)
        await context.start()
        app.state.context = context
        try:
            yield
        finally:
            await context.close()

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/healthz", tags=["health"])
    async def health_check(context: AppContext = Depends(get_context)) -> dict:
        """Simple liveness endpoint."""

        logger.debug("health_check_invoked")
        return {
            "status": "ok",
            "environment": settings.environment,
            "entitlement_listener": context.entitlements.listener_running,
            "open_sessions": len(context.sessions.all()),
        }

    @app.get("/auth-check", tags=["health"], dependencies=[Depends(get_auth_dependency)])
    async def auth_check() -> dict:
        """Endpoint to verify API auth configuration."""

        return {"status": "authorized"}

    return app


configure_logging()
app = create_app()
