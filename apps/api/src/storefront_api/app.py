from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from storefront_api.core.settings import settings
from storefront_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.loyalty import (
    LoyaltyAccountEngine,
    LoyaltyEarningService,
    RedemptionService,
    SqlAlchemySnapshotStore,
)
from .services.notifications import InboxNotificationSink


APP_VERSION = "0.1.0"
SERVICE_NAME = "storefront-api"


def build_loyalty_services(app: FastAPI, session_factory=async_session) -> LoyaltyAccountEngine:
    """Attach the app-scoped loyalty engine and its collaborators to ``app.state``."""

    store = SqlAlchemySnapshotStore(session_factory)
    notifier = InboxNotificationSink(session_factory) if settings.loyalty_notifications_enabled else None
    engine = LoyaltyAccountEngine(store, notifier)

    app.state.snapshot_store = store
    app.state.notification_sink = notifier
    app.state.loyalty_engine = engine
    app.state.redemption_service = RedemptionService(engine)
    app.state.earning_service = LoyaltyEarningService(engine)
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_loyalty_services(app)
    logger.info(
        "Loyalty engine ready",
        tiers=[tier.id for tier in engine.tiers],
        max_retries=settings.loyalty_snapshot_max_retries,
        notifications_enabled=settings.loyalty_notifications_enabled,
    )

    try:
        yield
    finally:
        await engine.flush_notifications()
        logger.info("Loyalty engine stopped")


def create_app() -> FastAPI:
    """Application factory for the storefront loyalty API."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Storefront Loyalty API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name=SERVICE_NAME,
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
