"""
FastAPI application factory.

The change-feed client is passed in rather than created at import time, so
the same factory serves production (a provider-backed feed) and tests
(InMemoryChangeFeed).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from placement_realtime.api.routers import health
from placement_realtime.core.config import Settings, get_settings
from placement_realtime.observability import configure_logging, setup_tracing
from placement_realtime.realtime.feed import ChangeFeed
from placement_realtime.realtime.manager import ChangeFeedSubscriptionManager
from placement_realtime.services.realtime_service import RealtimeService

logger = logging.getLogger(__name__)


def create_app(feed: ChangeFeed, settings: Settings | None = None) -> FastAPI:
    """
    Build the application around an injected change feed.

    Args:
        feed: Change-feed collaborator
        settings: Settings override (defaults to environment settings)

    Returns:
        FastAPI app with the manager and RealtimeService on app.state
    """
    settings = settings or get_settings()
    configure_logging(
        json_output=settings.LOG_JSON,
        level=settings.LOG_LEVEL,
        service_name=settings.OTEL_SERVICE_NAME,
    )
    setup_tracing(settings)

    manager = ChangeFeedSubscriptionManager(
        feed,
        schema=settings.REALTIME_SCHEMA,
        channel_prefix=settings.REALTIME_CHANNEL_PREFIX,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Starting service",
            extra={"app_name": settings.APP_NAME, "version": settings.APP_VERSION},
        )
        yield
        # Shutdown: release every channel still held
        manager.close()
        logger.info("Service stopped", extra={"app_name": settings.APP_NAME})

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Real-time change-feed layer for the student placement portal",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.realtime_manager = manager
    app.state.realtime_service = RealtimeService(manager)

    app.include_router(health.router, prefix=settings.API_V1_PREFIX)
    return app
