"""
Health check endpoints for monitoring and orchestration.

Provides:
- /health: basic liveness
- /health/realtime: change-feed channel status from the subscription manager
- /metrics: Prometheus exposition of the realtime counters
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from placement_realtime.core.config import Settings, get_settings
from placement_realtime.realtime.manager import ChangeFeedSubscriptionManager


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    service: str
    version: str
    timestamp: datetime


class ChannelHealth(BaseModel):
    """Status of one change-feed channel."""

    name: str
    table: str
    event: str
    filter: str | None = None
    subscribers: int
    active: bool


class RealtimeHealth(BaseModel):
    """Health status for the subscription manager."""

    status: str
    channel_count: int
    subscriber_count: int
    channels: list[ChannelHealth]


router = APIRouter(tags=["health"])


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_subscription_manager(request: Request) -> ChangeFeedSubscriptionManager:
    return request.app.state.realtime_manager


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check endpoint",
    description="Returns the health status of the service for monitoring and orchestration."
)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """
    Perform a basic health check.

    Returns:
        HealthResponse: Current health status of the service
    """
    return HealthResponse(
        status="healthy",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        timestamp=datetime.now(UTC)
    )


@router.get(
    "/health/realtime",
    response_model=RealtimeHealth,
    status_code=status.HTTP_200_OK,
    summary="Change-feed health",
    description="Reports every held channel and whether it reached the active state."
)
async def realtime_health(
    manager: ChangeFeedSubscriptionManager = Depends(get_subscription_manager),
) -> RealtimeHealth:
    """
    Report channel status.

    A "degraded" status means at least one channel failed to activate and
    its subscribers receive no events.
    """
    return RealtimeHealth.model_validate(manager.get_health())


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
