"""Health check and status endpoints."""

from fastapi import APIRouter, Request

from nexusrbx.auth import dependencies as auth_deps
from nexusrbx.config import get_settings
from nexusrbx.models import HealthCheck
from nexusrbx.utils.logging import SERVICE_VERSION

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthCheck,
    summary="Health check",
    description="Check the health of the API and its dependencies.",
)
async def health_check(request: Request) -> HealthCheck:
    """Check health of all services."""
    settings = get_settings()

    store = getattr(request.app.state, "entitlements", None)
    if store is None:
        firestore_status = "unavailable"
    elif await store.health_check():
        firestore_status = "healthy"
    else:
        firestore_status = "unhealthy"

    if auth_deps.redis_client is None:
        redis_status = "unavailable"
    else:
        try:
            await auth_deps.redis_client.ping()
            redis_status = "healthy"
        except Exception:
            redis_status = "unhealthy"

    overall_status = "healthy"
    if firestore_status != "healthy" or redis_status != "healthy":
        overall_status = "degraded"

    return HealthCheck(
        status=overall_status,
        version=SERVICE_VERSION,
        environment=settings.environment.value,
        firestore=firestore_status,
        redis=redis_status,
    )


@router.get(
    "/",
    summary="API information",
    description="Get basic API information.",
)
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "NexusRBX Billing API",
        "version": SERVICE_VERSION,
        "description": "Stripe subscription and token entitlement service",
        "documentation": "/docs",
        "health": "/health",
    }
