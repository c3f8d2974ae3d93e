"""Routers package."""

from nexusrbx.routers.billing import router as billing_router
from nexusrbx.routers.health import router as health_router
from nexusrbx.routers.webhook import router as webhook_router

__all__ = ["billing_router", "health_router", "webhook_router"]
