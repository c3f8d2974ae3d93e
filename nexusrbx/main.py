"""Main FastAPI application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from redis.asyncio import Redis

from nexusrbx.auth import dependencies as auth_deps
from nexusrbx.auth.firebase import firestore_client, initialize_firebase
from nexusrbx.config import get_settings
from nexusrbx.pricing import PriceCatalog
from nexusrbx.routers import billing_router, health_router, webhook_router
from nexusrbx.services.billing import StripeBilling
from nexusrbx.services.entitlements import EntitlementStore
from nexusrbx.services.reconciliation import EntitlementReconciler
from nexusrbx.utils.logging import SERVICE_VERSION, configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging(settings)

    # Initialize Firebase and the entitlement store
    logger.info("Initializing Firebase...")
    firebase_app = initialize_firebase(settings)
    store = EntitlementStore(
        firestore_client(firebase_app), collection=settings.users_collection
    )
    app.state.entitlements = store
    app.state.reconciler = EntitlementReconciler(
        billing=app.state.billing,
        store=store,
        catalog=app.state.catalog,
    )
    logger.info("Entitlement store initialized", collection=settings.users_collection)

    # Initialize Redis
    logger.info("Initializing Redis connection...")
    auth_deps.redis_client = Redis.from_url(
        str(settings.redis_url),
        decode_responses=False,
    )

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment.value,
            traces_sample_rate=0.1,
        )
        logger.info("Sentry initialized")

    logger.info("Application startup complete")

    yield

    # Cleanup
    logger.info("Shutting down...")
    if auth_deps.redis_client:
        await auth_deps.redis_client.close()
        auth_deps.redis_client = None
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Raises a validation error when the Stripe secrets are not configured.
    """
    settings = get_settings()

    app = FastAPI(
        title="NexusRBX Billing API",
        description="""
## NexusRBX Billing

Keeps NexusRBX plans and token allowances in sync with Stripe.

### Features

- **Stripe webhook**: subscription, checkout and invoice events update the
  user's stored plan
- **Entitlements**: current plan, allowance usage and PAYG balance
- **Token consumption**: idempotent per generation job
- **Checkout**: Stripe Checkout Sessions for plans and token packs

### Plans

| Plan | Tokens per period |
|------|-------------------|
| Free | 50,000 |
| Pro | 500,000 |
| Team | 1,500,000 |

        """,
        version=SERVICE_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Services that need no network at construction
    app.state.billing = StripeBilling.from_settings(settings)
    app.state.catalog = PriceCatalog.from_settings(settings)
    app.state.entitlements = None
    app.state.reconciler = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics
    if settings.prometheus_enabled:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    # Include routers
    app.include_router(health_router)
    app.include_router(webhook_router)
    app.include_router(billing_router)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

        if settings.debug:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "internal_server_error",
                    "message": str(exc),
                    "type": type(exc).__name__,
                },
            )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


# Create app instance
app = create_app()
