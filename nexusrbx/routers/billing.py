"""Billing endpoints used by the NexusRBX frontend.

Endpoints:
- GET  /api/billing/entitlements : plan, allowance usage and PAYG balance
- POST /api/billing/consume      : charge tokens for a generation job
- POST /api/checkout             : create a Stripe Checkout Session URL
- POST /api/portal               : create a Stripe Customer Portal session URL

All endpoints require a Firebase ID token.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from nexusrbx.auth import ReadRateLimited, UserRateLimited
from nexusrbx.config import get_settings
from nexusrbx.dependencies import get_billing, get_catalog, get_store
from nexusrbx.exceptions import (
    BillingProviderError,
    InsufficientTokensError,
    UserNotFoundError,
)
from nexusrbx.models import (
    CheckoutMode,
    CheckoutRequest,
    CheckoutResponse,
    ConsumeRequest,
    ConsumeResponse,
    EntitlementsResponse,
    ErrorResponse,
    PortalResponse,
    PriceKind,
)
from nexusrbx.pricing import PriceCatalog
from nexusrbx.services.billing import StripeBilling
from nexusrbx.services.entitlements import EntitlementStore, charge_amount

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])

CHECKOUT_MODES = {
    PriceKind.SUBSCRIPTION: CheckoutMode.SUBSCRIPTION,
    PriceKind.PAYG: CheckoutMode.PAYMENT,
}


@router.get(
    "/billing/entitlements",
    response_model=EntitlementsResponse,
    summary="Current entitlements",
    description="Get the signed-in user's plan, token allowance and PAYG balance.",
)
async def get_entitlements(
    current_user: ReadRateLimited,
    response: Response,
    store: EntitlementStore = Depends(get_store),
) -> EntitlementsResponse:
    """Read entitlements, creating the FREE baseline for new users."""
    response.headers["Cache-Control"] = "no-store"
    return await store.read_entitlements(current_user.uid, current_user.email)


@router.post(
    "/billing/consume",
    response_model=ConsumeResponse,
    summary="Consume tokens",
    description="Charge tokens against the subscription allowance, then PAYG credits.",
    responses={
        402: {"model": ErrorResponse, "description": "Not enough tokens"},
        404: {"model": ErrorResponse, "description": "User not found"},
    },
)
async def consume_tokens(
    body: ConsumeRequest,
    current_user: UserRateLimited,
    store: EntitlementStore = Depends(get_store),
) -> ConsumeResponse:
    """Charge tokens; replaying a jobId charges nothing."""
    await store.get_or_create(current_user.uid, current_user.email)

    try:
        balances = await store.consume(
            current_user.uid, body.tokens, reason=body.reason, job_id=body.job_id
        )
    except InsufficientTokensError as e:
        logger.info(
            "Token charge refused",
            uid=current_user.uid,
            requested=e.requested,
            remaining=e.remaining,
        )
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="Not enough tokens",
        )
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    logger.info(
        "Tokens consumed",
        uid=current_user.uid,
        amount=charge_amount(body.tokens),
        job_id=body.job_id,
    )
    return ConsumeResponse(new_balances=balances)


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    summary="Create checkout session",
    description="Create a Stripe Checkout Session for a subscription or token pack.",
    responses={
        400: {"model": ErrorResponse, "description": "Unknown price or wrong mode"},
        502: {"model": ErrorResponse, "description": "Stripe request failed"},
    },
)
async def create_checkout(
    body: CheckoutRequest,
    current_user: UserRateLimited,
    billing: StripeBilling = Depends(get_billing),
    catalog: PriceCatalog = Depends(get_catalog),
) -> CheckoutResponse:
    """Create a Checkout Session tagged with the user's uid."""
    classification = catalog.classify(body.price_id)
    if classification is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing or invalid priceId",
        )
    if CHECKOUT_MODES[classification.kind] != body.mode:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Price requires mode '{CHECKOUT_MODES[classification.kind].value}'",
        )

    app_url = get_settings().app_url.rstrip("/")
    try:
        url = await billing.create_checkout_session(
            price_id=body.price_id,
            mode=body.mode,
            uid=current_user.uid,
            email=current_user.email,
            success_url=f"{app_url}/billing?checkout=success",
            cancel_url=f"{app_url}/billing?checkout=cancel",
        )
    except BillingProviderError as e:
        logger.error("Checkout session creation failed", uid=current_user.uid, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Checkout session creation failed",
        )

    return CheckoutResponse(url=url)


@router.post(
    "/portal",
    response_model=PortalResponse,
    summary="Open billing portal",
    description="Create a Stripe Customer Portal session to manage the subscription.",
    responses={
        404: {"model": ErrorResponse, "description": "No billing account yet"},
        502: {"model": ErrorResponse, "description": "Stripe request failed"},
    },
)
async def create_portal(
    current_user: UserRateLimited,
    billing: StripeBilling = Depends(get_billing),
    store: EntitlementStore = Depends(get_store),
) -> PortalResponse:
    """Create a portal session for the customer recorded on the user."""
    user = await store.get_or_create(current_user.uid, current_user.email)
    customer_id = user.get("stripeCustomerId")
    if not customer_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No billing account for this user",
        )

    try:
        url = await billing.create_portal_session(
            customer_id=customer_id,
            return_url=f"{get_settings().app_url.rstrip('/')}/billing",
        )
    except BillingProviderError as e:
        logger.error("Portal session creation failed", uid=current_user.uid, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Portal session creation failed",
        )

    return PortalResponse(url=url)
