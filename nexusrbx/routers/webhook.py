"""Stripe webhook receiver.

Endpoints:
- POST /webhook : verifies the Stripe signature over the raw body, then
  reconciles the event against stored entitlements

Responses:
- 200 {"received": true} once the event is dispatched, including events
  that needed no write
- 400 "Webhook Error: <message>" when verification fails; nothing else runs
- 500 "Webhook handler error" when processing fails, so Stripe redelivers
- 503 for a verified event that arrives before the store is ready
"""

import structlog
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import PlainTextResponse

from nexusrbx.dependencies import get_billing, get_reconciler
from nexusrbx.exceptions import WebhookVerificationError
from nexusrbx.models import WebhookAck
from nexusrbx.services.billing import StripeBilling

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["webhook"])


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Stripe webhook",
    description="Receive Stripe subscription, checkout and invoice events.",
    responses={
        400: {"description": "Signature verification failed", "content": {"text/plain": {}}},
        500: {"description": "Event processing failed", "content": {"text/plain": {}}},
    },
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    billing: StripeBilling = Depends(get_billing),
):
    """Verify and reconcile a Stripe event."""
    # Signature covers the exact bytes; read before anything parses the body
    payload = await request.body()

    try:
        event = billing.verify_event(payload, stripe_signature)
    except WebhookVerificationError as e:
        logger.error("Webhook signature verification failed", error=str(e))
        return PlainTextResponse(
            f"Webhook Error: {e}", status_code=status.HTTP_400_BAD_REQUEST
        )

    reconciler = get_reconciler(request)

    with structlog.contextvars.bound_contextvars(event_id=event.id, event_type=event.type):
        try:
            result = await reconciler.reconcile(event)
        except Exception:
            logger.exception("Webhook handler failed")
            return PlainTextResponse(
                "Webhook handler error",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        logger.info("Webhook event processed", outcome=result.outcome.value)

    return WebhookAck()
