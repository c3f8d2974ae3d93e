"""Stripe billing gateway: webhook verification, object retrieval and hosted sessions.

The Stripe SDK is synchronous; retrieval and session creation run in a worker
thread so request handlers stay non-blocking. The API key is passed on every
call instead of being assigned to ``stripe.api_key``.
"""

from __future__ import annotations

import asyncio
from typing import Any

import stripe
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from nexusrbx.config import Settings
from nexusrbx.exceptions import BillingProviderError, WebhookVerificationError
from nexusrbx.models import BillingEvent, CheckoutMode


class StripeBilling:
    """Stripe implementation of the billing provider collaborator."""

    def __init__(self, api_key: str, webhook_secret: str, tolerance: int = 300) -> None:
        if not api_key:
            raise BillingProviderError("Stripe API key not configured")
        if not webhook_secret:
            raise BillingProviderError("Stripe webhook secret not configured")

        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._tolerance = tolerance

    @classmethod
    def from_settings(cls, settings: Settings) -> StripeBilling:
        return cls(
            api_key=settings.stripe_secret_key.get_secret_value(),
            webhook_secret=settings.stripe_webhook_secret.get_secret_value(),
            tolerance=settings.stripe_webhook_tolerance,
        )

    def verify_event(self, payload: bytes, signature: str | None) -> BillingEvent:
        """Verify a webhook signature over the raw body, then parse the event.

        Raises:
            WebhookVerificationError: missing or bad signature, stale
                timestamp, or a body that is not a Stripe event
        """
        if not signature:
            raise WebhookVerificationError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookVerificationError("Invalid payload encoding") from e

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, self._tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(e.user_message or str(e)) from e

        try:
            return BillingEvent.model_validate_json(body)
        except ValidationError as e:
            raise WebhookVerificationError(
                f"Invalid payload: {e.error_count()} validation error(s)"
            ) from e

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Fetch a subscription by id."""
        return await asyncio.to_thread(self._retrieve, stripe.Subscription, subscription_id)

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        """Fetch a customer by id."""
        return await asyncio.to_thread(self._retrieve, stripe.Customer, customer_id)

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        mode: CheckoutMode,
        uid: str,
        success_url: str,
        cancel_url: str,
        email: str | None = None,
    ) -> str:
        """Create a Checkout Session tagged with the app user id; returns its URL."""
        params: dict[str, Any] = {
            "mode": mode.value,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": uid,
            "allow_promotion_codes": True,
            "metadata": {"uid": uid},
        }
        if email:
            params["customer_email"] = email
        if mode == CheckoutMode.SUBSCRIPTION:
            params["subscription_data"] = {"metadata": {"uid": uid}}
        else:
            params["payment_intent_data"] = {"metadata": {"uid": uid}}

        return await asyncio.to_thread(self._create_checkout_session, params)

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        """Create a Customer Portal session for a billing customer; returns its URL."""
        return await asyncio.to_thread(self._create_portal_session, customer_id, return_url)

    @retry(
        retry=retry_if_exception_type((stripe.APIConnectionError, stripe.RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    def _fetch(self, resource: Any, object_id: str) -> Any:
        return resource.retrieve(object_id, api_key=self._api_key)

    def _retrieve(self, resource: Any, object_id: str) -> dict[str, Any]:
        try:
            obj = self._fetch(resource, object_id)
        except stripe.StripeError as e:
            raise BillingProviderError(
                f"Stripe {resource.OBJECT_NAME} retrieval failed: {e}"
            ) from e
        return obj.to_dict()

    def _create_checkout_session(self, params: dict[str, Any]) -> str:
        try:
            session = stripe.checkout.Session.create(api_key=self._api_key, **params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}") from e
        return session.url

    def _create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}") from e
        return session.url
