"""Entitlement reconciliation for Stripe billing events.

A verified event is mapped to the subscription it concerns, the subscription
to the NexusRBX user that owns it, and the subscription's price to a plan.
The user's stored plan is then brought in line. Replaying an event writes the
same plan again, so Stripe redeliveries are harmless.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

import structlog

from nexusrbx.exceptions import BillingProviderError
from nexusrbx.models import (
    BillingEvent,
    PlanClassification,
    ReconcileOutcome,
    ReconcileResult,
    SubscriptionRef,
    SubscriptionRefKind,
)
from nexusrbx.pricing import PriceCatalog
from nexusrbx.services.entitlements import EntitlementStore

logger = structlog.get_logger(__name__)

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAID = "invoice.paid"

SUBSCRIPTION_EVENTS = frozenset(
    {SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED}
)
INVOICE_EVENTS = frozenset({INVOICE_PAYMENT_SUCCEEDED, INVOICE_PAID})
HANDLED_EVENTS = SUBSCRIPTION_EVENTS | INVOICE_EVENTS | {CHECKOUT_COMPLETED}


class SubscriptionSource(Protocol):
    """The billing provider calls reconciliation depends on."""

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]: ...

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]: ...


def _nested(data: Mapping[str, Any], *keys: str) -> Any:
    value: Any = data
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _object_id(value: Any) -> str | None:
    """Id of a Stripe reference given either as an id or an expanded object."""
    if isinstance(value, Mapping):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def subscription_ref(event: BillingEvent) -> SubscriptionRef:
    """Normalize the subscription an event refers to."""
    payload = event.payload

    if event.type in SUBSCRIPTION_EVENTS:
        return SubscriptionRef.inline(payload)

    if event.type == CHECKOUT_COMPLETED:
        ref = payload.get("subscription")
    elif event.type in INVOICE_EVENTS:
        ref = payload.get("subscription") or _nested(
            payload, "parent", "subscription_details", "subscription"
        )
    else:
        return SubscriptionRef.none()

    if isinstance(ref, Mapping) and ref.get("object") == "subscription":
        return SubscriptionRef.inline(dict(ref))

    subscription_id = _object_id(ref)
    if subscription_id:
        return SubscriptionRef.remote(subscription_id)
    return SubscriptionRef.none()


def customer_id(subscription: Mapping[str, Any]) -> str | None:
    """Billing customer of a subscription, whichever field carries it."""
    return _object_id(subscription.get("customer")) or _object_id(
        _nested(subscription, "customer_details", "customer")
    )


def subscription_items(subscription: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    items = subscription.get("items")
    if isinstance(items, Mapping):
        items = items.get("data")
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, Mapping)]


def first_price_id(subscription: Mapping[str, Any]) -> str | None:
    items = subscription_items(subscription)
    if not items:
        return None
    return _object_id(items[0].get("price"))


class EntitlementReconciler:
    """Applies billing events to stored user entitlements."""

    def __init__(
        self,
        billing: SubscriptionSource,
        store: EntitlementStore,
        catalog: PriceCatalog,
    ) -> None:
        self._billing = billing
        self._store = store
        self._catalog = catalog

    async def resolve_subscription(self, event: BillingEvent) -> dict[str, Any] | None:
        """Subscription an event concerns, fetched from Stripe if only referenced.

        Raises:
            BillingProviderError: the subscription could not be fetched
        """
        ref = subscription_ref(event)
        if ref.kind == SubscriptionRefKind.INLINE:
            return ref.subscription
        if ref.kind == SubscriptionRefKind.REMOTE:
            return await self._billing.retrieve_subscription(ref.subscription_id)
        return None

    async def resolve_uid(self, subscription: Mapping[str, Any]) -> str | None:
        """NexusRBX user id owning a subscription, or None when unknown."""
        uid = _object_id(_nested(subscription, "metadata", "uid"))
        if uid:
            return uid

        cid = customer_id(subscription)
        if not cid:
            return None

        try:
            customer = await self._billing.retrieve_customer(cid)
        except BillingProviderError as e:
            logger.warning("Customer lookup failed", customer_id=cid, error=str(e))
            return None

        return _object_id(_nested(customer, "metadata", "uid"))

    def classify(self, subscription: Mapping[str, Any]) -> PlanClassification | None:
        """Classify the first item of a subscription."""
        items = subscription_items(subscription)
        if len(items) > 1:
            logger.warning(
                "Subscription has several items; classifying the first",
                subscription_id=subscription.get("id"),
                item_count=len(items),
            )
        return self._catalog.classify(first_price_id(subscription))

    async def reconcile(self, event: BillingEvent) -> ReconcileResult:
        """Bring the owning user's stored plan in line with a billing event.

        Raises:
            BillingProviderError: a referenced subscription could not be fetched
        """

        def result(outcome: ReconcileOutcome, **kwargs: Any) -> ReconcileResult:
            return ReconcileResult(
                event_id=event.id, event_type=event.type, outcome=outcome, **kwargs
            )

        if event.type not in HANDLED_EVENTS:
            logger.debug("Ignoring billing event")
            return result(ReconcileOutcome.IGNORED)

        subscription = await self.resolve_subscription(event)
        if subscription is None:
            logger.warning("No subscription found for event")
            return result(ReconcileOutcome.NO_SUBSCRIPTION)

        log = logger.bind(subscription_id=subscription.get("id"))
        uid = await self.resolve_uid(subscription)
        if not uid:
            log.warning("No uid found in subscription or customer metadata")
            return result(ReconcileOutcome.UNKNOWN_USER)

        log = log.bind(uid=uid)
        cid = customer_id(subscription)
        if event.type == SUBSCRIPTION_DELETED:
            update = await self._store.downgrade(uid, cid)
            log.info("Subscription cancelled; downgraded to FREE", sub_limit=update["subLimit"])
            return result(ReconcileOutcome.DOWNGRADED, uid=uid, plan=update["plan"])

        classification = self.classify(subscription)
        if classification is None or classification.plan is None:
            log.info("No plan for subscription price", price_id=first_price_id(subscription))
            return result(ReconcileOutcome.NO_PLAN_CHANGE, uid=uid)

        update = await self._store.apply_plan(uid, classification.plan, cid)
        log.info(
            "Plan updated",
            plan=update["plan"],
            cycle=classification.cycle.value if classification.cycle else None,
            sub_limit=update["subLimit"],
        )
        return result(ReconcileOutcome.UPDATED, uid=uid, plan=update["plan"])
