"""Pydantic models for billing events, entitlements and API payloads."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Largest single charge accepted by the consume endpoint
MAX_TOKENS_PER_REQUEST = 10_000_000


class Plan(str, Enum):
    """Subscription plans."""

    FREE = "FREE"
    PRO = "PRO"
    TEAM = "TEAM"


class BillingCycle(str, Enum):
    """Subscription billing cycles."""

    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class PriceKind(str, Enum):
    """What a price sells."""

    SUBSCRIPTION = "sub"
    PAYG = "payg"


class PlanClassification(BaseModel):
    """Meaning of a billing price identifier."""

    model_config = ConfigDict(frozen=True)

    kind: PriceKind
    plan: Plan | None = None
    cycle: BillingCycle | None = None
    tokens: int | None = None


# ============ Authentication Models ============


class TokenData(BaseModel):
    """Verified Firebase ID token data."""

    uid: str
    email: str | None = None


# ============ Billing Event Models ============


class BillingEventData(BaseModel):
    """Envelope around the object an event is about."""

    model_config = ConfigDict(extra="ignore")

    object: dict[str, Any] = Field(default_factory=dict)


class BillingEvent(BaseModel):
    """A verified notification from the billing provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: int | None = None
    livemode: bool = False
    data: BillingEventData = Field(default_factory=BillingEventData)

    @property
    def payload(self) -> dict[str, Any]:
        """The subscription, session or invoice carried by the event."""
        return self.data.object


class SubscriptionRefKind(str, Enum):
    """Where the subscription for an event comes from."""

    INLINE = "inline"
    REMOTE = "remote"
    NONE = "none"


class SubscriptionRef(BaseModel):
    """Subscription reference normalized from any accepted event shape."""

    kind: SubscriptionRefKind
    subscription: dict[str, Any] | None = None
    subscription_id: str | None = None

    @classmethod
    def inline(cls, subscription: dict[str, Any]) -> "SubscriptionRef":
        return cls(kind=SubscriptionRefKind.INLINE, subscription=subscription)

    @classmethod
    def remote(cls, subscription_id: str) -> "SubscriptionRef":
        return cls(kind=SubscriptionRefKind.REMOTE, subscription_id=subscription_id)

    @classmethod
    def none(cls) -> "SubscriptionRef":
        return cls(kind=SubscriptionRefKind.NONE)


class ReconcileOutcome(str, Enum):
    """What reconciling one event did."""

    IGNORED = "ignored"
    NO_SUBSCRIPTION = "no_subscription"
    UNKNOWN_USER = "unknown_user"
    NO_PLAN_CHANGE = "no_plan_change"
    DOWNGRADED = "downgraded"
    UPDATED = "updated"


class ReconcileResult(BaseModel):
    """Result of reconciling a billing event against stored entitlements."""

    event_id: str
    event_type: str
    outcome: ReconcileOutcome
    uid: str | None = None
    plan: Plan | None = None

    @property
    def wrote(self) -> bool:
        return self.outcome in (ReconcileOutcome.DOWNGRADED, ReconcileOutcome.UPDATED)


class WebhookAck(BaseModel):
    """Webhook acknowledgment."""

    received: bool = True


# ============ Entitlement Models ============


class SubscriptionAllowance(BaseModel):
    """Subscription token allowance for the current billing window."""

    model_config = ConfigDict(populate_by_name=True)

    limit: int
    used: int = 0
    resets_at: datetime | None = Field(default=None, alias="resetsAt")


class PaygBalance(BaseModel):
    """Pay-as-you-go token balance."""

    remaining: int = 0


class EntitlementsResponse(BaseModel):
    """Current entitlements of the signed-in user."""

    plan: Plan = Plan.FREE
    cycle: BillingCycle | None = None
    sub: SubscriptionAllowance
    payg: PaygBalance = Field(default_factory=PaygBalance)
    seats: int = 1


class ConsumeRequest(BaseModel):
    """Token consumption request."""

    model_config = ConfigDict(populate_by_name=True)

    tokens: float = Field(default=0, ge=0, le=MAX_TOKENS_PER_REQUEST, allow_inf_nan=False)
    reason: str | None = Field(default=None, max_length=200)
    job_id: str | None = Field(default=None, alias="jobId", min_length=1, max_length=200)


class TokenBalances(BaseModel):
    """Remaining balances after a charge."""

    model_config = ConfigDict(populate_by_name=True)

    sub_remaining: int = Field(..., alias="subRemaining")
    payg_remaining: int = Field(..., alias="paygRemaining")


class ConsumeResponse(BaseModel):
    """Token consumption response."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    new_balances: TokenBalances = Field(..., alias="newBalances")


class CheckoutMode(str, Enum):
    """Stripe Checkout modes."""

    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


class CheckoutRequest(BaseModel):
    """Checkout session creation request."""

    model_config = ConfigDict(populate_by_name=True)

    price_id: str = Field(..., alias="priceId", min_length=1)
    mode: CheckoutMode


class CheckoutResponse(BaseModel):
    """Checkout session creation response."""

    url: str


class PortalResponse(BaseModel):
    """Customer Portal session creation response."""

    url: str


# ============ Error Models ============


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    message: str
    details: dict | None = None


# ============ Health Models ============


class HealthCheck(BaseModel):
    """Health check response."""

    status: str
    version: str
    environment: str
    firestore: str
    redis: str
