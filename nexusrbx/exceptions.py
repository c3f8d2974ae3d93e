"""Domain exceptions for billing and entitlement handling."""


class BillingError(Exception):
    """Base class for billing service errors."""


class WebhookVerificationError(BillingError):
    """Inbound webhook failed signature verification or could not be parsed."""


class BillingProviderError(BillingError):
    """A call to the billing provider failed."""


class EntitlementError(BillingError):
    """Base class for entitlement store errors."""


class UserNotFoundError(EntitlementError):
    """The user document does not exist."""

    def __init__(self, uid: str) -> None:
        super().__init__(f"User not found: {uid}")
        self.uid = uid


class InsufficientTokensError(EntitlementError):
    """The user does not have enough tokens left for a charge."""

    def __init__(self, requested: int, remaining: int) -> None:
        super().__init__(
            f"Not enough tokens: requested {requested}, remaining {remaining}"
        )
        self.requested = requested
        self.remaining = remaining
