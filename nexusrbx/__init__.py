"""NexusRBX billing service: Stripe entitlement reconciliation and token billing."""

__version__ = "0.1.0"
