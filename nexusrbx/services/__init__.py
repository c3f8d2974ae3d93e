"""Services package."""

from nexusrbx.services.billing import StripeBilling
from nexusrbx.services.entitlements import EntitlementStore
from nexusrbx.services.reconciliation import EntitlementReconciler

__all__ = ["StripeBilling", "EntitlementStore", "EntitlementReconciler"]
