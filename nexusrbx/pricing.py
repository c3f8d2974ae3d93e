"""Price classification table and canonical plan allowances.

Every sellable Stripe price is listed explicitly. A price id missing from the
table classifies as ``None`` so an unconfigured SKU never changes anyone's
entitlements.
"""

from collections.abc import Mapping

from nexusrbx.config import Settings
from nexusrbx.models import BillingCycle, Plan, PlanClassification, PriceKind

# Monthly/yearly token allowance per plan
PLAN_LIMITS: Mapping[Plan, int] = {
    Plan.FREE: 50_000,
    Plan.PRO: 500_000,
    Plan.TEAM: 1_500_000,
}


def plan_limit(plan: Plan) -> int:
    """Canonical token allowance for a plan."""
    return PLAN_LIMITS[plan]


def subscription(plan: Plan, cycle: BillingCycle) -> PlanClassification:
    return PlanClassification(kind=PriceKind.SUBSCRIPTION, plan=plan, cycle=cycle)


def payg(tokens: int) -> PlanClassification:
    return PlanClassification(kind=PriceKind.PAYG, tokens=tokens)


class PriceCatalog:
    """Static lookup from price id to classification."""

    def __init__(self, table: Mapping[str, PlanClassification]) -> None:
        self._table = dict(table)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceCatalog":
        """Build the catalog from the configured price ids."""
        table = {
            settings.stripe_price_pro_monthly: subscription(Plan.PRO, BillingCycle.MONTHLY),
            settings.stripe_price_pro_yearly: subscription(Plan.PRO, BillingCycle.YEARLY),
            settings.stripe_price_team_monthly: subscription(Plan.TEAM, BillingCycle.MONTHLY),
            settings.stripe_price_team_yearly: subscription(Plan.TEAM, BillingCycle.YEARLY),
            settings.stripe_price_payg_100k: payg(100_000),
            settings.stripe_price_payg_500k: payg(500_000),
            settings.stripe_price_payg_1m: payg(1_000_000),
        }
        if len(table) != 7:
            raise ValueError("Stripe price ids must be distinct")
        return cls(table)

    def classify(self, price_id: str | None) -> PlanClassification | None:
        """Classify a price id, or return None when it is not sold here."""
        if not price_id:
            return None
        return self._table.get(price_id)

    def __contains__(self, price_id: object) -> bool:
        return price_id in self._table

    def __len__(self) -> int:
        return len(self._table)
