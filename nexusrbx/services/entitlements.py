"""Firestore-backed entitlement store.

User documents live at ``users/{uid}``. Plan writes are merge-upserts that set
``plan`` and ``subLimit`` together in one write, so a stored plan never
disagrees with its allowance and unrelated profile fields are left alone.
Pay-as-you-go credits live at ``users/{uid}/paygCredits/main`` and token
charges are logged under ``users/{uid}/usageLogs``. The Stripe customer id seen
on subscription events is kept as ``stripeCustomerId`` for portal sessions.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from google.cloud import firestore

from nexusrbx.exceptions import InsufficientTokensError, UserNotFoundError
from nexusrbx.models import (
    BillingCycle,
    EntitlementsResponse,
    PaygBalance,
    Plan,
    SubscriptionAllowance,
    TokenBalances,
)
from nexusrbx.pricing import plan_limit

MIN_TOKENS_PER_REQUEST = 1000


def next_month_start(now: datetime) -> datetime:
    """First instant of the next calendar month, UTC."""
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)


def entitlement_update(plan: Plan, customer_id: str | None = None) -> dict[str, Any]:
    """Fields written for a plan change."""
    update: dict[str, Any] = {
        "plan": plan.value,
        "subLimit": plan_limit(plan),
        "updatedAt": firestore.SERVER_TIMESTAMP,
    }
    if customer_id:
        update["stripeCustomerId"] = customer_id
    return update


def new_user_document(email: str | None, now: datetime) -> dict[str, Any]:
    """Baseline document for a user seen for the first time."""
    return {
        "email": email,
        "plan": Plan.FREE.value,
        "cycle": None,
        "subLimit": plan_limit(Plan.FREE),
        "subUsed": 0,
        "subPeriodEnd": next_month_start(now),
        "paygBalance": 0,
        "seats": 1,
        "createdAt": firestore.SERVER_TIMESTAMP,
        "updatedAt": firestore.SERVER_TIMESTAMP,
    }


def charge_amount(tokens: float) -> int:
    """Tokens actually charged for a request."""
    return max(MIN_TOKENS_PER_REQUEST, math.ceil(tokens))


def _as_utc(value: Any) -> datetime | None:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _parse_plan(value: Any) -> Plan:
    try:
        return Plan(value)
    except ValueError:
        return Plan.FREE


def _parse_cycle(value: Any) -> BillingCycle | None:
    try:
        return BillingCycle(value)
    except ValueError:
        return None


def _int_field(data: dict[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


@dataclass(frozen=True)
class ConsumptionPlan:
    """How a charge splits between the subscription allowance and PAYG credits."""

    amount: int
    from_sub: int
    from_payg: int
    sub_remaining: int
    payg_remaining: int
    window_reset: bool
    period_end: datetime | None

    @property
    def balances(self) -> TokenBalances:
        return TokenBalances(
            sub_remaining=self.sub_remaining,
            payg_remaining=self.payg_remaining,
        )


def plan_consumption(
    user: dict[str, Any],
    payg_balance: int,
    amount: int,
    now: datetime,
) -> ConsumptionPlan:
    """Split a charge, drawing on the subscription allowance before PAYG credits.

    A billing window that has ended, or was never started, is reset before
    charging.

    Raises:
        InsufficientTokensError: if both balances together are short of amount
    """
    sub_limit = _int_field(user, "subLimit", plan_limit(_parse_plan(user.get("plan"))))
    sub_used = _int_field(user, "subUsed")
    period_end = _as_utc(user.get("subPeriodEnd"))

    window_reset = period_end is None or now >= period_end
    if window_reset:
        sub_used = 0
        period_end = next_month_start(now)

    sub_available = max(0, sub_limit - sub_used)
    payg_available = max(0, payg_balance)
    if sub_available + payg_available < amount:
        raise InsufficientTokensError(amount, sub_available + payg_available)

    from_sub = min(amount, sub_available)
    from_payg = amount - from_sub
    return ConsumptionPlan(
        amount=amount,
        from_sub=from_sub,
        from_payg=from_payg,
        sub_remaining=sub_available - from_sub,
        payg_remaining=payg_available - from_payg,
        window_reset=window_reset,
        period_end=period_end,
    )


class EntitlementStore:
    """Reads and writes user entitlements in Firestore."""

    def __init__(self, db: firestore.Client, collection: str = "users") -> None:
        self._db = db
        self._collection = collection

    def _user_ref(self, uid: str) -> Any:
        return self._db.collection(self._collection).document(uid)

    def _payg_ref(self, uid: str) -> Any:
        return self._user_ref(uid).collection("paygCredits").document("main")

    async def health_check(self) -> bool:
        """Check Firestore connectivity."""
        try:
            await asyncio.to_thread(
                lambda: self._db.collection(self._collection).limit(1).get()
            )
            return True
        except Exception:
            return False

    # ============ Plan writes ============

    async def apply_plan(
        self, uid: str, plan: Plan, customer_id: str | None = None
    ) -> dict[str, Any]:
        """Merge-upsert a plan and its canonical allowance for a user.

        The billing customer id is remembered for portal sessions.
        """
        update = entitlement_update(plan, customer_id)
        await asyncio.to_thread(self._user_ref(uid).set, update, merge=True)
        return update

    async def downgrade(self, uid: str, customer_id: str | None = None) -> dict[str, Any]:
        """Return a user to the FREE plan."""
        return await self.apply_plan(uid, Plan.FREE, customer_id)

    # ============ Reads ============

    async def get_or_create(self, uid: str, email: str | None = None) -> dict[str, Any]:
        """Fetch a user document, filling in any missing FREE baseline fields."""
        return await asyncio.to_thread(self._get_or_create, uid, email)

    def _get_or_create(self, uid: str, email: str | None) -> dict[str, Any]:
        ref = self._user_ref(uid)
        snap = ref.get()
        baseline = new_user_document(email, datetime.now(UTC))
        if not snap.exists:
            ref.set(baseline, merge=True)
            return ref.get().to_dict() or {}

        # Documents first written by a plan change carry only plan fields
        user = snap.to_dict() or {}
        baseline["subLimit"] = plan_limit(_parse_plan(user.get("plan")))
        missing = {key: value for key, value in baseline.items() if key not in user}
        if email and not user.get("email"):
            missing["email"] = email
        if not missing:
            return user

        ref.set(missing, merge=True)
        return ref.get().to_dict() or {}

    async def read_entitlements(
        self, uid: str, email: str | None = None
    ) -> EntitlementsResponse:
        """Current plan, allowance usage and PAYG balance for a user."""
        user = await self.get_or_create(uid, email)
        payg_snap = await asyncio.to_thread(self._payg_ref(uid).get)
        return self._summarize(user, self._payg_balance(user, payg_snap), datetime.now(UTC))

    @staticmethod
    def _payg_balance(user: dict[str, Any], payg_snap: Any) -> int:
        if payg_snap.exists:
            balance = (payg_snap.to_dict() or {}).get("balance")
            if isinstance(balance, (int, float)) and not isinstance(balance, bool):
                return int(balance)
        return _int_field(user, "paygBalance")

    @staticmethod
    def _summarize(
        user: dict[str, Any], payg_balance: int, now: datetime
    ) -> EntitlementsResponse:
        plan = _parse_plan(user.get("plan"))
        used = _int_field(user, "subUsed")
        resets_at = _as_utc(user.get("subPeriodEnd"))
        if resets_at is None or now >= resets_at:
            used = 0
            resets_at = next_month_start(now)

        return EntitlementsResponse(
            plan=plan,
            cycle=_parse_cycle(user.get("cycle")),
            sub=SubscriptionAllowance(
                limit=_int_field(user, "subLimit", plan_limit(plan)),
                used=used,
                resets_at=resets_at,
            ),
            payg=PaygBalance(remaining=max(0, payg_balance)),
            seats=_int_field(user, "seats", 1),
        )

    # ============ Token consumption ============

    async def consume(
        self,
        uid: str,
        tokens: float,
        reason: str | None = None,
        job_id: str | None = None,
    ) -> TokenBalances:
        """Charge tokens for a generation job.

        Replaying a ``job_id`` that was already charged returns the current
        balances without charging again.

        Raises:
            UserNotFoundError: the user document does not exist
            InsufficientTokensError: not enough tokens left
        """
        return await asyncio.to_thread(
            self._consume, uid, charge_amount(tokens), reason, job_id
        )

    def _consume(
        self, uid: str, amount: int, reason: str | None, job_id: str | None
    ) -> TokenBalances:
        user_ref = self._user_ref(uid)
        payg_ref = self._payg_ref(uid)
        logs = user_ref.collection("usageLogs")
        log_ref = logs.document(job_id) if job_id else logs.document()

        @firestore.transactional
        def run(transaction: firestore.Transaction) -> TokenBalances:
            user_snap = user_ref.get(transaction=transaction)
            if not user_snap.exists:
                raise UserNotFoundError(uid)
            user = user_snap.to_dict() or {}

            payg_snap = payg_ref.get(transaction=transaction)
            payg_balance = self._payg_balance(user, payg_snap)
            now = datetime.now(UTC)

            if job_id and log_ref.get(transaction=transaction).exists:
                return plan_consumption(user, payg_balance, 0, now).balances

            plan = plan_consumption(user, payg_balance, amount, now)

            if plan.window_reset:
                user_update: dict[str, Any] = {
                    "subUsed": plan.from_sub,
                    "subPeriodEnd": plan.period_end,
                }
            else:
                user_update = {"subUsed": firestore.Increment(plan.from_sub)}
            if plan.from_payg > 0 and not payg_snap.exists:
                user_update["paygBalance"] = firestore.Increment(-plan.from_payg)
            user_update["updatedAt"] = firestore.SERVER_TIMESTAMP
            transaction.update(user_ref, user_update)

            if plan.from_payg > 0 and payg_snap.exists:
                transaction.set(
                    payg_ref,
                    {
                        "balance": firestore.Increment(-plan.from_payg),
                        "updatedAt": firestore.SERVER_TIMESTAMP,
                    },
                    merge=True,
                )

            transaction.set(
                log_ref,
                {
                    "tokens": amount,
                    "reason": reason,
                    "jobId": job_id,
                    "createdAt": firestore.SERVER_TIMESTAMP,
                },
            )
            return plan.balances

        return run(self._db.transaction())
