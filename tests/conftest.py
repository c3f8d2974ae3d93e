"""Pytest configuration and fixtures."""

import hashlib
import hmac
import itertools
import json
import os
import time
from typing import Any

# Settings are read when the app module is imported; configure before that
os.environ["STRIPE_SECRET_KEY"] = "sk_test_nexusrbx"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_nexusrbx"
os.environ["PROMETHEUS_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "development"

import pytest
from google.cloud import firestore

from nexusrbx.config import Settings, get_settings
from nexusrbx.exceptions import BillingProviderError
from nexusrbx.pricing import PriceCatalog
from nexusrbx.services.entitlements import EntitlementStore
from nexusrbx.services.reconciliation import EntitlementReconciler

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

TEST_PRICES = {
    "stripe_price_pro_monthly": "price_proMonthly",
    "stripe_price_pro_yearly": "price_proYearly",
    "stripe_price_team_monthly": "price_teamMonthly",
    "stripe_price_team_yearly": "price_teamYearly",
    "stripe_price_payg_100k": "price_pack100k",
    "stripe_price_payg_500k": "price_pack500k",
    "stripe_price_payg_1m": "price_pack1m",
}


# ============ Firestore fakes ============


class FakeSnapshot:
    def __init__(self, data: dict | None):
        self._data = data
        self.exists = data is not None

    def to_dict(self) -> dict | None:
        return dict(self._data) if self._data is not None else None


def resolve_transforms(current: dict, data: dict) -> dict:
    """Apply Increment transforms the way Firestore does on write."""
    return {
        key: current.get(key, 0) + value.value if isinstance(value, firestore.Increment) else value
        for key, value in data.items()
    }


class FakeDocument:
    def __init__(self, db: "FakeFirestore", path: str):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def get(self, transaction=None) -> FakeSnapshot:
        return FakeSnapshot(self._db.docs.get(self.path))

    def set(self, data: dict, merge: bool = False) -> None:
        if self._db.fail_writes:
            raise RuntimeError("firestore unavailable")
        self._db.writes.append((self.path, dict(data), merge))
        current = self._db.docs.get(self.path, {}) if merge else {}
        resolved = resolve_transforms(current, data)
        if merge and self.path in self._db.docs:
            self._db.docs[self.path].update(resolved)
        else:
            self._db.docs[self.path] = resolved

    def update(self, data: dict) -> None:
        if self.path not in self._db.docs:
            raise KeyError(self.path)
        self._db.writes.append((self.path, dict(data), True))
        current = self._db.docs[self.path]
        current.update(resolve_transforms(current, data))

    def collection(self, name: str) -> "FakeCollection":
        return FakeCollection(self._db, f"{self.path}/{name}")


class FakeCollection:
    def __init__(self, db: "FakeFirestore", path: str):
        self._db = db
        self.path = path

    def document(self, doc_id: str | None = None) -> FakeDocument:
        if doc_id is None:
            doc_id = f"auto{next(self._db.ids)}"
        return FakeDocument(self._db, f"{self.path}/{doc_id}")

    def limit(self, count: int) -> "FakeCollection":
        return self

    def get(self) -> list[FakeSnapshot]:
        prefix = self.path + "/"
        return [
            FakeSnapshot(data)
            for path, data in self._db.docs.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]


class FakeFirestore:
    """In-memory stand-in for the parts of firestore.Client the store uses."""

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.writes: list[tuple[str, dict, bool]] = []
        self.fail_writes = False
        self.ids = itertools.count(1)

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def transaction(self) -> "FakeTransaction":
        return FakeTransaction(self)


class FakeTransaction:
    """Applies transactional writes straight to the fake store."""

    def __init__(self, db: FakeFirestore):
        self._db = db

    def update(self, ref: FakeDocument, data: dict) -> None:
        ref.update(data)

    def set(self, ref: FakeDocument, data: dict, merge: bool = False) -> None:
        ref.set(data, merge=merge)


# ============ Stripe fakes ============


class FakeStripe:
    """Subscription/customer source with call recording."""

    def __init__(self):
        self.subscriptions: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        self.calls.append(("subscription", subscription_id))
        if subscription_id not in self.subscriptions:
            raise BillingProviderError(f"No such subscription: {subscription_id}")
        return self.subscriptions[subscription_id]

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        self.calls.append(("customer", customer_id))
        if customer_id not in self.customers:
            raise BillingProviderError(f"No such customer: {customer_id}")
        return self.customers[customer_id]


class FakeRedis:
    def __init__(self, start: int = 0):
        self.store: dict[str, int] = {}
        self.start = start

    async def incr(self, key):
        self.store[key] = self.store.get(key, self.start) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        return True

    async def ttl(self, key):
        return 42

    async def ping(self):
        return True

    async def close(self):
        return


# ============ Helpers ============


def make_subscription(
    price_id: str = "price_proMonthly",
    uid: str | None = "user123",
    customer: str | None = "cus_123",
    sub_id: str = "sub_123",
    extra_prices: tuple[str, ...] = (),
) -> dict:
    items = [{"id": f"si_{i}", "price": {"id": p}} for i, p in enumerate((price_id, *extra_prices))]
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": "active",
        "metadata": {"uid": uid} if uid else {},
        "items": {"object": "list", "data": items},
    }


def make_event(event_type: str, obj: dict, event_id: str = "evt_123") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for a payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def encode_event(event: dict) -> bytes:
    return json.dumps(event).encode()


# ============ Fixtures ============


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, **TEST_PRICES)


@pytest.fixture
def catalog(settings) -> PriceCatalog:
    return PriceCatalog.from_settings(settings)


@pytest.fixture
def fake_db(monkeypatch) -> FakeFirestore:
    # Run transaction bodies once, directly against the fake
    monkeypatch.setattr(firestore, "transactional", lambda fn: fn)
    return FakeFirestore()


@pytest.fixture
def store(fake_db) -> EntitlementStore:
    return EntitlementStore(fake_db, collection="users")


@pytest.fixture
def fake_stripe() -> FakeStripe:
    return FakeStripe()


@pytest.fixture
def reconciler(fake_stripe, store, catalog) -> EntitlementReconciler:
    return EntitlementReconciler(billing=fake_stripe, store=store, catalog=catalog)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
