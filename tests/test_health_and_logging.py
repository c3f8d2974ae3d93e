from fastapi.testclient import TestClient

from conftest import FakeRedis
from nexusrbx.auth import dependencies as auth_deps
from nexusrbx.main import create_app
from nexusrbx.config import Environment
from nexusrbx.utils.logging import SERVICE_NAME, SERVICE_VERSION, mask_secrets, service_fields


class BrokenRedis(FakeRedis):
    async def ping(self):
        raise ConnectionError("redis down")


def test_root_info():
    client = TestClient(create_app())

    body = client.get("/").json()

    assert body["name"] == "NexusRBX Billing API"
    assert body["health"] == "/health"


def test_health_healthy(monkeypatch, store):
    monkeypatch.setattr(auth_deps, "redis_client", FakeRedis())
    app = create_app()
    app.state.entitlements = store
    client = TestClient(app)

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["firestore"] == "healthy"
    assert body["redis"] == "healthy"
    assert body["environment"] == "development"


def test_health_degraded_before_startup(monkeypatch):
    monkeypatch.setattr(auth_deps, "redis_client", None)
    client = TestClient(create_app())

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["firestore"] == "unavailable"
    assert body["redis"] == "unavailable"


def test_health_reports_unhealthy_redis(monkeypatch, store):
    monkeypatch.setattr(auth_deps, "redis_client", BrokenRedis())
    app = create_app()
    app.state.entitlements = store
    client = TestClient(app)

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["redis"] == "unhealthy"


def test_sensitive_fields_masked():
    event = mask_secrets(
        None,
        "info",
        {
            "event": "Webhook received",
            "stripe_signature": "t=1700000000,v1=abcdef0123456789",
            "webhook_secret": "short",
            "id_token": "eyJhbGciOiJSUzI1NiJ9.payload.sig",
            "uid": "user123",
        },
    )

    assert event["stripe_signature"] == "t=17...6789"
    assert event["webhook_secret"] == "***REDACTED***"
    assert event["id_token"] == "eyJh....sig"
    assert event["uid"] == "user123"


def test_stripe_secrets_masked_inside_messages():
    event = mask_secrets(
        None,
        "error",
        {
            "event": "Checkout session creation failed",
            "error": "Invalid API Key provided: sk_test_51Habc123XYZ",
            "detail": "signed with whsec_abc123",
            "customer_id": "cus_123",
        },
    )

    assert "sk_test_51Habc123XYZ" not in event["error"]
    assert event["error"] == "Invalid API Key provided: ***REDACTED***"
    assert event["detail"] == "signed with ***REDACTED***"
    assert event["customer_id"] == "cus_123"


def test_service_fields_added(settings):
    settings.environment = Environment.PRODUCTION
    add_service_fields = service_fields(settings)

    event = add_service_fields(None, "info", {"event": "x"})

    assert event["service"] == SERVICE_NAME
    assert event["version"] == SERVICE_VERSION
    assert event["environment"] == "production"
