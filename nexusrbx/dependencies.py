"""FastAPI dependencies resolving the services built at startup."""

from fastapi import HTTPException, Request, status

from nexusrbx.pricing import PriceCatalog
from nexusrbx.services.billing import StripeBilling
from nexusrbx.services.entitlements import EntitlementStore
from nexusrbx.services.reconciliation import EntitlementReconciler


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not available",
        )
    return service


def get_billing(request: Request) -> StripeBilling:
    return _service(request, "billing")


def get_catalog(request: Request) -> PriceCatalog:
    return _service(request, "catalog")


def get_store(request: Request) -> EntitlementStore:
    return _service(request, "entitlements")


def get_reconciler(request: Request) -> EntitlementReconciler:
    return _service(request, "reconciler")
