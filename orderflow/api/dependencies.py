"""
FastAPI dependencies: caller identity and service providers.

The access gateway in front of the API authenticates users and forwards the
user id in a header. Operator routes require the admin API key. Service
providers are plain functions so tests can swap them through
``app.dependency_overrides``.
"""
import secrets
import uuid

from fastapi import Depends, HTTPException, Request, status

from orderflow.config import get_settings
from orderflow.core import (
    AuditTrail,
    DeliveryOrchestrator,
    NotificationDispatcher,
    OrderLedger,
    PaymentReconciler,
    ProductCatalog,
    RuntimeSettings,
    UserDirectory,
)


def get_current_user_id(request: Request) -> uuid.UUID:
    """Authenticated user id from the gateway header."""
    header = get_settings().user_id_header
    raw = request.headers.get(header)
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {header} header",
        )
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {header} header",
        )


def require_operator(request: Request) -> str:
    """Check the operator API key. Returns an identifier for audit entries."""
    settings = get_settings()
    api_key = request.headers.get(settings.api_key_header)
    if not api_key or not secrets.compare_digest(api_key, settings.admin_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator API key required",
        )
    return "operator"


def get_audit() -> AuditTrail:
    return AuditTrail()


def get_catalog() -> ProductCatalog:
    return ProductCatalog()


def get_ledger() -> OrderLedger:
    return OrderLedger()


def get_delivery() -> DeliveryOrchestrator:
    return DeliveryOrchestrator()


def get_reconciler(delivery: DeliveryOrchestrator = Depends(get_delivery)) -> PaymentReconciler:
    return PaymentReconciler(delivery=delivery)


def get_notifications() -> NotificationDispatcher:
    return NotificationDispatcher()


def get_runtime_settings() -> RuntimeSettings:
    return RuntimeSettings()


def get_users() -> UserDirectory:
    return UserDirectory()
