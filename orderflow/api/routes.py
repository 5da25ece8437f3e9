"""
API routes for the order lifecycle.

Domain errors propagate to the OrderflowError handler registered in
``orderflow.api.main``; routes only log and shape responses.
"""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from orderflow.core import (
    AuditTrail,
    DeliveryOrchestrator,
    NotificationDispatcher,
    NotificationTarget,
    OrderLedger,
    PaymentReconciler,
    ProductCatalog,
    RuntimeSettings,
    UserDirectory,
)
from orderflow.core.payment_reconciler import CallbackOutcome
from orderflow.database.models import DeliveryPolicy
from orderflow.exceptions import ArtifactNotFound
from orderflow.monitoring.health import HealthCheck

from .dependencies import (
    get_audit,
    get_catalog,
    get_current_user_id,
    get_delivery,
    get_ledger,
    get_notifications,
    get_reconciler,
    get_runtime_settings,
    get_users,
    require_operator,
)
from .schemas import (
    AutoDeliverSetting,
    CreatePurchaseRequest,
    CreatePurchaseResponse,
    DeliverRequest,
    DeliveryResponse,
    DispatchResponse,
    HealthCheckResponse,
    PaymentCallbackRequest,
    PaymentCallbackResponse,
    PaymentStatusResponse,
    ProductCreateRequest,
    ProductResponse,
    ProductUpdateRequest,
    PurchaseResponse,
    RegisterUserRequest,
    SendNotificationRequest,
    UpdateUserRequest,
)

logger = structlog.get_logger(__name__)

# Create routers
purchase_router = APIRouter(prefix="/purchases", tags=["purchases"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
product_router = APIRouter(prefix="/products", tags=["products"])
notification_router = APIRouter(prefix="/notifications", tags=["notifications"])
admin_router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(require_operator)]
)
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


def _deliver_policy(request: Optional[DeliverRequest]) -> DeliveryPolicy:
    if request is not None and request.answers is not None:
        return DeliveryPolicy.GENERATED
    return DeliveryPolicy.AUTO


# Purchases


@purchase_router.post(
    "",
    response_model=CreatePurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a purchase",
    description="Create a pending purchase and payment; at most one live purchase per product",
)
async def create_purchase(
    request: CreatePurchaseRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: OrderLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    logger.info(
        "api_create_purchase_request",
        user_id=str(user_id),
        product_id=str(request.product_id),
    )
    result = await ledger.create_purchase(user_id, request.product_id)
    return {
        "purchase": result["purchase"],
        "payment_reference": result["payment_reference"],
        "amount": result["payment"]["amount"],
        "currency": result["payment"]["currency"],
    }


@purchase_router.get("", response_model=List[PurchaseResponse], summary="List my purchases")
async def list_purchases(
    delivered_only: bool = False,
    user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: OrderLedger = Depends(get_ledger),
) -> List[Dict[str, Any]]:
    return await ledger.list_user_purchases(user_id, delivered_only=delivered_only)


@purchase_router.get("/{purchase_id}", response_model=PurchaseResponse, summary="Get a purchase")
async def get_purchase(
    purchase_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: OrderLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    return await ledger.get_purchase(purchase_id, user_id=user_id)


@purchase_router.post(
    "/{purchase_id}/deliver",
    response_model=DeliveryResponse,
    summary="Deliver a purchase",
    description="Scored document when answers are given, placeholder otherwise",
)
async def deliver_purchase(
    purchase_id: uuid.UUID,
    request: Optional[DeliverRequest] = None,
    user_id: uuid.UUID = Depends(get_current_user_id),
    delivery: DeliveryOrchestrator = Depends(get_delivery),
) -> Dict[str, Any]:
    result = await delivery.deliver(
        purchase_id,
        policy=_deliver_policy(request),
        answers=request.answers if request else None,
        user_id=user_id,
    )
    return result.to_dict()


@purchase_router.get("/{purchase_id}/artifact", summary="Download the delivered artifact")
async def download_artifact(
    purchase_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: OrderLedger = Depends(get_ledger),
    delivery: DeliveryOrchestrator = Depends(get_delivery),
) -> Response:
    purchase = await ledger.get_purchase(purchase_id, user_id=user_id)
    if not purchase["artifact_ref"]:
        raise ArtifactNotFound(f"purchase:{purchase_id}")
    content = await delivery.open_artifact(user_id, purchase["artifact_ref"])
    return Response(
        content=content,
        media_type=delivery.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{purchase["artifact_ref"]}"'
        },
    )


# Payments


@payment_router.get("", summary="List my payments")
async def list_my_payments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: OrderLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    return await ledger.list_payments(user_id=user_id, page=page, limit=limit)


@payment_router.get(
    "/{payment_reference}",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
)
async def get_payment_status(
    payment_reference: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: OrderLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    return await ledger.get_payment_status(payment_reference, user_id=user_id)


@webhook_router.post(
    "/payments",
    response_model=PaymentCallbackResponse,
    summary="Payment provider callback",
    description="Apply a provider outcome; replays are acknowledged without side effects",
)
async def payment_callback(
    request: PaymentCallbackRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    outcome = CallbackOutcome.SUCCESS if request.status == "success" else CallbackOutcome.FAILURE
    logger.info(
        "api_payment_callback_received",
        payment_reference=request.payment_reference,
        outcome=outcome.value,
    )
    state = await reconciler.reconcile_callback(
        request.payment_reference, outcome.value, request.model_dump(mode="json")
    )
    return {"payment_reference": request.payment_reference, "status": state.value}


# Products


@product_router.get("", response_model=List[ProductResponse], summary="List active products")
async def list_products(catalog: ProductCatalog = Depends(get_catalog)) -> List[Dict[str, Any]]:
    return await catalog.list_products(active_only=True)


@product_router.get("/{product_id}", response_model=ProductResponse, summary="Get a product")
async def get_product(
    product_id: uuid.UUID, catalog: ProductCatalog = Depends(get_catalog)
) -> Dict[str, Any]:
    return await catalog.get_active_product(product_id)


# Notifications


@notification_router.get("", summary="List my notifications")
async def list_notifications(
    unread_only: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> Dict[str, Any]:
    return await notifications.list_for_user(
        user_id, unread_only=unread_only, page=page, limit=limit
    )


@notification_router.put("/read-all", summary="Mark all my notifications read")
async def mark_all_notifications_read(
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> Dict[str, Any]:
    updated = await notifications.mark_all_read(user_id)
    return {"updated": updated}


@notification_router.put("/{notification_id}/read", summary="Mark a notification read")
async def mark_notification_read(
    notification_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> Dict[str, Any]:
    await notifications.mark_read(user_id, notification_id)
    return {"id": str(notification_id), "is_read": True}


@notification_router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete one of my notifications",
)
async def delete_notification(
    notification_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> Response:
    await notifications.delete(user_id, notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Operator


@admin_router.get("/products", response_model=List[ProductResponse], summary="List all products")
async def admin_list_products(
    catalog: ProductCatalog = Depends(get_catalog),
) -> List[Dict[str, Any]]:
    return await catalog.list_products(active_only=False)


@admin_router.post(
    "/products",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a product",
)
async def admin_create_product(
    request: ProductCreateRequest, catalog: ProductCatalog = Depends(get_catalog)
) -> Dict[str, Any]:
    return await catalog.create_product(**request.model_dump())


@admin_router.put(
    "/products/{product_id}", response_model=ProductResponse, summary="Update a product"
)
async def admin_update_product(
    product_id: uuid.UUID,
    request: ProductUpdateRequest,
    catalog: ProductCatalog = Depends(get_catalog),
) -> Dict[str, Any]:
    changes = request.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    return await catalog.update_product(product_id, **changes)


@admin_router.delete("/products/{product_id}", summary="Delete or deactivate a product")
async def admin_delete_product(
    product_id: uuid.UUID, catalog: ProductCatalog = Depends(get_catalog)
) -> Dict[str, Any]:
    outcome = await catalog.delete_product(product_id)
    return {"id": str(product_id), "result": outcome}


@admin_router.post(
    "/notifications",
    response_model=DispatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification",
    description="Send to one user, or to every active user when is_global is set",
)
async def admin_send_notification(
    request: SendNotificationRequest,
    operator: str = Depends(require_operator),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> Dict[str, Any]:
    target = (
        NotificationTarget.everyone()
        if request.is_global
        else NotificationTarget.user(request.user_id)
    )
    result = await notifications.send(
        target, request.title, request.message, request.kind.value, created_by=operator
    )
    return result.to_dict()


@admin_router.get("/notifications", summary="List notifications")
async def admin_list_notifications(
    kind: Optional[str] = None,
    is_read: Optional[bool] = None,
    is_global: Optional[bool] = None,
    user_id: Optional[uuid.UUID] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> Dict[str, Any]:
    return await notifications.list_all(
        kind=kind, is_read=is_read, is_global=is_global, user_id=user_id, page=page, limit=limit
    )


@admin_router.delete(
    "/notifications/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete any notification",
)
async def admin_delete_notification(
    notification_id: uuid.UUID,
    operator: str = Depends(require_operator),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> Response:
    await notifications.delete_any(notification_id, deleted_by=operator)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.get("/payments", summary="List payments")
async def admin_list_payments(
    payment_status: Optional[str] = Query(default=None, alias="status"),
    user_id: Optional[uuid.UUID] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    ledger: OrderLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    return await ledger.list_payments(
        status=payment_status, user_id=user_id, page=page, limit=limit
    )


@admin_router.get("/audit", summary="List audit events")
async def admin_list_audit(
    entity_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    audit: AuditTrail = Depends(get_audit),
) -> List[Dict[str, Any]]:
    return await audit.list_events(entity_id=entity_id, event_type=event_type, limit=limit)


@admin_router.get(
    "/settings/auto-deliver", response_model=AutoDeliverSetting, summary="Get auto-delivery"
)
async def admin_get_auto_deliver(
    runtime_settings: RuntimeSettings = Depends(get_runtime_settings),
) -> Dict[str, Any]:
    return {"enabled": await runtime_settings.is_auto_deliver_enabled()}


@admin_router.put(
    "/settings/auto-deliver", response_model=AutoDeliverSetting, summary="Set auto-delivery"
)
async def admin_set_auto_deliver(
    request: AutoDeliverSetting,
    runtime_settings: RuntimeSettings = Depends(get_runtime_settings),
) -> Dict[str, Any]:
    await runtime_settings.set_auto_deliver(request.enabled)
    return {"enabled": request.enabled}


@admin_router.post(
    "/purchases/{purchase_id}/deliver",
    response_model=DeliveryResponse,
    summary="Deliver any purchase",
)
async def admin_deliver_purchase(
    purchase_id: uuid.UUID,
    request: Optional[DeliverRequest] = None,
    delivery: DeliveryOrchestrator = Depends(get_delivery),
) -> Dict[str, Any]:
    result = await delivery.deliver(
        purchase_id,
        policy=_deliver_policy(request),
        answers=request.answers if request else None,
    )
    return result.to_dict()


@admin_router.get("/users", summary="List mirrored users")
async def admin_list_users(
    active_only: bool = False, users: UserDirectory = Depends(get_users)
) -> List[Dict[str, Any]]:
    return await users.list_users(active_only=active_only)


@admin_router.post(
    "/users", status_code=status.HTTP_201_CREATED, summary="Register or refresh a user"
)
async def admin_register_user(
    request: RegisterUserRequest, users: UserDirectory = Depends(get_users)
) -> Dict[str, Any]:
    return await users.register(request.email, request.user_id, request.is_active)


@admin_router.patch("/users/{user_id}", summary="Activate or deactivate a user")
async def admin_update_user(
    user_id: uuid.UUID,
    request: UpdateUserRequest,
    users: UserDirectory = Depends(get_users),
) -> Dict[str, Any]:
    return await users.set_active(user_id, request.is_active)


# Monitoring


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness() -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness() -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
