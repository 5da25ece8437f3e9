"""
Error taxonomy for the order lifecycle engine.

Every error carries a stable ``kind`` that callers can branch on and a
human-readable message. Internal failures (store connectivity, renderer
crashes) reach callers only as ``TransientError``.
"""
from typing import Any, Dict, Optional


class OrderflowError(Exception):
    """Base exception for all engine errors."""

    kind = "error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class NotFoundError(OrderflowError):
    """Referenced entity does not exist. Reported, never retried."""

    kind = "not_found"


class ConflictError(OrderflowError):
    """Request collides with existing state. Reported, never retried, audited."""

    kind = "conflict"


class TransientError(OrderflowError):
    """Temporary failure; the operation is safe to re-issue with backoff."""

    kind = "transient"
    retryable = True


class InvariantViolation(OrderflowError):
    """A transition that would break a lifecycle invariant. Always rejected."""

    kind = "invariant_violation"


class ProductNotFound(NotFoundError):
    def __init__(self, product_id: Any):
        super().__init__(f"Product {product_id} not found", {"product_id": str(product_id)})


class PurchaseNotFound(NotFoundError):
    def __init__(self, purchase_id: Any):
        super().__init__(f"Purchase {purchase_id} not found", {"purchase_id": str(purchase_id)})


class UnknownPayment(NotFoundError):
    def __init__(self, payment_reference: str):
        super().__init__(
            f"No payment found for reference {payment_reference}",
            {"payment_reference": payment_reference},
        )


class NotificationNotFound(NotFoundError):
    def __init__(self, notification_id: Any):
        super().__init__(
            f"Notification {notification_id} not found",
            {"notification_id": str(notification_id)},
        )


class ArtifactNotFound(NotFoundError):
    def __init__(self, artifact_ref: str):
        super().__init__(f"Artifact {artifact_ref} not found", {"artifact_ref": artifact_ref})


class UserNotFound(NotFoundError):
    def __init__(self, user_id: Any):
        super().__init__(f"User {user_id} not found", {"user_id": str(user_id)})


class ProductInactive(ConflictError):
    def __init__(self, product_id: Any):
        super().__init__(
            f"Product {product_id} is not available for purchase",
            {"product_id": str(product_id)},
        )


class DuplicateOrder(ConflictError):
    def __init__(self, user_id: Any, product_id: Any):
        super().__init__(
            "Product has already been purchased by this user",
            {"user_id": str(user_id), "product_id": str(product_id)},
        )


class ConflictingCallback(ConflictError):
    def __init__(self, payment_reference: str, current_state: str, requested_state: str):
        super().__init__(
            f"Payment {payment_reference} is already {current_state}; "
            f"refusing to move it to {requested_state}",
            {
                "payment_reference": payment_reference,
                "current_state": current_state,
                "requested_state": requested_state,
            },
        )
        self.current_state = current_state
        self.requested_state = requested_state


class PaymentNotCompleted(ConflictError):
    def __init__(self, purchase_id: Any, payment_status: str):
        super().__init__(
            f"Purchase {purchase_id} cannot be delivered while payment is {payment_status}",
            {"purchase_id": str(purchase_id), "payment_status": payment_status},
        )


class StoreUnavailable(TransientError):
    """Store unreachable, locked or too slow."""


class RendererUnavailable(TransientError):
    """Document renderer timed out or crashed."""
