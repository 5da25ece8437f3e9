"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CreatePurchaseRequest,
    CreatePurchaseResponse,
    PaymentCallbackRequest,
    PaymentStatusResponse,
    PurchaseResponse,
)

__all__ = [
    "app",
    "CreatePurchaseRequest",
    "CreatePurchaseResponse",
    "PaymentCallbackRequest",
    "PaymentStatusResponse",
    "PurchaseResponse",
]
