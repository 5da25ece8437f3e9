"""Database package for orderflow."""
from .connection import close_db, get_session_factory, init_db
from .models import (
    AppSetting,
    AuditEvent,
    Base,
    DeliveryPolicy,
    DeliveryState,
    Notification,
    NotificationKind,
    Payment,
    PaymentState,
    Product,
    Purchase,
    User,
)
from .store import Store

__all__ = [
    "Base",
    "User",
    "Product",
    "Purchase",
    "Payment",
    "Notification",
    "AuditEvent",
    "AppSetting",
    "PaymentState",
    "DeliveryState",
    "DeliveryPolicy",
    "NotificationKind",
    "Store",
    "close_db",
    "get_session_factory",
    "init_db",
]
