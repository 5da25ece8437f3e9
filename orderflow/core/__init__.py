"""Order lifecycle services."""
from .audit import AuditTrail
from .catalog import ProductCatalog
from .delivery import DeliveryOrchestrator, DeliveryResult, score_answers
from .notifications import DispatchResult, NotificationDispatcher, NotificationTarget
from .order_ledger import OrderLedger
from .payment_reconciler import CallbackOutcome, PaymentReconciler
from .runtime_settings import RuntimeSettings
from .users import UserDirectory

__all__ = [
    "AuditTrail",
    "CallbackOutcome",
    "DeliveryOrchestrator",
    "DeliveryResult",
    "DispatchResult",
    "NotificationDispatcher",
    "NotificationTarget",
    "OrderLedger",
    "PaymentReconciler",
    "ProductCatalog",
    "RuntimeSettings",
    "UserDirectory",
    "score_answers",
]
