"""
Payment reconciler for provider callbacks.

Implements:
- Compare-and-set transition out of ``pending``; only the winner applies
  side effects (purchase update, audit entry, user notification)
- Idempotent replay of an already-applied outcome
- Rejection of a callback that contradicts the recorded outcome
- Auto-delivery hand-off after a committed completion
"""
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import AuditTrail
from orderflow.core.delivery import DeliveryOrchestrator
from orderflow.core.notifications import NotificationDispatcher
from orderflow.database.models import (
    NotificationKind,
    Payment,
    PaymentState,
    Product,
    Purchase,
)
from orderflow.database.store import Store
from orderflow.exceptions import (
    ConflictingCallback,
    InvariantViolation,
    OrderflowError,
    UnknownPayment,
)
from orderflow.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SYSTEM_SENDER = "system"


class CallbackOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"

    @property
    def target_state(self) -> PaymentState:
        return PaymentState.COMPLETED if self is CallbackOutcome.SUCCESS else PaymentState.FAILED


@dataclass
class _Transition:
    applied: bool
    state: PaymentState
    purchase_id: Optional[uuid.UUID] = None


class PaymentReconciler:
    """Applies provider callbacks to payments and their purchases."""

    def __init__(
        self,
        store: Optional[Store] = None,
        audit: Optional[AuditTrail] = None,
        delivery: Optional[DeliveryOrchestrator] = None,
    ):
        """
        Initialize payment reconciler.

        Args:
            store: Optional store (creates one if not provided)
            audit: Optional audit trail sharing the same store
            delivery: Optional delivery orchestrator for auto-delivery
        """
        self.store = store or Store()
        self.audit = audit or AuditTrail(self.store)
        self.delivery = delivery or DeliveryOrchestrator(self.store, self.audit)

    @staticmethod
    def _notification_for(state: PaymentState, product_name: str) -> Dict[str, str]:
        if state is PaymentState.COMPLETED:
            return {
                "title": "Payment successful",
                "message": (
                    f"Your payment for {product_name} was completed. "
                    "Your document is being prepared."
                ),
                "kind": NotificationKind.SUCCESS.value,
            }
        return {
            "title": "Payment failed",
            "message": f"Your payment for {product_name} could not be completed.",
            "kind": NotificationKind.ERROR.value,
        }

    async def reconcile_callback(
        self,
        payment_reference: str,
        outcome: str,
        provider_payload: Optional[Dict[str, Any]] = None,
    ) -> PaymentState:
        """
        Apply a provider callback.

        Args:
            payment_reference: Reference issued at purchase creation
            outcome: 'success' or 'failure'
            provider_payload: Raw provider data, stored verbatim

        Returns:
            PaymentState: The payment's state after the callback

        Raises:
            UnknownPayment: If the reference was never issued
            ConflictingCallback: If the payment already holds the other outcome
            StoreUnavailable: If the store cannot be reached in time
        """
        outcome = CallbackOutcome(outcome)
        target = outcome.target_state
        correlation_id = uuid.uuid4()
        start_time = time.time()
        log = logger.bind(
            correlation_id=str(correlation_id),
            payment_reference=payment_reference,
            outcome=outcome.value,
        )
        log.info("payment_callback_received")

        async def _apply(session: AsyncSession) -> _Transition:
            row = (
                await session.execute(
                    select(Payment.id, Product.name)
                    .join(Product, Product.id == Payment.product_id)
                    .where(Payment.payment_reference == payment_reference)
                )
            ).one_or_none()
            if row is None:
                raise UnknownPayment(payment_reference)
            payment_id, product_name = row

            changed = await Store.update_where(
                session,
                Payment,
                [
                    Payment.payment_reference == payment_reference,
                    Payment.status == PaymentState.PENDING.value,
                ],
                {
                    "status": target.value,
                    "provider_payload": provider_payload or {},
                    "updated_at": datetime.now(timezone.utc),
                },
            )
            if not changed:
                current = await session.scalar(
                    select(Payment.status).where(Payment.payment_reference == payment_reference)
                )
                return _Transition(applied=False, state=PaymentState(current))

            purchase_changed = await Store.update_where(
                session,
                Purchase,
                [
                    Purchase.payment_reference == payment_reference,
                    Purchase.payment_status == PaymentState.PENDING.value,
                ],
                {"payment_status": target.value},
            )
            if purchase_changed != 1:
                raise InvariantViolation(
                    f"Purchase for payment {payment_reference} is not pending",
                    {"payment_reference": payment_reference},
                )

            purchase = (
                await session.execute(
                    select(Purchase.id, Purchase.user_id).where(
                        Purchase.payment_reference == payment_reference
                    )
                )
            ).one()

            NotificationDispatcher.add_notification(
                session,
                purchase.user_id,
                created_by=SYSTEM_SENDER,
                **self._notification_for(target, product_name),
            )
            self.audit.record(
                session,
                "payment",
                payment_id,
                "payment_completed" if target is PaymentState.COMPLETED else "payment_failed",
                {
                    "payment_reference": payment_reference,
                    "purchase_id": str(purchase.id),
                    "previous_status": PaymentState.PENDING.value,
                    "new_status": target.value,
                },
                correlation_id,
            )
            return _Transition(applied=True, state=target, purchase_id=purchase.id)

        try:
            transition = await self.store.run(_apply, operation="reconcile_callback")
        except UnknownPayment:
            metrics.record_payment_callback(outcome.value, "unknown", time.time() - start_time)
            log.warning("payment_callback_unknown_reference")
            raise
        except InvariantViolation as e:
            metrics.record_payment_callback(outcome.value, "invariant", time.time() - start_time)
            log.error("payment_callback_invariant_violation", error=e.message)
            await self.audit.record_isolated(
                "payment",
                payment_reference,
                "callback_rejected",
                {"reason": e.message, "requested_state": target.value},
                correlation_id,
            )
            raise

        if not transition.applied:
            return await self._handle_terminal(
                payment_reference, outcome, transition.state, correlation_id, start_time
            )

        metrics.record_payment_callback(outcome.value, "applied", time.time() - start_time)
        log.info(
            "payment_state_changed",
            purchase_id=str(transition.purchase_id),
            new_status=target.value,
        )

        if target is PaymentState.COMPLETED:
            await self._hand_off_delivery(transition.purchase_id, correlation_id)
        return target

    async def _handle_terminal(
        self,
        payment_reference: str,
        outcome: CallbackOutcome,
        current: PaymentState,
        correlation_id: uuid.UUID,
        start_time: float,
    ) -> PaymentState:
        requested = outcome.target_state
        if current is requested:
            metrics.record_payment_callback(outcome.value, "replayed", time.time() - start_time)
            logger.info(
                "payment_callback_replayed",
                correlation_id=str(correlation_id),
                payment_reference=payment_reference,
                status=current.value,
            )
            await self.audit.record_isolated(
                "payment",
                payment_reference,
                "callback_replayed",
                {"status": current.value},
                correlation_id,
            )
            return current

        metrics.record_payment_callback(outcome.value, "conflict", time.time() - start_time)
        logger.warning(
            "payment_callback_conflict",
            correlation_id=str(correlation_id),
            payment_reference=payment_reference,
            current_status=current.value,
            requested_status=requested.value,
        )
        await self.audit.record_isolated(
            "payment",
            payment_reference,
            "callback_conflict",
            {"current_status": current.value, "requested_status": requested.value},
            correlation_id,
        )
        raise ConflictingCallback(payment_reference, current.value, requested.value)

    async def _hand_off_delivery(self, purchase_id: uuid.UUID, correlation_id: uuid.UUID) -> None:
        # The payment is committed; delivery failures are left to the worker
        try:
            await self.delivery.on_payment_completed(purchase_id)
        except OrderflowError as e:
            logger.warning(
                "auto_delivery_failed",
                correlation_id=str(correlation_id),
                purchase_id=str(purchase_id),
                error_kind=e.kind,
                error=e.message,
            )
            await self.audit.record_isolated(
                "purchase",
                purchase_id,
                "delivery_failed",
                {"error_kind": e.kind, "error": e.message},
                correlation_id,
            )
