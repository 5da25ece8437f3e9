"""
Order ledger.

Creates and owns Purchase and Payment records. The flow for a purchase:
1. Load the product (must exist and be active)
2. Fast-path check for an existing live purchase
3. Insert Purchase, Payment and the audit entry in one transaction
4. Translate a uniqueness violation into DuplicateOrder

The partial unique index on purchases (user_id, product_id) decides races;
the fast-path read only avoids a pointless insert in the common case.
"""
import secrets
import time
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.config import get_settings
from orderflow.core.audit import AuditTrail
from orderflow.core.catalog import ProductCatalog
from orderflow.database.models import (
    DeliveryState,
    Payment,
    PaymentState,
    Product,
    Purchase,
)
from orderflow.database.store import Store
from orderflow.exceptions import DuplicateOrder, OrderflowError, PurchaseNotFound, UnknownPayment
from orderflow.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def purchase_to_dict(purchase: Purchase) -> Dict[str, Any]:
    return {
        "id": str(purchase.id),
        "user_id": str(purchase.user_id),
        "product_id": str(purchase.product_id),
        "payment_status": purchase.payment_status,
        "payment_reference": purchase.payment_reference,
        "amount": purchase.amount,
        "delivery_status": purchase.delivery_status,
        "delivery_policy": purchase.delivery_policy,
        "artifact_ref": purchase.artifact_ref,
        "delivered_at": purchase.delivered_at.isoformat() if purchase.delivered_at else None,
        "created_at": purchase.created_at.isoformat(),
    }


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": str(payment.id),
        "user_id": str(payment.user_id),
        "product_id": str(payment.product_id),
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "payment_reference": payment.payment_reference,
        "status": payment.status,
        "created_at": payment.created_at.isoformat(),
        "updated_at": payment.updated_at.isoformat(),
    }


class OrderLedger:
    """
    Owner of Purchase and Payment records.

    Guarantees at most one live purchase per (user, product), even under
    concurrent requests.
    """

    def __init__(self, store: Optional[Store] = None, audit: Optional[AuditTrail] = None):
        """
        Initialize order ledger.

        Args:
            store: Optional store (creates one if not provided)
            audit: Optional audit trail sharing the same store
        """
        self.settings = get_settings()
        self.store = store or Store()
        self.audit = audit or AuditTrail(self.store)

    @staticmethod
    def generate_payment_reference() -> str:
        """
        Generate an opaque, globally unique payment reference.

        Format: PAY_{epoch_ms}_{random_hex}
        """
        return f"PAY_{int(time.time() * 1000)}_{secrets.token_hex(8)}"

    @staticmethod
    async def _live_purchase_exists(
        session: AsyncSession, user_id: uuid.UUID, product_id: uuid.UUID
    ) -> bool:
        count = await session.scalar(
            select(func.count())
            .select_from(Purchase)
            .where(
                Purchase.user_id == user_id,
                Purchase.product_id == product_id,
                Purchase.payment_status != PaymentState.FAILED.value,
            )
        )
        return bool(count)

    async def create_purchase(self, user_id: Any, product_id: Any) -> Dict[str, Any]:
        """
        Create a purchase and its pending payment.

        Args:
            user_id: Authenticated user identifier
            product_id: Product to purchase

        Returns:
            Dict[str, Any]: {'purchase', 'payment', 'payment_reference'}

        Raises:
            ProductNotFound: If the product does not exist
            ProductInactive: If the product is disabled
            DuplicateOrder: If the user already holds a live purchase of it
            StoreUnavailable: If the store cannot be reached in time
        """
        correlation_id = uuid.uuid4()
        user_uuid = uuid.UUID(str(user_id))
        product_uuid = uuid.UUID(str(product_id))

        logger.info(
            "purchase_creation_started",
            correlation_id=str(correlation_id),
            user_id=str(user_uuid),
            product_id=str(product_uuid),
        )

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            product = await ProductCatalog.load_active(session, product_uuid)

            if await self._live_purchase_exists(session, user_uuid, product_uuid):
                raise DuplicateOrder(user_uuid, product_uuid)

            payment_reference = self.generate_payment_reference()
            purchase = Purchase(
                user_id=user_uuid,
                product_id=product_uuid,
                payment_status=PaymentState.PENDING.value,
                payment_reference=payment_reference,
                amount=product.price,
                delivery_status=DeliveryState.PENDING.value,
            )
            payment = Payment(
                user_id=user_uuid,
                product_id=product_uuid,
                amount=product.price,
                currency=self.settings.default_currency,
                payment_method=self.settings.payment_method,
                payment_reference=payment_reference,
                status=PaymentState.PENDING.value,
            )
            session.add_all([purchase, payment])
            await session.flush()

            self.audit.record(
                session,
                "purchase",
                purchase.id,
                "order_created",
                {
                    "user_id": str(user_uuid),
                    "product_id": str(product_uuid),
                    "payment_reference": payment_reference,
                    "amount": str(product.price),
                },
                correlation_id,
            )

            return {
                "purchase": purchase_to_dict(purchase),
                "payment": payment_to_dict(payment),
                "payment_reference": payment_reference,
            }

        try:
            result = await self.store.run(_work, operation="create_purchase")
        except IntegrityError as e:
            # Lost the race to a concurrent request for the same pair
            logger.warning(
                "purchase_duplicate_rejected_by_index",
                correlation_id=str(correlation_id),
                user_id=str(user_uuid),
                product_id=str(product_uuid),
                error=str(e.orig),
            )
            error = DuplicateOrder(user_uuid, product_uuid)
            await self._record_rejection(error, user_uuid, product_uuid, correlation_id)
            raise error from e
        except OrderflowError as e:
            await self._record_rejection(e, user_uuid, product_uuid, correlation_id)
            raise

        metrics.record_purchase_request("created")
        logger.info(
            "purchase_created",
            correlation_id=str(correlation_id),
            purchase_id=result["purchase"]["id"],
            payment_reference=result["payment_reference"],
        )
        return result

    async def _record_rejection(
        self,
        error: OrderflowError,
        user_id: uuid.UUID,
        product_id: uuid.UUID,
        correlation_id: uuid.UUID,
    ) -> None:
        metrics.record_purchase_request(type(error).__name__)
        logger.warning(
            "purchase_rejected",
            correlation_id=str(correlation_id),
            error_kind=error.kind,
            error=error.message,
        )
        if error.retryable:
            return
        await self.audit.record_isolated(
            "order",
            f"{user_id}:{product_id}",
            "order_rejected",
            {"reason": type(error).__name__, **error.details},
            correlation_id,
        )

    async def get_purchase(self, purchase_id: Any, user_id: Optional[Any] = None) -> Dict[str, Any]:
        """
        Get a purchase by ID.

        Args:
            purchase_id: Purchase ID
            user_id: When given, the purchase must belong to this user

        Raises:
            PurchaseNotFound: If missing or owned by someone else
        """
        purchase_uuid = uuid.UUID(str(purchase_id))

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            purchase = await session.get(Purchase, purchase_uuid)
            if purchase is None or (
                user_id is not None and purchase.user_id != uuid.UUID(str(user_id))
            ):
                raise PurchaseNotFound(purchase_id)
            return purchase_to_dict(purchase)

        return await self.store.run(_work, operation="get_purchase")

    async def get_payment_status(
        self, payment_reference: str, user_id: Optional[Any] = None
    ) -> Dict[str, Any]:
        """
        Get payment, purchase and product summary for a payment reference.

        Raises:
            UnknownPayment: If the reference is unknown or owned by someone else
        """

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            stmt = (
                select(Payment, Purchase, Product.name)
                .join(Purchase, Purchase.payment_reference == Payment.payment_reference)
                .join(Product, Product.id == Payment.product_id)
                .where(Payment.payment_reference == payment_reference)
            )
            row = (await session.execute(stmt)).one_or_none()
            if row is None:
                raise UnknownPayment(payment_reference)
            payment, purchase, product_name = row
            if user_id is not None and payment.user_id != uuid.UUID(str(user_id)):
                raise UnknownPayment(payment_reference)
            return {
                "payment_reference": payment.payment_reference,
                "status": payment.status,
                "amount": payment.amount,
                "currency": payment.currency,
                "product_name": product_name,
                "purchase_id": str(purchase.id),
                "delivery_status": purchase.delivery_status,
                "created_at": payment.created_at.isoformat(),
                "updated_at": payment.updated_at.isoformat(),
            }

        return await self.store.run(_work, operation="get_payment_status")

    async def list_user_purchases(
        self, user_id: Any, delivered_only: bool = False
    ) -> List[Dict[str, Any]]:
        """List a user's purchases with product names, newest first."""
        user_uuid = uuid.UUID(str(user_id))

        async def _work(session: AsyncSession) -> List[Dict[str, Any]]:
            stmt = (
                select(Purchase, Product.name)
                .join(Product, Product.id == Purchase.product_id)
                .where(Purchase.user_id == user_uuid)
            )
            if delivered_only:
                stmt = stmt.where(Purchase.delivery_status == DeliveryState.DELIVERED.value)
            stmt = stmt.order_by(Purchase.created_at.desc())
            rows = (await session.execute(stmt)).all()
            return [{**purchase_to_dict(p), "product_name": name} for p, name in rows]

        return await self.store.run(_work, operation="list_user_purchases")

    async def list_payments(
        self,
        status: Optional[str] = None,
        user_id: Optional[Any] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """
        List payments, newest first, with pagination.

        Args:
            status: Optional payment status filter
            user_id: Optional owner filter
            page: 1-based page number
            limit: Page size

        Returns:
            Dict[str, Any]: {'payments': [...], 'pagination': {...}}
        """
        page = max(page, 1)
        offset = (page - 1) * limit

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            filters = []
            if status is not None:
                filters.append(Payment.status == status)
            if user_id is not None:
                filters.append(Payment.user_id == uuid.UUID(str(user_id)))

            total = await session.scalar(select(func.count()).select_from(Payment).where(*filters))
            stmt = (
                select(Payment, Product.name)
                .join(Product, Product.id == Payment.product_id)
                .where(*filters)
                .order_by(Payment.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = (await session.execute(stmt)).all()
            return {
                "payments": [{**payment_to_dict(p), "product_name": name} for p, name in rows],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total or 0,
                    "pages": -(-(total or 0) // limit) if limit else 0,
                },
            }

        return await self.store.run(_work, operation="list_payments")
