"""
Product catalog.

Read-only lookup of purchasable products for the lifecycle engine, plus the
operator-side create/update/delete used by the admin API. Products that have
ever been purchased are only deactivated, never removed.
"""
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import AuditTrail
from orderflow.database.models import Product, Purchase
from orderflow.database.store import Store
from orderflow.exceptions import ProductInactive, ProductNotFound

logger = structlog.get_logger(__name__)

_EDITABLE_FIELDS = ("name", "description", "price", "questions", "is_active")
_NULLABLE_FIELDS = ("description",)


def product_to_dict(product: Product) -> Dict[str, Any]:
    return {
        "id": str(product.id),
        "name": product.name,
        "description": product.description,
        "price": product.price,
        "questions": product.questions or [],
        "is_active": product.is_active,
        "created_at": product.created_at.isoformat(),
        "updated_at": product.updated_at.isoformat(),
    }


class ProductCatalog:
    """Lookup and maintenance of products."""

    def __init__(self, store: Optional[Store] = None, audit: Optional[AuditTrail] = None):
        self.store = store or Store()
        self.audit = audit or AuditTrail(self.store)

    @staticmethod
    async def load_active(session: AsyncSession, product_id: uuid.UUID) -> Product:
        """
        Load a product that may be purchased, inside the caller's transaction.

        Raises:
            ProductNotFound: If no such product exists
            ProductInactive: If the product is disabled
        """
        product = await session.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)
        if not product.is_active:
            raise ProductInactive(product_id)
        return product

    async def get_product(self, product_id: Any) -> Dict[str, Any]:
        """Get any product by ID, active or not."""
        product_uuid = uuid.UUID(str(product_id))

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            product = await session.get(Product, product_uuid)
            if product is None:
                raise ProductNotFound(product_id)
            return product_to_dict(product)

        return await self.store.run(_work, operation="get_product")

    async def get_active_product(self, product_id: Any) -> Dict[str, Any]:
        """Get a purchasable product by ID."""
        product_uuid = uuid.UUID(str(product_id))

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            return product_to_dict(await self.load_active(session, product_uuid))

        return await self.store.run(_work, operation="get_active_product")

    async def list_products(self, active_only: bool = True) -> List[Dict[str, Any]]:
        """List products, newest first."""

        async def _work(session: AsyncSession) -> List[Dict[str, Any]]:
            stmt = select(Product)
            if active_only:
                stmt = stmt.where(Product.is_active.is_(True))
            stmt = stmt.order_by(Product.created_at.desc())
            result = await session.execute(stmt)
            return [product_to_dict(p) for p in result.scalars().all()]

        return await self.store.run(_work, operation="list_products")

    async def create_product(
        self,
        name: str,
        price: Decimal,
        description: Optional[str] = None,
        questions: Optional[List[Dict[str, Any]]] = None,
        is_active: bool = True,
    ) -> Dict[str, Any]:
        """
        Create a product.

        Args:
            name: Product name
            price: Price as a decimal amount
            description: Optional description
            questions: Optional question set used for generated deliveries
            is_active: Whether the product can be purchased

        Returns:
            Dict[str, Any]: The created product
        """
        correlation_id = uuid.uuid4()

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            product = Product(
                name=name,
                description=description,
                price=Decimal(str(price)),
                questions=questions or [],
                is_active=is_active,
            )
            session.add(product)
            await session.flush()
            self.audit.record(
                session,
                "product",
                product.id,
                "product_created",
                {"name": name, "price": str(product.price)},
                correlation_id,
            )
            return product_to_dict(product)

        product = await self.store.run(_work, operation="create_product")
        logger.info("product_created", product_id=product["id"], product_name=name)
        return product

    async def update_product(self, product_id: Any, **changes: Any) -> Dict[str, Any]:
        """
        Update editable product fields.

        Price changes only affect future purchases; purchases keep the amount
        they were created with.
        """
        product_uuid = uuid.UUID(str(product_id))
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        # None leaves a required column unchanged
        changes = {
            field: value
            for field, value in changes.items()
            if value is not None or field in _NULLABLE_FIELDS
        }
        correlation_id = uuid.uuid4()

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            product = await session.get(Product, product_uuid)
            if product is None:
                raise ProductNotFound(product_id)
            for field, value in changes.items():
                if field == "price" and value is not None:
                    value = Decimal(str(value))
                setattr(product, field, value)
            await session.flush()
            self.audit.record(
                session,
                "product",
                product.id,
                "product_updated",
                {k: str(v) if isinstance(v, Decimal) else v for k, v in changes.items()},
                correlation_id,
            )
            return product_to_dict(product)

        product = await self.store.run(_work, operation="update_product")
        logger.info("product_updated", product_id=str(product_uuid), fields=sorted(changes))
        return product

    async def delete_product(self, product_id: Any) -> str:
        """
        Delete a product, or deactivate it if anyone has purchased it.

        Returns:
            str: 'deactivated' or 'deleted'
        """
        product_uuid = uuid.UUID(str(product_id))
        correlation_id = uuid.uuid4()

        async def _work(session: AsyncSession) -> str:
            product = await session.get(Product, product_uuid)
            if product is None:
                raise ProductNotFound(product_id)

            purchase_count = await session.scalar(
                select(func.count())
                .select_from(Purchase)
                .where(Purchase.product_id == product_uuid)
            )
            if purchase_count:
                product.is_active = False
                outcome = "deactivated"
            else:
                await session.delete(product)
                outcome = "deleted"

            self.audit.record(
                session,
                "product",
                product_uuid,
                f"product_{outcome}",
                {"purchase_count": purchase_count or 0},
                correlation_id,
            )
            return outcome

        outcome = await self.store.run(_work, operation="delete_product")
        logger.info("product_removed", product_id=str(product_uuid), outcome=outcome)
        return outcome
