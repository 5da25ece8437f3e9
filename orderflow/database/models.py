"""SQLAlchemy database models for the order lifecycle engine."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")
BigIntegerPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentState(str, Enum):
    """Payment status shared by Payment and Purchase. Both outcomes are terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentState.PENDING


class DeliveryState(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"


class DeliveryPolicy(str, Enum):
    """How an artifact is produced: placeholder on auto-delivery, scored on request."""

    AUTO = "auto"
    GENERATED = "generated"


class NotificationKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Users known to the engine.

    Identity lives in the access gateway; this table only mirrors the
    fields needed to pick recipients of a global notification.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, email={self.email}, active={self.is_active})>"


class Product(Base):
    """
    Purchasable products.

    Soft-disabled through ``is_active`` once purchased, never hard-deleted.
    """

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    questions: Mapped[List[Dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (CheckConstraint("price >= 0", name="non_negative_price"),)

    def __repr__(self) -> str:
        """String representation of Product."""
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"


class Purchase(Base):
    """
    A user's ownership record for one product.

    The partial unique index on (user_id, product_id) is the source of truth
    for one live purchase per pair; failed purchases drop out of it.
    """

    __tablename__ = "purchases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("products.id"), nullable=False
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentState.PENDING.value
    )
    payment_reference: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryState.PENDING.value
    )
    delivery_policy: Mapped[str | None] = mapped_column(String(20), nullable=True)
    artifact_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed')",
            name="valid_purchase_payment_status",
        ),
        CheckConstraint(
            "delivery_status IN ('pending', 'delivered')",
            name="valid_delivery_status",
        ),
        Index(
            "uq_purchases_live_user_product",
            "user_id",
            "product_id",
            unique=True,
            postgresql_where=text("payment_status <> 'failed'"),
            sqlite_where=text("payment_status <> 'failed'"),
        ),
        Index("idx_purchases_delivery", "payment_status", "delivery_status"),
    )

    def __repr__(self) -> str:
        """String representation of Purchase."""
        return (
            f"<Purchase(id={self.id}, user_id={self.user_id}, product_id={self.product_id}, "
            f"payment={self.payment_status}, delivery={self.delivery_status})>"
        )


class Payment(Base):
    """
    Payment records table.

    One row per purchase, joined through ``payment_reference``. Status is only
    moved out of ``pending`` by a conditional update.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("products.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_reference: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentState.PENDING.value, index=True
    )
    provider_payload: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="non_negative_amount"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="valid_status",
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_payments_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, reference={self.payment_reference}, "
            f"amount={self.amount}, status={self.status})>"
        )


class Notification(Base):
    """
    User notifications.

    A global send is stored as one row per recipient so every user owns
    their own read state.
    """

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationKind.INFO.value
    )
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "kind IN ('info', 'success', 'warning', 'error')",
            name="valid_notification_kind",
        ),
        Index("idx_notifications_user_read", "user_id", "is_read"),
    )

    def __repr__(self) -> str:
        """String representation of Notification."""
        return (
            f"<Notification(id={self.id}, user_id={self.user_id}, "
            f"kind={self.kind}, read={self.is_read})>"
        )


class AuditEvent(Base):
    """
    Audit trail table.

    Append-only record of every state transition and every rejected one.
    """

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    correlation_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        """String representation of AuditEvent."""
        return (
            f"<AuditEvent(id={self.id}, entity={self.entity_type}:{self.entity_id}, "
            f"type={self.event_type})>"
        )


class AppSetting(Base):
    """Runtime-editable settings, read fresh on every decision that uses them."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        """String representation of AppSetting."""
        return f"<AppSetting(key={self.key}, value={self.value})>"
