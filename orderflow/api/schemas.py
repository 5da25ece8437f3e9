"""
Pydantic schemas for API request/response models.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from orderflow.database.models import NotificationKind


def _check_questions(questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Each question needs text, at least two options and a valid correct index."""
    for question in questions:
        options = question.get("options")
        correct = question.get("correct")
        if not question.get("question") or not isinstance(options, list) or len(options) < 2:
            raise ValueError("Each question needs 'question' and at least two 'options'")
        if not isinstance(correct, int) or not 0 <= correct < len(options):
            raise ValueError("'correct' must be the index of one of the options")
    return questions


class CreatePurchaseRequest(BaseModel):
    """Request schema for creating a purchase."""

    product_id: UUID = Field(..., description="Product to purchase")

    model_config = {
        "json_schema_extra": {
            "examples": [{"product_id": "123e4567-e89b-12d3-a456-426614174000"}]
        }
    }


class PurchaseResponse(BaseModel):
    """Response schema for a purchase."""

    id: str = Field(..., description="Purchase ID")
    user_id: str = Field(..., description="Owner")
    product_id: str = Field(..., description="Purchased product")
    product_name: Optional[str] = Field(default=None, description="Product name")
    payment_status: str = Field(..., description="pending, completed or failed")
    payment_reference: str = Field(..., description="Opaque payment reference")
    amount: Decimal = Field(..., description="Amount charged")
    delivery_status: str = Field(..., description="pending or delivered")
    delivery_policy: Optional[str] = Field(default=None, description="auto or generated")
    artifact_ref: Optional[str] = Field(default=None, description="Delivered artifact reference")
    delivered_at: Optional[str] = Field(default=None, description="Delivery timestamp (ISO 8601)")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")


class CreatePurchaseResponse(BaseModel):
    """Response schema for purchase creation."""

    purchase: PurchaseResponse
    payment_reference: str = Field(..., description="Reference to hand to the payment provider")
    amount: Decimal = Field(..., description="Amount to pay")
    currency: str = Field(..., description="Currency code")


class DeliverRequest(BaseModel):
    """Request schema for delivering a purchase."""

    answers: Optional[List[Optional[int]]] = Field(
        default=None,
        description="Chosen option index per question; triggers a scored document",
    )


class DeliveryResponse(BaseModel):
    """Response schema for a delivery."""

    purchase_id: str
    artifact_ref: str
    already_delivered: bool


class PaymentStatusResponse(BaseModel):
    """Response schema for payment status."""

    payment_reference: str
    status: str
    amount: Decimal
    currency: str
    product_name: str
    purchase_id: str
    delivery_status: str
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601)")


class PaymentCallbackRequest(BaseModel):
    """
    Provider callback body.

    Only ``payment_reference`` and ``status`` are interpreted; the whole body
    is stored as the provider payload.
    """

    payment_reference: str = Field(..., min_length=1)
    status: str = Field(..., description="'success' completes the payment; anything else fails it")
    transaction_id: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class PaymentCallbackResponse(BaseModel):
    payment_reference: str
    status: str = Field(..., description="Payment state after the callback")


class ProductCreateRequest(BaseModel):
    """Request schema for creating a product."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, decimal_places=2)
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("questions")
    @classmethod
    def validate_questions(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return _check_questions(v)


class ProductUpdateRequest(BaseModel):
    """Request schema for updating a product. Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    questions: Optional[List[Dict[str, Any]]] = None
    is_active: Optional[bool] = None

    @field_validator("name", "price", "is_active", "questions")
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        # Validators only run on fields present in the body
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v

    @field_validator("questions")
    @classmethod
    def validate_questions(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return _check_questions(v)


class ProductResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    questions: List[Dict[str, Any]]
    is_active: bool
    created_at: str
    updated_at: str


class SendNotificationRequest(BaseModel):
    """Operator request to notify one user or everyone."""

    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    kind: NotificationKind = NotificationKind.INFO
    user_id: Optional[UUID] = Field(default=None, description="Recipient; omit for global sends")
    is_global: bool = False

    @model_validator(mode="after")
    def validate_target(self) -> "SendNotificationRequest":
        if self.is_global == (self.user_id is not None):
            raise ValueError("Provide either user_id or is_global=true")
        return self


class DispatchResponse(BaseModel):
    notification_ids: List[str]
    sent_count: int
    failed_count: int
    failed_user_ids: List[str]


class AutoDeliverSetting(BaseModel):
    enabled: bool


class RegisterUserRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    user_id: Optional[UUID] = None
    is_active: bool = True


class UpdateUserRequest(BaseModel):
    is_active: bool


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
