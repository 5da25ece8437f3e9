"""
Tests for the order ledger.
"""
import re
import uuid
from decimal import Decimal

import pytest

from orderflow.core import OrderLedger
from orderflow.database.models import DeliveryState, PaymentState
from orderflow.exceptions import (
    DuplicateOrder,
    ProductInactive,
    ProductNotFound,
    PurchaseNotFound,
    UnknownPayment,
)


class TestPaymentReference:
    """Test payment reference generation."""

    @pytest.mark.unit
    def test_reference_format(self) -> None:
        reference = OrderLedger.generate_payment_reference()

        assert re.fullmatch(r"PAY_\d{13}_[0-9a-f]{16}", reference)

    @pytest.mark.unit
    def test_references_are_unique(self) -> None:
        references = {OrderLedger.generate_payment_reference() for _ in range(500)}

        assert len(references) == 500


class TestCreatePurchase:
    """Test purchase creation."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_creates_pending_purchase_and_payment(self, ledger, product, user_id) -> None:
        result = await ledger.create_purchase(user_id, product["id"])

        purchase = result["purchase"]
        payment = result["payment"]
        assert purchase["payment_status"] == PaymentState.PENDING.value
        assert purchase["delivery_status"] == DeliveryState.PENDING.value
        assert purchase["amount"] == Decimal("29.99")
        assert payment["status"] == PaymentState.PENDING.value
        assert payment["currency"] == "TRY"
        assert payment["payment_reference"] == purchase["payment_reference"]
        assert result["payment_reference"] == purchase["payment_reference"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_created_is_audited(self, ledger, audit, product, user_id) -> None:
        result = await ledger.create_purchase(user_id, product["id"])

        events = await audit.list_events(entity_id=result["purchase"]["id"])
        assert [e["event_type"] for e in events] == ["order_created"]
        assert events[0]["event_data"]["payment_reference"] == result["payment_reference"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_second_purchase_of_same_product_rejected(
        self, ledger, audit, product, user_id
    ) -> None:
        await ledger.create_purchase(user_id, product["id"])

        with pytest.raises(DuplicateOrder) as exc_info:
            await ledger.create_purchase(user_id, product["id"])

        assert exc_info.value.kind == "conflict"
        rejected = await audit.list_events(event_type="order_rejected")
        assert len(rejected) == 1
        assert rejected[0]["event_data"]["reason"] == "DuplicateOrder"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_other_users_may_buy_the_same_product(self, ledger, product) -> None:
        first = await ledger.create_purchase(uuid.uuid4(), product["id"])
        second = await ledger.create_purchase(uuid.uuid4(), product["id"])

        assert first["payment_reference"] != second["payment_reference"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_product(self, ledger, store, user_id) -> None:
        with pytest.raises(ProductNotFound):
            await ledger.create_purchase(user_id, uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_inactive_product(self, ledger, catalog, product, user_id) -> None:
        await catalog.update_product(product["id"], is_active=False)

        with pytest.raises(ProductInactive):
            await ledger.create_purchase(user_id, product["id"])

        assert await ledger.list_user_purchases(user_id) == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_price_change_does_not_touch_existing_purchase(
        self, ledger, catalog, product, user_id
    ) -> None:
        result = await ledger.create_purchase(user_id, product["id"])
        await catalog.update_product(product["id"], price=Decimal("49.00"))

        purchase = await ledger.get_purchase(result["purchase"]["id"])
        assert purchase["amount"] == Decimal("29.99")


class TestQueries:
    """Test ledger reads."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_purchase_scoped_to_owner(self, ledger, product, user_id) -> None:
        result = await ledger.create_purchase(user_id, product["id"])
        purchase_id = result["purchase"]["id"]

        assert (await ledger.get_purchase(purchase_id, user_id=user_id))["id"] == purchase_id
        with pytest.raises(PurchaseNotFound):
            await ledger.get_purchase(purchase_id, user_id=uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payment_status_includes_product_name(self, ledger, product, user_id) -> None:
        result = await ledger.create_purchase(user_id, product["id"])

        status = await ledger.get_payment_status(result["payment_reference"], user_id=user_id)

        assert status["status"] == "pending"
        assert status["product_name"] == "Math Practice Pack"
        assert status["purchase_id"] == result["purchase"]["id"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payment_status_unknown_or_foreign(self, ledger, product, user_id) -> None:
        result = await ledger.create_purchase(user_id, product["id"])

        with pytest.raises(UnknownPayment):
            await ledger.get_payment_status("PAY_0_missing")
        with pytest.raises(UnknownPayment):
            await ledger.get_payment_status(result["payment_reference"], user_id=uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_payments_paginates(self, ledger, catalog, user_id) -> None:
        for index in range(3):
            item = await catalog.create_product(name=f"Pack {index}", price=Decimal("10.00"))
            await ledger.create_purchase(user_id, item["id"])

        page = await ledger.list_payments(user_id=user_id, page=2, limit=2)

        assert page["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
        assert len(page["payments"]) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_payments_filters_by_status(self, ledger, product, user_id) -> None:
        await ledger.create_purchase(user_id, product["id"])

        assert (await ledger.list_payments(status="completed"))["payments"] == []
        assert len((await ledger.list_payments(status="pending"))["payments"]) == 1
