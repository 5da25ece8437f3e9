"""
Race condition tests for concurrent requests.

Concurrency is decided by the store: the partial unique index for purchases
and conditional updates for payment and delivery transitions.
"""
import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from orderflow.database.connection import get_session_factory
from orderflow.database.models import AuditEvent, Notification, Payment, PaymentState, Purchase
from orderflow.exceptions import DuplicateOrder


async def _count(model, *where) -> int:
    async with get_session_factory()() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*where))


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_purchases_create_exactly_one(self, ledger, product) -> None:
        """Ten concurrent purchases of the same product by one user: one wins."""
        user_id = uuid.uuid4()

        results = await asyncio.gather(
            *(ledger.create_purchase(user_id, product["id"]) for _ in range(10)),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, dict)]
        duplicates = [r for r in results if isinstance(r, DuplicateOrder)]
        assert len(created) == 1
        assert len(duplicates) == 9
        assert await _count(Purchase, Purchase.user_id == user_id) == 1
        assert await _count(Payment, Payment.user_id == user_id) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_purchases_different_users_all_succeed(
        self, ledger, product
    ) -> None:
        results = await asyncio.gather(
            *(ledger.create_purchase(uuid.uuid4(), product["id"]) for _ in range(5)),
            return_exceptions=True,
        )

        references = {r["payment_reference"] for r in results if isinstance(r, dict)}
        assert len(references) == 5

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_success_callbacks_apply_once(
        self, ledger, reconciler, renderer, product, user_id
    ) -> None:
        result = await ledger.create_purchase(user_id, product["id"])
        reference = result["payment_reference"]

        states = await asyncio.gather(
            *(
                reconciler.reconcile_callback(reference, "success", {"attempt": i})
                for i in range(5)
            )
        )

        assert set(states) == {PaymentState.COMPLETED}
        assert await _count(Notification, Notification.user_id == user_id) == 1
        assert await _count(AuditEvent, AuditEvent.event_type == "payment_completed") == 1
        assert await _count(AuditEvent, AuditEvent.event_type == "callback_replayed") == 4
        assert len(renderer.calls) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_deliveries_attach_one_artifact(
        self, ledger, reconciler, delivery, runtime_settings, artifact_dir, product, user_id
    ) -> None:
        await runtime_settings.set_auto_deliver(False)
        result = await ledger.create_purchase(user_id, product["id"])
        await reconciler.reconcile_callback(result["payment_reference"], "success")
        purchase_id = result["purchase"]["id"]

        deliveries = await asyncio.gather(
            *(delivery.deliver(purchase_id) for _ in range(5))
        )

        refs = {d.artifact_ref for d in deliveries}
        assert len(refs) == 1
        assert sum(1 for d in deliveries if not d.already_delivered) == 1
        assert [p.name for p in artifact_dir.iterdir()] == [refs.pop()]
        assert await _count(AuditEvent, AuditEvent.event_type == "delivered") == 1
