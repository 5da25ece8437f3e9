"""
Tests for the delivery orchestrator.
"""
import uuid

import pytest

from orderflow.core import score_answers
from orderflow.core.delivery import UNANSWERED
from orderflow.database.models import DeliveryPolicy
from orderflow.exceptions import (
    ArtifactNotFound,
    PaymentNotCompleted,
    PurchaseNotFound,
    RendererUnavailable,
)

QUESTIONS = [
    {"question": "Q1", "options": ["a", "b", "c"], "correct": 1},
    {"question": "Q2", "options": ["a", "b"], "correct": 0},
    {"question": "Q3", "options": ["a", "b", "c", "d"], "correct": 3},
]


class TestScoreAnswers:
    """Test answer scoring."""

    @pytest.mark.unit
    def test_rounded_percentage(self) -> None:
        score, results = score_answers(QUESTIONS, [1, 1, 3])

        assert score == 67
        assert [r["is_correct"] for r in results] == [True, False, True]
        assert results[1]["user_answer"] == "b"
        assert results[1]["correct_answer"] == "a"

    @pytest.mark.unit
    def test_missing_and_out_of_range_answers_are_wrong(self) -> None:
        score, results = score_answers(QUESTIONS, [None, 7])

        assert score == 0
        assert results[0]["user_answer"] == UNANSWERED
        assert results[1]["user_answer"] == UNANSWERED
        assert results[2]["user_answer"] == UNANSWERED

    @pytest.mark.unit
    def test_no_questions_scores_zero(self) -> None:
        assert score_answers([], [1, 2]) == (0, [])


async def _paid_purchase(ledger, reconciler, runtime_settings, product, user_id) -> str:
    await runtime_settings.set_auto_deliver(False)
    created = await ledger.create_purchase(user_id, product["id"])
    await reconciler.reconcile_callback(created["payment_reference"], "success")
    return created["purchase"]["id"]


class TestDeliver:
    """Test delivering purchases."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unpaid_purchase_cannot_be_delivered(
        self, ledger, delivery, audit, renderer, product, user_id
    ) -> None:
        created = await ledger.create_purchase(user_id, product["id"])
        purchase_id = created["purchase"]["id"]

        with pytest.raises(PaymentNotCompleted):
            await delivery.deliver(purchase_id)

        assert renderer.calls == []
        rejected = await audit.list_events(entity_id=purchase_id, event_type="delivery_rejected")
        assert len(rejected) == 1
        assert rejected[0]["event_data"]["payment_status"] == "pending"
        assert rejected[0]["event_data"]["reason"] == "payment_not_completed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_purchase(self, delivery, store) -> None:
        with pytest.raises(PurchaseNotFound):
            await delivery.deliver(uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_delivery_is_idempotent(
        self, ledger, reconciler, runtime_settings, delivery, renderer, product, user_id
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)

        first = await delivery.deliver(purchase_id)
        second = await delivery.deliver(purchase_id, DeliveryPolicy.GENERATED, [0, 2])

        assert len(renderer.calls) == 1
        assert first.already_delivered is False
        assert second.already_delivered is True
        assert second.artifact_ref == first.artifact_ref

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_generated_policy_scores_answers(
        self, ledger, reconciler, runtime_settings, delivery, renderer, audit, product, user_id
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)

        result = await delivery.deliver(purchase_id, DeliveryPolicy.GENERATED, [0, 1])

        data = renderer.calls[0]["data"]
        assert data["score"] == 50
        assert [r["is_correct"] for r in data["results"]] == [True, False]
        content = await delivery.open_artifact(user_id, result.artifact_ref)
        assert content.decode("utf-8") == f"Math Practice Pack|score=50|user={user_id}"
        purchase = await ledger.get_purchase(purchase_id)
        assert purchase["delivery_policy"] == "generated"
        delivered = await audit.list_events(entity_id=purchase_id, event_type="delivered")
        assert delivered[0]["event_data"]["score"] == 50

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_deliver_scoped_to_owner(
        self, ledger, reconciler, runtime_settings, delivery, product, user_id
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)

        with pytest.raises(PurchaseNotFound):
            await delivery.deliver(purchase_id, user_id=uuid.uuid4())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_renderer_retried_before_success(
        self, ledger, reconciler, runtime_settings, delivery, renderer, product, user_id
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)
        renderer.failures = 2

        result = await delivery.deliver(purchase_id)

        assert len(renderer.calls) == 3
        assert result.artifact_ref

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_renderer_outage_leaves_delivery_pending(
        self, ledger, reconciler, runtime_settings, delivery, renderer, artifact_dir,
        product, user_id
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)
        renderer.failures = 100

        with pytest.raises(RendererUnavailable) as exc_info:
            await delivery.deliver(purchase_id)

        assert exc_info.value.retryable is True
        assert len(renderer.calls) == 3
        assert (await ledger.get_purchase(purchase_id))["delivery_status"] == "pending"
        assert not artifact_dir.exists() or list(artifact_dir.iterdir()) == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_renderer_timeout_is_transient(
        self, ledger, reconciler, runtime_settings, delivery, renderer, product, user_id,
        mocker
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)
        renderer.delay = 5.0
        mocker.patch.object(delivery.renderer_client.settings, "renderer_timeout_seconds", 0.05)
        mocker.patch.object(delivery.renderer_client.settings, "renderer_max_attempts", 1)

        with pytest.raises(RendererUnavailable):
            await delivery.deliver(purchase_id)


class TestAutoDeliverFlag:
    """Test the runtime auto-deliver gate."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_flag_read_fresh_on_each_decision(
        self, ledger, reconciler, runtime_settings, delivery, renderer, product, user_id
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)

        assert await delivery.on_payment_completed(purchase_id) is None
        assert await delivery.pending_deliveries() == [purchase_id]

        await runtime_settings.set_auto_deliver(True)
        result = await delivery.on_payment_completed(purchase_id)

        assert result is not None
        assert result.artifact_ref
        assert await delivery.pending_deliveries() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_default_applies_without_stored_value(self, runtime_settings) -> None:
        assert await runtime_settings.is_auto_deliver_enabled() is True
        assert await runtime_settings.get_value("auto_deliver") is None


class TestOpenArtifact:
    """Test artifact downloads."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_only_owner_can_open(
        self, ledger, reconciler, runtime_settings, delivery, product, user_id
    ) -> None:
        purchase_id = await _paid_purchase(ledger, reconciler, runtime_settings, product, user_id)
        result = await delivery.deliver(purchase_id)

        assert await delivery.open_artifact(user_id, result.artifact_ref)
        with pytest.raises(ArtifactNotFound):
            await delivery.open_artifact(uuid.uuid4(), result.artifact_ref)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_malformed_reference(self, delivery, user_id, store) -> None:
        with pytest.raises(ArtifactNotFound):
            await delivery.open_artifact(user_id, "../../etc/passwd")
