"""
Delivery orchestrator.

Turns a paid purchase into a downloadable artifact:
1. Check the purchase (exists, payment completed, not yet delivered)
2. Build renderer data for the policy (placeholder or scored answers)
3. Render with timeout and retries, then save the artifact
4. Mark delivered with a guarded update

Only one artifact is ever attached to a purchase. When two deliveries race,
the guarded update picks the winner and the loser discards its own artifact.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, NoReturn, Optional, Sequence, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.audit import AuditTrail
from orderflow.core.catalog import product_to_dict
from orderflow.core.runtime_settings import RuntimeSettings
from orderflow.database.models import (
    DeliveryPolicy,
    DeliveryState,
    PaymentState,
    Product,
    Purchase,
)
from orderflow.database.store import Store
from orderflow.exceptions import (
    ArtifactNotFound,
    PaymentNotCompleted,
    PurchaseNotFound,
    TransientError,
)
from orderflow.integrations.artifact_store import ArtifactStore
from orderflow.integrations.renderer import RendererClient
from orderflow.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

UNANSWERED = "Not answered"


@dataclass
class DeliveryResult:
    purchase_id: str
    artifact_ref: str
    already_delivered: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "purchase_id": self.purchase_id,
            "artifact_ref": self.artifact_ref,
            "already_delivered": self.already_delivered,
        }


def score_answers(
    questions: Sequence[Dict[str, Any]], answers: Sequence[Optional[int]]
) -> Tuple[int, List[Dict[str, Any]]]:
    """
    Score answers against a product's questions.

    Answers are option indices by question position; missing or out-of-range
    answers count as wrong.

    Returns:
        Tuple of (score as a rounded percentage, per-question results)
    """
    results = []
    correct_count = 0
    for index, question in enumerate(questions):
        options = question.get("options") or []
        answer = answers[index] if index < len(answers) else None
        is_correct = answer is not None and answer == question.get("correct")
        if is_correct:
            correct_count += 1

        def _option(position: Optional[int]) -> str:
            if position is None or not 0 <= position < len(options):
                return UNANSWERED
            return str(options[position])

        results.append(
            {
                "question": question.get("question", ""),
                "user_answer": _option(answer),
                "correct_answer": _option(question.get("correct")),
                "is_correct": is_correct,
            }
        )

    score = round(correct_count / len(questions) * 100) if questions else 0
    return score, results


class DeliveryOrchestrator:
    """Decides whether and how a purchase is delivered, then delivers it."""

    def __init__(
        self,
        store: Optional[Store] = None,
        audit: Optional[AuditTrail] = None,
        renderer_client: Optional[RendererClient] = None,
        artifact_store: Optional[ArtifactStore] = None,
        runtime_settings: Optional[RuntimeSettings] = None,
    ):
        """
        Initialize delivery orchestrator.

        Args:
            store: Optional store (creates one if not provided)
            audit: Optional audit trail sharing the same store
            renderer_client: Optional renderer client (text renderer by default)
            artifact_store: Optional artifact store (configured directory by default)
            runtime_settings: Optional runtime settings reader
        """
        self.store = store or Store()
        self.audit = audit or AuditTrail(self.store)
        self.renderer_client = renderer_client or RendererClient()
        self.artifact_store = artifact_store or ArtifactStore()
        self.runtime_settings = runtime_settings or RuntimeSettings(self.store, self.audit)

    async def _load(
        self, purchase_uuid: uuid.UUID, user_id: Optional[Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        async def _work(session: AsyncSession) -> Tuple[Dict[str, Any], Dict[str, Any]]:
            row = (
                await session.execute(
                    select(Purchase, Product)
                    .join(Product, Product.id == Purchase.product_id)
                    .where(Purchase.id == purchase_uuid)
                )
            ).one_or_none()
            if row is None:
                raise PurchaseNotFound(purchase_uuid)
            purchase, product = row
            if user_id is not None and purchase.user_id != uuid.UUID(str(user_id)):
                raise PurchaseNotFound(purchase_uuid)
            return (
                {
                    "user_id": str(purchase.user_id),
                    "payment_status": purchase.payment_status,
                    "delivery_status": purchase.delivery_status,
                    "artifact_ref": purchase.artifact_ref,
                },
                product_to_dict(product),
            )

        return await self.store.run(_work, operation="load_delivery")

    @staticmethod
    def _render_data(
        policy: DeliveryPolicy,
        product: Dict[str, Any],
        user_id: str,
        answers: Optional[Sequence[Optional[int]]],
    ) -> Dict[str, Any]:
        if policy is DeliveryPolicy.AUTO:
            return {"user_id": user_id, "results": None}
        score, results = score_answers(product["questions"], answers or [])
        return {"user_id": user_id, "score": score, "results": results}

    async def _reject(
        self,
        purchase_id: uuid.UUID,
        payment_status: str,
        policy: DeliveryPolicy,
        correlation_id: uuid.UUID,
    ) -> NoReturn:
        metrics.record_delivery(policy.value, "rejected")
        logger.warning(
            "delivery_rejected",
            correlation_id=str(correlation_id),
            purchase_id=str(purchase_id),
            payment_status=payment_status,
        )
        await self.audit.record_isolated(
            "purchase",
            purchase_id,
            "delivery_rejected",
            {
                "reason": "payment_not_completed",
                "payment_status": payment_status,
                "policy": policy.value,
            },
            correlation_id,
        )
        raise PaymentNotCompleted(purchase_id, payment_status)

    async def deliver(
        self,
        purchase_id: Any,
        policy: DeliveryPolicy = DeliveryPolicy.AUTO,
        answers: Optional[Sequence[Optional[int]]] = None,
        user_id: Optional[Any] = None,
    ) -> DeliveryResult:
        """
        Deliver a purchase's artifact.

        Args:
            purchase_id: Purchase to deliver
            policy: auto (placeholder) or generated (scored answers)
            answers: Option index per question, for the generated policy
            user_id: When given, the purchase must belong to this user

        Returns:
            DeliveryResult: The artifact attached to the purchase

        Raises:
            PurchaseNotFound: If the purchase does not exist
            PaymentNotCompleted: If payment has not completed
            TransientError: If rendering or storage failed
        """
        policy = DeliveryPolicy(policy)
        purchase_uuid = uuid.UUID(str(purchase_id))
        correlation_id = uuid.uuid4()
        log = logger.bind(
            correlation_id=str(correlation_id),
            purchase_id=str(purchase_uuid),
            policy=policy.value,
        )

        purchase, product = await self._load(purchase_uuid, user_id)

        if purchase["delivery_status"] == DeliveryState.DELIVERED.value:
            metrics.record_delivery(policy.value, "already_delivered")
            log.info("delivery_already_done", artifact_ref=purchase["artifact_ref"])
            return DeliveryResult(str(purchase_uuid), purchase["artifact_ref"], True)

        if purchase["payment_status"] != PaymentState.COMPLETED.value:
            await self._reject(purchase_uuid, purchase["payment_status"], policy, correlation_id)

        log.info("delivery_started")
        data = self._render_data(policy, product, purchase["user_id"], answers)
        try:
            content = await self.renderer_client.render(product, data, policy.value)
            artifact_ref = await self.artifact_store.save(
                content, self.renderer_client.file_extension
            )
        except TransientError as e:
            metrics.record_delivery(policy.value, "failed")
            log.error("delivery_failed", error=e.message)
            raise

        async def _mark_delivered(session: AsyncSession) -> int:
            changed = await Store.update_where(
                session,
                Purchase,
                [
                    Purchase.id == purchase_uuid,
                    Purchase.payment_status == PaymentState.COMPLETED.value,
                    Purchase.delivery_status == DeliveryState.PENDING.value,
                ],
                {
                    "delivery_status": DeliveryState.DELIVERED.value,
                    "artifact_ref": artifact_ref,
                    "delivery_policy": policy.value,
                    "delivered_at": datetime.now(timezone.utc),
                },
            )
            if changed:
                event_data = {"artifact_ref": artifact_ref, "policy": policy.value}
                if "score" in data:
                    event_data["score"] = data["score"]
                self.audit.record(
                    session, "purchase", purchase_uuid, "delivered", event_data, correlation_id
                )
            return changed

        try:
            changed = await self.store.run(_mark_delivered, operation="mark_delivered")
        except TransientError:
            await self.artifact_store.discard(artifact_ref)
            metrics.record_delivery(policy.value, "failed")
            raise

        if changed:
            metrics.record_delivery(policy.value, "delivered")
            log.info("delivery_completed", artifact_ref=artifact_ref)
            return DeliveryResult(str(purchase_uuid), artifact_ref)

        # Lost the race: keep the winner's artifact
        await self.artifact_store.discard(artifact_ref)
        current, _ = await self._load(purchase_uuid, None)
        if current["delivery_status"] != DeliveryState.DELIVERED.value:
            await self._reject(purchase_uuid, current["payment_status"], policy, correlation_id)
        metrics.record_delivery(policy.value, "already_delivered")
        log.info("delivery_race_lost", winner_artifact_ref=current["artifact_ref"])
        return DeliveryResult(str(purchase_uuid), current["artifact_ref"], True)

    async def on_payment_completed(self, purchase_id: Any) -> Optional[DeliveryResult]:
        """
        Run auto-delivery after a payment completes, if enabled.

        Returns:
            DeliveryResult, or None when delivery is deferred
        """
        if not await self.runtime_settings.is_auto_deliver_enabled():
            metrics.record_delivery(DeliveryPolicy.AUTO.value, "deferred")
            logger.info("delivery_deferred", purchase_id=str(purchase_id))
            return None
        return await self.deliver(purchase_id, DeliveryPolicy.AUTO)

    async def open_artifact(self, user_id: Any, artifact_ref: str) -> bytes:
        """
        Read an artifact for download by its owner.

        Raises:
            ArtifactNotFound: If no purchase of this user carries the reference
        """
        user_uuid = uuid.UUID(str(user_id))

        async def _work(session: AsyncSession) -> bool:
            owned = await session.scalar(
                select(Purchase.id).where(
                    Purchase.user_id == user_uuid,
                    Purchase.artifact_ref == artifact_ref,
                    Purchase.delivery_status == DeliveryState.DELIVERED.value,
                )
            )
            return owned is not None

        if not await self.store.run(_work, operation="check_artifact_owner"):
            raise ArtifactNotFound(artifact_ref)
        return await self.artifact_store.load(artifact_ref)

    @property
    def media_type(self) -> str:
        return self.renderer_client.media_type

    async def pending_deliveries(self, limit: int = 50) -> List[str]:
        """Purchase ids whose payment completed but which are not delivered yet."""

        async def _work(session: AsyncSession) -> List[str]:
            result = await session.execute(
                select(Purchase.id)
                .where(
                    Purchase.payment_status == PaymentState.COMPLETED.value,
                    Purchase.delivery_status == DeliveryState.PENDING.value,
                )
                .order_by(Purchase.created_at)
                .limit(limit)
            )
            return [str(purchase_id) for purchase_id in result.scalars().all()]

        return await self.store.run(_work, operation="pending_deliveries")
