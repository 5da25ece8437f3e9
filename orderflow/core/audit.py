"""
Append-only audit trail of lifecycle transitions.

Entries for applied transitions are written inside the transaction that
applies them. Rejected transitions are recorded in a separate transaction so
the entry survives the caller's rollback.
"""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.database.models import AuditEvent
from orderflow.database.store import Store

logger = structlog.get_logger(__name__)


class AuditTrail:
    """Writes and reads audit events."""

    def __init__(self, store: Optional[Store] = None):
        self.store = store or Store()

    @staticmethod
    def record(
        session: AsyncSession,
        entity_type: str,
        entity_id: Any,
        event_type: str,
        event_data: Dict[str, Any],
        correlation_id: uuid.UUID,
    ) -> None:
        """
        Add an audit event to the caller's transaction.

        Args:
            session: Database session of the transition being applied
            entity_type: Entity kind (e.g., 'purchase', 'payment')
            entity_id: Entity identifier
            event_type: Event type (e.g., 'order_created')
            event_data: Event data
            correlation_id: Correlation ID for tracing
        """
        session.add(
            AuditEvent(
                entity_type=entity_type,
                entity_id=str(entity_id),
                event_type=event_type,
                event_data=event_data,
                correlation_id=correlation_id,
            )
        )

    async def record_isolated(
        self,
        entity_type: str,
        entity_id: Any,
        event_type: str,
        event_data: Dict[str, Any],
        correlation_id: uuid.UUID,
    ) -> None:
        """
        Record an audit event in its own transaction.

        A failure to write is logged and does not mask the error the caller
        is about to raise.
        """

        async def _work(session: AsyncSession) -> None:
            self.record(session, entity_type, entity_id, event_type, event_data, correlation_id)

        try:
            await self.store.run(_work, operation="audit_record")
        except Exception as e:
            logger.error(
                "audit_record_failed",
                entity_type=entity_type,
                entity_id=str(entity_id),
                event_type=event_type,
                correlation_id=str(correlation_id),
                error=str(e),
            )

    async def list_events(
        self,
        entity_id: Optional[Any] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """List audit events, newest first."""

        async def _work(session: AsyncSession) -> List[Dict[str, Any]]:
            stmt = select(AuditEvent)
            if entity_id is not None:
                stmt = stmt.where(AuditEvent.entity_id == str(entity_id))
            if event_type is not None:
                stmt = stmt.where(AuditEvent.event_type == event_type)
            stmt = stmt.order_by(AuditEvent.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return [
                {
                    "id": event.id,
                    "entity_type": event.entity_type,
                    "entity_id": event.entity_id,
                    "event_type": event.event_type,
                    "event_data": event.event_data,
                    "correlation_id": str(event.correlation_id),
                    "created_at": event.created_at.isoformat(),
                }
                for event in result.scalars().all()
            ]

        return await self.store.run(_work, operation="audit_list")
