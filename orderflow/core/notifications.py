"""
Notification dispatcher.

Targeted sends write one row. Global sends read the current set of active
users and write one row per recipient, each in its own transaction, so a
failure for one recipient never rolls back the others. Read state is only
changed by the owning user.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.config import get_settings
from orderflow.core.audit import AuditTrail
from orderflow.database.models import Notification, NotificationKind, User
from orderflow.database.store import Store
from orderflow.exceptions import NotificationNotFound
from orderflow.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NotificationTarget:
    """Either a single user or every active user."""

    user_id: Optional[uuid.UUID] = None
    is_global: bool = False

    def __post_init__(self) -> None:
        if self.is_global == (self.user_id is not None):
            raise ValueError("Target must be exactly one of a user or global")

    @classmethod
    def user(cls, user_id: Any) -> "NotificationTarget":
        return cls(user_id=uuid.UUID(str(user_id)))

    @classmethod
    def everyone(cls) -> "NotificationTarget":
        return cls(is_global=True)


@dataclass
class DispatchResult:
    notification_ids: List[str] = field(default_factory=list)
    failed_user_ids: List[str] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed_user_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_ids": self.notification_ids,
            "sent_count": len(self.notification_ids),
            "failed_count": self.failed_count,
            "failed_user_ids": self.failed_user_ids,
        }


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "id": str(notification.id),
        "user_id": str(notification.user_id) if notification.user_id else None,
        "title": notification.title,
        "message": notification.message,
        "kind": notification.kind,
        "is_global": notification.is_global,
        "is_read": notification.is_read,
        "created_by": notification.created_by,
        "created_at": notification.created_at.isoformat(),
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
    }


class NotificationDispatcher:
    """Sends notifications and manages per-user read state."""

    def __init__(self, store: Optional[Store] = None, audit: Optional[AuditTrail] = None):
        """
        Initialize notification dispatcher.

        Args:
            store: Optional store (creates one if not provided)
            audit: Optional audit trail sharing the same store
        """
        self.settings = get_settings()
        self.store = store or Store()
        self.audit = audit or AuditTrail(self.store)

    @staticmethod
    def add_notification(
        session: AsyncSession,
        user_id: uuid.UUID,
        title: str,
        message: str,
        kind: str,
        created_by: str,
        is_global: bool = False,
    ) -> Notification:
        """Add one notification row to the caller's transaction."""
        notification = Notification(
            id=uuid.uuid4(),
            user_id=user_id,
            title=title,
            message=message,
            kind=NotificationKind(kind).value,
            is_global=is_global,
            is_read=False,
            created_by=created_by,
        )
        session.add(notification)
        return notification

    async def _active_user_ids(self) -> List[uuid.UUID]:
        async def _work(session: AsyncSession) -> List[uuid.UUID]:
            result = await session.execute(select(User.id).where(User.is_active.is_(True)))
            return list(result.scalars().all())

        return await self.store.run(_work, operation="active_users")

    async def _write_recipient(
        self, user_id: uuid.UUID, title: str, message: str, kind: str, created_by: str
    ) -> str:
        async def _work(session: AsyncSession) -> str:
            notification = self.add_notification(
                session, user_id, title, message, kind, created_by, is_global=True
            )
            return str(notification.id)

        return await self.store.run(_work, operation="fanout_notification")

    async def send(
        self,
        target: NotificationTarget,
        title: str,
        message: str,
        kind: str,
        created_by: str,
    ) -> DispatchResult:
        """
        Send a notification to one user or to every active user.

        Args:
            target: Recipient selection
            title: Notification title
            message: Notification body
            kind: One of info, success, warning, error
            created_by: Sender identifier

        Returns:
            DispatchResult: Ids written, plus recipients whose write failed
        """
        kind = NotificationKind(kind).value
        correlation_id = uuid.uuid4()

        if not target.is_global:

            async def _work(session: AsyncSession) -> str:
                notification = self.add_notification(
                    session, target.user_id, title, message, kind, created_by
                )
                self.audit.record(
                    session,
                    "notification",
                    notification.id,
                    "notification_sent",
                    {"user_id": str(target.user_id), "title": title, "kind": kind},
                    correlation_id,
                )
                return str(notification.id)

            notification_id = await self.store.run(_work, operation="send_notification")
            metrics.record_notifications("user", kind, 1)
            logger.info(
                "notification_sent",
                notification_id=notification_id,
                user_id=str(target.user_id),
                kind=kind,
            )
            return DispatchResult(notification_ids=[notification_id])

        return await self._fan_out(title, message, kind, created_by, correlation_id)

    async def _fan_out(
        self,
        title: str,
        message: str,
        kind: str,
        created_by: str,
        correlation_id: uuid.UUID,
    ) -> DispatchResult:
        user_ids = await self._active_user_ids()
        semaphore = asyncio.Semaphore(self.settings.notification_fanout_concurrency)
        result = DispatchResult()

        logger.info(
            "global_notification_started",
            correlation_id=str(correlation_id),
            recipients=len(user_ids),
        )

        async def _one(user_id: uuid.UUID) -> None:
            async with semaphore:
                try:
                    notification_id = await self._write_recipient(
                        user_id, title, message, kind, created_by
                    )
                except Exception as e:
                    result.failed_user_ids.append(str(user_id))
                    logger.error(
                        "global_notification_recipient_failed",
                        correlation_id=str(correlation_id),
                        user_id=str(user_id),
                        error=str(e),
                    )
                else:
                    result.notification_ids.append(notification_id)

        await asyncio.gather(*(_one(user_id) for user_id in user_ids))

        metrics.record_notifications(
            "global", kind, len(result.notification_ids), result.failed_count
        )
        await self.audit.record_isolated(
            "notification",
            "global",
            "global_notification_sent",
            {
                "title": title,
                "kind": kind,
                "sent_count": len(result.notification_ids),
                "failed_user_ids": result.failed_user_ids,
            },
            correlation_id,
        )
        log = logger.warning if result.failed_count else logger.info
        log(
            "global_notification_completed",
            correlation_id=str(correlation_id),
            sent=len(result.notification_ids),
            failed=result.failed_count,
        )
        return result

    async def list_for_user(
        self,
        user_id: Any,
        unread_only: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """List a user's notifications with unread count and pagination."""
        user_uuid = uuid.UUID(str(user_id))
        page = max(page, 1)

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            filters = [Notification.user_id == user_uuid]
            if unread_only:
                filters.append(Notification.is_read.is_(False))

            total = await session.scalar(
                select(func.count()).select_from(Notification).where(*filters)
            )
            unread = await session.scalar(
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == user_uuid, Notification.is_read.is_(False))
            )
            result = await session.execute(
                select(Notification)
                .where(*filters)
                .order_by(Notification.created_at.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            return {
                "notifications": [notification_to_dict(n) for n in result.scalars().all()],
                "unread_count": unread or 0,
                "pagination": _pagination(page, limit, total or 0),
            }

        return await self.store.run(_work, operation="list_notifications")

    async def mark_read(self, user_id: Any, notification_id: Any) -> None:
        """
        Mark one of the user's notifications as read.

        Raises:
            NotificationNotFound: If it does not exist or belongs to someone else
        """
        user_uuid = uuid.UUID(str(user_id))
        notification_uuid = uuid.UUID(str(notification_id))

        async def _work(session: AsyncSession) -> int:
            return await Store.update_where(
                session,
                Notification,
                [Notification.id == notification_uuid, Notification.user_id == user_uuid],
                {
                    "is_read": True,
                    "read_at": func.coalesce(Notification.read_at, datetime.now(timezone.utc)),
                },
            )

        if not await self.store.run(_work, operation="mark_notification_read"):
            raise NotificationNotFound(notification_id)

    async def mark_all_read(self, user_id: Any) -> int:
        """Mark every unread notification of the user as read. Returns the count."""
        user_uuid = uuid.UUID(str(user_id))

        async def _work(session: AsyncSession) -> int:
            return await Store.update_where(
                session,
                Notification,
                [Notification.user_id == user_uuid, Notification.is_read.is_(False)],
                {"is_read": True, "read_at": datetime.now(timezone.utc)},
            )

        return await self.store.run(_work, operation="mark_all_notifications_read")

    async def delete(self, user_id: Any, notification_id: Any) -> None:
        """Delete one of the user's own notifications."""
        user_uuid = uuid.UUID(str(user_id))
        notification_uuid = uuid.UUID(str(notification_id))

        async def _work(session: AsyncSession) -> int:
            result = await session.execute(
                delete(Notification).where(
                    Notification.id == notification_uuid,
                    Notification.user_id == user_uuid,
                )
            )
            return result.rowcount

        if not await self.store.run(_work, operation="delete_notification"):
            raise NotificationNotFound(notification_id)

    async def delete_any(self, notification_id: Any, deleted_by: str) -> None:
        """Operator delete of any notification."""
        notification_uuid = uuid.UUID(str(notification_id))
        correlation_id = uuid.uuid4()

        async def _work(session: AsyncSession) -> int:
            result = await session.execute(
                delete(Notification).where(Notification.id == notification_uuid)
            )
            if result.rowcount:
                self.audit.record(
                    session,
                    "notification",
                    notification_uuid,
                    "notification_deleted",
                    {"deleted_by": deleted_by},
                    correlation_id,
                )
            return result.rowcount

        if not await self.store.run(_work, operation="admin_delete_notification"):
            raise NotificationNotFound(notification_id)

    async def list_all(
        self,
        kind: Optional[str] = None,
        is_read: Optional[bool] = None,
        is_global: Optional[bool] = None,
        user_id: Optional[Any] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Operator listing of notifications with filters."""
        page = max(page, 1)

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            filters = []
            if kind is not None:
                filters.append(Notification.kind == kind)
            if is_read is not None:
                filters.append(Notification.is_read.is_(is_read))
            if is_global is not None:
                filters.append(Notification.is_global.is_(is_global))
            if user_id is not None:
                filters.append(Notification.user_id == uuid.UUID(str(user_id)))

            total = await session.scalar(
                select(func.count()).select_from(Notification).where(*filters)
            )
            result = await session.execute(
                select(Notification)
                .where(*filters)
                .order_by(Notification.created_at.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            return {
                "notifications": [notification_to_dict(n) for n in result.scalars().all()],
                "pagination": _pagination(page, limit, total or 0),
            }

        return await self.store.run(_work, operation="admin_list_notifications")


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": -(-total // limit) if limit else 0,
    }
