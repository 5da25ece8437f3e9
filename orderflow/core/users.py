"""
User directory.

Mirrors the identities known to the access gateway so global notifications
can pick their recipients. Only the active flag matters to the engine.
"""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.database.models import User
from orderflow.database.store import Store
from orderflow.exceptions import ConflictError, UserNotFound

logger = structlog.get_logger(__name__)


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "email": user.email,
        "is_active": user.is_active,
        "created_at": user.created_at.isoformat(),
    }


class UserDirectory:
    """Registers mirrored users and toggles their active flag."""

    def __init__(self, store: Optional[Store] = None):
        self.store = store or Store()

    async def register(
        self, email: str, user_id: Optional[Any] = None, is_active: bool = True
    ) -> Dict[str, Any]:
        """
        Insert or refresh a mirrored user.

        An existing row with the same id keeps its id and takes the new email
        and active flag.
        """
        user_uuid = uuid.UUID(str(user_id)) if user_id is not None else uuid.uuid4()

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            user = await session.get(User, user_uuid)
            if user is None:
                user = User(id=user_uuid, email=email, is_active=is_active)
                session.add(user)
            else:
                user.email = email
                user.is_active = is_active
            await session.flush()
            return user_to_dict(user)

        try:
            user = await self.store.run(_work, operation="register_user")
        except IntegrityError as e:
            raise ConflictError(
                f"Email {email} is already registered to another user", {"email": email}
            ) from e
        logger.info("user_registered", user_id=user["id"], is_active=is_active)
        return user

    async def set_active(self, user_id: Any, is_active: bool) -> Dict[str, Any]:
        user_uuid = uuid.UUID(str(user_id))

        async def _work(session: AsyncSession) -> Dict[str, Any]:
            user = await session.get(User, user_uuid)
            if user is None:
                raise UserNotFound(user_id)
            user.is_active = is_active
            return user_to_dict(user)

        return await self.store.run(_work, operation="set_user_active")

    async def list_users(self, active_only: bool = False) -> List[Dict[str, Any]]:
        async def _work(session: AsyncSession) -> List[Dict[str, Any]]:
            stmt = select(User).order_by(User.created_at)
            if active_only:
                stmt = stmt.where(User.is_active.is_(True))
            result = await session.execute(stmt)
            return [user_to_dict(u) for u in result.scalars().all()]

        return await self.store.run(_work, operation="list_users")
