"""
Runtime-editable settings stored in the database.

Values are read fresh on every call so an operator change takes effect on
the next decision without a restart.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.config import get_settings
from orderflow.core.audit import AuditTrail
from orderflow.database.models import AppSetting
from orderflow.database.store import Store

logger = structlog.get_logger(__name__)

AUTO_DELIVER_KEY = "auto_deliver"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class RuntimeSettings:
    """Reads and writes settings rows."""

    def __init__(self, store: Optional[Store] = None, audit: Optional[AuditTrail] = None):
        self.settings = get_settings()
        self.store = store or Store()
        self.audit = audit or AuditTrail(self.store)

    async def get_value(self, key: str) -> Optional[str]:
        async def _work(session: AsyncSession) -> Optional[str]:
            row = await session.get(AppSetting, key)
            return row.value if row is not None else None

        return await self.store.run(_work, operation="get_setting")

    async def set_value(self, key: str, value: str, description: Optional[str] = None) -> None:
        correlation_id = uuid.uuid4()

        async def _work(session: AsyncSession) -> None:
            row = await session.get(AppSetting, key)
            previous = row.value if row is not None else None
            if row is None:
                session.add(AppSetting(key=key, value=value, description=description))
            else:
                row.value = value
                if description is not None:
                    row.description = description
            self.audit.record(
                session,
                "setting",
                key,
                "setting_changed",
                {"previous": previous, "value": value},
                correlation_id,
            )

        await self.store.run(_work, operation="set_setting")
        logger.info("runtime_setting_changed", key=key, value=value)

    async def is_auto_deliver_enabled(self) -> bool:
        """Whether payment completion should trigger delivery right away."""
        value = await self.get_value(AUTO_DELIVER_KEY)
        if value is None:
            return self.settings.auto_deliver_default
        return value.strip().lower() in _TRUE_VALUES

    async def set_auto_deliver(self, enabled: bool) -> None:
        await self.set_value(
            AUTO_DELIVER_KEY,
            "true" if enabled else "false",
            description="Deliver the artifact automatically when payment completes",
        )
