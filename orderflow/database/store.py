"""
Transactional access to the persistent store.

Every unit of work runs in its own session and transaction under a timeout.
Connectivity problems, lock waits and timeouts are translated to
``StoreUnavailable`` so callers can retry; integrity errors are passed
through untouched because they carry domain meaning (duplicate orders).
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Type, TypeVar

import structlog
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.config import get_settings
from orderflow.database.connection import get_session_factory
from orderflow.exceptions import StoreUnavailable
from orderflow.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Store:
    """Runs units of work against the database with commit/rollback and timeouts."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize store.

        Args:
            session_factory: Optional session factory (uses the global one if not provided)
            timeout_seconds: Optional per-unit timeout (uses settings if not provided)
        """
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds or get_settings().store_timeout_seconds

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        operation: str = "unit_of_work",
    ) -> T:
        """
        Run ``work`` inside a single transaction.

        The transaction commits when ``work`` returns and rolls back when it
        raises.

        Args:
            work: Coroutine function receiving the session
            operation: Operation name for logs and metrics

        Returns:
            Whatever ``work`` returns

        Raises:
            StoreUnavailable: On timeout or connectivity/locking failures
            IntegrityError: On constraint violations
        """

        async def _run() -> T:
            async with self.session_factory.begin() as session:
                return await work(session)

        start_time = time.time()
        try:
            return await asyncio.wait_for(_run(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error("store_timeout", operation=operation, timeout=self.timeout_seconds)
            raise StoreUnavailable(
                f"Store operation {operation} timed out", {"operation": operation}
            ) from e
        except IntegrityError:
            raise
        except (OperationalError, InterfaceError, DBAPIError, OSError) as e:
            logger.error(
                "store_unavailable",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreUnavailable(
                f"Store unavailable during {operation}", {"operation": operation}
            ) from e
        finally:
            metrics.record_store_operation(operation, time.time() - start_time)

    @staticmethod
    async def update_where(
        session: AsyncSession,
        model: Type[Any],
        predicate: Sequence[Any],
        patch: Mapping[str, Any],
    ) -> int:
        """
        Compare-and-set: apply ``patch`` only to rows matching ``predicate``.

        Args:
            session: Database session
            model: Mapped class to update
            predicate: WHERE clauses, all of which must hold
            patch: Column values to set

        Returns:
            int: Number of rows actually changed
        """
        stmt = (
            update(model)
            .where(*predicate)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount
