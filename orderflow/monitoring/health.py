"""
Health check endpoints for readiness/liveness probes.

Checks:
- Database connectivity
- Artifact directory writability
"""
import asyncio
import os
from typing import Any, Dict

import structlog
from sqlalchemy import text

from orderflow.config import get_settings
from orderflow.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Artifact storage check
    - Overall system health status
    """

    def __init__(self) -> None:
        """Initialize health check service."""
        self.settings = get_settings()

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = get_session_factory()
            async with session_factory() as db:
                result = await asyncio.wait_for(
                    db.execute(text("SELECT 1")), timeout=self.settings.store_timeout_seconds
                )
                result.scalar()

            return {
                "status": "healthy",
                "service": "database",
                "message": "Database connection successful",
            }

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    async def check_artifact_storage(self) -> Dict[str, Any]:
        """
        Check that the artifact directory exists and is writable.

        Returns:
            Dict[str, Any]: Artifact storage health status

        Raises:
            HealthCheckError: If the directory is missing or read-only
        """
        artifact_dir = self.settings.artifact_dir
        if os.path.isdir(artifact_dir) and os.access(artifact_dir, os.W_OK):
            return {
                "status": "healthy",
                "service": "artifact_storage",
                "message": "Artifact directory writable",
            }

        logger.error("artifact_storage_health_check_failed", artifact_dir=artifact_dir)
        raise HealthCheckError(f"Artifact directory not writable: {artifact_dir}")

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            all_healthy = False

        try:
            checks["artifact_storage"] = await self.check_artifact_storage()
        except HealthCheckError as e:
            checks["artifact_storage"] = {
                "status": "unhealthy",
                "service": "artifact_storage",
                "error": str(e),
            }
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: verifies all dependencies are available."""
        return await self.check_all()
