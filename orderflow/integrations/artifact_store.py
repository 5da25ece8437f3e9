"""
Filesystem storage for rendered artifacts.

Artifacts are stored under opaque references ({uuid hex}.{extension}) in the
configured artifact directory. File IO runs in a worker thread under a
timeout; IO failures surface as StoreUnavailable.
"""
import asyncio
import os
import re
import uuid
from pathlib import Path
from typing import Optional

import structlog

from orderflow.config import get_settings
from orderflow.exceptions import ArtifactNotFound, StoreUnavailable

logger = structlog.get_logger(__name__)

_REF_PATTERN = re.compile(r"^[0-9a-f]{32}\.[a-z0-9]{1,8}$")


class ArtifactStore:
    """Saves, loads and discards artifact bytes by opaque reference."""

    def __init__(self, base_dir: Optional[str] = None, timeout_seconds: Optional[float] = None):
        settings = get_settings()
        self.base_dir = Path(base_dir or settings.artifact_dir)
        self.timeout_seconds = timeout_seconds or settings.store_timeout_seconds

    def _path_for(self, artifact_ref: str) -> Path:
        if not _REF_PATTERN.match(artifact_ref):
            raise ArtifactNotFound(artifact_ref)
        return self.base_dir / artifact_ref

    async def _run_io(self, func, *args):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.error("artifact_io_timeout", timeout=self.timeout_seconds)
            raise StoreUnavailable("Artifact storage timed out") from e

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_bytes(content)
        os.replace(tmp_path, path)

    async def save(self, content: bytes, extension: str) -> str:
        """
        Persist artifact bytes.

        Args:
            content: Rendered document
            extension: File extension without the dot

        Returns:
            str: Opaque artifact reference
        """
        artifact_ref = f"{uuid.uuid4().hex}.{extension}"
        path = self._path_for(artifact_ref)
        try:
            await self._run_io(self._write, path, content)
        except OSError as e:
            logger.error("artifact_write_failed", artifact_ref=artifact_ref, error=str(e))
            raise StoreUnavailable("Artifact storage unavailable") from e

        logger.info("artifact_saved", artifact_ref=artifact_ref, size_bytes=len(content))
        return artifact_ref

    async def load(self, artifact_ref: str) -> bytes:
        """
        Read artifact bytes.

        Raises:
            ArtifactNotFound: If the reference is malformed or missing
        """
        path = self._path_for(artifact_ref)
        try:
            return await self._run_io(path.read_bytes)
        except FileNotFoundError as e:
            raise ArtifactNotFound(artifact_ref) from e
        except OSError as e:
            logger.error("artifact_read_failed", artifact_ref=artifact_ref, error=str(e))
            raise StoreUnavailable("Artifact storage unavailable") from e

    async def discard(self, artifact_ref: str) -> None:
        """Remove an artifact that lost a delivery race. Missing files are ignored."""
        path = self._path_for(artifact_ref)
        try:
            await self._run_io(path.unlink, True)
            logger.info("artifact_discarded", artifact_ref=artifact_ref)
        except (OSError, StoreUnavailable) as e:
            logger.warning("artifact_discard_failed", artifact_ref=artifact_ref, error=str(e))
