"""
Document renderer integration with timeout and retry handling.

Implements:
- A renderer contract: render(product_definition, data) -> bytes
- A plain-text renderer used by default
- A client wrapper adding per-call timeouts, exponential backoff and
  translation of every failure to RendererUnavailable
"""
import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from orderflow.config import get_settings
from orderflow.exceptions import RendererUnavailable
from orderflow.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class DocumentRenderer(ABC):
    """Turns a product definition plus answer data into a downloadable document."""

    media_type = "application/octet-stream"
    file_extension = "bin"

    @abstractmethod
    async def render(self, template: Dict[str, Any], data: Dict[str, Any]) -> bytes:
        """
        Render a document.

        Args:
            template: Product definition (name, description, questions, ...)
            data: Policy-specific data (placeholder info or scored answers)

        Returns:
            bytes: Document content
        """


class TextDocumentRenderer(DocumentRenderer):
    """Renders a UTF-8 text document."""

    media_type = "text/plain; charset=utf-8"
    file_extension = "txt"

    async def render(self, template: Dict[str, Any], data: Dict[str, Any]) -> bytes:
        rendered_at = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        lines = [
            template.get("name", "Document"),
            "=" * len(template.get("name", "Document")),
            "",
        ]
        if template.get("description"):
            lines.extend([template["description"], ""])

        results = data.get("results")
        if results is None:
            lines.append("Thank you for your purchase. Your document is ready.")
        else:
            lines.append(f"Score: {data.get('score', 0)}%")
            lines.append("")
            for index, result in enumerate(results, start=1):
                mark = "correct" if result["is_correct"] else "incorrect"
                lines.append(f"{index}. {result['question']}")
                lines.append(f"   Your answer: {result['user_answer']} ({mark})")
                if not result["is_correct"]:
                    lines.append(f"   Correct answer: {result['correct_answer']}")

        lines.extend(["", f"Prepared for {data.get('user_id', 'customer')} on {rendered_at}"])
        return "\n".join(lines).encode("utf-8")


class RendererClient:
    """
    Wrapper around a DocumentRenderer.

    Features:
    - Timeout per attempt
    - Retry with exponential backoff on RendererUnavailable
    - Any renderer crash surfaces as RendererUnavailable
    """

    def __init__(self, renderer: Optional[DocumentRenderer] = None):
        """
        Initialize renderer client.

        Args:
            renderer: Optional renderer (uses the text renderer if not provided)
        """
        self.settings = get_settings()
        self.renderer = renderer or TextDocumentRenderer()

    @property
    def file_extension(self) -> str:
        return self.renderer.file_extension

    @property
    def media_type(self) -> str:
        return self.renderer.media_type

    async def _render_once(
        self, template: Dict[str, Any], data: Dict[str, Any], policy: str
    ) -> bytes:
        start_time = time.time()
        try:
            content = await asyncio.wait_for(
                self.renderer.render(template, data),
                timeout=self.settings.renderer_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            metrics.record_renderer_error("timeout")
            logger.warning(
                "renderer_timeout",
                policy=policy,
                timeout=self.settings.renderer_timeout_seconds,
            )
            raise RendererUnavailable("Document rendering timed out") from e
        except Exception as e:
            metrics.record_renderer_error("crash")
            logger.error(
                "renderer_failed",
                policy=policy,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RendererUnavailable("Document rendering failed") from e

        metrics.record_renderer_call(policy, time.time() - start_time)
        return content

    async def render(self, template: Dict[str, Any], data: Dict[str, Any], policy: str) -> bytes:
        """
        Render with retries.

        Raises:
            RendererUnavailable: When every attempt failed
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(RendererUnavailable),
            stop=stop_after_attempt(self.settings.renderer_max_attempts),
            wait=wait_exponential(
                multiplier=self.settings.renderer_retry_base_delay,
                max=self.settings.renderer_retry_base_delay * 8,
            ),
            reraise=True,
        ):
            with attempt:
                return await self._render_once(template, data, policy)
        raise RendererUnavailable("Document rendering failed")  # pragma: no cover
