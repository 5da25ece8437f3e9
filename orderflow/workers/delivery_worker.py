"""
Delivery retry worker.

Periodically picks up purchases whose payment completed but whose delivery
did not happen (renderer outage, crash between commit and delivery) and
delivers them with the auto policy. Respects the runtime auto-deliver flag.
"""
import asyncio
import signal
from typing import Any, Dict, Optional

import structlog

from orderflow.config import get_settings
from orderflow.core.delivery import DeliveryOrchestrator
from orderflow.database.connection import close_db, init_db
from orderflow.exceptions import OrderflowError
from orderflow.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_delivery_sweep(
    orchestrator: DeliveryOrchestrator, batch_size: Optional[int] = None
) -> Dict[str, int]:
    """
    Retry delivery for one batch of paid, undelivered purchases.

    Args:
        orchestrator: Delivery orchestrator to use
        batch_size: Max purchases to retry (uses settings if not provided)

    Returns:
        Dict[str, int]: Counts of delivered, deferred and failed purchases
    """
    batch_size = batch_size or get_settings().delivery_worker_batch_size
    summary = {"delivered": 0, "deferred": 0, "failed": 0}

    purchase_ids = await orchestrator.pending_deliveries(limit=batch_size)
    if not purchase_ids:
        return summary

    logger.info("delivery_sweep_started", pending=len(purchase_ids))

    for purchase_id in purchase_ids:
        try:
            result = await orchestrator.on_payment_completed(purchase_id)
        except OrderflowError as e:
            summary["failed"] += 1
            logger.warning(
                "delivery_retry_failed",
                purchase_id=purchase_id,
                error_kind=e.kind,
                error=e.message,
            )
            continue

        if result is None:
            # Auto-delivery switched off; the rest of the batch would defer too
            summary["deferred"] += len(purchase_ids) - summary["delivered"] - summary["failed"]
            break
        summary["delivered"] += 1

    logger.info("delivery_sweep_completed", **summary)
    return summary


async def start_delivery_worker(interval_seconds: Optional[float] = None) -> None:
    """
    Start the delivery retry worker.

    Args:
        interval_seconds: Seconds between sweeps (uses settings if not provided)
    """
    setup_logging()
    settings = get_settings()
    interval_seconds = interval_seconds or settings.delivery_worker_interval_seconds

    logger.info("delivery_worker_starting", interval_seconds=interval_seconds)

    await init_db()
    orchestrator = DeliveryOrchestrator()
    stop_event = asyncio.Event()

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("delivery_worker_shutdown_signal_received", signal=sig)
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while not stop_event.is_set():
            try:
                await run_delivery_sweep(orchestrator, settings.delivery_worker_batch_size)
            except OrderflowError as e:
                # Store outage; try again next interval
                logger.error("delivery_sweep_error", error_kind=e.kind, error=e.message)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass
    finally:
        await close_db()
        logger.info("delivery_worker_stopped")


def main() -> None:
    """Console entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Delivery retry worker")
    parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between sweeps"
    )
    args = parser.parse_args()

    asyncio.run(start_delivery_worker(interval_seconds=args.interval))


if __name__ == "__main__":
    main()
