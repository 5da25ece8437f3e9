"""Background workers for async processing."""
from .delivery_worker import run_delivery_sweep, start_delivery_worker

__all__ = ["run_delivery_sweep", "start_delivery_worker"]
