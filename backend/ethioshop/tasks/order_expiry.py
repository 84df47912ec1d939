"""Background task that cancels stale PENDING orders and returns their stock"""
import asyncio
import logging
from typing import List

from ethioshop.core.config import settings
from ethioshop.core.metrics import order_expiry_runs_counter
from ethioshop.db.session import SessionLocal
from ethioshop.services.order_service import expire_stale_orders

expiry_logger = logging.getLogger("order_expiry")


def run_order_expiry(session_factory=SessionLocal) -> List[int]:
    """One pass over the pending orders; returns the ids that were expired"""
    db = session_factory()
    try:
        expiry_logger.info("Starting order expiry run...")
        expired = expire_stale_orders(db)
        order_expiry_runs_counter.labels(status="success").inc()
        expiry_logger.info(f"Order expiry run completed ({len(expired)} expired)")
        return expired
    finally:
        db.close()


async def order_expiry_task(interval_seconds: int = None):
    """Run the expiry pass every ``interval_seconds`` (hourly by default)"""
    interval = interval_seconds or settings.ORDER_EXPIRY_INTERVAL_SECONDS
    while True:
        try:
            await asyncio.sleep(interval)
            run_order_expiry()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            expiry_logger.error(f"Error in order expiry task: {e}", exc_info=True)
            order_expiry_runs_counter.labels(status="failure").inc()
