"""Background cleanup task for expired webhook events"""
import asyncio
import logging

from sellify.core.config import settings
from sellify.core.metrics import cleanup_events_removed_counter, cleanup_runs_counter
from sellify.db.session import SessionLocal
from sellify.services.webhook_event_service import purge_expired_events

cleanup_logger = logging.getLogger("cleanup")


def run_cleanup() -> int:
    """Purge webhook events past the retention window once"""
    db = SessionLocal()
    try:
        cleanup_logger.info("Starting cleanup task...")
        removed = purge_expired_events(db, settings.WEBHOOK_EVENT_RETENTION_DAYS)
        cleanup_events_removed_counter.inc(removed)
        cleanup_runs_counter.labels(status="success").inc()
        cleanup_logger.info("Cleanup task completed")
        return removed
    finally:
        db.close()


async def cleanup_task():
    """Background task that removes webhook events older than the retention window

    Runs every CLEANUP_INTERVAL_SECONDS until cancelled.
    """
    while True:
        try:
            await asyncio.sleep(settings.CLEANUP_INTERVAL_SECONDS)
            await asyncio.to_thread(run_cleanup)
        except asyncio.CancelledError:
            cleanup_logger.info("Cleanup task stopped")
            raise
        except Exception as e:
            cleanup_logger.error(f"Error in cleanup task: {e}", exc_info=True)
            cleanup_runs_counter.labels(status="failure").inc()
