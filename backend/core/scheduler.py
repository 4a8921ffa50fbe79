"""
Scheduler for background tasks like the periodic EasyVerein inventory sync
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

from core.config import settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


def run_inventory_sync():
    """
    Mirror the EasyVerein inventory into the local inventory_items table.

    Must stay a plain (non-async) function: AsyncIOScheduler then runs it in
    its thread pool executor, off the event loop.
    A fetch failure has already alerted the board inside the service.
    """
    try:
        from modules.inventory.sync.service import InventorySyncService

        logger.info("🔄 Starting EasyVerein inventory sync...")

        stats = InventorySyncService().sync()

        if stats.errors:
            logger.warning(f"⚠️  Inventory sync finished with {len(stats.errors)} error(s): {stats.summary()}")
        else:
            logger.info(f"✅ Inventory sync completed: {stats.summary()}")

    except Exception as e:
        logger.error(f"❌ Error during inventory sync: {e}", exc_info=True)


def start_scheduler():
    """Start the background scheduler with all scheduled tasks"""
    minutes = settings.INVENTORY_SYNC_INTERVAL_MINUTES
    if minutes <= 0:
        logger.info("📅 Inventory sync disabled (INVENTORY_SYNC_INTERVAL_MINUTES=0)")
        return

    try:
        scheduler.add_job(
            run_inventory_sync,
            trigger=IntervalTrigger(minutes=minutes),
            id='easyverein_inventory_sync',
            name='EasyVerein Inventory Sync',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        logger.info("📅 Scheduler configured:")
        logger.info(f"  - EasyVerein inventory sync: every {minutes} min")

        scheduler.start()
        logger.info("✅ Background scheduler started successfully")

    except Exception as e:
        logger.error(f"❌ Failed to start scheduler: {e}", exc_info=True)


def shutdown_scheduler():
    """Shutdown the scheduler gracefully"""
    try:
        if scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("✅ Scheduler shut down successfully")
    except Exception as e:
        logger.error(f"❌ Error shutting down scheduler: {e}", exc_info=True)
