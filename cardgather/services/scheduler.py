import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select

from cardgather.config import settings
from cardgather.database import async_session
from cardgather.models import Scan
from cardgather.services.scanner import run_scan

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def start_scheduler():
    """Start the daily scan scheduler."""
    hour, minute = settings.scan_schedule.split(":")
    scheduler.add_job(
        _run_scan_job,
        "cron",
        hour=int(hour),
        minute=int(minute),
        id="daily_scan",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info("Scheduler started: daily scan at %s", settings.scan_schedule)


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


async def _run_scan_job():
    """Scheduled run across all enabled sources.

    Skipped when another run (API-triggered or left over) is still active.
    """
    async with async_session() as session:
        busy = await session.execute(
            select(Scan.id).where(Scan.status.in_(["running", "pending"])).limit(1)
        )
        if busy.scalar_one_or_none() is not None:
            logger.warning("Scheduled scan skipped: another scan is active")
            return
        scan = Scan(status="pending")
        session.add(scan)
        await session.commit()
        scan_id = scan.id

    logger.info("Scheduled scan %d starting", scan_id)
    summary = await run_scan(scan_id=scan_id)
    logger.info("Scheduled scan %d complete: %s", scan_id, summary.status)
