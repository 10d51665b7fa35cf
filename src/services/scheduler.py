"""Scheduled ledger maintenance using APScheduler."""
from __future__ import annotations

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.db.engine import async_session
from src.services.data_retention import run_ledger_retention

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_ledger_purge():
    """Drop idempotency-ledger rows past the retention window."""
    try:
        async with async_session() as session:
            await run_ledger_retention(session)
    except Exception:
        logger.exception("Scheduled ledger purge failed")


def start_scheduler(interval_hours: int = 24):
    scheduler.add_job(
        scheduled_ledger_purge,
        trigger=IntervalTrigger(hours=interval_hours),
        id="ledger_purge",
        name="Processed webhook event purge",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started — purging webhook ledger every {interval_hours}h")


def stop_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
