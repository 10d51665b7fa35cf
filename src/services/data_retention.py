"""
Idempotency Ledger Retention
---
The processed-event ledger only has to remember deliveries for as long as a
processor might still retry them. Older rows are purged on a schedule.

Payments, subscriptions and notifications are never purged here: payments
are the audit trail and subscriptions persist after cancellation.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.webhook_tables import ProcessedEventRow

logger = logging.getLogger(__name__)

# Stripe retries for up to 3 days; anything shorter would let a late retry double-apply.
MIN_LEDGER_RETENTION_DAYS = 4


@dataclass
class RetentionResult:
    """Results from a ledger retention sweep."""
    processed_events_purged: int = 0
    cutoff: str = ""
    dry_run: bool = False
    duration_ms: int = 0


def ledger_cutoff(now: Optional[datetime] = None, retention_days: Optional[int] = None) -> datetime:
    days = settings.PROCESSED_EVENT_RETENTION_DAYS if retention_days is None else retention_days
    days = max(days, MIN_LEDGER_RETENTION_DAYS)
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


async def count_processed_events_before(session: AsyncSession, older_than: datetime) -> int:
    result = await session.execute(
        select(func.count()).select_from(ProcessedEventRow).where(ProcessedEventRow.received_at < older_than)
    )
    return result.scalar() or 0


async def purge_processed_events(session: AsyncSession, older_than: datetime) -> int:
    """Delete ledger rows received before `older_than`. Caller commits."""
    result = await session.execute(
        delete(ProcessedEventRow).where(ProcessedEventRow.received_at < older_than)
    )
    return result.rowcount or 0


async def run_ledger_retention(
    session: AsyncSession, now: Optional[datetime] = None, dry_run: bool = False
) -> RetentionResult:
    start = time.monotonic()
    cutoff = ledger_cutoff(now)
    result = RetentionResult(cutoff=cutoff.isoformat(), dry_run=dry_run)

    if dry_run:
        result.processed_events_purged = await count_processed_events_before(session, cutoff)
    else:
        result.processed_events_purged = await purge_processed_events(session, cutoff)
        await session.commit()

    result.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info("Ledger retention: %d rows before %s%s",
                result.processed_events_purged, result.cutoff, " (dry run)" if dry_run else "")
    return result
