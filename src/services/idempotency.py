"""
Idempotency Guard
---
Answers "has this exact delivery already been applied?" by claiming the
provider-qualified event id in the processed-event ledger.

The claim is an atomic insert-if-absent executed inside the caller's unit
of work, so it commits (or rolls back) together with the state mutations it
protects. Losing a concurrent race is reported as ALREADY_PROCESSED, never
as a database error.
"""
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import utcnow
from src.db.webhook_tables import ProcessedEventRow
from src.services.intents import NormalizedEvent

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    ALREADY_PROCESSED = "already_processed"


async def is_processed(session: AsyncSession, event: NormalizedEvent) -> bool:
    """Read-only check. Not a substitute for try_claim (no atomicity)."""
    result = await session.execute(
        select(ProcessedEventRow.event_key).where(ProcessedEventRow.event_key == event.event_key)
    )
    return result.scalar_one_or_none() is not None


async def _claim_on_conflict(session: AsyncSession, insert_fn, values: dict) -> bool:
    stmt = insert_fn(ProcessedEventRow).values(**values).on_conflict_do_nothing(
        index_elements=[ProcessedEventRow.event_key]
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def _claim_with_savepoint(session: AsyncSession, values: dict) -> bool:
    """Fallback for dialects without ON CONFLICT: let the unique key decide."""
    try:
        async with session.begin_nested():
            session.add(ProcessedEventRow(**values))
    except IntegrityError:
        return False
    return True


async def try_claim(
    session: AsyncSession, event: NormalizedEvent, now: Optional[datetime] = None
) -> ClaimResult:
    values = {
        "event_key": event.event_key,
        "provider": event.provider.value,
        "external_event_id": event.external_event_id,
        "event_type": event.event_type,
        "received_at": now or utcnow(),
    }

    insert_fn = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
    if insert_fn is not None:
        claimed = await _claim_on_conflict(session, insert_fn, values)
    else:
        claimed = await _claim_with_savepoint(session, values)

    if not claimed:
        logger.info("Duplicate delivery %s (%s) — already processed", event.event_key, event.event_type)
        return ClaimResult.ALREADY_PROCESSED
    return ClaimResult.CLAIMED
