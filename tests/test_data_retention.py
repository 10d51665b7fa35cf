"""Tests for idempotency-ledger retention."""
import pytest
from dataclasses import asdict
from datetime import datetime, timezone, timedelta
from unittest.mock import patch

from sqlalchemy import func, select

from config.settings import settings
from src.db.subscription_tables import PaymentRow
from src.db.webhook_tables import ProcessedEventRow
from src.services.data_retention import (
    MIN_LEDGER_RETENTION_DAYS,
    RetentionResult,
    ledger_cutoff,
    run_ledger_retention,
)

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


async def _seed_ledger(session, ages_in_days):
    for i, age in enumerate(ages_in_days):
        session.add(ProcessedEventRow(
            event_key=f"coinpay:evt_{i}",
            provider="coinpay",
            external_event_id=f"evt_{i}",
            event_type="payment.confirmed",
            received_at=NOW - timedelta(days=age),
        ))
    await session.commit()


async def _ledger_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(ProcessedEventRow))).scalar()


class TestRetentionConfig:
    def test_minimum_outlives_processor_retries(self):
        """Stripe retries for 3 days."""
        assert MIN_LEDGER_RETENTION_DAYS > 3

    def test_cutoff_uses_configured_days(self):
        assert ledger_cutoff(NOW, retention_days=30) == NOW - timedelta(days=30)

    def test_cutoff_never_below_minimum(self):
        assert ledger_cutoff(NOW, retention_days=1) == NOW - timedelta(days=MIN_LEDGER_RETENTION_DAYS)

    def test_cutoff_defaults_to_settings(self):
        with patch.object(settings, "PROCESSED_EVENT_RETENTION_DAYS", 10):
            assert ledger_cutoff(NOW) == NOW - timedelta(days=10)


class TestRetentionResult:
    def test_default_values(self):
        r = RetentionResult()
        assert r.processed_events_purged == 0
        assert r.dry_run is False

    def test_serializable(self):
        d = asdict(RetentionResult(processed_events_purged=3, dry_run=True, duration_ms=5))
        assert d["processed_events_purged"] == 3
        assert d["dry_run"] is True


class TestLedgerPurge:
    @pytest.mark.asyncio
    async def test_purges_only_rows_past_cutoff(self, session):
        await _seed_ledger(session, [1, 10, 29, 31, 90])
        with patch.object(settings, "PROCESSED_EVENT_RETENTION_DAYS", 30):
            result = await run_ledger_retention(session, now=NOW)

        assert result.processed_events_purged == 2
        assert await _ledger_count(session) == 3

    @pytest.mark.asyncio
    async def test_dry_run_counts_without_deleting(self, session):
        await _seed_ledger(session, [1, 31, 90])
        with patch.object(settings, "PROCESSED_EVENT_RETENTION_DAYS", 30):
            result = await run_ledger_retention(session, now=NOW, dry_run=True)

        assert result.dry_run is True
        assert result.processed_events_purged == 2
        assert await _ledger_count(session) == 3

    @pytest.mark.asyncio
    async def test_short_retention_is_clamped(self, session):
        await _seed_ledger(session, [2, 3, 5])
        with patch.object(settings, "PROCESSED_EVENT_RETENTION_DAYS", 1):
            result = await run_ledger_retention(session, now=NOW)

        assert result.processed_events_purged == 1
        assert await _ledger_count(session) == 2

    @pytest.mark.asyncio
    async def test_payments_are_never_purged(self, session):
        session.add(PaymentRow(external_payment_id="pay_old", owner_user_id="user-1",
                               created_at=NOW - timedelta(days=400)))
        await session.commit()
        await run_ledger_retention(session, now=NOW)

        count = (await session.execute(select(func.count()).select_from(PaymentRow))).scalar()
        assert count == 1


@pytest.mark.asyncio
async def test_scheduled_purge_runs_against_engine_session():
    from src.services.scheduler import scheduled_ledger_purge

    with patch("src.services.scheduler.run_ledger_retention") as run:
        await scheduled_ledger_purge()
    run.assert_called_once()


@pytest.mark.asyncio
async def test_scheduled_purge_swallows_failures():
    """A failed sweep is logged; the scheduler keeps running."""
    from src.services.scheduler import scheduled_ledger_purge

    with patch("src.services.scheduler.run_ledger_retention", side_effect=RuntimeError("db down")):
        await scheduled_ledger_purge()
