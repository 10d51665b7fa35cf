"""Idempotency ledger — one row per webhook delivery that was durably applied."""
from __future__ import annotations

from sqlalchemy import Column, String, DateTime

from src.db.tables import Base, utcnow


class ProcessedEventRow(Base):
    """Append-only. Rows older than the retention window are purged."""
    __tablename__ = "processed_webhook_events"

    # "<provider>:<event id>" so two processors can never collide on an id string
    event_key = Column(String(320), primary_key=True)
    provider = Column(String(20), nullable=False)
    external_event_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
