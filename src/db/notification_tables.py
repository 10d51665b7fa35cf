"""Notification outbox — user-visible messages queued by billing transitions."""
from __future__ import annotations

import uuid

from sqlalchemy import Column, String, Text, DateTime, JSON

from src.db.tables import Base, utcnow


class NotificationRow(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)

    # Kind: payment_received | payment_failed | payment_expired | subscription_canceled
    kind = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)

    # Enough for the UI to render without a second query
    data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
