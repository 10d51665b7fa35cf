"""Subscription tables — processor-side payments and one subscription row per user."""
from __future__ import annotations

import uuid

from sqlalchemy import (
    Column, String, Float, DateTime, JSON, Boolean, Index,
)

from src.db.tables import Base, utcnow


class PaymentRow(Base):
    """One row per processor-side payment attempt. Never deleted (audit trail)."""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    external_payment_id = Column(String(255), nullable=False, unique=True, index=True)
    provider = Column(String(20), nullable=False, default="coinpay")
    owner_user_id = Column(String(36), nullable=False, index=True)

    # Type: subscription | one_time | ...
    type = Column(String(50), nullable=False, default="subscription")

    # Status: pending | confirmed | forwarded | expired
    status = Column(String(20), nullable=False, default="pending")

    amount_crypto = Column(Float, nullable=True)
    amount_fiat = Column(Float, nullable=True)
    currency = Column(String(20), nullable=True)

    # Provider-specific extras (tx hashes etc.); "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class SubscriptionRow(Base):
    """User subscription — exactly one row per user, kept after cancellation."""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, unique=True, index=True)

    # Plan: free | pro
    plan = Column(String(20), nullable=False, default="free")

    # Status: active | trialing | past_due | canceled | incomplete
    status = Column(String(20), nullable=False, default="incomplete")

    # Which processor last activated or renewed it: stripe | coinpay
    provider = Column(String(20), nullable=True)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)

    external_customer_ref = Column(String(255), nullable=True, index=True)
    external_subscription_ref = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_subscriptions_plan_status", "plan", "status"),
    )
