"""
Payment State Machine
---
Lifecycle of one processor-side payment, keyed by the processor's payment id.

    pending ──► confirmed ──► forwarded
       │
       └──────► expired

Rows are created by the checkout flow; webhooks only move them forward.
Stale or out-of-order deliveries are no-ops. Expiring a payment that already
settled is a conflict: logged at error level, never applied.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.subscription_tables import PaymentRow
from src.db.tables import utcnow
from src.models.billing import PaymentStatus, Provider, WebhookOutcome
from src.services import notifications, subscriptions
from src.services.intents import PaymentExpired, PaymentForwarded, PaymentSettled

logger = logging.getLogger(__name__)

SUBSCRIPTION_PAYMENT_TYPE = "subscription"


async def get_payment(session: AsyncSession, external_payment_id: str) -> Optional[PaymentRow]:
    """Row-locked read so the transition checks the persisted status, not a cached one."""
    result = await session.execute(
        select(PaymentRow)
        .where(PaymentRow.external_payment_id == external_payment_id)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def _load(session: AsyncSession, external_payment_id: str, what: str) -> Optional[PaymentRow]:
    payment = await get_payment(session, external_payment_id)
    if payment is None:
        logger.warning("%s for unknown payment %s — ignoring", what, external_payment_id)
    return payment


async def apply_settled(
    session: AsyncSession, provider: Provider, intent: PaymentSettled, now: Optional[datetime] = None
) -> WebhookOutcome:
    payment = await _load(session, intent.external_payment_id, "Settlement")
    if payment is None:
        return WebhookOutcome.ORPHAN

    now = now or utcnow()
    if payment.status == PaymentStatus.PENDING.value:
        payment.status = PaymentStatus.CONFIRMED.value
    elif payment.status == PaymentStatus.FORWARDED.value and payment.confirmed_at is None:
        # Forwarding overtook confirmation: record the settlement, keep the status.
        logger.info("Late settlement for forwarded payment %s", payment.external_payment_id)
    else:
        if payment.status == PaymentStatus.EXPIRED.value:
            logger.warning("Settlement for expired payment %s — not reviving", payment.external_payment_id)
        return WebhookOutcome.NOOP

    payment.confirmed_at = now
    if intent.amount_crypto is not None:
        payment.amount_crypto = intent.amount_crypto
    if intent.amount_fiat is not None:
        payment.amount_fiat = intent.amount_fiat
    if intent.currency:
        payment.currency = intent.currency
    payment.updated_at = now

    if payment.type == SUBSCRIPTION_PAYMENT_TYPE:
        await subscriptions.activate(
            session, payment.owner_user_id,
            provider=provider,
            subscription_ref=payment.external_payment_id,
            now=now,
        )

    await notifications.notify_payment_received(session, payment)
    logger.info("Payment confirmed: %s user=%s amount=%s %s",
                payment.external_payment_id, payment.owner_user_id,
                payment.amount_crypto, payment.currency)
    return WebhookOutcome.APPLIED


async def apply_forwarded(
    session: AsyncSession, provider: Provider, intent: PaymentForwarded
) -> WebhookOutcome:
    payment = await _load(session, intent.external_payment_id, "Forwarding")
    if payment is None:
        return WebhookOutcome.ORPHAN

    if payment.status == PaymentStatus.EXPIRED.value:
        logger.error("Conflict: funds forwarded for expired payment %s (tx=%s)",
                     payment.external_payment_id, intent.forwarded_tx_hash)
        return WebhookOutcome.CONFLICT
    if payment.status == PaymentStatus.FORWARDED.value:
        return WebhookOutcome.NOOP

    payment.status = PaymentStatus.FORWARDED.value
    payment.extra = {
        **(payment.extra or {}),
        "tx_hash": intent.tx_hash,
        "forwarded_tx_hash": intent.forwarded_tx_hash,
    }
    payment.updated_at = utcnow()
    logger.info("Payment forwarded: %s tx=%s", payment.external_payment_id, intent.forwarded_tx_hash)
    return WebhookOutcome.APPLIED


async def apply_expired(
    session: AsyncSession, provider: Provider, intent: PaymentExpired
) -> WebhookOutcome:
    payment = await _load(session, intent.external_payment_id, "Expiry")
    if payment is None:
        return WebhookOutcome.ORPHAN

    if payment.status == PaymentStatus.EXPIRED.value:
        return WebhookOutcome.NOOP
    if payment.status != PaymentStatus.PENDING.value:
        logger.error("Conflict: expiry for %s payment %s — keeping status",
                     payment.status, payment.external_payment_id)
        return WebhookOutcome.CONFLICT

    payment.status = PaymentStatus.EXPIRED.value
    payment.updated_at = utcnow()
    await notifications.notify_payment_expired(session, payment)
    return WebhookOutcome.APPLIED
