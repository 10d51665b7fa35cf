"""
Subscription State Machine
---
Owns the single subscription row per user. Either processor may drive it.

Primitives are keyed by user id (activate / renew / mark_past_due / cancel).
Card intents only know the processor's customer id, so they are resolved to
a row first; an unknown customer is an orphan and is never used to create a
row.

Invariants:
- plan = pro only while status ∈ {active, trialing, past_due}
- cancel clears the subscription ref and both period fields
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.subscription_tables import SubscriptionRow
from src.db.tables import utcnow
from src.models.billing import (
    PRO_STATUSES,
    Plan,
    Provider,
    SubscriptionStatus,
    WebhookOutcome,
)
from src.services import notifications
from src.services.intents import (
    BillingPeriod,
    SubscriptionActivated,
    SubscriptionCanceled,
    SubscriptionPastDue,
    SubscriptionRenewed,
)

logger = logging.getLogger(__name__)

# Crypto payments buy a fixed month; the card processor supplies its own cycle.
MANUAL_BILLING_PERIOD = timedelta(days=30)

_ACTIVATION_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


# ── Lookups ───────────────────────────────────────────────────────────────────

async def get_subscription(session: AsyncSession, user_id: str) -> Optional[SubscriptionRow]:
    result = await session.execute(
        select(SubscriptionRow).where(SubscriptionRow.user_id == user_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def find_by_customer(session: AsyncSession, customer_ref: str) -> Optional[SubscriptionRow]:
    result = await session.execute(
        select(SubscriptionRow)
        .where(SubscriptionRow.external_customer_ref == customer_ref)
        .order_by(SubscriptionRow.updated_at.desc())
        .limit(1)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def _get_or_create_subscription(session: AsyncSession, user_id: str) -> SubscriptionRow:
    """Upsert by user id. A concurrent creator wins; we re-read its row."""
    sub = await get_subscription(session, user_id)
    if sub:
        return sub
    try:
        async with session.begin_nested():
            sub = SubscriptionRow(user_id=user_id, plan=Plan.FREE.value,
                                  status=SubscriptionStatus.INCOMPLETE.value)
            session.add(sub)
        return sub
    except IntegrityError:
        logger.debug("Subscription for user=%s created concurrently", user_id)
    sub = await get_subscription(session, user_id)
    if sub is None:
        raise RuntimeError(f"Failed to get or create subscription for user {user_id}")
    return sub


# ── Primitives (keyed by user) ────────────────────────────────────────────────

async def activate(
    session: AsyncSession,
    user_id: str,
    *,
    provider: Provider,
    customer_ref: Optional[str] = None,
    subscription_ref: Optional[str] = None,
    period: Optional[BillingPeriod] = None,
    status: Optional[SubscriptionStatus] = None,
    cancel_at_period_end: bool = False,
    now: Optional[datetime] = None,
) -> SubscriptionRow:
    """Grant Pro. Without a processor period the user gets MANUAL_BILLING_PERIOD from now."""
    now = now or utcnow()
    sub = await _get_or_create_subscription(session, user_id)

    if period is None:
        period = BillingPeriod(start=now, end=now + MANUAL_BILLING_PERIOD)

    sub.plan = Plan.PRO.value
    sub.status = (status if status in _ACTIVATION_STATUSES else SubscriptionStatus.ACTIVE).value
    sub.provider = provider.value
    sub.current_period_start = period.start
    sub.current_period_end = period.end
    sub.cancel_at_period_end = cancel_at_period_end
    if customer_ref:
        sub.external_customer_ref = customer_ref
    if subscription_ref:
        sub.external_subscription_ref = subscription_ref
    sub.updated_at = now

    logger.info("Subscription activated: user=%s provider=%s until=%s",
                user_id, provider.value, period.end.isoformat())
    return sub


async def renew(
    session: AsyncSession,
    sub: SubscriptionRow,
    *,
    provider: Provider,
    period: Optional[BillingPeriod],
    status: Optional[SubscriptionStatus],
    cancel_at_period_end: Optional[bool],
    subscription_ref: Optional[str] = None,
) -> bool:
    """Overwrite the cycle verbatim from the processor. Returns True if the row changed.

    With no status (invoice-only information) a canceled row is left alone,
    so a late invoice can never revive it.
    """
    if status is None and sub.status == SubscriptionStatus.CANCELED.value:
        logger.info("Ignoring billing-period update for canceled subscription user=%s", sub.user_id)
        return False

    if status is not None:
        sub.status = status.value
        sub.plan = (Plan.PRO if status in PRO_STATUSES else Plan.FREE).value
        sub.provider = provider.value
    if period is not None:
        sub.current_period_start = period.start
        sub.current_period_end = period.end
    if cancel_at_period_end is not None:
        sub.cancel_at_period_end = cancel_at_period_end
    if subscription_ref:
        sub.external_subscription_ref = subscription_ref
    sub.updated_at = utcnow()
    return True


async def mark_past_due(session: AsyncSession, sub: SubscriptionRow) -> bool:
    """Status only; plan and periods stay so the user keeps access until canceled."""
    if sub.status == SubscriptionStatus.CANCELED.value:
        logger.info("Ignoring past-due for canceled subscription user=%s", sub.user_id)
        return False
    sub.status = SubscriptionStatus.PAST_DUE.value
    sub.updated_at = utcnow()
    return True


async def cancel(session: AsyncSession, sub: SubscriptionRow) -> bool:
    if sub.status == SubscriptionStatus.CANCELED.value and sub.plan == Plan.FREE.value:
        return False
    sub.plan = Plan.FREE.value
    sub.status = SubscriptionStatus.CANCELED.value
    sub.external_subscription_ref = None
    sub.current_period_start = None
    sub.current_period_end = None
    sub.cancel_at_period_end = False
    sub.updated_at = utcnow()
    logger.info("Subscription canceled: user=%s", sub.user_id)
    return True


# ── Intent handlers ───────────────────────────────────────────────────────────

async def _resolve_customer(session: AsyncSession, customer_ref: str, what: str):
    sub = await find_by_customer(session, customer_ref)
    if sub is None:
        logger.warning("%s for unknown customer %s — no subscription row, ignoring", what, customer_ref)
    return sub


async def handle_activated(
    session: AsyncSession, provider: Provider, intent: SubscriptionActivated
) -> WebhookOutcome:
    if not intent.user_id:
        logger.warning("Checkout completed without a user id (customer=%s) — ignoring",
                       intent.customer_ref)
        return WebhookOutcome.ORPHAN
    await activate(
        session, intent.user_id,
        provider=provider,
        customer_ref=intent.customer_ref,
        subscription_ref=intent.subscription_ref,
        period=intent.period,
        status=intent.status,
        cancel_at_period_end=intent.cancel_at_period_end,
    )
    return WebhookOutcome.APPLIED


async def handle_renewed(
    session: AsyncSession, provider: Provider, intent: SubscriptionRenewed
) -> WebhookOutcome:
    sub = await _resolve_customer(session, intent.customer_ref, "Subscription renewal")
    if sub is None:
        return WebhookOutcome.ORPHAN

    changed = await renew(
        session, sub,
        provider=provider,
        period=intent.period,
        status=intent.status,
        cancel_at_period_end=intent.cancel_at_period_end,
        subscription_ref=intent.subscription_ref,
    )
    if not changed:
        return WebhookOutcome.NOOP
    if intent.invoice_id:
        await notifications.notify_invoice_paid(
            session, sub.user_id, intent.invoice_id, intent.amount_paid, intent.currency,
        )
    return WebhookOutcome.APPLIED


async def handle_past_due(
    session: AsyncSession, provider: Provider, intent: SubscriptionPastDue
) -> WebhookOutcome:
    sub = await _resolve_customer(session, intent.customer_ref, "Payment failure")
    if sub is None:
        return WebhookOutcome.ORPHAN
    if not await mark_past_due(session, sub):
        return WebhookOutcome.NOOP
    logger.warning("Payment failed: user=%s invoice=%s", sub.user_id, intent.invoice_id)
    await notifications.notify_invoice_failed(session, sub.user_id, intent.invoice_id)
    return WebhookOutcome.APPLIED


async def handle_canceled(
    session: AsyncSession, provider: Provider, intent: SubscriptionCanceled
) -> WebhookOutcome:
    sub = await _resolve_customer(session, intent.customer_ref, "Subscription cancellation")
    if sub is None:
        return WebhookOutcome.ORPHAN

    current_ref = sub.external_subscription_ref
    if intent.subscription_ref and current_ref and intent.subscription_ref != current_ref:
        logger.warning(
            "Cancellation for replaced subscription %s (current %s) user=%s — ignoring",
            intent.subscription_ref, current_ref, sub.user_id,
        )
        return WebhookOutcome.NOOP

    if not await cancel(session, sub):
        return WebhookOutcome.NOOP
    await notifications.notify_subscription_canceled(session, sub.user_id)
    return WebhookOutcome.APPLIED
