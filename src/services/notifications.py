"""
Notification Dispatcher
---
Queues one user-visible message per real billing transition.

Only the state machines call in here, and only right after a mutation, so
duplicate deliveries and no-op transitions never reach the outbox. The row
is written in the same unit of work as the transition it announces.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.notification_tables import NotificationRow
from src.db.subscription_tables import PaymentRow
from src.models.billing import NotificationKind, currency_symbol

logger = logging.getLogger(__name__)


async def dispatch(
    session: AsyncSession,
    kind: NotificationKind,
    user_id: str,
    title: str,
    body: str,
    data: Optional[dict[str, Any]] = None,
) -> NotificationRow:
    row = NotificationRow(user_id=user_id, kind=kind.value, title=title, body=body, data=data or {})
    session.add(row)
    logger.info("Queued %s notification for user=%s", kind.value, user_id)
    return row


def _format_amount(amount: Optional[float], currency: Optional[str]) -> str:
    if amount is None:
        return ""
    return f"{amount:g} {currency_symbol(currency)}".strip()


async def notify_payment_received(session: AsyncSession, payment: PaymentRow) -> NotificationRow:
    if payment.type == "subscription":
        title = "Pro subscription activated"
        body = "Your Pro subscription is now active. Enjoy unlimited gig posts!"
    else:
        title = "Payment received"
        amount = _format_amount(payment.amount_crypto, payment.currency)
        body = f"Your payment of {amount} was received." if amount else "Your payment was received."
    return await dispatch(
        session, NotificationKind.PAYMENT_RECEIVED, payment.owner_user_id, title, body,
        data={
            "payment_id": payment.id,
            "amount_crypto": payment.amount_crypto,
            "amount_usd": payment.amount_fiat,
            "currency": payment.currency,
        },
    )


async def notify_payment_expired(session: AsyncSession, payment: PaymentRow) -> NotificationRow:
    return await dispatch(
        session, NotificationKind.PAYMENT_EXPIRED, payment.owner_user_id,
        "Payment expired",
        "Your payment request has expired. Please try again.",
        data={"payment_id": payment.id, "reason": "payment expired"},
    )


async def notify_invoice_paid(
    session: AsyncSession,
    user_id: str,
    invoice_id: Optional[str],
    amount_paid: Optional[int],
    currency: Optional[str] = None,
) -> NotificationRow:
    cents = amount_paid or 0
    return await dispatch(
        session, NotificationKind.PAYMENT_RECEIVED, user_id,
        "Payment successful",
        f"Your subscription payment of ${cents / 100:.2f} was successful.",
        data={"invoice_id": invoice_id, "amount": cents, "currency": currency},
    )


async def notify_invoice_failed(
    session: AsyncSession, user_id: str, invoice_id: Optional[str]
) -> NotificationRow:
    return await dispatch(
        session, NotificationKind.PAYMENT_FAILED, user_id,
        "Payment failed",
        "Your subscription payment failed. Please update your payment method "
        "to continue your Pro subscription.",
        data={"invoice_id": invoice_id, "failed": True},
    )


async def notify_subscription_canceled(session: AsyncSession, user_id: str) -> NotificationRow:
    return await dispatch(
        session, NotificationKind.SUBSCRIPTION_CANCELED, user_id,
        "Subscription canceled",
        "Your Pro subscription has ended. You are now on the Free plan.",
    )
