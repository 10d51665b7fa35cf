"""
Webhook processing pipeline (post-verification half).

    NormalizedEvent ─► Idempotency Guard ─► state machine ─► notifications

Runs inside the caller's session; the caller commits. Because the ledger
claim and every dependent mutation share that one transaction, a failure
anywhere rolls back the claim too and the processor's retry starts clean.
"""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.billing import WebhookOutcome
from src.services import payments, subscriptions
from src.services.idempotency import ClaimResult, try_claim
from src.services.intents import (
    NormalizedEvent,
    PaymentExpired,
    PaymentForwarded,
    PaymentSettled,
    SubscriptionActivated,
    SubscriptionCanceled,
    SubscriptionPastDue,
    SubscriptionRenewed,
)

logger = logging.getLogger(__name__)

_HANDLERS = {
    PaymentSettled: payments.apply_settled,
    PaymentForwarded: payments.apply_forwarded,
    PaymentExpired: payments.apply_expired,
    SubscriptionActivated: subscriptions.handle_activated,
    SubscriptionRenewed: subscriptions.handle_renewed,
    SubscriptionPastDue: subscriptions.handle_past_due,
    SubscriptionCanceled: subscriptions.handle_canceled,
}


async def process_event(session: AsyncSession, event: NormalizedEvent) -> WebhookOutcome:
    if not event.recognized:
        return WebhookOutcome.UNRECOGNIZED

    if await try_claim(session, event) is ClaimResult.ALREADY_PROCESSED:
        return WebhookOutcome.DUPLICATE

    handler = _HANDLERS[type(event.intent)]
    outcome = await handler(session, event.provider, event.intent)
    logger.info("%s %s (%s) → %s", event.provider.value, event.external_event_id,
                event.intent.kind.value, outcome.value,
                extra={"provider": event.provider.value, "event_key": event.event_key})
    return outcome
