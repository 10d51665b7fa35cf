"""Read-only Stripe API access used while applying webhooks."""
from __future__ import annotations

import dataclasses
import json
import logging

import stripe

from config.settings import settings
from src.services.intents import SubscriptionActivated
from src.services.normalizers import map_stripe_status, stripe_subscription_period

logger = logging.getLogger(__name__)


class StripeAPIError(RuntimeError):
    """The subscription could not be read; the webhook must be retried."""


async def fetch_subscription(subscription_ref: str) -> dict:
    if not settings.STRIPE_SECRET_KEY:
        raise StripeAPIError("STRIPE_SECRET_KEY not configured")

    try:
        subscription = await stripe.Subscription.retrieve_async(
            subscription_ref, api_key=settings.STRIPE_SECRET_KEY
        )
    except stripe.StripeError as exc:
        logger.error("Stripe subscription lookup failed for %s: %s", subscription_ref, exc)
        raise StripeAPIError(f"Stripe lookup failed for {subscription_ref}") from exc

    # Same plain-dict shape the webhook payloads are normalized from
    return json.loads(str(subscription))


async def enrich_activation(intent: SubscriptionActivated) -> SubscriptionActivated:
    """Fill in period and status, which checkout sessions don't carry."""
    if intent.period is not None or not intent.subscription_ref:
        return intent

    subscription = await fetch_subscription(intent.subscription_ref)
    return dataclasses.replace(
        intent,
        period=stripe_subscription_period(subscription),
        status=map_stripe_status(subscription.get("status")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
    )
