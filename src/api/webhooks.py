"""
Payment processor webhook endpoints.

Endpoints:
- POST /api/v1/webhooks/coinpay — crypto settlement events (t=...,v1=... HMAC)
- POST /api/v1/webhooks/stripe  — card subscription/invoice events (Stripe SDK)

Status codes are chosen for the processors' retry logic, not for humans:
401/400 mean "don't retry this payload", 500 means "retry", and every
authenticated event we merely ignore still gets 200.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.engine import get_session
from src.middleware.metrics import metrics
from src.models.billing import Provider, WebhookAck, WebhookOutcome
from src.services import stripe_api
from src.services.idempotency import is_processed
from src.services.intents import MalformedPayload, NormalizedEvent, SubscriptionActivated
from src.services.normalizers import normalize
from src.services.webhook_processing import process_event
from src.services.webhook_signatures import construct_stripe_event, verify_timestamped_signature

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def _require_secret(secret: str, name: str) -> str:
    if not secret:
        logger.error("%s not configured — refusing webhook", name)
        raise HTTPException(status_code=500, detail="Webhook not configured")
    return secret


async def _apply(session: AsyncSession, event: NormalizedEvent) -> WebhookOutcome:
    try:
        outcome = await process_event(session, event)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Persistence failure applying %s (%s)", event.event_key, event.event_type)
        metrics.record_webhook(event.provider.value, "error")
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    metrics.record_webhook(event.provider.value, outcome.value)
    return outcome


@router.post("/coinpay", response_model=WebhookAck)
async def coinpay_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """Handle CoinPayPortal payment.confirmed / .forwarded / .expired."""
    secret = _require_secret(settings.COINPAY_WEBHOOK_SECRET, "COINPAY_WEBHOOK_SECRET")

    body = await request.body()
    signature = request.headers.get("x-signature") or request.headers.get("x-coinpay-signature")
    if not verify_timestamped_signature(body, signature, secret):
        logger.warning("Invalid CoinPay webhook signature (header=%r)", signature)
        metrics.record_webhook(Provider.COINPAY.value, "unauthenticated")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = normalize(Provider.COINPAY, json.loads(body))
    except ValueError as exc:
        logger.warning("Malformed CoinPay webhook: %s", exc)
        metrics.record_webhook(Provider.COINPAY.value, "malformed")
        raise HTTPException(status_code=400, detail="Malformed payload")

    await _apply(session, event)
    return WebhookAck()


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    session: AsyncSession = Depends(get_session),
):
    """Handle Stripe checkout, subscription and invoice events."""
    secret = _require_secret(settings.STRIPE_WEBHOOK_SECRET, "STRIPE_WEBHOOK_SECRET")

    if not stripe_signature:
        logger.warning("Stripe webhook without stripe-signature header")
        metrics.record_webhook(Provider.STRIPE.value, "unauthenticated")
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    body = await request.body()
    payload = construct_stripe_event(body, stripe_signature, secret)
    if payload is None:
        metrics.record_webhook(Provider.STRIPE.value, "unauthenticated")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = normalize(Provider.STRIPE, payload)
    except MalformedPayload as exc:
        logger.warning("Malformed Stripe webhook: %s", exc)
        metrics.record_webhook(Provider.STRIPE.value, "malformed")
        raise HTTPException(status_code=400, detail="Malformed payload")

    if isinstance(event.intent, SubscriptionActivated) and not await is_processed(session, event):
        try:
            event = dataclasses.replace(event, intent=await stripe_api.enrich_activation(event.intent))
        except stripe_api.StripeAPIError:
            logger.exception("Could not load subscription for checkout %s", event.external_event_id)
            metrics.record_webhook(Provider.STRIPE.value, "error")
            raise HTTPException(status_code=500, detail="Webhook processing failed")

    await _apply(session, event)
    return WebhookAck()
