"""
Event Normalizers
---
Translate each processor's wire format into a NormalizedEvent:
the ledger id, the raw event type, and one Intent (or Unrecognized).

CoinPayPortal (crypto):
- payment.confirmed  → PaymentSettled
- payment.forwarded  → PaymentForwarded
- payment.expired    → PaymentExpired

Stripe (card):
- checkout.session.completed                        → SubscriptionActivated
- customer.subscription.created / .updated          → SubscriptionRenewed (or Canceled)
- customer.subscription.deleted                     → SubscriptionCanceled
- invoice.payment_succeeded                         → SubscriptionRenewed (+ invoice)
- invoice.payment_failed                            → SubscriptionPastDue
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from src.models.billing import Provider, SubscriptionStatus
from src.services.intents import (
    BillingPeriod,
    MalformedPayload,
    NormalizedEvent,
    PaymentExpired,
    PaymentForwarded,
    PaymentSettled,
    SubscriptionActivated,
    SubscriptionCanceled,
    SubscriptionPastDue,
    SubscriptionRenewed,
    Unrecognized,
)

logger = logging.getLogger(__name__)

COINPAY_EVENT_TYPES = frozenset({"payment.confirmed", "payment.forwarded", "payment.expired"})

STRIPE_EVENT_TYPES = frozenset({
    "checkout.session.completed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
})

# Stripe status → our status. Anything unlisted (unpaid, canceled, paused) counts as canceled.
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE,
}


# ── Field helpers ─────────────────────────────────────────────────────────────

def _require_object(container: Any, what: str) -> dict:
    if not isinstance(container, dict):
        raise MalformedPayload(f"{what} must be a JSON object")
    return container


def _optional_object(container: dict, key: str) -> dict:
    """Nested object that may be absent; present but not an object is malformed."""
    value = container.get(key)
    if value is None:
        return {}
    return _require_object(value, key)


def _first_listed(container: dict, key: str) -> Optional[dict]:
    """First entry of a Stripe list object (`{"data": [...]}`), if any."""
    entries = _optional_object(container, key).get("data")
    if entries is None:
        return None
    if not isinstance(entries, list):
        raise MalformedPayload(f"{key}.data must be a JSON array")
    if not entries:
        return None
    return _require_object(entries[0], f"{key}.data[0]")


def _require_str(container: dict, key: str) -> str:
    value = container.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value:
        raise MalformedPayload(f"missing required field: {key}")
    return value


def _optional_float(container: dict, key: str) -> Optional[float]:
    value = container.get(key)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedPayload(f"{key} is not a number: {value!r}")


def _ref(value: Any) -> Optional[str]:
    """Stripe references arrive as ids or, when expanded, as objects with an id."""
    if isinstance(value, dict):
        value = value.get("id")
    return value if isinstance(value, str) and value else None


def _ts(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        raise MalformedPayload(f"invalid unix timestamp: {value!r}")


def _period(start: Any, end: Any) -> Optional[BillingPeriod]:
    start_dt, end_dt = _ts(start), _ts(end)
    if start_dt is None or end_dt is None:
        return None
    return BillingPeriod(start=start_dt, end=end_dt)


def map_stripe_status(status: Optional[str]) -> SubscriptionStatus:
    return STRIPE_STATUS_MAP.get(status or "", SubscriptionStatus.CANCELED)


def stripe_subscription_period(subscription: dict) -> Optional[BillingPeriod]:
    """Billing period from the first subscription item, else the subscription itself.

    Newer API versions only carry the period on items.
    """
    item = _first_listed(subscription, "items")
    if item is not None:
        period = _period(item.get("current_period_start"), item.get("current_period_end"))
        if period:
            return period
    return _period(subscription.get("current_period_start"), subscription.get("current_period_end"))


def _invoice_period(invoice: dict) -> Optional[BillingPeriod]:
    line = _first_listed(invoice, "lines")
    if line is not None:
        line_period = _optional_object(line, "period")
        return _period(line_period.get("start"), line_period.get("end"))
    return None


def _invoice_subscription(invoice: dict) -> Optional[str]:
    ref = _ref(invoice.get("subscription"))
    if ref:
        return ref
    details = _optional_object(_optional_object(invoice, "parent"), "subscription_details")
    return _ref(details.get("subscription"))


# ── CoinPayPortal ─────────────────────────────────────────────────────────────

def normalize_coinpay_event(payload: Any) -> NormalizedEvent:
    event = _require_object(payload, "event")
    event_id = _require_str(event, "id")
    event_type = _require_str(event, "type")

    if event_type not in COINPAY_EVENT_TYPES:
        return NormalizedEvent(Provider.COINPAY, event_id, event_type, Unrecognized(event_type))

    data = _require_object(event.get("data"), "data")
    payment_id = _require_str(data, "payment_id")

    if event_type == "payment.confirmed":
        currency = data.get("currency")
        intent = PaymentSettled(
            external_payment_id=payment_id,
            amount_crypto=_optional_float(data, "amount_crypto"),
            amount_fiat=_optional_float(data, "amount_usd"),
            currency=currency if isinstance(currency, str) else None,
        )
    elif event_type == "payment.forwarded":
        intent = PaymentForwarded(
            external_payment_id=payment_id,
            tx_hash=data.get("tx_hash"),
            forwarded_tx_hash=data.get("forwarded_tx_hash"),
        )
    else:
        intent = PaymentExpired(external_payment_id=payment_id)

    return NormalizedEvent(Provider.COINPAY, event_id, event_type, intent)


# ── Stripe ────────────────────────────────────────────────────────────────────

def _normalize_checkout(session: dict):
    subscription_ref = _ref(session.get("subscription"))
    if session.get("mode", "subscription") != "subscription" or not subscription_ref:
        return None
    user_id = _optional_object(session, "metadata").get("user_id") or session.get("client_reference_id")
    if user_id is not None and not isinstance(user_id, str):
        raise MalformedPayload(f"user_id must be a string: {user_id!r}")
    return SubscriptionActivated(
        user_id=user_id or None,
        customer_ref=_ref(session.get("customer")),
        subscription_ref=subscription_ref,
    )


def _normalize_subscription(subscription: dict, deleted: bool):
    customer_ref = _ref(subscription.get("customer"))
    if not customer_ref:
        raise MalformedPayload("missing required field: customer")
    subscription_ref = _ref(subscription.get("id"))

    status = map_stripe_status(subscription.get("status"))
    if deleted or status == SubscriptionStatus.CANCELED:
        return SubscriptionCanceled(customer_ref=customer_ref, subscription_ref=subscription_ref)

    return SubscriptionRenewed(
        customer_ref=customer_ref,
        subscription_ref=subscription_ref,
        period=stripe_subscription_period(subscription),
        status=status,
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
    )


def _normalize_invoice(invoice: dict, paid: bool):
    customer_ref = _ref(invoice.get("customer"))
    if not customer_ref:
        raise MalformedPayload("missing required field: customer")
    invoice_id = _ref(invoice.get("id"))

    if not paid:
        return SubscriptionPastDue(
            customer_ref=customer_ref,
            invoice_id=invoice_id,
            amount_due=invoice.get("amount_due"),
        )
    return SubscriptionRenewed(
        customer_ref=customer_ref,
        subscription_ref=_invoice_subscription(invoice),
        period=_invoice_period(invoice),
        invoice_id=invoice_id,
        amount_paid=invoice.get("amount_paid"),
        currency=invoice.get("currency"),
    )


def normalize_stripe_event(payload: Any) -> NormalizedEvent:
    event = _require_object(payload, "event")
    event_id = _require_str(event, "id")
    event_type = _require_str(event, "type")

    if event_type not in STRIPE_EVENT_TYPES:
        return NormalizedEvent(Provider.STRIPE, event_id, event_type, Unrecognized(event_type))

    data = _require_object(event.get("data"), "data")
    obj = _require_object(data.get("object"), "data.object")

    if event_type == "checkout.session.completed":
        intent = _normalize_checkout(obj)
    elif event_type.startswith("customer.subscription."):
        intent = _normalize_subscription(obj, deleted=event_type.endswith(".deleted"))
    else:
        intent = _normalize_invoice(obj, paid=event_type == "invoice.payment_succeeded")

    if intent is None:
        return NormalizedEvent(Provider.STRIPE, event_id, event_type, Unrecognized(event_type))
    return NormalizedEvent(Provider.STRIPE, event_id, event_type, intent)


_NORMALIZERS = {
    Provider.COINPAY: normalize_coinpay_event,
    Provider.STRIPE: normalize_stripe_event,
}


def normalize(provider: Provider, payload: Any) -> NormalizedEvent:
    """Map a verified, parsed payload to a NormalizedEvent. Raises MalformedPayload."""
    normalized = _NORMALIZERS[provider](payload)
    if not normalized.recognized:
        logger.info(
            "Ignoring unrecognized %s event %s (%s)",
            provider.value, normalized.external_event_id, normalized.event_type,
        )
    return normalized
