"""Billing vocabulary shared by the tables, state machines and webhook routes."""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class Provider(str, Enum):
    STRIPE = "stripe"      # card rail, SDK-verified signatures
    COINPAY = "coinpay"    # crypto settlement, timestamp-HMAC signatures


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FORWARDED = "forwarded"
    EXPIRED = "expired"


class Plan(str, Enum):
    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


# Statuses under which a user keeps Pro access
PRO_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
})


class NotificationKind(str, Enum):
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_EXPIRED = "payment_expired"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


class WebhookOutcome(str, Enum):
    """How a verified delivery ended. Every outcome is acknowledged with 200."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNRECOGNIZED = "unrecognized"
    ORPHAN = "orphan"
    CONFLICT = "conflict"
    NOOP = "noop"


# Display metadata for the processor's settlement currencies
CRYPTO_CURRENCIES: dict[str, dict[str, str]] = {
    "usdc_pol": {"name": "USDC (Polygon)", "symbol": "USDC"},
    "usdc_sol": {"name": "USDC (Solana)", "symbol": "USDC"},
    "usdc_eth": {"name": "USDC (Ethereum)", "symbol": "USDC"},
    "usdt": {"name": "Tether", "symbol": "USDT"},
    "pol": {"name": "Polygon", "symbol": "POL"},
    "sol": {"name": "Solana", "symbol": "SOL"},
    "btc": {"name": "Bitcoin", "symbol": "BTC"},
    "eth": {"name": "Ethereum", "symbol": "ETH"},
}


def currency_symbol(code: str | None) -> str:
    if not code:
        return ""
    entry = CRYPTO_CURRENCIES.get(code.lower())
    return entry["symbol"] if entry else code.upper()


class WebhookAck(BaseModel):
    """Body of every 200 webhook response, whatever the outcome."""
    received: bool = True


class HealthStatus(BaseModel):
    status: str
    db: str
    version: str
