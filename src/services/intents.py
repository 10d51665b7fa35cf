"""Provider-agnostic intents.

Each processor's vocabulary is translated once, at the boundary, into one
of the intents below; everything downstream branches on the intent type,
never on which processor sent it.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Union

from src.models.billing import Provider, SubscriptionStatus


class IntentKind(str, Enum):
    PAYMENT_SETTLED = "PaymentSettled"
    PAYMENT_FORWARDED = "PaymentForwarded"
    PAYMENT_EXPIRED = "PaymentExpired"
    SUBSCRIPTION_ACTIVATED = "SubscriptionActivated"
    SUBSCRIPTION_RENEWED = "SubscriptionRenewed"
    SUBSCRIPTION_CANCELED = "SubscriptionCanceled"
    SUBSCRIPTION_PAST_DUE = "SubscriptionPastDue"


class MalformedPayload(ValueError):
    """Authenticated body that is not a usable event (bad JSON, missing field)."""


@dataclass(frozen=True)
class BillingPeriod:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class PaymentSettled:
    kind: ClassVar[IntentKind] = IntentKind.PAYMENT_SETTLED
    external_payment_id: str
    amount_crypto: Optional[float] = None
    amount_fiat: Optional[float] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class PaymentForwarded:
    kind: ClassVar[IntentKind] = IntentKind.PAYMENT_FORWARDED
    external_payment_id: str
    tx_hash: Optional[str] = None
    forwarded_tx_hash: Optional[str] = None


@dataclass(frozen=True)
class PaymentExpired:
    kind: ClassVar[IntentKind] = IntentKind.PAYMENT_EXPIRED
    external_payment_id: str


@dataclass(frozen=True)
class SubscriptionActivated:
    """Card checkout finished. Period/status are filled in from the processor's API."""
    kind: ClassVar[IntentKind] = IntentKind.SUBSCRIPTION_ACTIVATED
    user_id: Optional[str]
    customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None
    period: Optional[BillingPeriod] = None
    status: Optional[SubscriptionStatus] = None
    cancel_at_period_end: bool = False


@dataclass(frozen=True)
class SubscriptionRenewed:
    """Processor-authoritative billing cycle update.

    status is None when the source (an invoice) says nothing about the
    subscription's status; invoice_id is set when money actually moved.
    """
    kind: ClassVar[IntentKind] = IntentKind.SUBSCRIPTION_RENEWED
    customer_ref: str
    subscription_ref: Optional[str] = None
    period: Optional[BillingPeriod] = None
    status: Optional[SubscriptionStatus] = None
    cancel_at_period_end: Optional[bool] = None
    invoice_id: Optional[str] = None
    amount_paid: Optional[int] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionPastDue:
    kind: ClassVar[IntentKind] = IntentKind.SUBSCRIPTION_PAST_DUE
    customer_ref: str
    invoice_id: Optional[str] = None
    amount_due: Optional[int] = None


@dataclass(frozen=True)
class SubscriptionCanceled:
    kind: ClassVar[IntentKind] = IntentKind.SUBSCRIPTION_CANCELED
    customer_ref: str
    subscription_ref: Optional[str] = None


@dataclass(frozen=True)
class Unrecognized:
    """Authenticated event this system deliberately ignores."""
    event_type: str


Intent = Union[
    PaymentSettled,
    PaymentForwarded,
    PaymentExpired,
    SubscriptionActivated,
    SubscriptionRenewed,
    SubscriptionPastDue,
    SubscriptionCanceled,
]


@dataclass(frozen=True)
class NormalizedEvent:
    provider: Provider
    external_event_id: str
    event_type: str
    intent: Union[Intent, Unrecognized]

    @property
    def event_key(self) -> str:
        """Ledger key, qualified by provider."""
        return f"{self.provider.value}:{self.external_event_id}"

    @property
    def recognized(self) -> bool:
        return not isinstance(self.intent, Unrecognized)
