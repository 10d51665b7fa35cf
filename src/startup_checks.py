"""Startup validation — catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging

from config.settings import settings
from src.services.data_retention import MIN_LEDGER_RETENTION_DAYS

logger = logging.getLogger(__name__)


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Missing webhook secrets are only warned about here; each webhook route
    still answers 500 on every request until its secret is set.
    """
    warnings: list[str] = []

    if not settings.COINPAY_WEBHOOK_SECRET:
        warnings.append("COINPAY_WEBHOOK_SECRET not set — crypto webhooks will fail with 500")

    if not settings.STRIPE_WEBHOOK_SECRET:
        warnings.append("STRIPE_WEBHOOK_SECRET not set — Stripe webhooks will fail with 500")

    if not settings.STRIPE_SECRET_KEY:
        warnings.append("STRIPE_SECRET_KEY not set — checkout completions cannot be applied")

    if settings.PROCESSED_EVENT_RETENTION_DAYS < MIN_LEDGER_RETENTION_DAYS:
        warnings.append(
            f"PROCESSED_EVENT_RETENTION_DAYS={settings.PROCESSED_EVENT_RETENTION_DAYS} is shorter "
            f"than the processors' retry window — using {MIN_LEDGER_RETENTION_DAYS}"
        )

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
