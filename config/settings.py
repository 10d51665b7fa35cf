"""App settings — loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///billing.db")

    # Crypto processor (CoinPayPortal) — shared HMAC secret
    COINPAY_WEBHOOK_SECRET = os.getenv("COINPAY_WEBHOOK_SECRET", "")

    # Card processor (Stripe)
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    # Idempotency ledger retention (must outlive every processor's retry window)
    PROCESSED_EVENT_RETENTION_DAYS = int(os.getenv("PROCESSED_EVENT_RETENTION_DAYS", "30"))
    LEDGER_PURGE_INTERVAL_HOURS = int(os.getenv("LEDGER_PURGE_INTERVAL_HOURS", "24"))

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
