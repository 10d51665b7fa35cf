"""Tests for structured error responses, health probes and startup checks."""
from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from config.settings import settings
from src.startup_checks import validate_settings


@pytest.mark.asyncio
async def test_health_reports_db(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["db"] == "connected"


@pytest.mark.asyncio
async def test_ready(client):
    resp = await client.get("/ready")
    assert resp.status_code == 200
    assert resp.json() == {"ready": True}


@pytest.mark.asyncio
async def test_http_errors_use_envelope(client):
    with patch.object(settings, "COINPAY_WEBHOOK_SECRET", "s3cret"):
        resp = await client.post("/api/v1/webhooks/coinpay", content=b"{}")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid signature", "message": "Invalid signature"}


@pytest.mark.asyncio
async def test_unknown_route_is_404(client):
    resp = await client.get("/api/v1/webhooks/paypal")
    assert resp.status_code == 404
    assert "error" in resp.json()


@pytest.mark.asyncio
async def test_wrong_method_is_405(client):
    resp = await client.get("/api/v1/webhooks/stripe")
    assert resp.status_code == 405


class TestStartupChecks:
    def test_all_configured(self, caplog):
        with patch.object(settings, "COINPAY_WEBHOOK_SECRET", "a"), \
                patch.object(settings, "STRIPE_WEBHOOK_SECRET", "b"), \
                patch.object(settings, "STRIPE_SECRET_KEY", "c"), \
                patch.object(settings, "PROCESSED_EVENT_RETENTION_DAYS", 30):
            assert validate_settings() == []

    def test_missing_secrets_warned(self, caplog):
        with patch.object(settings, "COINPAY_WEBHOOK_SECRET", ""), \
                patch.object(settings, "STRIPE_WEBHOOK_SECRET", ""), \
                patch.object(settings, "STRIPE_SECRET_KEY", ""), \
                caplog.at_level(logging.WARNING, logger="src.startup_checks"):
            warnings = validate_settings()
        assert len(warnings) == 3
        assert any("COINPAY_WEBHOOK_SECRET" in w for w in warnings)
        assert "STRIPE_WEBHOOK_SECRET" in caplog.text

    def test_short_retention_warned(self):
        with patch.object(settings, "COINPAY_WEBHOOK_SECRET", "a"), \
                patch.object(settings, "STRIPE_WEBHOOK_SECRET", "b"), \
                patch.object(settings, "STRIPE_SECRET_KEY", "c"), \
                patch.object(settings, "PROCESSED_EVENT_RETENTION_DAYS", 1):
            warnings = validate_settings()
        assert len(warnings) == 1
        assert "PROCESSED_EVENT_RETENTION_DAYS" in warnings[0]
