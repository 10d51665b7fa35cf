"""Tests for request ID tracing middleware and the logging filter that reads it."""
import logging

import pytest
from httpx import ASGITransport, AsyncClient
from src.api.main import app
from src.logging_config import JSONFormatter, RequestIDFilter
from src.middleware.request_id import request_id_var


@pytest.fixture
def client():
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.asyncio
async def test_response_includes_request_id(client):
    """Every response should have X-Request-ID header."""
    resp = await client.get("/health")
    assert "x-request-id" in resp.headers
    rid = resp.headers["x-request-id"]
    assert len(rid) == 36  # UUID format


@pytest.mark.asyncio
async def test_client_request_id_honored(client):
    """If client sends X-Request-ID, server should echo it back."""
    custom_id = "my-trace-12345"
    resp = await client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers["x-request-id"] == custom_id


@pytest.mark.asyncio
async def test_unique_ids_per_request(client):
    """Each request gets a unique ID."""
    r1 = await client.get("/health")
    r2 = await client.get("/health")
    assert r1.headers["x-request-id"] != r2.headers["x-request-id"]


@pytest.mark.asyncio
async def test_error_responses_carry_request_id(client):
    resp = await client.post("/api/v1/webhooks/coinpay", content=b"{}")
    assert resp.status_code in (401, 500)
    assert "x-request-id" in resp.headers


def _record() -> logging.LogRecord:
    return logging.LogRecord("src.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)


def test_filter_stamps_current_request_id():
    token = request_id_var.set("rid-42")
    try:
        record = _record()
        RequestIDFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "rid-42"


def test_filter_outside_request():
    record = _record()
    RequestIDFilter().filter(record)
    assert record.request_id == "-"


def test_json_formatter_includes_request_id():
    import json

    record = _record()
    record.request_id = "rid-7"
    line = json.loads(JSONFormatter().format(record))
    assert line["message"] == "hello world"
    assert line["request_id"] == "rid-7"
    assert line["level"] == "INFO"


def test_json_formatter_carries_extra_fields():
    import json

    record = _record()
    record.provider = "stripe"
    record.event_key = "evt_1"
    line = json.loads(JSONFormatter().format(record))
    assert line["provider"] == "stripe"
    assert line["event_key"] == "evt_1"
    assert "args" not in line


def test_sentry_events_drop_signature_headers():
    from src.api.main import _scrub_signatures

    event = {"request": {"headers": {"Stripe-Signature": "t=1,v1=ab", "Content-Type": "application/json"}}}
    scrubbed = _scrub_signatures(event, None)
    assert scrubbed["request"]["headers"]["Stripe-Signature"] == "[Filtered]"
    assert scrubbed["request"]["headers"]["Content-Type"] == "application/json"
