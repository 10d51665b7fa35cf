"""Tests for Prometheus metrics middleware."""
import pytest
from httpx import AsyncClient, ASGITransport
from src.api.main import app
from src.middleware.metrics import metrics


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Reset metrics state between tests."""
    metrics.reset()
    yield


@pytest.mark.asyncio
async def test_metrics_endpoint_returns_prometheus_format():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/health")
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "text/plain" in resp.headers["content-type"]
        body = resp.text
        assert "billing_http_requests_total" in body
        assert "billing_http_request_duration_seconds_sum" in body
        assert "# TYPE billing_webhook_events_total counter" in body


@pytest.mark.asyncio
async def test_metrics_track_requests():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/health")
        await client.get("/health")
        body = (await client.get("/metrics")).text
        assert 'billing_http_requests_total{method="GET",path="/health",status="200"} 2' in body


@pytest.mark.asyncio
async def test_metrics_tracks_status_codes():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/api/v1/webhooks/nonexistent")
        body = (await client.get("/metrics")).text
        assert 'status="404"' in body


def test_record_webhook_counts_by_provider_and_outcome():
    metrics.record_webhook("stripe", "applied")
    metrics.record_webhook("stripe", "applied")
    metrics.record_webhook("coinpay", "duplicate")
    body = metrics.render()
    assert 'billing_webhook_events_total{provider="stripe",outcome="applied"} 2' in body
    assert 'billing_webhook_events_total{provider="coinpay",outcome="duplicate"} 1' in body


def test_reset_clears_everything():
    metrics.record("GET", "/health", 200, 0.01)
    metrics.record_webhook("stripe", "noop")
    metrics.reset()
    body = metrics.render()
    assert "/health" not in body
    assert "noop" not in body
