"""Prometheus text exposition for HTTP traffic and webhook outcomes, served at /metrics."""
from __future__ import annotations

import time
from collections import defaultdict
from threading import Lock

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

PREFIX = "billing"


def _labels(**pairs) -> str:
    return ",".join(f'{k}="{v}"' for k, v in pairs.items())


def _family(name: str, kind: str, help_text: str) -> list[str]:
    return [f"# HELP {PREFIX}_{name} {help_text}", f"# TYPE {PREFIX}_{name} {kind}"]


class _Metrics:
    """In-process counters; one instance per worker."""

    def __init__(self):
        self._lock = Lock()
        self.requests: dict[tuple[str, str, int], int] = defaultdict(int)
        # (method, path) -> [seconds_sum, count]
        self.latency: dict[tuple[str, str], list] = defaultdict(lambda: [0.0, 0])
        self.webhook_outcomes: dict[tuple[str, str], int] = defaultdict(int)

    def record(self, method: str, path: str, status: int, duration: float):
        with self._lock:
            self.requests[(method, path, status)] += 1
            series = self.latency[(method, path)]
            series[0] += duration
            series[1] += 1

    def record_webhook(self, provider: str, outcome: str):
        """Count one delivery by its result: applied, duplicate, noop, unauthenticated..."""
        with self._lock:
            self.webhook_outcomes[(provider, outcome)] += 1

    def reset(self):
        with self._lock:
            for store in (self.requests, self.latency, self.webhook_outcomes):
                store.clear()

    def render(self) -> str:
        with self._lock:
            lines = _family("http_requests_total", "counter", "Total HTTP requests")
            lines += [
                f"{PREFIX}_http_requests_total{{{_labels(method=m, path=p, status=s)}}} {n}"
                for (m, p, s), n in sorted(self.requests.items())
            ]

            lines.append("")
            lines += _family("http_request_duration_seconds", "summary", "HTTP request duration")
            for (m, p), (total, n) in sorted(self.latency.items()):
                label = _labels(method=m, path=p)
                lines.append(f"{PREFIX}_http_request_duration_seconds_sum{{{label}}} {total:.6f}")
                lines.append(f"{PREFIX}_http_request_duration_seconds_count{{{label}}} {n}")

            lines.append("")
            lines += _family("webhook_events_total", "counter", "Webhook deliveries by provider and outcome")
            lines += [
                f"{PREFIX}_webhook_events_total{{{_labels(provider=prov, outcome=out)}}} {n}"
                for (prov, out), n in sorted(self.webhook_outcomes.items())
            ]

        return "\n".join(lines) + "\n"


metrics = _Metrics()


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return PlainTextResponse(metrics.render(), media_type="text/plain; version=0.0.4")

        path = request.url.path.rstrip("/") or "/"
        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            metrics.record(request.method, path, status, time.perf_counter() - started)
