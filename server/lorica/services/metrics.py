# ─────────────────────────────────────────────────────────────────────────────
# Proxy Metrics — thread-safe request outcome tracking
# ─────────────────────────────────────────────────────────────────────────────
# Counts requests per terminal pipeline state and per response status, and
# keeps upstream latency history. Exposed via GET /metrics (ProxyMetrics)
# and GET /metrics/prometheus (PrometheusExporter, one registry per app).
#
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Gauge, generate_latest


@dataclass
class ProxyMetrics:
    """Thread-safe proxy metrics."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_total: int = 0
    _outcomes: Counter[str] = field(default_factory=Counter, repr=False)
    _status_codes: Counter[int] = field(default_factory=Counter, repr=False)

    # Upstream round-trip (headers received), relayed requests only
    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)

    _start_time: float = field(default_factory=time.time, repr=False)

    def record(self, outcome: str, status_code: int, upstream_ms: float | None = None) -> None:
        """Record one finished request."""
        with self._lock:
            self.requests_total += 1
            self._outcomes[outcome] += 1
            self._status_codes[status_code] += 1
            if upstream_ms is not None:
                self._latency_history.append(upstream_ms)

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /metrics endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "requests_total": self.requests_total,
                "outcomes": dict(self._outcomes),
                "status_codes": {str(code): count for code, count in sorted(self._status_codes.items())},
                "upstream_latency_ms": {
                    "p50": round(latencies[n // 2], 1) if n else 0,
                    "p95": round(latencies[int(n * 0.95)], 1) if n else 0,
                    "mean": round(sum(latencies) / n, 1) if n else 0,
                    "samples": n,
                },
                "uptime_seconds": int(time.time() - self._start_time),
            }


class PrometheusExporter:
    """Private registry (no default process collectors) fed from ProxyMetrics."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        self.requests_total = Gauge(
            "lorica_requests_total",
            "Requests handled, by terminal pipeline state",
            ["outcome"],
            registry=self.registry,
        )
        self.responses_total = Gauge(
            "lorica_responses_total",
            "Responses sent, by status code",
            ["status"],
            registry=self.registry,
        )
        self.upstream_latency = Gauge(
            "lorica_upstream_latency_ms",
            "Upstream time to response headers over the recent window",
            ["quantile"],
            registry=self.registry,
        )
        self.uptime = Gauge(
            "lorica_uptime_seconds",
            "Seconds since the app was created",
            registry=self.registry,
        )

    def sync(self, metrics: ProxyMetrics) -> None:
        """Copy a ProxyMetrics snapshot into the gauges."""
        data = metrics.to_dict()

        for outcome, count in data["outcomes"].items():
            self.requests_total.labels(outcome=outcome).set(count)

        for status, count in data["status_codes"].items():
            self.responses_total.labels(status=status).set(count)

        latency = data["upstream_latency_ms"]
        self.upstream_latency.labels(quantile="0.5").set(latency["p50"])
        self.upstream_latency.labels(quantile="0.95").set(latency["p95"])

        self.uptime.set(data["uptime_seconds"])

    def render(self, metrics: ProxyMetrics) -> bytes:
        self.sync(metrics)
        return generate_latest(self.registry)
