# ─────────────────────────────────────────────────────────────────────────────
# Tests — token bucket rate limiter and client key resolution
# ─────────────────────────────────────────────────────────────────────────────

from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from lorica.rate_limit import (
    NoopRateLimiter,
    TokenBucketLimiter,
    build_rate_limiter,
    resolve_client_key,
)
from lorica.schemas import InboundRequest

from .conftest import UPSTREAM, make_client, make_settings


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTokenBucket:
    def test_one_per_second(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=1, clock=clock)
        assert limiter.acquire("10.0.0.1").allowed
        assert not limiter.acquire("10.0.0.1").allowed
        clock.advance(1.0)
        assert limiter.acquire("10.0.0.1").allowed

    def test_distinct_keys_independent(self):
        limiter = TokenBucketLimiter(rate=1, clock=FakeClock())
        assert limiter.acquire("10.0.0.1").allowed
        assert not limiter.acquire("10.0.0.1").allowed
        assert limiter.acquire("10.0.0.2").allowed

    def test_fractional_rate(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=0.5, clock=clock)
        assert limiter.acquire("k").allowed
        clock.advance(1.0)
        assert not limiter.acquire("k").allowed
        clock.advance(1.0)
        assert limiter.acquire("k").allowed

    def test_burst_capacity(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=1, burst=3, clock=clock)
        assert [limiter.acquire("k").allowed for _ in range(4)] == [True, True, True, False]
        # Refill never exceeds capacity
        clock.advance(100)
        assert [limiter.acquire("k").allowed for _ in range(4)] == [True, True, True, False]

    def test_retry_after(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=0.5, clock=clock)
        limiter.acquire("k")
        clock.advance(0.5)
        admission = limiter.acquire("k")
        assert not admission.allowed
        assert admission.retry_after == pytest.approx(1.5)

    def test_rejection_does_not_consume(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=1, clock=clock)
        limiter.acquire("k")
        for _ in range(5):
            assert not limiter.acquire("k").allowed
        clock.advance(1.0)
        assert limiter.acquire("k").allowed

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            TokenBucketLimiter(rate=0)
        with pytest.raises(ValueError):
            TokenBucketLimiter(rate=1, burst=0)


class TestEviction:
    def test_idle_buckets_evicted(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=1, idle_seconds=60, shards=1, clock=clock)
        for i in range(10):
            limiter.acquire(f"10.0.0.{i}")
        assert len(limiter) == 10

        clock.advance(61)
        limiter.acquire("10.0.1.1")
        assert len(limiter) == 1

    def test_active_buckets_kept(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=1, idle_seconds=60, shards=1, clock=clock)
        limiter.acquire("old")
        clock.advance(30)
        limiter.acquire("recent")
        clock.advance(31)
        limiter.acquire("recent")
        assert len(limiter) == 1

    def test_idle_window_covers_full_refill(self):
        limiter = TokenBucketLimiter(rate=0.01, burst=5, idle_seconds=1, clock=FakeClock())
        assert limiter.idle_seconds == pytest.approx(500)

    def test_eviction_does_not_change_decisions(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(rate=1, burst=2, idle_seconds=1, shards=1, clock=clock)
        limiter.acquire("k")
        limiter.acquire("k")
        clock.advance(1.5)
        # 1.5 tokens refilled; the bucket must not be swept and reset to full
        assert limiter.acquire("k").allowed
        assert not limiter.acquire("k").allowed


class TestConcurrency:
    def test_same_key_never_over_admits(self):
        limiter = TokenBucketLimiter(rate=1, burst=50, clock=FakeClock())
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: limiter.acquire("shared").allowed, range(400)))
        assert sum(results) == 50

    def test_many_keys_concurrently(self):
        limiter = TokenBucketLimiter(rate=1, burst=2, clock=FakeClock())
        keys = [f"10.0.{i // 256}.{i % 256}" for i in range(500)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda k: limiter.acquire(k).allowed, keys * 3))
        assert sum(results) == 1000
        assert len(limiter) == 500


class TestBuildRateLimiter:
    def test_disabled_is_noop(self):
        limiter = build_rate_limiter(make_settings())
        assert isinstance(limiter, NoopRateLimiter)
        assert all(limiter.acquire("k").allowed for _ in range(100))

    def test_enabled_uses_settings(self):
        limiter = build_rate_limiter(
            make_settings(rate_limit_enabled=True, rate_limit_per_second=2.5, rate_limit_burst=4)
        )
        assert isinstance(limiter, TokenBucketLimiter)
        assert limiter.rate == 2.5
        assert limiter.burst == 4


class TestClientKey:
    def _inbound(self, **headers) -> InboundRequest:
        return InboundRequest(method="GET", path="/", raw_path="/", peer="192.0.2.10", **headers)

    def test_untrusted_uses_peer(self):
        inbound = self._inbound(forwarded_for="203.0.113.5", real_ip="203.0.113.6")
        assert resolve_client_key(inbound, trust_proxy_headers=False) == "192.0.2.10"

    def test_trusted_prefers_forwarded_for(self):
        inbound = self._inbound(forwarded_for="203.0.113.5, 10.0.0.1", real_ip="203.0.113.6")
        assert resolve_client_key(inbound, trust_proxy_headers=True) == "203.0.113.5"

    def test_trusted_falls_back_to_real_ip(self):
        inbound = self._inbound(forwarded_for=" , 10.0.0.1", real_ip="203.0.113.6")
        assert resolve_client_key(inbound, trust_proxy_headers=True) == "203.0.113.6"

    def test_trusted_falls_back_to_peer(self):
        assert resolve_client_key(self._inbound(), trust_proxy_headers=True) == "192.0.2.10"

    def test_no_peer(self):
        inbound = InboundRequest(method="GET", path="/", raw_path="/")
        assert resolve_client_key(inbound, trust_proxy_headers=False) == "unknown"


class TestRateLimitedProxy:
    @pytest.fixture(autouse=True)
    def _upstream(self, upstream):
        self.route = upstream.get(url__startswith=UPSTREAM).mock(return_value=httpx.Response(200, text="ok"))

    def test_second_request_within_window_is_429(self):
        client = make_client(rate_limit_enabled=True, rate_limit_per_second=1)
        assert client.get("/2.0.0/search").status_code == 200
        response = client.get("/2.0.0/search")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1"
        assert self.route.call_count == 1

    def test_distinct_client_unaffected(self):
        client = make_client(rate_limit_enabled=True, rate_limit_per_second=1, trust_proxy_headers=True)
        assert client.get("/", headers={"X-Forwarded-For": "203.0.113.1"}).status_code == 200
        assert client.get("/", headers={"X-Forwarded-For": "203.0.113.1"}).status_code == 429
        assert client.get("/", headers={"X-Forwarded-For": "203.0.113.2"}).status_code == 200

    def test_spoofed_header_ignored_when_untrusted(self):
        client = make_client(rate_limit_enabled=True, rate_limit_per_second=1)
        assert client.get("/", headers={"X-Forwarded-For": "203.0.113.1"}).status_code == 200
        assert client.get("/", headers={"X-Forwarded-For": "203.0.113.2"}).status_code == 429

    def test_disabled_never_429(self):
        client = make_client()
        assert all(client.get("/").status_code == 200 for _ in range(5))
