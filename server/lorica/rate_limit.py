# ─────────────────────────────────────────────────────────────────────────────
# Rate Limiter — sharded per-client token buckets
# ─────────────────────────────────────────────────────────────────────────────
# Each client key owns a bucket of `burst` tokens refilled continuously at
# `rate` tokens/second. Buckets live in one of N shards; each shard has its
# own threading.Lock, so check-and-consume is atomic per key while distinct
# keys mostly contend on different locks.
#
# Bounded: idle buckets are swept lazily, at most once per idle window per
# shard. The idle window is never shorter than a full refill, so an evicted
# bucket would have been full anyway.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from lorica.config import Settings
from lorica.schemas import InboundRequest

logger = structlog.get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class Admission:
    """Result of one acquire() call."""

    allowed: bool
    retry_after: float = 0.0


class RateLimiter(Protocol):
    def acquire(self, key: str) -> Admission: ...


class NoopRateLimiter:
    """Admits everything. Used when rate limiting is disabled."""

    def acquire(self, key: str) -> Admission:
        return Admission(allowed=True)


@dataclass
class TokenBucket:
    tokens: float
    updated: float


@dataclass
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    buckets: dict[str, TokenBucket] = field(default_factory=dict)
    last_sweep: float = 0.0


class TokenBucketLimiter:
    """Per-key token buckets, safe for concurrent callers."""

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        idle_seconds: float = 600.0,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = rate
        self.burst = float(burst)
        self.idle_seconds = max(idle_seconds, self.burst / rate)
        self._clock = clock
        now = clock()
        self._shards = [_Shard(last_sweep=now) for _ in range(max(1, shards))]

    def _shard(self, key: str) -> _Shard:
        return self._shards[zlib.crc32(key.encode()) % len(self._shards)]

    def acquire(self, key: str) -> Admission:
        shard = self._shard(key)
        with shard.lock:
            now = self._clock()
            if now - shard.last_sweep >= self.idle_seconds:
                self._sweep(shard, now)

            bucket = shard.buckets.get(key)
            if bucket is None:
                bucket = shard.buckets[key] = TokenBucket(tokens=self.burst, updated=now)
            else:
                elapsed = max(0.0, now - bucket.updated)
                bucket.tokens = min(self.burst, bucket.tokens + elapsed * self.rate)
                bucket.updated = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return Admission(allowed=True)
            return Admission(allowed=False, retry_after=(1.0 - bucket.tokens) / self.rate)

    def _sweep(self, shard: _Shard, now: float) -> None:
        """Drop buckets idle for longer than the idle window. Caller holds the lock."""
        cutoff = now - self.idle_seconds
        stale = [key for key, bucket in shard.buckets.items() if bucket.updated < cutoff]
        for key in stale:
            del shard.buckets[key]
        shard.last_sweep = now
        if stale:
            logger.debug("rate_limit_buckets_evicted", count=len(stale))

    def __len__(self) -> int:
        """Number of live buckets across all shards."""
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.buckets)
        return total


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Token buckets when enabled, otherwise a no-op limiter."""
    if not settings.rate_limit_enabled:
        return NoopRateLimiter()
    return TokenBucketLimiter(
        rate=settings.rate_limit_per_second,
        burst=settings.rate_limit_burst,
        idle_seconds=settings.rate_limit_idle_seconds,
    )


def resolve_client_key(inbound: InboundRequest, trust_proxy_headers: bool) -> str:
    """Identity used for bucketing.

    Proxy headers are only honoured when trusted; otherwise any client could
    pick its own key by sending X-Forwarded-For.
    """
    if trust_proxy_headers:
        if inbound.forwarded_for:
            first = inbound.forwarded_for.split(",")[0].strip()
            if first:
                return first
        if inbound.real_ip and inbound.real_ip.strip():
            return inbound.real_ip.strip()
    return inbound.peer or UNKNOWN_CLIENT
