"""
Per-client-IP rate limiting with token buckets.

Each client IP gets its own bucket, created lazily on its first request:

  - capacity    = RATE_LIMIT_BURST
  - refill rate = RATE_LIMIT_REQUESTS / RATE_LIMIT_WINDOW tokens per second

A request refills the bucket by the time elapsed since the last request
(capped at capacity) and is allowed if at least one token remains, which it
then consumes. A rejected caller is told to retry after roughly the time one
token takes to refill, never less than one second.

Memory is bounded by evicting buckets idle for longer than `idle_ttl`
(10 minutes). A single lock guards bucket lookup/creation, the token
arithmetic and the eviction sweep, so an eviction can never drop a bucket
that a concurrent allow() is using, and concurrent requests from the same IP
can never be admitted beyond the bucket's capacity.

Like the token blacklist, buckets are process-local.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger("openvpn_mng.rate_limiter")

DEFAULT_IDLE_TTL = 10 * 60
DEFAULT_SWEEP_INTERVAL = 10 * 60


@dataclass
class _Bucket:
    tokens: float
    last_refill: float
    last_seen: float


class RateLimiter:
    def __init__(
        self,
        requests: int,
        window_seconds: int,
        burst: int,
        idle_ttl: float = DEFAULT_IDLE_TTL,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock=time.monotonic,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.requests = requests
        self.window_seconds = window_seconds
        self.rate = requests / window_seconds
        self.burst = burst
        self._idle_ttl = idle_ttl
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def retry_after(self) -> int:
        """Seconds a rejected client should wait: one token's refill time, min 1."""
        if self.requests <= 0:
            return 1
        return max(1, math.ceil(self.window_seconds / self.requests))

    def allow(self, client_ip: str) -> bool:
        """Consume one token from client_ip's bucket. False if the bucket is empty."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(client_ip)
            if bucket is None:
                bucket = _Bucket(tokens=float(self.burst), last_refill=now, last_seen=now)
                self._buckets[client_ip] = bucket
            else:
                elapsed = max(0.0, now - bucket.last_refill)
                bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * self.rate)
                bucket.last_refill = now
            bucket.last_seen = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            return False

    def evict_idle(self) -> int:
        """Drop buckets not touched within idle_ttl. Returns how many were removed."""
        cutoff = self._clock() - self._idle_ttl
        with self._lock:
            idle = [ip for ip, b in self._buckets.items() if b.last_seen < cutoff]
            for ip in idle:
                del self._buckets[ip]
        if idle:
            logger.debug("Evicted %d idle rate-limit buckets", len(idle))
        return len(idle)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    # --- background sweep ---

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop, name="rate-limiter-sweep", daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            self.evict_idle()


def client_ip_from(headers, peer: str | None) -> str:
    """
    Resolve the client address for rate limiting.

    Honors a reverse proxy's X-Forwarded-For (first hop) or X-Real-IP,
    falling back to the socket peer address.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer or "unknown"
