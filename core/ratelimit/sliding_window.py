"""
Per-IP sliding window rate limiter.

In-process admission control for public storefront endpoints:
- Timestamps per client IP, pruned to the current window on every check
- Retry hint (seconds until the oldest request leaves the window)
- Background sweep that drops idle IPs so memory stays bounded

Not shared between processes. A multi-instance deployment needs a shared
counter store in front of this.
"""
from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Callable, Mapping
import asyncio
import logging
import math
import threading
import time

logger = logging.getLogger(__name__)

# Checked in order; the first header present wins.
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def client_ip_from_headers(headers: Mapping[str, str]) -> str:
    """Client IP as reported by the proxy chain, or ``"unknown"``."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in CLIENT_IP_HEADERS:
        value = lowered.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return "unknown"


@dataclass
class RateLimitResult:
    """Outcome of one admission check."""
    allowed: bool
    ip: str
    remaining: int = 0
    retry_after: int | None = None  # seconds, only when rejected
    reset_at: float | None = None  # epoch seconds when the oldest entry expires


class SlidingWindowRateLimiter:
    """Sliding window counter keyed by client IP.

    Usage::

        limiter = SlidingWindowRateLimiter(max_requests=100, window_seconds=60)
        result = limiter.check(client_ip_from_headers(request.headers))
        if not result.allowed:
            raise RateLimited(result.retry_after, ip=result.ip)
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task | None = None

    def _prune(self, timestamps: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def check(self, ip: str) -> RateLimitResult:
        """Admit and record the request, or reject with a retry hint."""
        now = self._clock()
        with self._lock:
            timestamps = self._requests.setdefault(ip, deque())
            self._prune(timestamps, now)

            if len(timestamps) >= self.max_requests:
                reset_at = timestamps[0] + self.window_seconds
                retry_after = max(1, math.ceil(reset_at - now))
                return RateLimitResult(
                    allowed=False,
                    ip=ip,
                    remaining=0,
                    retry_after=retry_after,
                    reset_at=reset_at,
                )

            timestamps.append(now)
            return RateLimitResult(
                allowed=True,
                ip=ip,
                remaining=self.max_requests - len(timestamps),
                reset_at=timestamps[0] + self.window_seconds,
            )

    def remaining(self, ip: str) -> int:
        now = self._clock()
        with self._lock:
            timestamps = self._requests.get(ip)
            if not timestamps:
                return self.max_requests
            active = sum(1 for t in timestamps if t > now - self.window_seconds)
        return max(0, self.max_requests - active)

    def sweep(self) -> int:
        """Drop IPs with nothing left in the window. Returns how many were dropped."""
        now = self._clock()
        with self._lock:
            idle = []
            for ip, timestamps in self._requests.items():
                self._prune(timestamps, now)
                if not timestamps:
                    idle.append(ip)
            for ip in idle:
                del self._requests[ip]
        if idle:
            logger.debug("Rate limiter sweep dropped %d idle IPs", len(idle))
        return len(idle)

    def get_stats(self) -> dict[str, float | int]:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            total_ips = len(self._requests)
            active = sum(
                1 for timestamps in self._requests.values() for t in timestamps if t > cutoff
            )
        return {
            "totalIPs": total_ips,
            "windowMs": int(self.window_seconds * 1000),
            "maxRequests": self.max_requests,
            "activeRequests": active,
        }

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()

    # --- Background sweep ---

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def start_sweeper(self, interval: float = 300.0) -> asyncio.Task:
        """Schedule the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self._sweep_forever(interval), name="rate-limit-sweep"
            )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()
