"""Test the per-IP sliding window rate limiter."""
import asyncio
import threading

import pytest

from core.ratelimit import SlidingWindowRateLimiter, client_ip_from_headers


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_hundred_admitted_then_rejected():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=100, window_seconds=60, clock=clock)
    for _ in range(100):
        assert limiter.check("1.1.1.1").allowed
        clock.advance(0.1)

    rejected = limiter.check("1.1.1.1")
    assert not rejected.allowed
    assert rejected.retry_after > 0
    assert rejected.remaining == 0


def test_retry_after_counts_down_to_oldest_expiry():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
    limiter.check("ip")
    clock.advance(10)
    limiter.check("ip")
    clock.advance(5.5)
    assert limiter.check("ip").retry_after == 45  # ceil(60 - 15.5)


def test_admission_resumes_after_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60, clock=clock)
    for _ in range(3):
        limiter.check("ip")
    assert not limiter.check("ip").allowed
    clock.advance(60.01)
    assert limiter.check("ip").allowed


def test_rejections_are_not_recorded():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)
    limiter.check("ip")
    for _ in range(5):
        limiter.check("ip")
    clock.advance(10.5)
    assert limiter.check("ip").allowed


def test_ips_are_independent():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
    limiter.check("a")
    limiter.check("a")
    assert not limiter.check("a").allowed
    assert limiter.check("b").allowed
    assert limiter.remaining("b") == 1


def test_concurrent_checks_from_two_ips_do_not_interfere():
    limiter = SlidingWindowRateLimiter(max_requests=500, window_seconds=60)

    def hammer(ip: str):
        for _ in range(200):
            limiter.check(ip)

    threads = [threading.Thread(target=hammer, args=(ip,)) for ip in ("a", "b") for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert limiter.remaining("a") == 100
    assert limiter.remaining("b") == 100


def test_sweep_drops_idle_ips():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=60, clock=clock)
    limiter.check("old")
    clock.advance(30)
    limiter.check("fresh")
    clock.advance(31)
    assert limiter.sweep() == 1
    stats = limiter.get_stats()
    assert stats["totalIPs"] == 1
    assert stats["activeRequests"] == 1
    assert stats["windowMs"] == 60_000
    assert stats["maxRequests"] == 5


@pytest.mark.asyncio
async def test_background_sweeper_runs_and_stops():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=1, clock=clock)
    limiter.check("ip")
    clock.advance(2)

    limiter.start_sweeper(interval=0.01)
    assert limiter.sweeper_running
    await asyncio.sleep(0.05)
    assert limiter.get_stats()["totalIPs"] == 0

    await limiter.stop_sweeper()
    assert not limiter.sweeper_running


def test_client_ip_header_precedence():
    assert client_ip_from_headers({"X-Forwarded-For": "9.9.9.9, 10.0.0.1", "X-Real-IP": "8.8.8.8"}) == "9.9.9.9"
    assert client_ip_from_headers({"x-real-ip": "8.8.8.8", "cf-connecting-ip": "7.7.7.7"}) == "8.8.8.8"
    assert client_ip_from_headers({"CF-Connecting-IP": "7.7.7.7"}) == "7.7.7.7"
    assert client_ip_from_headers({}) == "unknown"
