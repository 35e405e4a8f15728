"""
Core Rate Limiting: in-process admission control.

- SlidingWindowRateLimiter: per-IP sliding window with periodic sweep
- client_ip_from_headers: proxy-aware client IP extraction
"""
from core.ratelimit.sliding_window import (
    CLIENT_IP_HEADERS,
    RateLimitResult,
    SlidingWindowRateLimiter,
    client_ip_from_headers,
)

__all__ = [
    "CLIENT_IP_HEADERS",
    "RateLimitResult",
    "SlidingWindowRateLimiter",
    "client_ip_from_headers",
]
