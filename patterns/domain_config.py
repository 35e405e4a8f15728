"""Dataclass-based domain configuration pattern.

The delivery-estimate service defines its thresholds, limits, and fallback
policy as frozen dataclasses. This gives you:
- Type safety (IDE autocompletion, mypy checking)
- Default values (sensible out-of-the-box)
- Immutability (frozen=True prevents accidental mutation)
- Easy overrides (from env vars or per-deployment settings)
"""

import os
from dataclasses import dataclass, field
from enum import Enum


class FallbackMode(str, Enum):
    """What to answer when no rule and no shop default exist."""

    GENERIC = "generic"  # fabricated estimate from FallbackConfig
    NO_RULES = "no_rules"  # noRulesFound flag, storefront hides the block


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitConfig:
    """Per-IP sliding window admission."""

    window_seconds: float = 60.0
    max_requests: int = 100
    sweep_interval_seconds: float = 300.0  # 5 minutes


@dataclass(frozen=True)
class FallbackConfig:
    """Estimate served when nothing in the rule store applies."""

    mode: FallbackMode = FallbackMode.GENERIC
    min_days: int = 5
    max_days: int = 7
    rule_name: str = "Standard Shipping"
    default_rule_name: str = "Default Shipping"


@dataclass(frozen=True)
class StoreConfig:
    """Rule store access."""

    fetch_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class HealthConfig:
    """Thresholds for the health endpoint."""

    degraded_error_rate: float = 5.0  # percent
    unhealthy_error_rate: float = 10.0  # percent
    slow_average_ms: float = 5000.0
    recent_error_limit: int = 10
    summary_every: int = 100  # requests between logged summaries


# ---------------------------------------------------------------------------
# Top-level domain config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeliveryConfig:
    """Complete configuration for the delivery-estimate vertical.

    Usage::

        config = DeliveryConfig.from_env()
        limiter = SlidingWindowRateLimiter(
            max_requests=config.rate_limit.max_requests,
            window_seconds=config.rate_limit.window_seconds,
        )
    """

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    health: HealthConfig = field(default_factory=HealthConfig)

    default_country: str = "US"
    max_tags: int = 50

    @classmethod
    def default(cls) -> "DeliveryConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_env(
        cls, prefix: str = "ESTIMATE_", environ: dict[str, str] | None = None
    ) -> "DeliveryConfig":
        """Create config from environment variables.

        Example: ESTIMATE_RATE_LIMIT_MAX_REQUESTS=200 ESTIMATE_FALLBACK_MODE=no_rules

        Raises ValueError for values that do not parse.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(f"{prefix}{name}", "").strip()
            return value or None

        rate_overrides = {}
        window = get("RATE_LIMIT_WINDOW_SECONDS")
        if window:
            rate_overrides["window_seconds"] = float(window)
        max_requests = get("RATE_LIMIT_MAX_REQUESTS")
        if max_requests:
            rate_overrides["max_requests"] = int(max_requests)
        sweep = get("RATE_LIMIT_SWEEP_SECONDS")
        if sweep:
            rate_overrides["sweep_interval_seconds"] = float(sweep)

        fallback_overrides = {}
        mode = get("FALLBACK_MODE")
        if mode:
            fallback_overrides["mode"] = FallbackMode(mode.lower())
        min_days = get("FALLBACK_MIN_DAYS")
        if min_days:
            fallback_overrides["min_days"] = int(min_days)
        max_days = get("FALLBACK_MAX_DAYS")
        if max_days:
            fallback_overrides["max_days"] = int(max_days)

        store_overrides = {}
        timeout = get("FETCH_TIMEOUT_SECONDS")
        if timeout:
            store_overrides["fetch_timeout_seconds"] = float(timeout)

        overrides = {}
        country = get("DEFAULT_COUNTRY")
        if country:
            overrides["default_country"] = country.upper()

        config = cls(
            rate_limit=RateLimitConfig(**rate_overrides),
            fallback=FallbackConfig(**fallback_overrides),
            store=StoreConfig(**store_overrides),
            **overrides,
        )
        if config.fallback.min_days > config.fallback.max_days:
            raise ValueError("Fallback min_days must not exceed max_days")
        return config
