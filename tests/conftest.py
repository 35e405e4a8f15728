"""Shared fixtures: an in-memory rule store and a rule factory."""
import asyncio
from datetime import datetime, timezone

import pytest

from verticals.delivery.rules import DeliveryRule, TargetType, pick_default_rule

SHOP = "acme.myshopify.com"


def make_rule(
    rule_id: str = "r1",
    target_type: str = "product",
    target_value: str = "123",
    country_codes=("*",),
    min_days: int = 3,
    max_days: int = 5,
    **kwargs,
) -> DeliveryRule:
    return DeliveryRule(
        id=rule_id,
        shop=kwargs.pop("shop", SHOP),
        target_type=TargetType(target_type),
        target_value=target_value,
        country_codes=frozenset(country_codes),
        estimated_min_days=min_days,
        estimated_max_days=max_days,
        **kwargs,
    )


class InMemoryRuleStore:
    """Rule store double. Counts calls; can fail or stall on demand."""

    def __init__(self, rules=None, fail_with: Exception | None = None, delay: float = 0.0):
        self.rules = list(rules or [])
        self.fail_with = fail_with
        self.delay = delay
        self.list_calls = 0
        self.default_calls = 0

    async def list_enabled_rules(self, shop: str) -> list[DeliveryRule]:
        self.list_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return [r for r in self.rules if r.shop == shop and r.enabled]

    async def get_default_rule(self, shop: str) -> DeliveryRule | None:
        self.default_calls += 1
        return pick_default_rule(r for r in self.rules if r.shop == shop)


@pytest.fixture
def rule_store():
    return InMemoryRuleStore()


@pytest.fixture
def now():
    return datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
