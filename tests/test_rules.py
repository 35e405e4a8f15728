"""Test delivery rule matching."""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_rule
from verticals.delivery.rules import (
    DeliveryRule,
    ProductContext,
    TargetType,
    best_match,
    check_country,
    explain_rule,
    match,
    parse_tags,
    pick_default_rule,
)


def _product(**kwargs):
    return ProductContext.build("123", **kwargs)


# ---------------------------------------------------------------------------
# Target predicates
# ---------------------------------------------------------------------------

def test_product_target_matches_id():
    rule = make_rule(target_type="product", target_value="123")
    assert best_match([rule], _product(), "US") == rule
    assert best_match([rule], ProductContext.build("999"), "US") is None


def test_sku_target_matches_any_variant_sku():
    rule = make_rule(target_type="sku", target_value="SKU-B")
    product = _product(variants=[{"id": "1", "sku": "SKU-A"}, {"id": "2", "sku": "SKU-B"}])
    assert match([rule], product, "US") == [rule]


def test_tag_target_is_case_sensitive():
    rule = make_rule(target_type="tag", target_value="Fragile")
    assert match([rule], _product(tags=["Fragile", "big"]), "US") == [rule]
    assert match([rule], _product(tags=["fragile"]), "US") == []


def test_collection_and_collection_tag_targets():
    by_id = make_rule("c1", target_type="collection", target_value="42")
    by_tag = make_rule("c2", target_type="collection_tag", target_value="sale")
    product = _product(collections=[{"id": 42, "tags": ["sale", "summer"]}])
    assert match([by_id, by_tag], product, "US") == [by_id, by_tag]


def test_variant_target_uses_request_variant_id():
    rule = make_rule(target_type="variant", target_value="777")
    assert match([rule], _product(variant_id="777"), "US") == [rule]
    assert match([rule], _product(variant_id="778"), "US") == []


def test_country_target_compares_request_country():
    rule = make_rule(target_type="country", target_value="US")
    assert match([rule], _product(), "US") == [rule]
    assert match([rule], _product(), "CA") == []


def test_missing_containers_never_match_or_raise():
    product = ProductContext.build("123")
    rules = [
        make_rule("a", target_type="sku", target_value="X"),
        make_rule("b", target_type="tag", target_value="X"),
        make_rule("c", target_type="collection", target_value="X"),
        make_rule("d", target_type="collection_tag", target_value="X"),
        make_rule("e", target_type="variant", target_value="X"),
    ]
    assert match(rules, product, "US") == []


def test_wildcard_target_and_country_match_everything():
    rule = make_rule(target_type="tag", target_value="*", country_codes=["*"])
    for product_id, country in [("1", "US"), ("55", "DE"), ("900", "JPN")]:
        assert best_match([rule], ProductContext.build(product_id), country) == rule


def test_unknown_target_type_never_matches():
    rule = DeliveryRule.from_dict({
        "id": 1, "shop": "s", "target_type": "brand", "target_value": "*",
        "estimated_min_days": 1, "estimated_max_days": 2,
    })
    assert rule.target_type == TargetType.UNKNOWN
    assert match([rule], _product(), "US") == []


def test_default_rules_are_not_targeted():
    rule = make_rule(target_type="product", target_value="*", is_default=True)
    default_type = make_rule("d", target_type="default", target_value="*")
    assert match([rule, default_type], _product(), "US") == []


def test_disabled_rules_are_skipped():
    rule = make_rule(enabled=False)
    assert match([rule], _product(), "US") == []


# ---------------------------------------------------------------------------
# Country predicate
# ---------------------------------------------------------------------------

def test_country_predicate():
    rule = make_rule(country_codes=["US", "CA"])
    assert check_country(rule, "CA").passed
    assert not check_country(rule, "DE").passed
    assert not check_country(make_rule(country_codes=[]), "US").passed


def test_explain_rule_reports_both_predicates():
    rule = make_rule(country_codes=["CA"])
    result = explain_rule(rule, _product(), "US")
    assert not result.all_passed
    assert [r.rule_name for r in result.failed] == ["country"]
    assert len(result.results) == 2


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def test_match_sorts_by_priority_ascending():
    low = make_rule("low", priority=10)
    high = make_rule("high", priority=1)
    matched = match([low, high], _product(), "US")
    assert [r.id for r in matched] == ["high", "low"]
    assert best_match([low, high], _product(), "US").priority <= low.priority


def test_equal_priority_keeps_input_order():
    rules = [make_rule(f"r{i}", priority=5) for i in range(5)]
    assert [r.id for r in match(rules, _product(), "US")] == ["r0", "r1", "r2", "r3", "r4"]
    assert [r.id for r in match(rules[::-1], _product(), "US")] == ["r4", "r3", "r2", "r1", "r0"]


def test_empty_rule_set():
    assert match([], _product(), "US") == []
    assert best_match([], _product(), "US") is None


# ---------------------------------------------------------------------------
# Defaults and parsing
# ---------------------------------------------------------------------------

def test_pick_default_rule_latest_updated_wins(now):
    older = make_rule("old", is_default=True, updated_at=now - timedelta(days=1))
    newer = make_rule("new", is_default=True, updated_at=now)
    disabled = make_rule("off", is_default=True, enabled=False, updated_at=now + timedelta(days=1))
    assert pick_default_rule([older, newer, disabled]).id == "new"
    assert pick_default_rule([make_rule()]) is None


def test_from_dict_normalises_store_rows():
    rule = DeliveryRule.from_dict({
        "id": 7,
        "shop": "acme.myshopify.com",
        "target_type": "tag",
        "target_value": "bulky",
        "country_codes": "us, ca",
        "estimated_min_days": "2",
        "estimated_max_days": 4,
        "priority": None,
        "updated_at": "2026-01-01T10:00:00Z",
    })
    assert rule.id == "7"
    assert rule.country_codes == frozenset({"US", "CA"})
    assert rule.estimated_min_days == 2
    assert rule.priority == 0
    assert rule.updated_at == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
    assert rule.display_name == "bulky"


def test_parse_tags():
    assert parse_tags(" a, b ,,c ") == ["a", "b", "c"]
    assert parse_tags(None) == []
    assert parse_tags("a,b,c", limit=2) == ["a", "b"]


@pytest.mark.parametrize("country_codes", [["*"], ["US"], ["US", "*"]])
def test_matching_rule_applies_for_us(country_codes):
    rule = make_rule(country_codes=country_codes)
    assert best_match([rule], _product(), "US") == rule
