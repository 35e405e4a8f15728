"""Delivery rule matching: pure functions.

Given a product context and a customer country, select the delivery rules
of one shop that apply, ordered by precedence. Builds on the rules engine
pattern: every rule is checked by two independent predicates (country and
target) that each return a RuleResult, so a match is explainable.

No database, no I/O. The resolver fetches rules and hands them in.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from patterns.rules_engine import RuleResult, RuleSetResult, evaluate_rules

WILDCARD = "*"


# ---------------------------------------------------------------------------
# Target types
# ---------------------------------------------------------------------------

class TargetType(str, Enum):
    """Dimension a rule matches against."""

    PRODUCT = "product"
    SKU = "sku"
    TAG = "tag"
    COLLECTION = "collection"
    COLLECTION_TAG = "collection_tag"
    VARIANT = "variant"
    COUNTRY = "country"
    DEFAULT = "default"
    UNKNOWN = "unknown"  # anything the store holds that we do not recognise

    @classmethod
    def _missing_(cls, value: object) -> "TargetType":
        return cls.UNKNOWN


# ---------------------------------------------------------------------------
# Match inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeliveryRule:
    """A stored targeting condition plus an estimated delivery window.

    Read-only at match time. Build from store rows with ``from_dict``.
    """

    id: str
    shop: str
    target_type: TargetType
    target_value: str
    country_codes: frozenset[str] = frozenset({WILDCARD})
    estimated_min_days: int = 0
    estimated_max_days: int = 0
    custom_message: str | None = None
    rule_name: str | None = None
    enabled: bool = True
    is_default: bool = False
    priority: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.rule_name or self.target_value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliveryRule":
        """Build from a store row. Tolerates the loose shapes rows come in."""
        codes = data.get("country_codes")
        if codes is None:
            codes = [WILDCARD]
        elif isinstance(codes, str):
            codes = codes.split(",")
        return cls(
            id=str(data["id"]),
            shop=data.get("shop") or "",
            target_type=TargetType(data.get("target_type")),
            target_value=str(data.get("target_value") or ""),
            country_codes=frozenset(
                c.strip().upper() for c in codes if c and c.strip()
            ),
            estimated_min_days=int(data.get("estimated_min_days") or 0),
            estimated_max_days=int(data.get("estimated_max_days") or 0),
            custom_message=data.get("custom_message"),
            rule_name=data.get("rule_name"),
            enabled=bool(data.get("enabled", True)),
            is_default=bool(data.get("is_default", False)),
            priority=int(data.get("priority") or 0),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


@dataclass(frozen=True)
class VariantRef:
    id: str
    sku: str | None = None


@dataclass(frozen=True)
class CollectionRef:
    id: str
    tags: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ProductContext:
    """What the storefront tells us about the product being viewed."""

    id: str
    tags: frozenset[str] = frozenset()
    variants: tuple[VariantRef, ...] = ()
    collections: tuple[CollectionRef, ...] = ()

    @classmethod
    def build(
        cls,
        product_id: str,
        tags: Iterable[str] | None = None,
        variant_id: str | None = None,
        variants: Iterable[dict[str, Any]] | None = None,
        collections: Iterable[dict[str, Any]] | None = None,
    ) -> "ProductContext":
        """Assemble a context from loose request data; missing parts are empty."""
        variant_refs = [
            VariantRef(id=str(v.get("id") or ""), sku=v.get("sku"))
            for v in (variants or [])
            if v.get("id") is not None or v.get("sku")
        ]
        if variant_id and all(v.id != variant_id for v in variant_refs):
            variant_refs.insert(0, VariantRef(id=variant_id))
        collection_refs = [
            CollectionRef(id=str(c.get("id")), tags=frozenset(c.get("tags") or ()))
            for c in (collections or [])
            if c.get("id") is not None
        ]
        return cls(
            id=str(product_id),
            tags=frozenset(t for t in (tags or ()) if t),
            variants=tuple(variant_refs),
            collections=tuple(collection_refs),
        )


def parse_tags(raw: str | None, limit: int | None = None) -> list[str]:
    """Split a comma-separated tag string. Case is preserved."""
    if not raw:
        return []
    tags = [t.strip() for t in raw.split(",")]
    tags = [t for t in tags if t]
    return tags[:limit] if limit else tags


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def check_country(rule: DeliveryRule, country: str) -> RuleResult:
    """True if the rule ships to ``country`` (already normalised upper-case)."""
    passed = WILDCARD in rule.country_codes or country in rule.country_codes
    return RuleResult(
        passed=passed,
        rule_name="country",
        message=(
            f"Ships to {country}" if passed else f"{country} not in rule countries"
        ),
        details={"country": country, "country_codes": sorted(rule.country_codes)},
    )


def _never(rule: DeliveryRule, product: ProductContext, country: str) -> bool:
    return False


_TARGET_PREDICATES: dict[TargetType, Callable[[DeliveryRule, ProductContext, str], bool]] = {
    TargetType.PRODUCT: lambda r, p, c: r.target_value == p.id,
    TargetType.SKU: lambda r, p, c: any(v.sku == r.target_value for v in p.variants),
    TargetType.TAG: lambda r, p, c: r.target_value in p.tags,
    TargetType.COLLECTION: lambda r, p, c: any(
        col.id == r.target_value for col in p.collections
    ),
    TargetType.COLLECTION_TAG: lambda r, p, c: any(
        r.target_value in col.tags for col in p.collections
    ),
    TargetType.VARIANT: lambda r, p, c: any(v.id == r.target_value for v in p.variants),
    TargetType.COUNTRY: lambda r, p, c: r.target_value.upper() == c,
    # Default rules are only reached through the default-rule lookup.
    TargetType.DEFAULT: _never,
    TargetType.UNKNOWN: _never,
}


def check_target(rule: DeliveryRule, product: ProductContext, country: str) -> RuleResult:
    """Dispatch on the rule's target type. Wildcards match any known type."""
    target_type = rule.target_type
    if target_type in (TargetType.DEFAULT, TargetType.UNKNOWN):
        passed = False
    elif rule.target_value == WILDCARD:
        passed = True
    else:
        passed = _TARGET_PREDICATES[target_type](rule, product, country)

    return RuleResult(
        passed=passed,
        rule_name="target",
        message=(
            f"{target_type.value} matches {rule.target_value!r}"
            if passed
            else f"{target_type.value} does not match {rule.target_value!r}"
        ),
        details={"target_type": target_type.value, "target_value": rule.target_value},
    )


def explain_rule(rule: DeliveryRule, product: ProductContext, country: str) -> RuleSetResult:
    """Evaluate both predicates for one rule."""
    return evaluate_rules(
        check_country(rule, country),
        check_target(rule, product, country),
    )


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def rule_applies(rule: DeliveryRule, product: ProductContext, country: str) -> bool:
    if not rule.enabled or rule.is_default:
        return False
    return explain_rule(rule, product, country).all_passed


def match(
    rules: Sequence[DeliveryRule], product: ProductContext, country: str
) -> list[DeliveryRule]:
    """All applicable rules, priority ascending.

    ``sorted`` is stable, so rules with equal priority keep the order the
    store returned them in.
    """
    matched = [r for r in rules if rule_applies(r, product, country)]
    return sorted(matched, key=lambda r: r.priority)


def best_match(
    rules: Sequence[DeliveryRule], product: ProductContext, country: str
) -> DeliveryRule | None:
    matched = match(rules, product, country)
    return matched[0] if matched else None


def pick_default_rule(rules: Iterable[DeliveryRule]) -> DeliveryRule | None:
    """Latest-updated enabled default rule of a shop, or None."""
    candidates = [r for r in rules if r.enabled and r.is_default]
    if not candidates:
        return None

    def recency(rule: DeliveryRule) -> float:
        # Epoch seconds, so naive and aware stamps can be compared.
        stamp = rule.updated_at or rule.created_at
        return stamp.timestamp() if stamp else float("-inf")

    return max(candidates, key=recency)
