"""Request validation for the delivery-estimate endpoint.

Checks run in a fixed order and the first failure wins, so the storefront
always gets one specific message back.
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping

from verticals.delivery.errors import ValidationError
from verticals.delivery.estimates import DEFAULT_COUNTRY
from verticals.delivery.rules import ProductContext, parse_tags

# ASCII only.
_DIGITS = re.compile(r"[0-9]+")
_LETTERS = re.compile(r"[A-Za-z]+")


@dataclass(frozen=True)
class EstimateRequest:
    """Normalised query parameters."""

    product_id: str
    country: str
    tags: str | None = None
    variant_id: str | None = None
    shop: str | None = None


def _optional(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def validate_product_id(product_id: Any) -> str:
    if not isinstance(product_id, str) or not product_id.strip():
        raise ValidationError("Product ID is required and must be a non-empty string")
    product_id = product_id.strip()
    if not _DIGITS.fullmatch(product_id):
        raise ValidationError("Product ID must contain only numbers")
    return product_id


def validate_country(country: Any) -> str:
    if not isinstance(country, str) or not country.strip():
        raise ValidationError("Country is required and must be a non-empty string")
    country = country.strip()
    if not 2 <= len(country) <= 3:
        raise ValidationError("Country must be a valid 2-3 character country code")
    if not _LETTERS.fullmatch(country):
        raise ValidationError("Country code must contain only letters")
    return country.upper()


def validate_estimate_request(
    query: Mapping[str, Any],
    session_shop: str | None = None,
    default_country: str = DEFAULT_COUNTRY,
) -> EstimateRequest:
    """Validate raw query parameters.

    ``productId`` may also arrive as ``product_id`` (app proxy style) and
    ``variantId`` as ``variant_id``. A shop from the authenticated session
    wins over the ``shop`` query parameter.

    Raises ValidationError on the first failing check.
    """
    try:
        params = dict(query)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid request format: {exc}") from exc

    product_id = params.get("productId")
    if product_id is None:
        product_id = params.get("product_id")
    country = params.get("country")
    if country is None:
        country = default_country
    variant_id = params.get("variantId")
    if variant_id is None:
        variant_id = params.get("variant_id")

    return EstimateRequest(
        product_id=validate_product_id(product_id),
        country=validate_country(country),
        tags=_optional(params.get("tags")),
        variant_id=_optional(variant_id),
        shop=_optional(session_shop) or _optional(params.get("shop")),
    )


def _as_list(value: Any, field_name: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"Invalid request format: {field_name} must be a list")
    return value


def _tag_list(value: Any, field_name: str, max_tags: int | None = None) -> list[str]:
    """A list of strings or one comma-separated string."""
    if isinstance(value, str):
        return parse_tags(value, max_tags)
    items = _as_list(value, field_name)
    if not all(isinstance(t, str) for t in items):
        raise ValidationError(
            f"Invalid request format: {field_name} must be a list of strings"
        )
    tags = [t.strip() for t in items if t.strip()]
    return tags[:max_tags] if max_tags else tags


def _scalar_id(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(
            f"Invalid request format: {field_name} must be a string or number"
        )
    return str(value).strip() or None


def _variants(value: Any) -> list[dict[str, str | None]]:
    variants = []
    for item in _as_list(value, "variants"):
        if not isinstance(item, dict):
            raise ValidationError("Invalid request format: variants must be objects")
        variants.append({
            "id": _scalar_id(item.get("id"), "variant id"),
            "sku": _scalar_id(item.get("sku"), "variant sku"),
        })
    return variants


def _collections(value: Any) -> list[dict[str, Any]]:
    collections = []
    for item in _as_list(value, "collections"):
        if not isinstance(item, dict):
            raise ValidationError("Invalid request format: collections must be objects")
        collections.append({
            "id": _scalar_id(item.get("id"), "collection id"),
            "tags": _tag_list(item.get("tags"), "collection tags"),
        })
    return collections


def validate_match_payload(
    payload: Any,
    session_shop: str | None = None,
    default_country: str = DEFAULT_COUNTRY,
    max_tags: int | None = None,
) -> tuple[EstimateRequest, ProductContext]:
    """Validate a JSON body for the matched-rules listing.

    Same field checks as the query form, plus structured ``tags`` (list or
    comma-separated string), ``variants`` and ``collections``.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid request format: body must be a JSON object")

    tags = _tag_list(payload.get("tags"), "tags", max_tags)
    variants = _variants(payload.get("variants"))
    collections = _collections(payload.get("collections"))

    query = {
        k: payload[k]
        for k in ("productId", "product_id", "country", "variantId", "variant_id", "shop")
        if payload.get(k) is not None
    }
    # Numeric ids are common in JSON bodies.
    for key in ("productId", "product_id"):
        if isinstance(query.get(key), int) and not isinstance(query.get(key), bool):
            query[key] = str(query[key])

    request = validate_estimate_request(query, session_shop, default_country)
    product = ProductContext.build(
        request.product_id,
        tags=tags,
        variant_id=request.variant_id,
        variants=variants,
        collections=collections,
    )
    return request, product
