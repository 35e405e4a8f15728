"""Test estimate request validation."""
import pytest

from verticals.delivery.errors import ValidationError
from verticals.delivery.validation import (
    validate_estimate_request,
    validate_match_payload,
)


def _error(query, **kwargs) -> str:
    with pytest.raises(ValidationError) as exc_info:
        validate_estimate_request(query, **kwargs)
    assert exc_info.value.status_code == 400
    return exc_info.value.message


def test_valid_request_is_normalised():
    request = validate_estimate_request({
        "productId": " 123 ",
        "country": " ca ",
        "tags": " a,b ",
        "variantId": " 9 ",
        "shop": " acme.myshopify.com ",
    })
    assert request.product_id == "123"
    assert request.country == "CA"
    assert request.tags == "a,b"
    assert request.variant_id == "9"
    assert request.shop == "acme.myshopify.com"


def test_optional_fields_default_to_none_and_country_to_us():
    request = validate_estimate_request({"productId": "123"})
    assert request.country == "US"
    assert request.tags is None
    assert request.variant_id is None
    assert request.shop is None


def test_product_id_alias():
    assert validate_estimate_request({"product_id": "55"}).product_id == "55"


def test_session_shop_wins_over_query():
    request = validate_estimate_request(
        {"productId": "1", "shop": "other.myshopify.com"},
        session_shop="acme.myshopify.com",
    )
    assert request.shop == "acme.myshopify.com"


def test_product_id_required():
    assert _error({}) == "Product ID is required and must be a non-empty string"
    assert _error({"productId": "   "}) == "Product ID is required and must be a non-empty string"


def test_product_id_numeric_only():
    assert _error({"productId": "abc123"}) == "Product ID must contain only numbers"


def test_country_checks_in_order():
    assert _error({"productId": "1", "country": ""}) == (
        "Country is required and must be a non-empty string"
    )
    assert _error({"productId": "1", "country": "U"}) == (
        "Country must be a valid 2-3 character country code"
    )
    assert _error({"productId": "1", "country": "US123"}) == (
        "Country must be a valid 2-3 character country code"
    )
    assert _error({"productId": "1", "country": "U1"}) == "Country code must contain only letters"


def test_first_failure_wins():
    assert _error({"productId": "x", "country": "1"}) == "Product ID must contain only numbers"


def test_unparseable_query():
    assert _error(42).startswith("Invalid request format:")


# ---------------------------------------------------------------------------
# Match payload
# ---------------------------------------------------------------------------

def test_match_payload_builds_product_context():
    request, product = validate_match_payload({
        "productId": 123,
        "country": "us",
        "tags": ["sale", " ", "bulky"],
        "variants": [{"id": 1, "sku": "A"}],
        "collections": [{"id": "c1", "tags": ["summer"]}],
    })
    assert request.product_id == "123"
    assert request.country == "US"
    assert product.tags == frozenset({"sale", "bulky"})
    assert product.variants[0].sku == "A"
    assert product.collections[0].tags == frozenset({"summer"})


def test_match_payload_accepts_csv_tags_and_caps_them():
    _, product = validate_match_payload({"productId": "1", "tags": "a,b,c"}, max_tags=2)
    assert product.tags == frozenset({"a", "b"})


def test_match_payload_rejects_non_objects():
    with pytest.raises(ValidationError, match="Invalid request format"):
        validate_match_payload(["productId", "1"])
    with pytest.raises(ValidationError, match="variants must be a list"):
        validate_match_payload({"productId": "1", "variants": "A"})


def test_collection_tags_string_is_split_not_exploded():
    _, product = validate_match_payload({
        "productId": "1",
        "collections": [{"id": "c1", "tags": "sale, summer"}],
    })
    assert product.collections[0].tags == frozenset({"sale", "summer"})


@pytest.mark.parametrize("payload", [
    {"productId": "1", "tags": [["x"]]},
    {"productId": "1", "tags": ["ok", 3]},
    {"productId": "1", "collections": [{"id": "c1", "tags": [["x"]]}]},
    {"productId": "1", "collections": [{"id": "c1", "tags": {"a": 1}}]},
    {"productId": "1", "collections": [{"id": ["c1"]}]},
    {"productId": "1", "variants": [{"id": 1, "sku": ["A"]}]},
    {"productId": "1", "variants": [{"id": {"n": 1}}]},
    {"productId": "1", "variants": [{"id": True}]},
    {"productId": "1", "collections": ["c1"]},
])
def test_match_payload_rejects_malformed_structures(payload):
    with pytest.raises(ValidationError, match="Invalid request format"):
        validate_match_payload(payload)


@pytest.mark.parametrize("product_id", ["١٢٣", "１２３", "12³"])
def test_product_id_rejects_non_ascii_digits(product_id):
    with pytest.raises(ValidationError, match="Product ID must contain only numbers"):
        validate_estimate_request({"productId": product_id, "country": "US"})
