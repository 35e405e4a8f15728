"""Test product metafield sync against a mocked Shopify Admin API."""
import json

import httpx
import pytest

from core.integrations.shopify import ShopifyAdminClient, ShopifyAdminError
from verticals.delivery.metafields import (
    MetafieldSync,
    attach_rule_metafield,
    product_gid,
)

SHOP = "acme.myshopify.com"


def _transport(response_data, calls, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, json=response_data)
    return httpx.MockTransport(handler)


def _ok(calls):
    return _transport(
        {"data": {"metafieldsSet": {
            "metafields": [{"id": "gid://shopify/Metafield/1", "value": "r-1"}],
            "userErrors": [],
        }}},
        calls,
    )


def test_product_gid():
    assert product_gid("123") == "gid://shopify/Product/123"
    assert product_gid("gid://shopify/Product/9") == "gid://shopify/Product/9"


@pytest.mark.asyncio
async def test_attach_sends_metafields_set():
    calls = []
    async with ShopifyAdminClient(SHOP, "tok", transport=_ok(calls)) as client:
        saved = await attach_rule_metafield(client, "123", "r-1")

    assert saved["value"] == "r-1"
    request = calls[0]
    assert request.url == httpx.URL(f"https://{SHOP}/admin/api/2024-10/graphql.json")
    assert request.headers["X-Shopify-Access-Token"] == "tok"
    metafield = json.loads(request.content)["variables"]["metafields"][0]
    assert metafield == {
        "ownerId": "gid://shopify/Product/123",
        "namespace": "delivery_rules",
        "key": "rule_id",
        "value": "r-1",
        "type": "single_line_text_field",
    }


@pytest.mark.asyncio
async def test_user_errors_raise():
    calls = []
    transport = _transport(
        {"data": {"metafieldsSet": {"metafields": [], "userErrors": [{"field": ["ownerId"], "message": "Owner not found"}]}}},
        calls,
    )
    async with ShopifyAdminClient(SHOP, "tok", transport=transport) as client:
        with pytest.raises(ShopifyAdminError, match="Owner not found"):
            await attach_rule_metafield(client, "123", "r-1")


@pytest.mark.asyncio
async def test_http_error_raises():
    calls = []
    async with ShopifyAdminClient(SHOP, "tok", transport=_transport({}, calls, status=401)) as client:
        with pytest.raises(ShopifyAdminError, match="HTTP 401"):
            await client.graphql("{ shop { name } }")


@pytest.mark.asyncio
async def test_sync_only_for_product_rules_with_token():
    calls = []

    def factory(shop):
        return ShopifyAdminClient(shop, "tok", transport=_ok(calls))

    sync = MetafieldSync("tok", client_factory=factory)
    assert await sync.sync_rule(SHOP, {"id": "r-1", "target_type": "product", "target_value": "123"})
    assert not await sync.sync_rule(SHOP, {"id": "r-2", "target_type": "tag", "target_value": "x"})
    assert not await sync.sync_rule(SHOP, {"id": "r-3", "target_type": "product", "target_value": "*"})
    assert len(calls) == 1

    disabled = MetafieldSync(None, client_factory=factory)
    assert not await disabled.sync_rule(SHOP, {"id": "r-1", "target_type": "product", "target_value": "123"})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_sync_failure_is_reported_not_raised():
    calls = []

    def factory(shop):
        return ShopifyAdminClient(shop, "tok", transport=_transport({"errors": [{"message": "Throttled"}]}, calls))

    sync = MetafieldSync("tok", client_factory=factory)
    assert await sync.sync_rule(SHOP, {"id": "r-1", "target_type": "product", "target_value": "123"}) is False


def test_client_refuses_non_shopify_host():
    with pytest.raises(ShopifyAdminError, match="non-Shopify host"):
        ShopifyAdminClient("attacker.example", "tok")


@pytest.mark.asyncio
async def test_sync_never_sends_token_to_foreign_host():
    calls = []

    def factory(shop):
        return ShopifyAdminClient(shop, "shpat_secret", transport=_ok(calls))

    sync = MetafieldSync("shpat_secret", client_factory=factory)
    rule = {"id": "r-1", "target_type": "product", "target_value": "123"}
    assert await sync.sync_rule("attacker.example", rule) is False
    assert calls == []


@pytest.mark.asyncio
async def test_non_json_body_raises_admin_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    async with ShopifyAdminClient(SHOP, "tok", transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ShopifyAdminError, match="non-JSON"):
            await client.graphql("{ shop { name } }")


@pytest.mark.asyncio
async def test_sync_non_json_body_is_reported_not_raised():
    def factory(shop):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="oops"))
        return ShopifyAdminClient(shop, "tok", transport=transport)

    sync = MetafieldSync("tok", client_factory=factory)
    assert await sync.sync_rule(SHOP, {"id": "r-1", "target_type": "product", "target_value": "123"}) is False
