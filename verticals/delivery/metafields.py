"""Product metafield sync for product-targeted rules.

When a rule targets one product, the rule id is written to the product's
``delivery_rules.rule_id`` metafield so themes can read it without calling
the app. ``metafieldsSet`` upserts, so create and update are one call.
"""

import logging
from typing import Any, Callable

import httpx

from core.integrations.shopify import (
    DEFAULT_API_VERSION,
    ShopifyAdminClient,
    ShopifyAdminError,
)
from verticals.delivery.rules import WILDCARD, TargetType

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "delivery_rules"
METAFIELD_KEY = "rule_id"
METAFIELD_TYPE = "single_line_text_field"


def product_gid(product_id: str) -> str:
    """Numeric id → Admin API global id. Already-global ids pass through."""
    product_id = str(product_id)
    if product_id.startswith("gid://"):
        return product_id
    return f"gid://shopify/Product/{product_id}"


async def attach_rule_metafield(
    client: ShopifyAdminClient, product_id: str, rule_id: str
) -> dict[str, Any]:
    """Write ``rule_id`` to the product metafield. Raises ShopifyAdminError."""
    saved = await client.set_metafields([{
        "ownerId": product_gid(product_id),
        "namespace": METAFIELD_NAMESPACE,
        "key": METAFIELD_KEY,
        "value": str(rule_id),
        "type": METAFIELD_TYPE,
    }])
    return saved[0] if saved else {}


class MetafieldSync:
    """Syncs rules to product metafields when an Admin token is configured."""

    def __init__(
        self,
        access_token: str | None,
        api_version: str = DEFAULT_API_VERSION,
        client_factory: Callable[[str], ShopifyAdminClient] | None = None,
    ):
        self.access_token = access_token
        self.api_version = api_version
        self._client_factory = client_factory or self._default_client

    def _default_client(self, shop: str) -> ShopifyAdminClient:
        return ShopifyAdminClient(shop, self.access_token or "", self.api_version)

    @property
    def enabled(self) -> bool:
        return bool(self.access_token)

    @staticmethod
    def applies_to(rule: dict[str, Any]) -> bool:
        return (
            rule.get("target_type") == TargetType.PRODUCT.value
            and bool(rule.get("target_value"))
            and rule.get("target_value") != WILDCARD
        )

    async def sync_rule(self, shop: str, rule: dict[str, Any]) -> bool:
        """Attach the rule to its product. True on success.

        Failures are logged and reported as False; the rule itself is
        already saved.
        """
        if not self.enabled or not self.applies_to(rule):
            return False
        try:
            async with self._client_factory(shop) as client:
                await attach_rule_metafield(client, rule["target_value"], rule["id"])
        except (ShopifyAdminError, httpx.HTTPError) as exc:
            logger.error(
                "Metafield sync failed shop=%s rule_id=%s product_id=%s error=%s",
                shop, rule["id"], rule["target_value"], exc,
            )
            return False
        logger.info(
            "Metafield synced shop=%s rule_id=%s product_id=%s",
            shop, rule["id"], rule["target_value"],
        )
        return True
