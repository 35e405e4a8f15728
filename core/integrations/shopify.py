"""
Shopify Admin GraphQL client.

Thin httpx wrapper for the few Admin API calls the app makes:
- Access-token auth header, sent only to *.myshopify.com hosts
- Transport errors, non-2xx and non-JSON responses raise ShopifyAdminError
- Top-level GraphQL ``errors`` and mutation ``userErrors`` raise ShopifyAdminError

No retries. Callers decide whether a failure matters.
"""
from __future__ import annotations
from typing import Any
import logging
import time

import httpx

from core.integrations.signatures import is_valid_shop_domain

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-10"


class ShopifyAdminError(Exception):
    """An Admin API call failed or returned errors."""

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ShopifyAdminClient:
    """GraphQL client for one shop.

    Usage::

        async with ShopifyAdminClient("acme.myshopify.com", token) as client:
            data = await client.graphql(QUERY, {"id": gid})
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not is_valid_shop_domain(shop):
            raise ShopifyAdminError(f"Refusing Admin API call to non-Shopify host {shop!r}")
        self.shop = shop
        self.api_version = api_version
        self._client = httpx.AsyncClient(
            base_url=f"https://{shop}/admin/api/{api_version}",
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ShopifyAdminClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a query or mutation and return its ``data``."""
        start = time.time()
        try:
            resp = await self._client.post(
                "/graphql.json", json={"query": query, "variables": variables or {}}
            )
        except httpx.HTTPError as exc:
            raise ShopifyAdminError(f"Shopify request failed: {exc}") from exc
        latency = (time.time() - start) * 1000

        if resp.status_code >= 400:
            raise ShopifyAdminError(
                f"Shopify returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ShopifyAdminError(
                f"Shopify returned a non-JSON body: {resp.text[:200]}"
            ) from exc
        if not isinstance(payload, dict):
            raise ShopifyAdminError("Shopify returned an unexpected GraphQL payload")
        if payload.get("errors"):
            raise ShopifyAdminError("GraphQL errors", errors=payload["errors"])

        logger.debug("Shopify GraphQL shop=%s latency_ms=%.1f", self.shop, latency)
        return payload.get("data") or {}

    async def set_metafields(self, metafields: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """``metafieldsSet`` mutation. Returns the saved metafields."""
        data = await self.graphql(METAFIELDS_SET_MUTATION, {"metafields": metafields})
        result = data.get("metafieldsSet") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise ShopifyAdminError(
                "; ".join(e.get("message", "unknown error") for e in user_errors),
                errors=user_errors,
            )
        return result.get("metafields") or []


METAFIELDS_SET_MUTATION = """
mutation SetMetafields($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields {
      id
      namespace
      key
      value
    }
    userErrors {
      field
      message
    }
  }
}
"""
