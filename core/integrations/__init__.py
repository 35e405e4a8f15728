"""
Core Integrations: Shopify.

- ShopifyAdminClient: Admin GraphQL over httpx (metafields)
- App proxy request signatures (HMAC-SHA256)
"""
from core.integrations.shopify import (
    DEFAULT_API_VERSION,
    METAFIELDS_SET_MUTATION,
    ShopifyAdminClient,
    ShopifyAdminError,
)
from core.integrations.signatures import (
    SIGNATURE_PARAM,
    sign_app_proxy_params,
    verify_app_proxy_signature,
)

__all__ = [
    # Admin API
    "DEFAULT_API_VERSION",
    "METAFIELDS_SET_MUTATION",
    "ShopifyAdminClient",
    "ShopifyAdminError",
    # Signatures
    "SIGNATURE_PARAM",
    "sign_app_proxy_params",
    "verify_app_proxy_signature",
]
