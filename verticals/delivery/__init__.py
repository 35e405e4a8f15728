"""Delivery-estimate vertical.

Estimates shipping windows for product pages:
- Pure-function rule matcher with per-predicate explanations
- Resolver: rate limit, validation, matching, shop default, generic fallback
- SQLAlchemy rule store with per-shop isolation
- FastAPI router for the storefront, rule management and health
- Product metafield sync through the Shopify Admin API
"""
