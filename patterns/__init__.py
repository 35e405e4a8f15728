"""Reusable patterns shared by the service's verticals.

Each module is a self-contained pattern: rule results, the request state
machine, the shop-scoped repository layer, and domain configuration.
"""
