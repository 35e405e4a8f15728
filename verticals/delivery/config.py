"""Delivery vertical configuration.

Loads DeliveryConfig from ESTIMATE_* environment variables once at import.
"""

from patterns.domain_config import DeliveryConfig

config = DeliveryConfig.from_env()
