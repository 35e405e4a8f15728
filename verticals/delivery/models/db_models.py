"""SQLAlchemy models for the delivery vertical.

DeliveryRuleRecord is the persisted form of a delivery rule. to_dict() is the
serialisation used by the admin API; to_rule() gives the matcher its
immutable DeliveryRule.
"""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, ShopMixin
from verticals.delivery.rules import WILDCARD, DeliveryRule


class DeliveryRuleRecord(ShopMixin, Base):
    """A shop's delivery rule."""

    __tablename__ = "delivery_rules"

    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_value: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    country_codes: Mapped[list[str]] = mapped_column(
        ARRAY(String(3)), nullable=False, default=lambda: [WILDCARD]
    )
    estimated_min_days: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_max_days: Mapped[int] = mapped_column(Integer, nullable=False)
    custom_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    rule_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "shop": self.shop,
            "target_type": self.target_type,
            "target_value": self.target_value,
            "country_codes": list(self.country_codes or []),
            "estimated_min_days": self.estimated_min_days,
            "estimated_max_days": self.estimated_max_days,
            "custom_message": self.custom_message,
            "rule_name": self.rule_name,
            "enabled": self.enabled,
            "is_default": self.is_default,
            "priority": self.priority,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_rule(self) -> DeliveryRule:
        data = self.to_dict()
        # An explicitly empty list means "no country"; from_dict treats None as wildcard.
        data["country_codes"] = list(self.country_codes) if self.country_codes is not None else None
        return DeliveryRule.from_dict(data)
