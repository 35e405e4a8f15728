"""Delivery rule repository: async database access scoped to one shop.

Extends BaseRepository with the two reads the estimate resolver needs
(enabled rules in store order, the shop's default rule) and keeps at most
one ``is_default`` rule per shop on writes.
"""

from typing import Any
from uuid import UUID

from fastapi import Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from patterns.repository import BaseRepository
from verticals.delivery.models.db_models import DeliveryRuleRecord
from verticals.delivery.rules import DeliveryRule, pick_default_rule


class InvalidRuleUpdate(ValueError):
    """A partial update would leave the rule inconsistent."""


# ---------------------------------------------------------------------------
# Delivery rule repository
# ---------------------------------------------------------------------------

class DeliveryRuleRepository(BaseRepository[DeliveryRuleRecord]):
    """Rule CRUD plus the resolver's read side."""

    model = DeliveryRuleRecord

    def _ordering(self) -> tuple:
        # Deterministic store order: the matcher's priority sort is stable.
        return (
            DeliveryRuleRecord.priority,
            DeliveryRuleRecord.created_at,
            DeliveryRuleRecord.id,
        )

    # -- Resolver reads --

    async def list_enabled_rules(self, shop: str) -> list[DeliveryRule]:
        """Enabled rules of a shop, ordered by (priority, created_at, id)."""
        stmt = (
            select(DeliveryRuleRecord)
            .where(
                DeliveryRuleRecord.shop == shop,
                DeliveryRuleRecord.enabled.is_(True),
            )
            .order_by(*self._ordering())
        )
        result = await self.session.execute(stmt)
        return [row.to_rule() for row in result.scalars().all()]

    async def get_default_rule(self, shop: str) -> DeliveryRule | None:
        """The shop's enabled default rule; the latest updated wins."""
        stmt = select(DeliveryRuleRecord).where(
            DeliveryRuleRecord.shop == shop,
            DeliveryRuleRecord.enabled.is_(True),
            DeliveryRuleRecord.is_default.is_(True),
        )
        result = await self.session.execute(stmt)
        return pick_default_rule(row.to_rule() for row in result.scalars().all())

    # -- Writes --

    async def _clear_defaults(self, shop: str, keep: UUID | None = None) -> None:
        stmt = update(DeliveryRuleRecord).where(
            DeliveryRuleRecord.shop == shop,
            DeliveryRuleRecord.is_default.is_(True),
        )
        if keep is not None:
            stmt = stmt.where(DeliveryRuleRecord.id != keep)
        await self.session.execute(stmt.values(is_default=False))

    async def create(self, shop: str, data: dict[str, Any]) -> dict:
        """Create a rule. A new default rule replaces the shop's previous one."""
        if data.get("is_default"):
            await self._clear_defaults(shop)
        return await super().create(shop, data)

    async def update(
        self, item_id: str | UUID, shop: str, data: dict[str, Any]
    ) -> dict | None:
        """Partial update. Raises InvalidRuleUpdate if min would exceed max."""
        item = await self._load(item_id, shop)
        if not item:
            return None

        low = data.get("estimated_min_days", item.estimated_min_days)
        high = data.get("estimated_max_days", item.estimated_max_days)
        if low is not None and high is not None and low > high:
            raise InvalidRuleUpdate(
                "estimated_min_days must not exceed estimated_max_days"
            )

        if data.get("is_default"):
            await self._clear_defaults(shop, keep=item.id)
        return await super().update(item.id, shop, data)


# ---------------------------------------------------------------------------
# FastAPI dependency factories
# ---------------------------------------------------------------------------

def get_rule_repository(
    session: AsyncSession = Depends(get_session),
) -> DeliveryRuleRepository:
    """FastAPI dependency for DeliveryRuleRepository."""
    return DeliveryRuleRepository(session)


def get_rule_store(
    session: AsyncSession = Depends(get_session),
) -> DeliveryRuleRepository:
    """The rule store handed to the estimate resolver."""
    return DeliveryRuleRepository(session)
