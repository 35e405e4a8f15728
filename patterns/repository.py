"""Async repository pattern for database access.

Provides a generic base repository with CRUD operations, per-shop isolation,
pagination, and FastAPI dependency injection. Verticals subclass this to
add domain-specific queries.

Example: DeliveryRuleRepository extending BaseRepository.
"""

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.models.base import Base

# ---------------------------------------------------------------------------
# Type variable for model classes
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)

_PROTECTED_COLUMNS = ("id", "shop", "created_at", "updated_at")


def _as_uuid(item_id: str | UUID) -> UUID | None:
    if isinstance(item_id, UUID):
        return item_id
    try:
        return UUID(str(item_id))
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class BaseRepository(Generic[ModelT]):
    """Generic async repository with CRUD + pagination + shop isolation.

    Subclass and set `model` to your SQLAlchemy model::

        class DeliveryRuleRepository(BaseRepository[DeliveryRuleRecord]):
            model = DeliveryRuleRecord

            async def list_for_target(self, shop: str, target_type: str):
                stmt = select(self.model).where(
                    self.model.shop == shop,
                    self.model.target_type == target_type,
                )
                result = await self.session.execute(stmt)
                return [r.to_dict() for r in result.scalars().all()]
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    def _ordering(self) -> tuple:
        """Default ORDER BY for list(). Subclasses override."""
        return (self.model.created_at, self.model.id)

    # -- List with pagination --

    async def list(
        self,
        shop: str,
        page: int = 1,
        limit: int = 50,
        filters: dict[str, Any] | None = None,
    ) -> tuple[list[dict], int]:
        """List items with pagination and optional filters.

        Returns (items, total_count).
        """
        stmt = select(self.model).where(self.model.shop == shop)
        count_stmt = select(func.count()).select_from(self.model).where(
            self.model.shop == shop
        )

        if filters:
            for col_name, value in filters.items():
                if hasattr(self.model, col_name) and value is not None:
                    stmt = stmt.where(getattr(self.model, col_name) == value)
                    count_stmt = count_stmt.where(getattr(self.model, col_name) == value)

        offset = (page - 1) * limit
        stmt = stmt.order_by(*self._ordering()).offset(offset).limit(limit)

        result = await self.session.execute(stmt)
        items = [row.to_dict() for row in result.scalars().all()]

        count_result = await self.session.execute(count_stmt)
        total = count_result.scalar() or 0

        return items, total

    # -- Get by ID --

    async def _load(self, item_id: str | UUID, shop: str) -> ModelT | None:
        key = _as_uuid(item_id)
        if key is None:
            return None
        stmt = select(self.model).where(
            self.model.id == key,
            self.model.shop == shop,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, item_id: str | UUID, shop: str) -> dict | None:
        """Get a single item by ID, scoped to the shop."""
        item = await self._load(item_id, shop)
        return item.to_dict() if item else None

    # -- Create --

    async def create(self, shop: str, data: dict[str, Any]) -> dict:
        """Create a new item."""
        item = self.model(shop=shop, **data)
        self.session.add(item)
        await self.session.flush()
        await self.session.refresh(item)
        return item.to_dict()

    # -- Update --

    async def update(
        self, item_id: str | UUID, shop: str, data: dict[str, Any]
    ) -> dict | None:
        """Update an existing item. Returns None if not found."""
        item = await self._load(item_id, shop)
        if not item:
            return None

        for key, value in data.items():
            if hasattr(item, key) and key not in _PROTECTED_COLUMNS:
                setattr(item, key, value)

        await self.session.flush()
        await self.session.refresh(item)
        return item.to_dict()

    # -- Delete --

    async def delete(self, item_id: str | UUID, shop: str) -> bool:
        """Delete an item. Returns True if deleted, False if not found."""
        item = await self._load(item_id, shop)
        if not item:
            return False

        await self.session.delete(item)
        await self.session.flush()
        return True
