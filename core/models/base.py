"""Base model and mixins for all SQLAlchemy models.

Provides:
- Base: Declarative base class for all models
- ShopMixin: Adds shop, UUID primary key, and timestamps

Every shop-owned row carries the shop's myshopify domain. The column is
indexed since every query filters on it.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all models."""
    pass


class ShopMixin:
    """Per-shop isolation and standard audit columns.

    Adds:
    - id: UUID primary key (auto-generated)
    - shop: Indexed shop domain (e.g. ``acme.myshopify.com``)
    - created_at: Timestamp set on insert
    - updated_at: Timestamp updated on every change
    """

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    shop: Mapped[str] = mapped_column(
        String(255),
        index=True,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
