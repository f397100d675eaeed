"""
Product model (Catalog Reference)

Read-only from the upsell module's point of view: identity, publication
status and price range. Product CRUD lives in the main catalog service.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, Numeric, Index
from sqlalchemy.sql import func

from catalog_addon.core.database import Base


class ProductStatus(str, PyEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    OUT_OF_STOCK = "out_of_stock"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False, index=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    short_description = Column(Text)
    featured_image = Column(String(500))

    # Price range across variants - Numeric(12,2) for money
    price_min = Column(Numeric(12, 2), nullable=True)
    price_max = Column(Numeric(12, 2), nullable=True)

    status = Column(String(20), nullable=False, default=ProductStatus.DRAFT.value)
    is_active = Column(Boolean, nullable=False, default=True)
    tags = Column(JSON, default=list)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index('ix_products_status_active', 'status', 'is_active'),
    )

    @property
    def is_linkable(self) -> bool:
        """Only active, published products can be offered as upsells."""
        return bool(self.is_active) and self.status == ProductStatus.PUBLISHED.value
