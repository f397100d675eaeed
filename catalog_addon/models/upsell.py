"""
Upsell Bundle Model

One row per bundle. The linked-product collection is stored inline as a JSON
list so that every linked-product mutation is a single record-level write,
guarded by the `version` column (optimistic concurrency).

linked_products element shape:
    {"product_id": int, "order": int, "is_active": bool, "added_at": iso8601}
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Numeric, ForeignKey, Index

from catalog_addon.core.database import Base


class UpsellBundle(Base):
    __tablename__ = "upsell_bundles"

    id = Column(Integer, primary_key=True, index=True)

    # One bundle per main product is enforced by the service at creation time
    main_product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    linked_products = Column(JSON, nullable=False, default=lambda: [])

    is_active = Column(Boolean, nullable=False, default=True)

    # Discount configuration
    has_discount = Column(Boolean, nullable=False, default=False)
    discount_type = Column(String(20), nullable=False, default="percentage")  # percentage, fixed
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)

    # Optimistic concurrency counter, bumped on every write
    version = Column(Integer, nullable=False, default=1)

    # Audit (user ids come from the auth service; no local users table)
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('ix_upsell_bundles_main_active', 'main_product_id', 'is_active'),
        Index('ix_upsell_bundles_discount', 'is_active', 'has_discount'),
    )
