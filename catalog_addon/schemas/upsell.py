"""
Pydantic Schemas for Upsell Bundles

Request/response schemas for the upsell endpoints. Field names are camelCase
on the wire; snake_case names are accepted on input too.

Discount rules (type, range, disable-clears-config) are checked by the
domain layer so they surface as INVALID_DISCOUNT_CONFIG errors.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Money is computed in Decimal and rendered as a JSON number
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== Requests ====================

class LinkedProductCreate(CamelModel):
    product_id: int = Field(..., gt=0, description="Product to offer with the main product")
    order: int = Field(default=0, description="Display order")


class UpsellCreate(CamelModel):
    """Schema for creating an upsell bundle."""
    main_product_id: int = Field(..., gt=0)
    linked_products: List[LinkedProductCreate] = Field(default_factory=list)
    is_active: bool = True
    has_discount: bool = False
    discount_type: str = "percentage"
    discount_value: Decimal = Decimal("0")


class UpsellUpdate(CamelModel):
    """Partial update; omitted fields keep their stored value."""
    is_active: Optional[bool] = None
    has_discount: Optional[bool] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None


class LinkedProductAdd(CamelModel):
    product_id: int = Field(..., gt=0)
    order: int = 0


class LinkedProductRef(CamelModel):
    product_id: int = Field(..., gt=0)


class LinkedProductOrderUpdate(CamelModel):
    product_id: int = Field(..., gt=0)
    order: int


class CartDiscountRequest(CamelModel):
    """
    Cart lines are kept as raw JSON; malformed lines are dropped by the
    discount engine rather than rejected here.
    """
    cart_items: Any = None


# ==================== Responses ====================

class PriceRange(CamelModel):
    min: Optional[Money] = None
    max: Optional[Money] = None


class ProductSummary(CamelModel):
    id: int
    title: str
    slug: str
    short_description: Optional[str] = None
    featured_image: Optional[str] = None
    price_range: PriceRange
    status: str
    is_active: bool


class LinkedProductResponse(CamelModel):
    product_id: int
    product: Optional[ProductSummary] = None
    order: int
    is_active: bool
    added_at: Optional[datetime] = None


class UpsellResponse(CamelModel):
    """Full bundle representation."""
    id: int
    main_product_id: int
    main_product: Optional[ProductSummary] = None
    linked_products: List[LinkedProductResponse] = []
    is_active: bool
    has_discount: bool
    discount_type: str
    discount_value: Money
    active_linked_products_count: int = 0
    total_linked_products_count: int = 0
    version: int
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class PaginatedUpsellList(CamelModel):
    items: List[UpsellResponse]
    pagination: Pagination


class PaginatedProductList(CamelModel):
    items: List[ProductSummary]
    pagination: Pagination


class DiscountResultResponse(CamelModel):
    bundle_id: Optional[int] = None
    main_product_id: int
    linked_product_ids: List[int]
    discount_type: str
    discount_value: Money
    linked_products_total: Money
    discount_amount: Money
    product_count: int


class DiscountSummary(CamelModel):
    bundle_id: Optional[int] = None
    main_product_id: int
    product_ids: List[int]
    discount_type: str
    discount_value: Money
    discount_amount: Money


class CartDiscountResponse(CamelModel):
    applicable_discounts: List[DiscountResultResponse]
    total_discount: Money
    discounts: List[DiscountSummary]


class UploadResponse(CamelModel):
    url: str
    key: str
    content_type: str
    size_bytes: int
