"""
Upsell API Routes

Admin management of upsell bundles and their linked products, plus the two
public storefront endpoints (cart discount calculation and the bundle shown
on a product page).
"""
import logging
from math import ceil
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_addon.api.deps import CurrentUser, get_current_admin
from catalog_addon.core.config import settings
from catalog_addon.core.database import get_db
from catalog_addon.core.rate_limit import limiter
from catalog_addon.domain.upsell import DiscountReport, LinkedProductEntry
from catalog_addon.models.product import Product
from catalog_addon.models.upsell import UpsellBundle as UpsellBundleRecord
from catalog_addon.schemas.upsell import (
    CartDiscountRequest,
    CartDiscountResponse,
    DiscountResultResponse,
    DiscountSummary,
    LinkedProductAdd,
    LinkedProductOrderUpdate,
    LinkedProductRef,
    LinkedProductResponse,
    PaginatedProductList,
    PaginatedUpsellList,
    Pagination,
    PriceRange,
    ProductSummary,
    UpsellCreate,
    UpsellResponse,
    UpsellUpdate,
)
from catalog_addon.services.upsell_service import UpsellService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upsells", tags=["upsells"])


# ==================== Helper Functions ====================

def product_to_summary(product: Optional[Product]) -> Optional[ProductSummary]:
    if product is None:
        return None
    return ProductSummary(
        id=product.id,
        title=product.title,
        slug=product.slug,
        short_description=product.short_description,
        featured_image=product.featured_image,
        price_range=PriceRange(min=product.price_min, max=product.price_max),
        status=product.status,
        is_active=bool(product.is_active),
    )


def upsell_to_response(
    record: UpsellBundleRecord,
    products: Dict[int, Product],
    storefront: bool = False,
) -> UpsellResponse:
    """
    Convert an upsell row to its response schema.

    With storefront=True only active entries whose product can still be
    sold are included.
    """
    bundle = UpsellService.to_domain(record)

    entries: Iterable[LinkedProductEntry] = bundle.linked_products
    if storefront:
        entries = [
            link for link in entries
            if link.is_active
            and link.product_id in products
            and products[link.product_id].is_linkable
        ]

    linked = [
        LinkedProductResponse(
            product_id=link.product_id,
            product=product_to_summary(products.get(link.product_id)),
            order=link.order,
            is_active=link.is_active,
            added_at=link.added_at,
        )
        for link in entries
    ]

    return UpsellResponse(
        id=record.id,
        main_product_id=record.main_product_id,
        main_product=product_to_summary(products.get(record.main_product_id)),
        linked_products=linked,
        is_active=bundle.is_active,
        has_discount=bundle.has_discount,
        discount_type=bundle.discount_type.value,
        discount_value=bundle.discount_value,
        active_linked_products_count=bundle.active_linked_products_count,
        total_linked_products_count=bundle.total_linked_products_count,
        version=bundle.version,
        created_by=record.created_by,
        updated_by=record.updated_by,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def render_upsells(
    db: AsyncSession,
    records: List[UpsellBundleRecord],
    storefront: bool = False,
) -> List[UpsellResponse]:
    """Hydrate product summaries for several rows with one catalog query."""
    products = await UpsellService.load_products(db, UpsellService.referenced_product_ids(records))
    return [upsell_to_response(record, products, storefront=storefront) for record in records]


async def render_upsell(db: AsyncSession, record: UpsellBundleRecord, storefront: bool = False) -> UpsellResponse:
    responses = await render_upsells(db, [record], storefront=storefront)
    return responses[0]


def report_to_response(report: DiscountReport) -> CartDiscountResponse:
    return CartDiscountResponse(
        applicable_discounts=[
            DiscountResultResponse(
                bundle_id=result.bundle_id,
                main_product_id=result.main_product_id,
                linked_product_ids=list(result.linked_product_ids),
                discount_type=result.discount_type.value,
                discount_value=result.discount_value,
                linked_products_total=result.linked_products_total,
                discount_amount=result.discount_amount,
                product_count=result.product_count,
            )
            for result in report.applicable_discounts
        ],
        total_discount=report.total_discount,
        discounts=[DiscountSummary(**summary) for summary in report.discounts],
    )


def paginate(page: int, limit: int, total: int) -> Pagination:
    return Pagination(
        page=page,
        limit=limit,
        total=total,
        pages=ceil(total / limit) if total > 0 else 0,
    )


# ==================== Public Routes ====================

@router.post("/calculate-discount", response_model=CartDiscountResponse)
@limiter.limit(settings.RATE_LIMIT_CHECKOUT)
async def calculate_discount(
    request: Request,
    payload: CartDiscountRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Discounts earned by the cart.

    Lines without a usable product id are ignored; a missing or non-list
    cartItems is a 400.
    """
    report = await UpsellService.calculate_cart_discounts(db, payload.cart_items)
    return report_to_response(report)


@router.get("/public/main-product/{product_id}", response_model=UpsellResponse)
async def get_public_upsell_by_main_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Storefront view of the bundle for a product page."""
    record = await UpsellService.get_by_main_product(db, product_id)
    return await render_upsell(db, record, storefront=True)


# ==================== Admin Lookup Routes ====================

@router.get("/main-product/{product_id}", response_model=UpsellResponse)
async def get_upsell_by_main_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    record = await UpsellService.get_by_main_product(db, product_id)
    return await render_upsell(db, record)


@router.get("/linked-product/{product_id}", response_model=List[UpsellResponse])
async def get_upsells_by_linked_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    records = await UpsellService.get_by_linked_product(db, product_id)
    return await render_upsells(db, records)


@router.get("/search/products", response_model=PaginatedProductList)
async def search_products_for_linking(
    q: Optional[str] = Query(None, max_length=200, description="Search in title/description"),
    exclude_id: Optional[int] = Query(None, alias="excludeId", description="Product to leave out (usually the main product)"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    """Published, active products that can be linked."""
    products, total = await UpsellService.search_products_for_linking(
        db, search=q, exclude_id=exclude_id, page=page, limit=limit
    )
    return PaginatedProductList(
        items=[product_to_summary(p) for p in products],
        pagination=paginate(page, limit, total),
    )


# ==================== Admin CRUD Routes ====================

@router.get("/", response_model=PaginatedUpsellList)
async def list_upsells(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page"),
    is_active: Optional[bool] = Query(None, alias="isActive", description="Filter by active flag"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    """List upsells, newest first."""
    records, total = await UpsellService.list_upsells(db, page=page, limit=limit, is_active=is_active)
    return PaginatedUpsellList(
        items=await render_upsells(db, records),
        pagination=paginate(page, limit, total),
    )


@router.post("/", response_model=UpsellResponse, status_code=status.HTTP_201_CREATED)
async def create_upsell(
    data: UpsellCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    record = await UpsellService.create_upsell(db, data, current_user.id)
    logger.info(f"Admin {current_user.id} created upsell {record.id}")
    return await render_upsell(db, record)


@router.get("/{upsell_id}", response_model=UpsellResponse)
async def get_upsell(
    upsell_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    record = await UpsellService.get_or_404(db, upsell_id)
    return await render_upsell(db, record)


@router.put("/{upsell_id}", response_model=UpsellResponse)
async def update_upsell(
    upsell_id: int,
    data: UpsellUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    """Update the active flag and discount settings. Disabling the discount clears it."""
    record = await UpsellService.update_upsell(db, upsell_id, data, current_user.id)
    return await render_upsell(db, record)


@router.delete("/{upsell_id}")
async def delete_upsell(
    upsell_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    await UpsellService.delete_upsell(db, upsell_id, current_user.id)
    return {"success": True, "message": "Upsell deleted successfully"}


# ==================== Linked Product Routes ====================

@router.post("/{upsell_id}/linked-products", response_model=UpsellResponse)
async def add_linked_product(
    upsell_id: int,
    data: LinkedProductAdd,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    record = await UpsellService.add_linked_product(
        db, upsell_id, data.product_id, data.order, current_user.id
    )
    return await render_upsell(db, record)


@router.delete("/{upsell_id}/linked-products", response_model=UpsellResponse)
async def remove_linked_product(
    upsell_id: int,
    data: LinkedProductRef,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    record = await UpsellService.remove_linked_product(db, upsell_id, data.product_id, current_user.id)
    return await render_upsell(db, record)


@router.put("/{upsell_id}/linked-products/order", response_model=UpsellResponse)
async def update_linked_product_order(
    upsell_id: int,
    data: LinkedProductOrderUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    record = await UpsellService.update_linked_product_order(
        db, upsell_id, data.product_id, data.order, current_user.id
    )
    return await render_upsell(db, record)


@router.put("/{upsell_id}/linked-products/toggle", response_model=UpsellResponse)
async def toggle_linked_product_status(
    upsell_id: int,
    data: LinkedProductRef,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_admin),
):
    record = await UpsellService.toggle_linked_product_status(db, upsell_id, data.product_id, current_user.id)
    return await render_upsell(db, record)
