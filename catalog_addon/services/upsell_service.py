"""
Upsell Service

Bundle CRUD, linked-product management, catalog lookups and the cart
discount entry point.

Every linked-product change follows the same path: load the row, convert it
to an immutable UpsellBundle, apply the pure mutation, then write the result
back with one UPDATE guarded by the row version. A version mismatch raises
ConcurrentModificationError and nothing is written.
"""
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import String, cast, select, func, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_addon.core.exceptions import (
    BundleNotFoundError,
    ConcurrentModificationError,
    DuplicateBundleError,
    ProductNotFoundError,
)
from catalog_addon.domain.upsell import (
    DiscountReport,
    DiscountType,
    LinkedProductEntry,
    UpsellBundle,
    add_linked_product,
    apply_discount_settings,
    build_bundle,
    parse_cart,
    remove_linked_product,
    reorder_linked_product,
    toggle_linked_product,
    to_decimal,
)
from catalog_addon.models.product import Product, ProductStatus
from catalog_addon.models.upsell import UpsellBundle as UpsellBundleRecord
from catalog_addon.schemas.upsell import UpsellCreate, UpsellUpdate
from catalog_addon.services import discount_engine

logger = logging.getLogger(__name__)


class UpsellService:
    """Service for upsell bundle operations."""

    # ==================== Conversion ====================

    @staticmethod
    def to_domain(
        record: UpsellBundleRecord,
        known_product_ids: Optional[Iterable[int]] = None,
    ) -> UpsellBundle:
        """
        Convert a bundle row to its domain value.

        When known_product_ids is given, entries whose product is not in it
        are marked unresolved and take no part in discount matching.
        """
        if known_product_ids is not None:
            known_product_ids = set(known_product_ids)
        return UpsellBundle(
            id=record.id,
            main_product_id=record.main_product_id,
            linked_products=tuple(
                LinkedProductEntry.from_record(entry, known_product_ids)
                for entry in (record.linked_products or [])
            ),
            is_active=bool(record.is_active),
            has_discount=bool(record.has_discount),
            discount_type=DiscountType(record.discount_type or DiscountType.PERCENTAGE.value),
            discount_value=to_decimal(record.discount_value) or Decimal("0"),
            version=record.version or 1,
        )

    @staticmethod
    def referenced_product_ids(records: Iterable[UpsellBundleRecord]) -> List[int]:
        """Main and linked product ids referenced by the given rows."""
        ids = set()
        for record in records:
            ids.add(record.main_product_id)
            for entry in record.linked_products or []:
                ids.add(int(entry["product_id"]))
        return sorted(ids)

    # ==================== Catalog Reference ====================

    @staticmethod
    async def load_products(db: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        result = await db.execute(select(Product).where(Product.id.in_(ids)))
        return {product.id: product for product in result.scalars().all()}

    @staticmethod
    async def resolve_product_prices(
        db: AsyncSession,
        product_ids: Iterable[int],
    ) -> Dict[int, Optional[Decimal]]:
        """Catalog minimum price per product, in one query."""
        ids = list(set(product_ids))
        if not ids:
            return {}
        result = await db.execute(
            select(Product.id, Product.price_min).where(Product.id.in_(ids))
        )
        return {
            product_id: to_decimal(price_min)
            for product_id, price_min in result.all()
        }

    @staticmethod
    async def get_linkable_product(db: AsyncSession, product_id: int) -> Product:
        """Product that may be offered as an upsell (exists, active, published)."""
        result = await db.execute(select(Product).where(Product.id == product_id))
        product = result.scalar_one_or_none()
        if not product or not product.is_linkable:
            raise ProductNotFoundError(
                "Linked product not found or not available",
                details={"product_id": product_id},
            )
        return product

    @staticmethod
    async def search_products_for_linking(
        db: AsyncSession,
        search: Optional[str] = None,
        exclude_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Product], int]:
        """
        Active, published products an admin can link, newest first.

        Returns tuple of (products, total_count).
        """
        filters = [
            Product.is_active == True,
            Product.status == ProductStatus.PUBLISHED.value,
        ]
        if exclude_id is not None:
            filters.append(Product.id != exclude_id)
        if search:
            filters.append(or_(
                Product.title.ilike(f"%{search}%"),
                Product.short_description.ilike(f"%{search}%"),
                cast(Product.tags, String).ilike(f"%{search}%"),
            ))

        total_result = await db.execute(select(func.count(Product.id)).where(*filters))
        total = total_result.scalar() or 0

        query = (
            select(Product)
            .where(*filters)
            .order_by(Product.created_at.desc(), Product.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all()), total

    # ==================== Bundle reads ====================

    @staticmethod
    async def get_by_id(db: AsyncSession, upsell_id: int) -> Optional[UpsellBundleRecord]:
        result = await db.execute(
            select(UpsellBundleRecord).where(UpsellBundleRecord.id == upsell_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_404(db: AsyncSession, upsell_id: int) -> UpsellBundleRecord:
        record = await UpsellService.get_by_id(db, upsell_id)
        if not record:
            raise BundleNotFoundError(upsell_id)
        return record

    @staticmethod
    async def list_upsells(
        db: AsyncSession,
        page: int = 1,
        limit: int = 10,
        is_active: Optional[bool] = None,
    ) -> Tuple[List[UpsellBundleRecord], int]:
        """
        List bundles, newest first.

        Returns tuple of (bundles, total_count).
        """
        filters = []
        if is_active is not None:
            filters.append(UpsellBundleRecord.is_active == is_active)

        total_result = await db.execute(
            select(func.count(UpsellBundleRecord.id)).where(*filters)
        )
        total = total_result.scalar() or 0

        query = (
            select(UpsellBundleRecord)
            .where(*filters)
            .order_by(UpsellBundleRecord.created_at.desc(), UpsellBundleRecord.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all()), total

    @staticmethod
    async def get_by_main_product(db: AsyncSession, product_id: int) -> UpsellBundleRecord:
        """Active bundle whose main product is product_id."""
        result = await db.execute(
            select(UpsellBundleRecord)
            .where(
                UpsellBundleRecord.main_product_id == product_id,
                UpsellBundleRecord.is_active == True,
            )
            .order_by(UpsellBundleRecord.id)
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise BundleNotFoundError(message="No upsell found for this product")
        return record

    @staticmethod
    async def get_by_linked_product(db: AsyncSession, product_id: int) -> List[UpsellBundleRecord]:
        """
        Active bundles that list product_id among their linked products.

        The text match on the JSON column narrows the rows in SQL; the exact
        id comparison happens on the decoded entries.
        """
        result = await db.execute(
            select(UpsellBundleRecord)
            .where(
                UpsellBundleRecord.is_active == True,
                cast(UpsellBundleRecord.linked_products, String).like(f"%{product_id}%"),
            )
            .order_by(UpsellBundleRecord.id)
        )
        records = [
            record for record in result.scalars().all()
            if any(int(entry["product_id"]) == product_id for entry in record.linked_products or [])
        ]
        if not records:
            raise BundleNotFoundError(message="No upsells found for this linked product")
        return records

    @staticmethod
    async def get_existing_for_main_product(
        db: AsyncSession,
        product_id: int,
    ) -> Optional[UpsellBundleRecord]:
        """Any bundle (active or not) for the main product."""
        result = await db.execute(
            select(UpsellBundleRecord)
            .where(UpsellBundleRecord.main_product_id == product_id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ==================== Bundle writes ====================

    @staticmethod
    async def create_upsell(
        db: AsyncSession,
        data: UpsellCreate,
        user_id: Optional[int],
    ) -> UpsellBundleRecord:
        """
        Create a bundle for a main product.

        Self-links, duplicate links and bad discount settings are rejected
        before the catalog is consulted.
        """
        bundle = build_bundle(
            main_product_id=data.main_product_id,
            links=[(link.product_id, link.order) for link in data.linked_products],
            is_active=data.is_active,
            has_discount=data.has_discount,
            discount_type=data.discount_type,
            discount_value=data.discount_value,
        )

        main_products = await UpsellService.load_products(db, [bundle.main_product_id])
        if bundle.main_product_id not in main_products:
            raise ProductNotFoundError(
                "Main product not found",
                details={"product_id": bundle.main_product_id},
            )

        if await UpsellService.get_existing_for_main_product(db, bundle.main_product_id):
            raise DuplicateBundleError(bundle.main_product_id)

        linked_ids = [link.product_id for link in bundle.linked_products]
        linked_products = await UpsellService.load_products(db, linked_ids)
        unavailable = [
            product_id for product_id in linked_ids
            if product_id not in linked_products or not linked_products[product_id].is_linkable
        ]
        if unavailable:
            raise ProductNotFoundError(
                "One or more linked products not found or not available",
                details={"product_ids": unavailable},
            )

        record = UpsellBundleRecord(
            main_product_id=bundle.main_product_id,
            linked_products=bundle.linked_records(),
            is_active=bundle.is_active,
            has_discount=bundle.has_discount,
            discount_type=bundle.discount_type.value,
            discount_value=bundle.discount_value,
            version=1,
            created_by=user_id,
            updated_by=user_id,
        )
        db.add(record)
        await db.commit()
        await db.refresh(record)

        logger.info(
            f"Created upsell {record.id} for product {record.main_product_id} "
            f"with {len(linked_ids)} linked product(s) by user {user_id}"
        )
        return record

    @staticmethod
    async def update_upsell(
        db: AsyncSession,
        upsell_id: int,
        data: UpsellUpdate,
        user_id: Optional[int],
    ) -> UpsellBundleRecord:
        """Partial update of the active flag and discount settings."""
        record = await UpsellService.get_or_404(db, upsell_id)
        bundle = UpsellService.to_domain(record)

        update_data = data.model_dump(exclude_unset=True)
        updated = apply_discount_settings(
            bundle,
            has_discount=update_data.get("has_discount"),
            discount_type=update_data.get("discount_type"),
            discount_value=update_data.get("discount_value"),
        )
        if update_data.get("is_active") is not None:
            updated = replace(updated, is_active=update_data["is_active"])

        record = await UpsellService._save(db, record, updated, user_id)
        logger.info(f"Updated upsell {upsell_id} by user {user_id}")
        return record

    @staticmethod
    async def delete_upsell(db: AsyncSession, upsell_id: int, user_id: Optional[int]) -> None:
        """Hard delete."""
        record = await UpsellService.get_or_404(db, upsell_id)
        await db.delete(record)
        await db.commit()
        logger.info(f"Deleted upsell {upsell_id} by user {user_id}")

    @staticmethod
    async def add_linked_product(
        db: AsyncSession,
        upsell_id: int,
        product_id: int,
        order: int,
        user_id: Optional[int],
    ) -> UpsellBundleRecord:
        record = await UpsellService.get_or_404(db, upsell_id)
        # Self-link and duplicates are reported before product availability
        updated = add_linked_product(UpsellService.to_domain(record), product_id, order)
        await UpsellService.get_linkable_product(db, product_id)

        record = await UpsellService._save(db, record, updated, user_id)
        logger.info(f"User {user_id} added product {product_id} to upsell {upsell_id}")
        return record

    @staticmethod
    async def remove_linked_product(
        db: AsyncSession,
        upsell_id: int,
        product_id: int,
        user_id: Optional[int],
    ) -> UpsellBundleRecord:
        record = await UpsellService.get_or_404(db, upsell_id)
        bundle = UpsellService.to_domain(record)
        updated = remove_linked_product(bundle, product_id)
        if updated is bundle:
            logger.debug(f"Product {product_id} not linked to upsell {upsell_id}; nothing to remove")
            return record

        record = await UpsellService._save(db, record, updated, user_id)
        logger.info(f"User {user_id} removed product {product_id} from upsell {upsell_id}")
        return record

    @staticmethod
    async def update_linked_product_order(
        db: AsyncSession,
        upsell_id: int,
        product_id: int,
        order: int,
        user_id: Optional[int],
    ) -> UpsellBundleRecord:
        record = await UpsellService.get_or_404(db, upsell_id)
        updated = reorder_linked_product(UpsellService.to_domain(record), product_id, order)

        record = await UpsellService._save(db, record, updated, user_id)
        logger.info(f"User {user_id} set order {order} for product {product_id} in upsell {upsell_id}")
        return record

    @staticmethod
    async def toggle_linked_product_status(
        db: AsyncSession,
        upsell_id: int,
        product_id: int,
        user_id: Optional[int],
    ) -> UpsellBundleRecord:
        record = await UpsellService.get_or_404(db, upsell_id)
        updated = toggle_linked_product(UpsellService.to_domain(record), product_id)

        record = await UpsellService._save(db, record, updated, user_id)
        logger.info(f"User {user_id} toggled product {product_id} in upsell {upsell_id}")
        return record

    @staticmethod
    async def _save(
        db: AsyncSession,
        record: UpsellBundleRecord,
        bundle: UpsellBundle,
        user_id: Optional[int],
    ) -> UpsellBundleRecord:
        """Write the bundle back only if the row still has the version it was read at."""
        # rollback expires the instance; read the id while it is still loaded
        record_id = record.id
        result = await db.execute(
            update(UpsellBundleRecord)
            .where(
                UpsellBundleRecord.id == record_id,
                UpsellBundleRecord.version == bundle.version,
            )
            .values(
                linked_products=bundle.linked_records(),
                is_active=bundle.is_active,
                has_discount=bundle.has_discount,
                discount_type=bundle.discount_type.value,
                discount_value=bundle.discount_value,
                version=bundle.version + 1,
                updated_by=user_id,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            logger.warning(
                f"Upsell {record_id} changed since version {bundle.version}; write rejected"
            )
            raise ConcurrentModificationError(record_id, bundle.version)

        await db.commit()
        await db.refresh(record)
        return record

    # ==================== Discounts ====================

    @staticmethod
    async def get_active_discount_bundles(db: AsyncSession) -> List[UpsellBundle]:
        """Active bundles with a positive discount, in id order, entries resolved against the catalog."""
        result = await db.execute(
            select(UpsellBundleRecord)
            .where(
                UpsellBundleRecord.is_active == True,
                UpsellBundleRecord.has_discount == True,
                UpsellBundleRecord.discount_value > 0,
            )
            .order_by(UpsellBundleRecord.id)
        )
        records = list(result.scalars().all())
        if not records:
            return []

        known = await UpsellService.load_products(db, UpsellService.referenced_product_ids(records))
        return [UpsellService.to_domain(record, known.keys()) for record in records]

    @staticmethod
    async def calculate_cart_discounts(db: AsyncSession, cart_items: Any) -> DiscountReport:
        """
        Discounts earned by a cart.

        Raises CartInputError when cart_items is missing or not a list.
        """
        lines = parse_cart(cart_items)
        if not lines:
            return DiscountReport()

        bundles = await UpsellService.get_active_discount_bundles(db)
        if not bundles:
            return DiscountReport()

        # Only lines without an explicit price need the catalog
        unpriced = [
            line.product_id for line in lines
            if line.total is None and line.price is None and line.product_info_price is None
        ]
        prices = await UpsellService.resolve_product_prices(db, unpriced)

        return discount_engine.evaluate_bundles(
            lines,
            bundles,
            discount_engine.MappingPriceLookup(prices),
        )
