"""
Upsell domain values

Plain immutable values for bundles, linked-product entries and cart lines,
plus the bundle invariants and the linked-product mutation functions.
Nothing here touches the database: the service layer loads rows into these
values, transforms them, and writes the result back in a single update.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from catalog_addon.core.exceptions import (
    CartInputError,
    DiscountConfigError,
    DuplicateLinkError,
    LinkNotFoundError,
    SelfLinkError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Largest quantity or money amount accepted on a cart line
MAX_CART_AMOUNT = Decimal("1e12")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ==================== Bundle values ====================

@dataclass(frozen=True)
class LinkedProductEntry:
    """One companion product within a bundle."""
    product_id: int
    order: int = 0
    is_active: bool = True
    added_at: Optional[datetime] = None
    # False when the catalog no longer knows this product
    resolved: bool = True

    def to_record(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "order": self.order,
            "is_active": self.is_active,
            "added_at": self.added_at.isoformat() if self.added_at else None,
        }

    @classmethod
    def from_record(
        cls,
        record: Mapping[str, Any],
        known_product_ids: Optional[Iterable[int]] = None,
    ) -> "LinkedProductEntry":
        added_at = record.get("added_at")
        if isinstance(added_at, str):
            added_at = datetime.fromisoformat(added_at)
        product_id = int(record["product_id"])
        resolved = True
        if known_product_ids is not None:
            resolved = product_id in known_product_ids
        return cls(
            product_id=product_id,
            order=int(record.get("order") or 0),
            is_active=bool(record.get("is_active", True)),
            added_at=added_at,
            resolved=resolved,
        )


@dataclass(frozen=True)
class UpsellBundle:
    """A main product, its ordered companion products and a discount rule."""
    id: Optional[int]
    main_product_id: int
    linked_products: Tuple[LinkedProductEntry, ...] = ()
    is_active: bool = True
    has_discount: bool = False
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: Decimal = ZERO
    version: int = 1

    @property
    def active_linked_products_count(self) -> int:
        return sum(1 for link in self.linked_products if link.is_active)

    @property
    def total_linked_products_count(self) -> int:
        return len(self.linked_products)

    def find_link(self, product_id: int) -> Optional[LinkedProductEntry]:
        return next((link for link in self.linked_products if link.product_id == product_id), None)

    def linked_records(self) -> List[Dict[str, Any]]:
        return [link.to_record() for link in self.linked_products]


# ==================== Discount configuration ====================

def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert a JSON number (or numeric string) to Decimal.

    Returns None for None. Raises ValueError for anything that is not a
    finite number.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}")
    else:
        raise ValueError(f"Not a number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def normalize_discount_config(
    has_discount: bool,
    discount_type: Any,
    discount_value: Any,
) -> Tuple[bool, DiscountType, Decimal]:
    """
    Validate a discount rule.

    Disabling the discount always clears its configuration back to
    percentage / 0, whatever was passed in.
    """
    if not has_discount:
        return False, DiscountType.PERCENTAGE, ZERO

    try:
        dtype = DiscountType(discount_type)
    except ValueError:
        raise DiscountConfigError(
            f"Invalid discount type: {discount_type!r}. Allowed: percentage, fixed",
            details={"discount_type": discount_type},
        )

    try:
        value = to_decimal(discount_value)
    except ValueError:
        value = None
    if value is None:
        raise DiscountConfigError(
            "Discount value must be a number",
            details={"discount_value": discount_value},
        )
    if value < 0:
        raise DiscountConfigError(
            "Discount value cannot be negative",
            details={"discount_value": str(value)},
        )
    if dtype is DiscountType.PERCENTAGE and value > HUNDRED:
        raise DiscountConfigError(
            "Percentage discount must be between 0 and 100",
            details={"discount_value": str(value)},
        )
    return True, dtype, value


def apply_discount_settings(
    bundle: UpsellBundle,
    has_discount: Optional[bool] = None,
    discount_type: Any = None,
    discount_value: Any = None,
) -> UpsellBundle:
    """Return a copy of the bundle with a (partially) updated discount rule."""
    has = bundle.has_discount if has_discount is None else has_discount
    dtype = bundle.discount_type if discount_type is None else discount_type
    value = bundle.discount_value if discount_value is None else discount_value

    has, dtype, value = normalize_discount_config(has, dtype, value)
    return replace(bundle, has_discount=has, discount_type=dtype, discount_value=value)


# ==================== Linked-product mutations ====================

def add_linked_product(
    bundle: UpsellBundle,
    product_id: int,
    order: int = 0,
    now: Optional[datetime] = None,
) -> UpsellBundle:
    if product_id == bundle.main_product_id:
        raise SelfLinkError(product_id)
    if bundle.find_link(product_id) is not None:
        raise DuplicateLinkError(product_id)

    entry = LinkedProductEntry(
        product_id=product_id,
        order=order,
        is_active=True,
        added_at=now or datetime.now(timezone.utc),
    )
    return replace(bundle, linked_products=bundle.linked_products + (entry,))


def remove_linked_product(bundle: UpsellBundle, product_id: int) -> UpsellBundle:
    """Drop the entry for product_id; absent ids are a no-op."""
    remaining = tuple(link for link in bundle.linked_products if link.product_id != product_id)
    if len(remaining) == len(bundle.linked_products):
        return bundle
    return replace(bundle, linked_products=remaining)


def reorder_linked_product(bundle: UpsellBundle, product_id: int, new_order: int) -> UpsellBundle:
    if bundle.find_link(product_id) is None:
        raise LinkNotFoundError(product_id)
    return replace(
        bundle,
        linked_products=tuple(
            replace(link, order=new_order) if link.product_id == product_id else link
            for link in bundle.linked_products
        ),
    )


def toggle_linked_product(bundle: UpsellBundle, product_id: int) -> UpsellBundle:
    if bundle.find_link(product_id) is None:
        raise LinkNotFoundError(product_id)
    return replace(
        bundle,
        linked_products=tuple(
            replace(link, is_active=not link.is_active) if link.product_id == product_id else link
            for link in bundle.linked_products
        ),
    )


def build_bundle(
    main_product_id: int,
    links: Iterable[Tuple[int, int]] = (),
    is_active: bool = True,
    has_discount: bool = False,
    discount_type: Any = DiscountType.PERCENTAGE,
    discount_value: Any = ZERO,
    now: Optional[datetime] = None,
) -> UpsellBundle:
    """
    Assemble a new bundle from (product_id, order) pairs.

    Goes through add_linked_product so creation rejects self-links and
    duplicates exactly like the add operation does.
    """
    has, dtype, value = normalize_discount_config(has_discount, discount_type, discount_value)
    bundle = UpsellBundle(
        id=None,
        main_product_id=main_product_id,
        is_active=is_active,
        has_discount=has,
        discount_type=dtype,
        discount_value=value,
    )
    for product_id, order in links:
        bundle = add_linked_product(bundle, product_id, order, now=now)
    return bundle


# ==================== Cart lines ====================

_ID_KEYS = ("productId", "product_id", "_id", "id")


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def resolve_product_id(raw: Mapping[str, Any]) -> Optional[int]:
    """Find the product id of a cart line from any of its identity fields."""
    for key in _ID_KEYS:
        product_id = _coerce_id(raw.get(key))
        if product_id is not None:
            return product_id

    product = raw.get("product")
    if isinstance(product, Mapping):
        for key in ("_id", "id"):
            product_id = _coerce_id(product.get(key))
            if product_id is not None:
                return product_id
    return _coerce_id(product)


def _bounded(amount: Optional[Decimal]) -> Optional[Decimal]:
    if amount is not None and not -MAX_CART_AMOUNT <= amount <= MAX_CART_AMOUNT:
        raise ValueError(f"Amount out of range: {amount}")
    return amount


def _non_negative_money(value: Any) -> Optional[Decimal]:
    amount = _bounded(to_decimal(value))
    if amount is not None and amount < 0:
        raise ValueError(f"Negative amount: {value!r}")
    return amount


@dataclass(frozen=True)
class CartLineItem:
    product_id: int
    quantity: Decimal = Decimal("1")
    price: Optional[Decimal] = None
    total: Optional[Decimal] = None
    product_info_price: Optional[Decimal] = None

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["CartLineItem"]:
        """
        Parse one cart line from request JSON.

        Returns None for lines that cannot be used (not an object, no
        resolvable product id, non-numeric, non-positive or oversized
        quantity, bad or oversized money values).
        """
        if not isinstance(raw, Mapping):
            return None

        product_id = resolve_product_id(raw)
        if product_id is None:
            return None

        product_info = raw.get("productInfo")
        if product_info is None:
            product_info = raw.get("product_info")

        try:
            quantity = _bounded(to_decimal(raw.get("quantity")))
            if quantity is None:
                quantity = Decimal("1")
            if quantity <= 0:
                raise ValueError(f"Non-positive quantity: {quantity}")
            price = _non_negative_money(raw.get("price"))
            total = _non_negative_money(raw.get("total"))
            info_price = None
            if isinstance(product_info, Mapping):
                info_price = _non_negative_money(product_info.get("price"))
        except ValueError as e:
            logger.debug(f"Dropping malformed cart line for product {product_id}: {e}")
            return None

        return cls(
            product_id=product_id,
            quantity=quantity,
            price=price,
            total=total,
            product_info_price=info_price,
        )


def parse_cart(cart_items: Any) -> Tuple[CartLineItem, ...]:
    """
    Parse the cart payload, dropping unusable lines.

    Only a missing payload or one that is not a list fails.
    """
    if cart_items is None:
        raise CartInputError("cartItems is required")
    if not isinstance(cart_items, (list, tuple)):
        raise CartInputError(
            "cartItems must be a list",
            details={"received_type": type(cart_items).__name__},
        )

    lines = []
    for raw in cart_items:
        line = CartLineItem.from_payload(raw)
        if line is not None:
            lines.append(line)

    dropped = len(cart_items) - len(lines)
    if dropped:
        logger.debug(f"Dropped {dropped} cart line(s) without a usable product id")
    return tuple(lines)


def index_cart_lines(lines: Sequence[CartLineItem]) -> Dict[int, CartLineItem]:
    """Map each product id to its first cart line; later duplicates are ignored."""
    indexed: Dict[int, CartLineItem] = {}
    for line in lines:
        indexed.setdefault(line.product_id, line)
    return indexed


# ==================== Discount results ====================

@dataclass(frozen=True)
class DiscountResult:
    bundle_id: Optional[int]
    main_product_id: int
    linked_product_ids: Tuple[int, ...]
    discount_type: DiscountType
    discount_value: Decimal
    linked_products_total: Decimal
    discount_amount: Decimal

    @property
    def product_count(self) -> int:
        return len(self.linked_product_ids)

    def to_summary(self) -> Dict[str, Any]:
        """Flattened projection for display."""
        return {
            "bundle_id": self.bundle_id,
            "main_product_id": self.main_product_id,
            "product_ids": list(self.linked_product_ids),
            "discount_type": self.discount_type.value,
            "discount_value": self.discount_value,
            "discount_amount": self.discount_amount,
        }


@dataclass(frozen=True)
class DiscountReport:
    applicable_discounts: Tuple[DiscountResult, ...] = ()

    @property
    def total_discount(self) -> Decimal:
        return sum((result.discount_amount for result in self.applicable_discounts), ZERO)

    @property
    def discounts(self) -> List[Dict[str, Any]]:
        return [result.to_summary() for result in self.applicable_discounts]
