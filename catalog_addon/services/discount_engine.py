"""
Upsell Discount Engine

Pure cart-discount computation over already-loaded bundles:

- matcher: is every active linked product of a bundle present in the cart?
- calculator: how much does a satisfied bundle take off its linked lines?
- aggregator: run every candidate bundle against one cart.

No database access here. Catalog prices are supplied through a PriceLookup,
which the service layer fills in one batch query before calling in.
"""
import logging
from decimal import Decimal
from typing import Any, Collection, Iterable, Mapping, Optional, Protocol, Sequence, Tuple, Union

from catalog_addon.domain.upsell import (
    HUNDRED,
    ZERO,
    CartLineItem,
    DiscountReport,
    DiscountResult,
    DiscountType,
    UpsellBundle,
    index_cart_lines,
    parse_cart,
)

logger = logging.getLogger(__name__)


# ==================== Price lookup ====================

class PriceLookup(Protocol):
    def min_price(self, product_id: int) -> Optional[Decimal]:
        ...


class MappingPriceLookup:
    """PriceLookup backed by a {product_id: min_price} dict."""

    def __init__(self, prices: Optional[Mapping[int, Optional[Decimal]]] = None):
        self._prices = dict(prices or {})

    def min_price(self, product_id: int) -> Optional[Decimal]:
        return self._prices.get(product_id)


NO_PRICES = MappingPriceLookup()


# ==================== Matcher ====================

def active_linked_product_ids(bundle: UpsellBundle) -> Tuple[int, ...]:
    """Ids of active entries that still resolve to a catalog product, in entry order."""
    return tuple(
        link.product_id
        for link in bundle.linked_products
        if link.is_active and link.resolved
    )


def is_satisfied(bundle: UpsellBundle, cart_product_ids: Collection[int]) -> bool:
    """
    True when every active linked product is in the cart.

    A bundle with no active linked products is never satisfied. The main
    product does not need to be in the cart.
    """
    required = active_linked_product_ids(bundle)
    if not required:
        return False
    return all(product_id in cart_product_ids for product_id in required)


# ==================== Calculator ====================

def line_contribution(line: CartLineItem, price_lookup: PriceLookup = NO_PRICES) -> Decimal:
    """
    Money a cart line contributes to a bundle total.

    An explicit line total wins. Otherwise the unit price is taken from the
    line, then its product info, then the catalog minimum price, and is
    multiplied by the quantity.
    """
    if line.total is not None:
        return line.total

    unit_price = line.price
    if unit_price is None:
        unit_price = line.product_info_price
    if unit_price is None:
        unit_price = price_lookup.min_price(line.product_id)
    if unit_price is None:
        unit_price = ZERO
    return unit_price * line.quantity


def compute_discount(
    bundle: UpsellBundle,
    cart_lines: Union[Mapping[int, CartLineItem], Sequence[CartLineItem]],
    linked_product_ids: Iterable[int],
    price_lookup: PriceLookup = NO_PRICES,
) -> Tuple[Decimal, Decimal]:
    """
    Return (linked_products_total, discount_amount) for a satisfied bundle.

    Fixed discounts are capped at the linked total so a bundle never takes
    off more than its linked products cost.
    """
    if not isinstance(cart_lines, Mapping):
        cart_lines = index_cart_lines(cart_lines)

    linked_total = ZERO
    for product_id in linked_product_ids:
        line = cart_lines.get(product_id)
        if line is not None:
            linked_total += line_contribution(line, price_lookup)

    if bundle.discount_type is DiscountType.PERCENTAGE:
        amount = linked_total * bundle.discount_value / HUNDRED
    else:
        amount = min(bundle.discount_value, linked_total)

    return linked_total, amount


# ==================== Aggregator ====================

def is_candidate(bundle: UpsellBundle) -> bool:
    """Active, discount enabled with a positive value, at least one active entry."""
    return (
        bundle.is_active
        and bundle.has_discount
        and bundle.discount_value > ZERO
        and bundle.active_linked_products_count > 0
    )


def evaluate_bundles(
    cart_lines: Sequence[CartLineItem],
    bundles: Iterable[UpsellBundle],
    price_lookup: PriceLookup = NO_PRICES,
) -> DiscountReport:
    """
    Evaluate bundles against parsed cart lines.

    Bundles are visited in id order. Discounts stack: several bundles may
    share linked products and each applies in full.
    """
    indexed = index_cart_lines(cart_lines)
    if not indexed:
        return DiscountReport()

    results = []
    for bundle in sorted(bundles, key=lambda b: (b.id is None, b.id or 0)):
        if not is_candidate(bundle):
            continue

        linked_ids = active_linked_product_ids(bundle)
        if not is_satisfied(bundle, indexed):
            logger.debug(f"Bundle {bundle.id} not satisfied by cart")
            continue

        linked_total, amount = compute_discount(bundle, indexed, linked_ids, price_lookup)
        if amount <= ZERO:
            logger.debug(f"Bundle {bundle.id} matched with zero discount; skipped")
            continue

        results.append(DiscountResult(
            bundle_id=bundle.id,
            main_product_id=bundle.main_product_id,
            linked_product_ids=linked_ids,
            discount_type=bundle.discount_type,
            discount_value=bundle.discount_value,
            linked_products_total=linked_total,
            discount_amount=amount,
        ))

    report = DiscountReport(applicable_discounts=tuple(results))
    if results:
        logger.info(
            f"Applied {len(results)} upsell discount(s) totalling {report.total_discount}"
        )
    return report


def calculate_cart_discounts(
    cart_items: Any,
    bundles: Iterable[UpsellBundle],
    price_lookup: PriceLookup = NO_PRICES,
) -> DiscountReport:
    """
    Parse a raw cart payload and evaluate bundles against it.

    Raises CartInputError if cart_items is missing or not a list. Malformed
    lines are dropped; an empty cart gives an empty report.
    """
    return evaluate_bundles(parse_cart(cart_items), bundles, price_lookup)
