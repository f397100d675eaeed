from catalog_addon.domain.upsell import (
    CartLineItem,
    DiscountReport,
    DiscountResult,
    DiscountType,
    LinkedProductEntry,
    UpsellBundle,
    add_linked_product,
    apply_discount_settings,
    build_bundle,
    index_cart_lines,
    parse_cart,
    remove_linked_product,
    reorder_linked_product,
    toggle_linked_product,
)

__all__ = [
    "CartLineItem",
    "DiscountReport",
    "DiscountResult",
    "DiscountType",
    "LinkedProductEntry",
    "UpsellBundle",
    "add_linked_product",
    "apply_discount_settings",
    "build_bundle",
    "index_cart_lines",
    "parse_cart",
    "remove_linked_product",
    "reorder_linked_product",
    "toggle_linked_product",
]
