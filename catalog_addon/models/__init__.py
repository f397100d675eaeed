from catalog_addon.models.product import Product, ProductStatus
from catalog_addon.models.upsell import UpsellBundle

__all__ = ["Product", "ProductStatus", "UpsellBundle"]
