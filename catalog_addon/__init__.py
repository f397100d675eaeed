"""Catalog add-on backend: upsell bundles and storefront extras."""

__version__ = "1.0.0"
