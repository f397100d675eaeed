"""
Catalog Add-on Exception Hierarchy

All exceptions carry code, message and details so the API layer can render
them consistently and logs keep enough context for auditing.

Exception Hierarchy:
    CatalogAddonError
    ├── ValidationError                 (400)
    │   ├── DiscountConfigError
    │   ├── SelfLinkError
    │   └── CartInputError
    ├── NotFoundError                   (404)
    │   ├── BundleNotFoundError
    │   ├── ProductNotFoundError
    │   └── LinkNotFoundError
    └── ConflictError                   (409)
        ├── DuplicateLinkError
        ├── DuplicateBundleError
        └── ConcurrentModificationError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class CatalogAddonError(Exception):
    """
    Base exception for all catalog add-on errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
    """

    default_code: str = "CATALOG_ADDON_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(CatalogAddonError):
    """Malformed input or configuration. Never retried."""
    default_code = "VALIDATION_ERROR"
    status_code = 400


class DiscountConfigError(ValidationError):
    """Invalid discount type or out-of-range discount value."""
    default_code = "INVALID_DISCOUNT_CONFIG"


class SelfLinkError(ValidationError):
    """A bundle's main product was linked to itself."""
    default_code = "SELF_LINK"

    def __init__(self, product_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"product_id": product_id})
        super().__init__("Main product cannot be linked to itself", details=details, **kwargs)


class CartInputError(ValidationError):
    """Cart payload is absent or is not a list of items."""
    default_code = "INVALID_CART"


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================

class NotFoundError(CatalogAddonError):
    """Referenced record does not exist."""
    default_code = "NOT_FOUND"
    status_code = 404


class BundleNotFoundError(NotFoundError):
    default_code = "UPSELL_NOT_FOUND"

    def __init__(self, bundle_id: Optional[int] = None, message: str = "Upsell not found", **kwargs):
        details = kwargs.pop("details", {})
        if bundle_id is not None:
            details.update({"bundle_id": bundle_id})
        super().__init__(message, details=details, **kwargs)


class ProductNotFoundError(NotFoundError):
    default_code = "PRODUCT_NOT_FOUND"


class LinkNotFoundError(NotFoundError):
    """A linked-product operation targeted an id not present in the bundle."""
    default_code = "LINK_NOT_FOUND"

    def __init__(self, product_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"product_id": product_id})
        super().__init__("Linked product not found", details=details, **kwargs)


# =============================================================================
# CONFLICT ERRORS
# =============================================================================

class ConflictError(CatalogAddonError):
    """Request collides with existing state."""
    default_code = "CONFLICT"
    status_code = 409


class DuplicateLinkError(ConflictError):
    default_code = "DUPLICATE_LINK"

    def __init__(self, product_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"product_id": product_id})
        super().__init__("Product is already linked", details=details, **kwargs)


class DuplicateBundleError(ConflictError):
    default_code = "DUPLICATE_UPSELL"

    def __init__(self, main_product_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"main_product_id": main_product_id})
        super().__init__("Upsell already exists for this product", details=details, **kwargs)


class ConcurrentModificationError(ConflictError):
    """Bundle row changed between read and write (version mismatch)."""
    default_code = "CONCURRENT_MODIFICATION"

    def __init__(self, bundle_id: int, expected_version: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({
            "bundle_id": bundle_id,
            "expected_version": expected_version,
        })
        super().__init__(
            "Upsell was modified by another request, reload and retry",
            details=details,
            **kwargs,
        )
