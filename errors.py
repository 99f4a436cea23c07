"""
Catalog errors

Every failure the catalog core reports is a CatalogError. The HTTP layer maps
the classes below to status codes; nothing in here is retried.
"""
from typing import Any, Dict, List, Optional, Union


class CatalogError(Exception):
    """Base exception for all catalog errors."""

    code = "CatalogError"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ValidationError(CatalogError):
    """Caller supplied data that breaks a catalog rule."""

    code = "ValidationError"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        variant: Optional[Union[int, str]] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.variant = variant
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        data["variant"] = self.variant
        return data


class MainAttributeRequired(ValidationError):
    code = "MainAttributeRequired"


class MainAttributeCoverageMissing(ValidationError):
    code = "MainAttributeCoverageMissing"


class InvalidVariantPricing(ValidationError):
    code = "InvalidVariantPricing"


class SimpleProductRequiresPriceAndStock(ValidationError):
    code = "SimpleProductRequiresPriceAndStock"


class InvalidSimplePricing(ValidationError):
    code = "InvalidSimplePricing"


class NotFound(CatalogError):
    """Raised when a product, attribute, category or banner does not exist."""

    code = "NotFound"

    def __init__(self, entity: str, key: Any = None) -> None:
        message = f"{entity} not found" if key is None else f"{entity} not found: {key}"
        super().__init__(message)
        self.entity = entity
        self.key = key


class DuplicateKey(CatalogError):
    """Raised when a write collides with a unique index."""

    code = "DuplicateKey"

    def __init__(self, fields: List[str]) -> None:
        super().__init__(f"Duplicate value for: {', '.join(fields) or 'unique field'}")
        self.fields = fields

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["fields"] = self.fields
        return data
