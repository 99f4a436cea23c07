"""
Product integrity pass

Runs on every product write, after the incoming payload has been merged into
the full candidate product. The pricing mode is decided here once, from the
shape of the candidate: a non-empty variant list means variant pricing,
anything else is a simple product.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple, Union

from errors import (
    InvalidSimplePricing,
    InvalidVariantPricing,
    MainAttributeCoverageMissing,
    MainAttributeRequired,
    SimpleProductRequiresPriceAndStock,
)
from schemas import Product, Variant

SIMPLE_PRICING_FIELDS = ("price", "sale_price", "compare_at_price", "offer_start", "offer_end", "stock")


@dataclass(frozen=True)
class SimplePricing:
    price: float
    stock: int
    sale_price: Optional[float] = None
    compare_at_price: Optional[float] = None
    offer_start: Optional[datetime] = None
    offer_end: Optional[datetime] = None

    @property
    def total_stock(self) -> int:
        return self.stock


@dataclass(frozen=True)
class VariantPricing:
    main_attribute_id: str
    variants: Tuple[Variant, ...]

    @property
    def total_stock(self) -> int:
        return sum(v.stock for v in self.variants)


ProductPricing = Union[SimplePricing, VariantPricing]


def _variant_label(index: int, variant: Variant) -> Union[int, str]:
    return variant.sku or index


def _check_variant(index: int, variant: Variant, main_attribute_id: str) -> None:
    label = _variant_label(index, variant)
    if not any(pair.attribute_id == main_attribute_id for pair in variant.values):
        raise MainAttributeCoverageMissing(
            f"variant {label!r} has no value for main attribute {main_attribute_id}",
            field="values",
            variant=label,
        )
    if variant.stock < 0:
        raise InvalidVariantPricing(f"variant {label!r}: stock must be >= 0", field="stock", variant=label)
    if variant.price < 0:
        raise InvalidVariantPricing(f"variant {label!r}: price must be >= 0", field="price", variant=label)
    if variant.sale_price is not None and not 0 <= variant.sale_price <= variant.price:
        raise InvalidVariantPricing(
            f"variant {label!r}: sale_price must be between 0 and price", field="sale_price", variant=label
        )
    if variant.compare_at_price is not None and variant.compare_at_price < variant.price:
        raise InvalidVariantPricing(
            f"variant {label!r}: compare_at_price must be >= price", field="compare_at_price", variant=label
        )
    if variant.offer_start and variant.offer_end and variant.offer_end < variant.offer_start:
        raise InvalidVariantPricing(
            f"variant {label!r}: offer_end cannot be before offer_start", field="offer_end", variant=label
        )


def _check_simple(product: Product) -> SimplePricing:
    if product.price is None or product.stock is None:
        missing = "price" if product.price is None else "stock"
        raise SimpleProductRequiresPriceAndStock(
            "a product without variants requires top-level price and stock", field=missing
        )
    if product.price < 0:
        raise InvalidSimplePricing("price must be >= 0", field="price")
    if product.stock < 0:
        raise InvalidSimplePricing("stock must be >= 0", field="stock")
    if product.sale_price is not None and not 0 <= product.sale_price <= product.price:
        raise InvalidSimplePricing("sale_price must be between 0 and price", field="sale_price")
    if product.compare_at_price is not None and product.compare_at_price < product.price:
        raise InvalidSimplePricing("compare_at_price must be >= price", field="compare_at_price")
    if product.offer_start and product.offer_end and product.offer_end < product.offer_start:
        raise InvalidSimplePricing("offer_end cannot be before offer_start", field="offer_end")
    return SimplePricing(
        price=product.price,
        stock=product.stock,
        sale_price=product.sale_price,
        compare_at_price=product.compare_at_price,
        offer_start=product.offer_start,
        offer_end=product.offer_end,
    )


def classify(product: Product) -> ProductPricing:
    """Decide and validate the pricing mode of a candidate product."""
    if not product.variants:
        return _check_simple(product)

    main_attribute_id = (product.main_attribute_id or "").strip()
    if not main_attribute_id:
        raise MainAttributeRequired(
            "a product with variants requires main_attribute_id", field="main_attribute_id"
        )
    for index, variant in enumerate(product.variants):
        _check_variant(index, variant, main_attribute_id)
    return VariantPricing(main_attribute_id=main_attribute_id, variants=tuple(product.variants))


def apply_integrity(product: Product) -> Product:
    """Validate a candidate product and return it with derived fields set.

    Variant products lose their top-level simple pricing; simple products
    lose any dangling main attribute.
    """
    pricing = classify(product)
    if isinstance(pricing, VariantPricing):
        update = {field: None for field in SIMPLE_PRICING_FIELDS}
        update["main_attribute_id"] = pricing.main_attribute_id
    else:
        update = {"main_attribute_id": None}
    update["total_stock"] = pricing.total_stock
    return product.model_copy(update=update)
