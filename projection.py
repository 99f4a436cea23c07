"""
Variant resolution

Expands the attribute and value ids stored inside variants into display
records, then cuts the result down to the admin or the mobile view. Variant
references are weak: an id that no longer resolves becomes a stub with null
fields and the read carries on.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pricing import effective_price, price_summary

logger = logging.getLogger(__name__)

ADMIN = "admin"
MOBILE = "mobile"
VIEWS = (ADMIN, MOBILE)

# fields removed from each view; everything else passes through
HIDDEN_PRODUCT_FIELDS = {
    ADMIN: frozenset(),
    MOBILE: frozenset({"compare_at_price", "offer_start", "offer_end", "attributes", "main_attribute_id"}),
}
HIDDEN_VARIANT_FIELDS = {
    ADMIN: frozenset(),
    MOBILE: frozenset({"barcode", "sale_price", "compare_at_price", "offer_start", "offer_end"}),
}
LIST_FIELDS = {
    ADMIN: (
        "id", "title", "slug", "brand", "image_url", "currency", "category", "is_active",
        "total_stock", "main_attribute_id", "has_variants", "created_at", "updated_at",
    ),
    MOBILE: (
        "id", "title", "slug", "brand", "image_url", "currency", "category", "is_active",
        "total_stock", "has_variants", "lowest_price", "highest_price", "created_at", "updated_at",
    ),
}


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


def attribute_stub(attribute_id: str) -> Dict[str, Any]:
    return {"id": attribute_id, "name": None, "code": None, "type": None, "is_active": None}


def value_stub(value_id: str) -> Dict[str, Any]:
    return {"id": value_id, "label": None, "value": None, "meta": None}


def referenced_attribute_ids(product: Mapping[str, Any]) -> List[str]:
    """De-duplicated attribute ids used by the product's variants, in first-seen order."""
    seen: Dict[str, None] = {}
    for variant in product.get("variants") or []:
        for pair in variant.get("values") or []:
            seen.setdefault(pair["attribute_id"], None)
    return list(seen)


class AttributeLookup:
    """Attribute and value records keyed by id, built from one bulk fetch."""

    def __init__(self, attributes: Iterable[Mapping[str, Any]] = ()):
        self._attributes: Dict[str, Dict[str, Any]] = {}
        self._values: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for attribute in attributes:
            attribute_id = str(attribute["id"])
            self._attributes[attribute_id] = {
                "id": attribute_id,
                "name": attribute.get("name"),
                "code": attribute.get("code"),
                "type": attribute.get("type"),
                "is_active": attribute.get("is_active"),
            }
            self._values[attribute_id] = {
                str(v["id"]): {
                    "id": str(v["id"]),
                    "label": v.get("label"),
                    "value": v.get("value"),
                    "meta": v.get("meta"),
                }
                for v in attribute.get("values") or []
            }

    def attribute(self, attribute_id: str) -> Dict[str, Any]:
        found = self._attributes.get(attribute_id)
        if found is None:
            logger.warning("Unresolved attribute %s", attribute_id)
            return attribute_stub(attribute_id)
        return dict(found)

    def value(self, attribute_id: str, value_id: str) -> Dict[str, Any]:
        found = self._values.get(attribute_id, {}).get(value_id)
        if found is None:
            logger.warning("Unresolved value %s of attribute %s", value_id, attribute_id)
            return value_stub(value_id)
        return dict(found)


def resolve_pair(pair: Mapping[str, Any], lookup: AttributeLookup) -> Dict[str, Any]:
    attribute_id = pair["attribute_id"]
    return {
        "attribute": lookup.attribute(attribute_id),
        "values": [lookup.value(attribute_id, vid) for vid in as_list(pair.get("attributes_value_id"))],
        "stock": pair.get("stock"),
        "image_url": pair.get("image_url"),
    }


def resolve_variant(
    variant: Mapping[str, Any], lookup: AttributeLookup, now: Optional[datetime] = None
) -> Dict[str, Any]:
    resolved = {
        "id": variant.get("id"),
        "sku": variant.get("sku"),
        "price": variant.get("price"),
        "sale_price": variant.get("sale_price"),
        "compare_at_price": variant.get("compare_at_price"),
        "offer_start": variant.get("offer_start"),
        "offer_end": variant.get("offer_end"),
        "stock": variant.get("stock"),
        "image_url": variant.get("image_url"),
        "barcode": variant.get("barcode"),
    }
    resolved.update(price_summary(variant, now))
    resolved["attributes_resolved"] = [resolve_pair(pair, lookup) for pair in variant.get("values") or []]
    return resolved


def resolve_product(
    product: Mapping[str, Any], lookup: AttributeLookup, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Full resolution of a product; the admin view is exactly this."""
    resolved = {k: v for k, v in product.items() if k != "variants"}
    resolved["has_variants"] = bool(product.get("variants"))
    resolved.update(price_summary(product, now))
    resolved["variants"] = [resolve_variant(v, lookup, now) for v in product.get("variants") or []]
    return resolved


def main_options(product: Mapping[str, Any], lookup: AttributeLookup) -> List[Dict[str, Any]]:
    """Bucket variants by their main attribute value."""
    main_attribute_id = product.get("main_attribute_id")
    buckets: Dict[str, Dict[str, Any]] = {}
    if not main_attribute_id:
        return []
    for variant in product.get("variants") or []:
        for pair in variant.get("values") or []:
            if pair["attribute_id"] != main_attribute_id:
                continue
            stock = pair.get("stock")
            if stock is None:
                stock = variant.get("stock") or 0
            image = pair.get("image_url") or variant.get("image_url")
            for value_id in as_list(pair.get("attributes_value_id")):
                option = buckets.get(value_id)
                if option is None:
                    value = lookup.value(main_attribute_id, value_id)
                    option = buckets[value_id] = {
                        "value_id": value_id,
                        "label": value["label"],
                        "meta": value["meta"],
                        "sample_image_url": None,
                        "total_stock": 0,
                        "variant_ids": [],
                    }
                option["total_stock"] += stock
                if option["sample_image_url"] is None:
                    option["sample_image_url"] = image
                if variant.get("id") not in option["variant_ids"]:
                    option["variant_ids"].append(variant.get("id"))
    return list(buckets.values())


def _without(record: Mapping[str, Any], hidden: frozenset) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k not in hidden}


def render_detail(
    product: Mapping[str, Any], lookup: AttributeLookup, view: str = ADMIN, now: Optional[datetime] = None
) -> Dict[str, Any]:
    resolved = resolve_product(product, lookup, now)
    detail = _without(resolved, HIDDEN_PRODUCT_FIELDS[view])
    detail["variants"] = [_without(v, HIDDEN_VARIANT_FIELDS[view]) for v in resolved["variants"]]
    if view == MOBILE:
        main_attribute_id = product.get("main_attribute_id")
        detail["main_attribute"] = lookup.attribute(main_attribute_id) if main_attribute_id else None
        detail["main_options"] = main_options(product, lookup)
        detail["secondary_attributes"] = [
            lookup.attribute(attribute_id)
            for attribute_id in referenced_attribute_ids(product)
            if attribute_id != main_attribute_id
        ]
    return detail


def price_range(product: Mapping[str, Any], now: Optional[datetime] = None) -> Dict[str, Optional[float]]:
    variants = product.get("variants") or []
    if variants:
        prices = [p for p in (effective_price(v, now) for v in variants) if p is not None]
    else:
        price = effective_price(product, now)
        prices = [] if price is None else [price]
    return {
        "lowest_price": min(prices) if prices else None,
        "highest_price": max(prices) if prices else None,
    }


def render_list_item(product: Mapping[str, Any], view: str = ADMIN, now: Optional[datetime] = None) -> Dict[str, Any]:
    item = dict(product)
    item["has_variants"] = bool(product.get("variants"))
    if view == MOBILE:
        item.update(price_range(product, now))
    return {field: item.get(field) for field in LIST_FIELDS[view]}
