"""
Catalog services

Each service owns one aggregate and talks to the database only through its
DocumentStore(s). Writes follow one path: merge the incoming fields into a
full candidate document, validate the whole candidate, then persist it.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId

from database import DocumentStore, as_object_id
from errors import NotFound, ValidationError
from integrity import SIMPLE_PRICING_FIELDS, apply_integrity
from projection import ADMIN, MOBILE, VIEWS, AttributeLookup, referenced_attribute_ids, render_detail, render_list_item
from queries import (
    ATTRIBUTE_SEARCH_FIELDS,
    ATTRIBUTE_SORT_FIELDS,
    BANNER_SEARCH_FIELDS,
    CATEGORY_SEARCH_FIELDS,
    CATEGORY_SORT_FIELDS,
    ListQuery,
    ProductQuery,
    combine,
    pair_meta,
    query_now,
    sort_from_pair,
    window_clauses,
)
from schemas import (
    Attribute,
    AttributeIn,
    AttributePatch,
    AttributeValue,
    AttributeValueIn,
    AttributeValuePatch,
    Banner,
    BannerIn,
    BannerPatch,
    Category,
    CategoryIn,
    CategoryPatch,
    Product,
    ProductIn,
    ProductPatch,
)
from slugs import resolve_slug

logger = logging.getLogger(__name__)

STORE_FIELDS = ("id", "created_at", "updated_at")


def id_or_key(value: str, key: str) -> Dict[str, Any]:
    """Filter for a path parameter that is either an ObjectId or a slug/code."""
    oid = as_object_id(value)
    if oid is not None:
        return {"_id": oid}
    return {key: value.strip().lower()}


def require_ids(ids: List[str], field: str = "ids") -> List[ObjectId]:
    if not ids:
        raise ValidationError(f"{field} must be a non-empty list", field=field, code="InvalidPayload")
    oids = [oid for oid in (as_object_id(i) for i in ids) if oid is not None]
    if not oids:
        raise ValidationError(f"no valid ids in {field}", field=field, code="InvalidPayload")
    return oids


def document_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k not in STORE_FIELDS}


def persist(store: DocumentStore, doc: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace a stored document, keeping its creation time."""
    data["created_at"] = doc.get("created_at")
    return store.replace(doc["id"], data)


def listing(store: DocumentStore, params: ListQuery, filter: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    page = params.paging()
    sort_by, order, sort = sort_from_pair(params.sort_by, params.order, allowed)
    items = store.find(filter, sort=sort, skip=page.skip, limit=page.limit)
    return {"items": items, "meta": pair_meta(page, store.count(filter), sort_by, order)}


# ---------- Attributes ----------

class AttributeService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _load(self, id_or_code: str) -> Dict[str, Any]:
        doc = self.store.find_one(id_or_key(id_or_code, "code"))
        if doc is None:
            raise NotFound("Attribute", id_or_code)
        return doc

    def _save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        attribute = Attribute.model_validate(document_fields(doc))
        return persist(self.store, doc, attribute.model_dump())

    def create(self, payload: AttributeIn) -> Dict[str, Any]:
        code = resolve_slug(payload.name, None, None, payload.code, field="code")
        attribute = Attribute(
            name=payload.name,
            code=code,
            type=payload.type,
            values=payload.values,
            is_active=payload.is_active,
        )
        return self.store.insert(attribute.model_dump())

    def list(self, params: ListQuery) -> Dict[str, Any]:
        return listing(self.store, params, params.filter(ATTRIBUTE_SEARCH_FIELDS), ATTRIBUTE_SORT_FIELDS)

    def get(self, id_or_code: str) -> Dict[str, Any]:
        return self._load(id_or_code)

    def update(self, id_or_code: str, patch: AttributePatch) -> Dict[str, Any]:
        doc = self._load(id_or_code)
        changes = patch.model_dump(exclude_unset=True)
        name = changes.get("name") or doc["name"]
        doc["code"] = resolve_slug(name, doc["name"], doc["code"], changes.get("code"), field="code")
        doc["name"] = name
        for field in ("type", "is_active", "values"):
            if changes.get(field) is not None:
                doc[field] = changes[field]
        return self._save(doc)

    def delete_many(self, ids: List[str]) -> int:
        deleted = self.store.delete_many({"_id": {"$in": require_ids(ids)}})
        if not deleted:
            raise NotFound("Attribute", ids)
        return deleted

    def add_value(self, id_or_code: str, payload: AttributeValueIn) -> Dict[str, Any]:
        doc = self._load(id_or_code)
        value = AttributeValue(**payload.model_dump())
        doc["values"] = list(doc.get("values") or []) + [value.model_dump()]
        return self._save(doc)

    def update_value(self, id_or_code: str, value_id: str, patch: AttributeValuePatch) -> Dict[str, Any]:
        if not ObjectId.is_valid(value_id):
            raise ValidationError(f"invalid value id {value_id!r}", field="value_id", code="InvalidPayload")
        doc = self._load(id_or_code)
        for value in doc.get("values") or []:
            if value["id"] == value_id:
                value.update(patch.model_dump(exclude_unset=True))
                return self._save(doc)
        raise NotFound("Attribute value", value_id)

    def remove_values(self, id_or_code: str, value_ids: List[str]) -> Dict[str, Any]:
        if not value_ids:
            raise ValidationError("value_ids must be a non-empty list", field="value_ids", code="InvalidPayload")
        doc = self._load(id_or_code)
        drop = set(value_ids)
        before = list(doc.get("values") or [])
        doc["values"] = [v for v in before if v["id"] not in drop]
        removed = len(before) - len(doc["values"])
        if not removed:
            raise NotFound("Attribute value", value_ids)
        logger.info("Removing %d value(s) from attribute %s", removed, doc["id"])
        return {"removed": removed, "attribute": self._save(doc)}


# ---------- Categories ----------

class CategoryService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _load(self, id_or_slug: str) -> Dict[str, Any]:
        doc = self.store.find_one(id_or_key(id_or_slug, "slug"))
        if doc is None:
            raise NotFound("Category", id_or_slug)
        return doc

    def create(self, payload: CategoryIn) -> Dict[str, Any]:
        data = payload.model_dump()
        data["slug"] = resolve_slug(payload.name, None, None, payload.slug)
        return self.store.insert(Category.model_validate(data).model_dump())

    def list(self, params: ListQuery) -> Dict[str, Any]:
        return listing(self.store, params, params.filter(CATEGORY_SEARCH_FIELDS), CATEGORY_SORT_FIELDS)

    def get(self, id_or_slug: str) -> Dict[str, Any]:
        return self._load(id_or_slug)

    def update(self, id_or_slug: str, patch: CategoryPatch) -> Dict[str, Any]:
        doc = self._load(id_or_slug)
        changes = patch.model_dump(exclude_unset=True)
        override = changes.pop("slug", None)
        name = changes.pop("name", None) or doc["name"]
        doc["slug"] = resolve_slug(name, doc["name"], doc.get("slug"), override)
        doc["name"] = name
        doc.update(changes)
        category = Category.model_validate(document_fields(doc))
        return persist(self.store, doc, category.model_dump())

    def delete(self, id_or_slug: str) -> None:
        if not self.store.delete_one(id_or_key(id_or_slug, "slug")):
            raise NotFound("Category", id_or_slug)


# ---------- Banners ----------

class BannerService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _load(self, id: str) -> Dict[str, Any]:
        doc = self.store.find_by_id(id)
        if doc is None:
            raise NotFound("Banner", id)
        return doc

    def create(self, payload: BannerIn) -> Dict[str, Any]:
        banner = Banner.model_validate(payload.model_dump())
        return self.store.insert(banner.model_dump())

    def list(self, params: ListQuery, now_only: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
        page = params.paging()
        if now_only:
            filter = combine(
                params.filter(BANNER_SEARCH_FIELDS),
                {"is_active": True},
                *window_clauses("start_date", "end_date", now or query_now()),
            )
        else:
            filter = params.filter(BANNER_SEARCH_FIELDS)
        items = self.store.find(filter, sort=[("position", 1), ("created_at", -1)], skip=page.skip, limit=page.limit)
        data = {"items": items}
        data.update(page.meta(self.store.count(filter)))
        return data

    def get(self, id: str) -> Dict[str, Any]:
        return self._load(id)

    def update(self, id: str, patch: BannerPatch) -> Dict[str, Any]:
        doc = self._load(id)
        doc.update(patch.model_dump(exclude_unset=True))
        banner = Banner.model_validate(document_fields(doc))
        return persist(self.store, doc, banner.model_dump())

    def delete(self, id: str) -> None:
        oid = as_object_id(id)
        if oid is None or not self.store.delete_one({"_id": oid}):
            raise NotFound("Banner", id)


# ---------- Products ----------

def product_document(product: Product) -> Dict[str, Any]:
    """Stored shape: unset simple-pricing fields are left out entirely."""
    doc = product.model_dump()
    for field in SIMPLE_PRICING_FIELDS:
        if doc.get(field) is None:
            doc.pop(field, None)
    return doc


class ProductService:
    def __init__(self, store: DocumentStore, attributes: DocumentStore):
        self.store = store
        self.attributes = attributes

    def _load(self, id_or_slug: str, active_only: bool = False) -> Dict[str, Any]:
        filter = id_or_key(id_or_slug, "slug")
        if active_only:
            filter["is_active"] = True
        doc = self.store.find_one(filter)
        if doc is None:
            raise NotFound("Product", id_or_slug)
        return doc

    def _candidate(self, data: Dict[str, Any]) -> Product:
        category = data.get("category")
        if category is not None and as_object_id(category) is None:
            raise ValidationError(f"invalid category id {category!r}", field="category", code="InvalidPayload")
        return apply_integrity(Product.model_validate(data))

    def create(self, payload: ProductIn) -> Dict[str, Any]:
        data = payload.model_dump()
        data["slug"] = resolve_slug(payload.title, None, None, payload.slug)
        product = self._candidate(data)
        return self.store.insert(product_document(product))

    def update(self, id_or_slug: str, patch: ProductPatch) -> Dict[str, Any]:
        """Merge the patch into the stored product and revalidate all of it."""
        doc = self._load(id_or_slug)
        changes = patch.model_dump(exclude_unset=True)
        override = changes.pop("slug", None)
        title = changes.pop("title", None) or doc["title"]
        merged = document_fields(doc)
        merged.update(changes)
        merged["slug"] = resolve_slug(title, doc["title"], doc.get("slug"), override)
        merged["title"] = title
        product = self._candidate(merged)
        return persist(self.store, doc, product_document(product))

    def get(self, id_or_slug: str, view: str = ADMIN, now: Optional[datetime] = None) -> Dict[str, Any]:
        if view not in VIEWS:
            raise ValueError(f"unknown view {view!r}")
        doc = self._load(id_or_slug, active_only=view == MOBILE)
        lookup = AttributeLookup(self.attributes.find_by_ids(referenced_attribute_ids(doc)))
        return render_detail(doc, lookup, view=view, now=now)

    def list(self, params: ProductQuery, view: str = ADMIN, now: Optional[datetime] = None) -> Dict[str, Any]:
        if view == MOBILE:
            params = replace(params, is_active=True)
        now = now or query_now()
        filter = params.filter(now)
        page = params.paging()
        docs = self.store.find(filter, sort=params.sorting(), skip=page.skip, limit=page.limit)
        data = {"items": [render_list_item(doc, view=view, now=now) for doc in docs]}
        data.update(page.meta(self.store.count(filter)))
        return data

    def delete(self, id_or_slug: str) -> None:
        if not self.store.delete_one(id_or_key(id_or_slug, "slug")):
            raise NotFound("Product", id_or_slug)

    def bulk_delete(self, ids: List[str]) -> Dict[str, Any]:
        oids = require_ids(ids)
        deleted = self.store.delete_many({"_id": {"$in": oids}})
        if deleted < len(oids):
            logger.info("Bulk delete matched %d of %d product id(s)", deleted, len(oids))
        return {"deleted_count": deleted, "ids": [str(oid) for oid in oids]}
