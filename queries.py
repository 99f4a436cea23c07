"""
Listing filters

Builds MongoDB filter, sort and paging documents from listing parameters.
The product price filter matches either the top-level simple price or any
variant's price, each checked against its own offer window.
"""
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId

MAX_LIMIT = 100

PRODUCT_SEARCH_FIELDS = ("title", "description", "brand")
PRODUCT_SORT_FIELDS = frozenset({"created_at", "updated_at", "title", "price", "total_stock", "brand"})
ATTRIBUTE_SEARCH_FIELDS = ("name", "code")
ATTRIBUTE_SORT_FIELDS = frozenset({"created_at", "name", "code", "type", "is_active"})
CATEGORY_SEARCH_FIELDS = ("name", "description")
CATEGORY_SORT_FIELDS = frozenset({"created_at", "name", "is_active", "description", "image_url"})
BANNER_SEARCH_FIELDS = ("title", "description")

Sort = List[Tuple[str, int]]


def query_now() -> datetime:
    """Naive UTC, comparable with the datetimes MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> Dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": total, "pages": math.ceil(total / self.limit)}


def paginate(page: Optional[int], limit: Optional[int], default_limit: int = 12) -> Page:
    page = max(page or 1, 1)
    limit = min(max(limit if limit is not None else default_limit, 1), MAX_LIMIT)
    return Page(page=page, limit=limit)


def parse_tristate(value: Optional[str]) -> Optional[bool]:
    """"true" / "false" in any case; anything else means no filter."""
    if value is None:
        return None
    lowered = str(value).strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def search_clause(search: Optional[str], fields: Iterable[str]) -> Dict[str, Any]:
    term = (search or "").strip()
    if not term:
        return {}
    pattern = re.escape(term)
    return {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in fields]}


def window_clauses(start_field: str, end_field: str, now: datetime) -> List[Dict[str, Any]]:
    """A missing or null bound is open on that side."""
    return [
        {"$or": [{start_field: None}, {start_field: {"$lte": now}}]},
        {"$or": [{end_field: None}, {end_field: {"$gte": now}}]},
    ]


def price_bound_clause(op: str, bound: float, now: datetime) -> Dict[str, Any]:
    """One side of the price range across both pricing modes."""
    sale_in_window = {
        "sale_price": {"$ne": None, op: bound},
        "$and": window_clauses("offer_start", "offer_end", now),
    }
    return {
        "$or": [
            sale_in_window,
            {"price": {op: bound}},
            {"variants": {"$elemMatch": sale_in_window}},
            {"variants": {"$elemMatch": {"price": {op: bound}}}},
        ]
    }


def sort_from_signed(sort: Optional[str], allowed: frozenset, default: str = "-created_at") -> Sort:
    """"-field" sorts descending; unknown fields fall back to the default."""
    raw = (sort or "").strip() or default
    field = raw.lstrip("-")
    if field not in allowed:
        raw, field = default, default.lstrip("-")
    return [(field, -1 if raw.startswith("-") else 1)]


def sort_from_pair(sort_by: Optional[str], order: Optional[str], allowed: frozenset) -> Tuple[str, str, Sort]:
    field = sort_by if sort_by in allowed else "created_at"
    order = "asc" if (order or "").lower() == "asc" else "desc"
    return field, order, [(field, 1 if order == "asc" else -1)]


def pair_meta(page: Page, total: int, sort_by: str, order: str) -> Dict[str, Any]:
    pages = max(math.ceil(total / page.limit), 1)
    has_prev = page.page > 1
    has_next = page.page < pages
    return {
        "page": page.page,
        "limit": page.limit,
        "total": total,
        "pages": pages,
        "sort_by": sort_by,
        "order": order,
        "has_prev": has_prev,
        "has_next": has_next,
        "prev_page": page.page - 1 if has_prev else None,
        "next_page": page.page + 1 if has_next else None,
    }


def combine(*clauses: Dict[str, Any]) -> Dict[str, Any]:
    parts = [c for c in clauses if c]
    if not parts:
        return {}
    if len(parts) == 1:
        return parts[0]
    return {"$and": parts}


@dataclass
class ProductQuery:
    page: Optional[int] = None
    limit: Optional[int] = None
    search: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    in_stock: bool = False
    has_variants: Optional[bool] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sort: Optional[str] = None
    is_active: Optional[bool] = None

    def filter(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or query_now()
        clauses: List[Dict[str, Any]] = []
        if self.is_active is not None:
            clauses.append({"is_active": self.is_active})
        clauses.append(search_clause(self.search, PRODUCT_SEARCH_FIELDS))
        brand = (self.brand or "").strip()
        if brand:
            clauses.append({"brand": {"$regex": f"^{re.escape(brand)}$", "$options": "i"}})
        category = (self.category or "").strip()
        if category and ObjectId.is_valid(category):
            clauses.append({"category": category})
        if self.in_stock:
            clauses.append({"total_stock": {"$gt": 0}})
        if self.has_variants is True:
            clauses.append({"variants.0": {"$exists": True}})
        elif self.has_variants is False:
            clauses.append({"$or": [{"variants": {"$size": 0}}, {"variants": {"$exists": False}}]})
        if self.min_price is not None:
            clauses.append(price_bound_clause("$gte", self.min_price, now))
        if self.max_price is not None:
            clauses.append(price_bound_clause("$lte", self.max_price, now))
        return combine(*clauses)

    def paging(self) -> Page:
        return paginate(self.page, self.limit, default_limit=12)

    def sorting(self) -> Sort:
        return sort_from_signed(self.sort, PRODUCT_SORT_FIELDS)


@dataclass
class ListQuery:
    """Listing parameters for attributes, categories and banners."""
    page: Optional[int] = None
    limit: Optional[int] = None
    search: Optional[str] = None
    is_active: Optional[bool] = None
    sort_by: Optional[str] = None
    order: Optional[str] = None

    def filter(self, search_fields: Iterable[str]) -> Dict[str, Any]:
        active = {"is_active": self.is_active} if self.is_active is not None else {}
        return combine(search_clause(self.search, search_fields), active)

    def paging(self) -> Page:
        return paginate(self.page, self.limit, default_limit=10)
