"""
Offer-window pricing

Pure functions over priced entities (a product or one of its variants) given
as mappings with `price`, `sale_price`, `offer_start` and `offer_end`.
Datetimes without tzinfo are read as UTC, which is how MongoDB returns them.
"""
import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def in_window(start: Optional[datetime], end: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when now lies in [start, end]; a missing bound is open on that side."""
    now = as_utc(now or utcnow())
    if start is not None and as_utc(start) > now:
        return False
    if end is not None and as_utc(end) < now:
        return False
    return True


def effective_price(entity: Mapping[str, Any], now: Optional[datetime] = None) -> Optional[float]:
    """Sale price while its offer window is open, else the base price.

    The base price may be None for an incomplete entity; callers treat that
    as not purchasable.
    """
    sale_price = entity.get("sale_price")
    if sale_price is not None and in_window(entity.get("offer_start"), entity.get("offer_end"), now):
        return sale_price
    return entity.get("price")


def discount_percent(price: Optional[float], effective: Optional[float]) -> int:
    """Whole-percent saving of effective over price.

    Rounded half up from the exact ratio, so a sale price at or near zero
    gives 100. The result is not capped below that.
    """
    if price is None or effective is None or price <= 0 or effective >= price:
        return 0
    # round half away from zero; the ratio is positive here
    return max(int(math.floor((price - effective) / price * 100 + 0.5)), 0)


def price_summary(entity: Mapping[str, Any], now: Optional[datetime] = None) -> dict:
    effective = effective_price(entity, now)
    return {
        "effective_price": effective,
        "discount_percent": discount_percent(entity.get("price"), effective),
    }
