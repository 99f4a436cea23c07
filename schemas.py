"""
Database Schemas

Pydantic models for the catalog's MongoDB collections plus the payloads the
admin API accepts. Each document model maps to a collection named after the
lowercased class name:
- Attribute -> "attribute" collection
- Category -> "category" collection
- Product -> "product" collection (variants are embedded)
- Banner -> "banner" collection

Stored documents use snake_case keys; `_id` is handled by the store.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

HttpUrlStr = Annotated[str, Field(pattern=r"(?i)^https?://[^\s/$.?#].[^\s]*$")]
SlugStr = Annotated[str, Field(pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$")]
ObjectIdStr = Annotated[str, Field(pattern=r"^[0-9a-f]{24}$")]

AttributeType = Literal["text", "color", "size", "number", "select"]


def new_id() -> str:
    return str(ObjectId())


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """MongoDB keeps naive UTC datetimes; store them that way."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


UtcDatetime = Annotated[datetime, AfterValidator(to_utc_naive)]


class Document(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# ---------- Attributes ----------

class AttributeValue(Document):
    id: ObjectIdStr = Field(default_factory=new_id)
    label: str = Field(..., min_length=1, description="Display label, e.g. 'Black'")
    value: Optional[str] = Field(None, description="Canonical form, e.g. '#000000'")
    meta: Optional[Dict[str, Any]] = None


class Attribute(Document):
    name: str = Field(..., min_length=1, description="Display name, e.g. 'Color'")
    code: SlugStr = Field(..., description="Unique slug, e.g. 'color'")
    type: AttributeType = "text"
    values: List[AttributeValue] = Field(default_factory=list)
    is_active: bool = True


# ---------- Categories ----------

class Category(Document):
    name: str = Field(..., min_length=1)
    slug: SlugStr
    description: Optional[str] = None
    image_url: Optional[HttpUrlStr] = None
    is_active: bool = True


# ---------- Banners ----------

class Banner(Document):
    title: str = Field(..., min_length=1)
    subtitle: Optional[str] = None
    description: Optional[str] = None
    image_url: HttpUrlStr
    link_url: Optional[HttpUrlStr] = None
    position: int = 0
    is_active: bool = True
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


# ---------- Products ----------

class OfferFields(Document):
    price: Optional[float] = None
    sale_price: Optional[float] = None
    compare_at_price: Optional[float] = None
    offer_start: Optional[UtcDatetime] = None
    offer_end: Optional[UtcDatetime] = None


class VariantValue(Document):
    """One attribute of a variant paired with the selected value id(s)."""
    attribute_id: str
    attributes_value_id: Union[str, List[str]]
    stock: Optional[int] = Field(None, ge=0)
    image_url: Optional[HttpUrlStr] = None

    @field_validator("attributes_value_id")
    @classmethod
    def at_least_one_value(cls, v: Union[str, List[str]]) -> Union[str, List[str]]:
        if not v:
            raise ValueError("select at least one value")
        return v


class Variant(OfferFields):
    id: str = Field(default_factory=new_id)
    sku: Optional[str] = None
    price: float
    stock: int
    image_url: Optional[HttpUrlStr] = None
    barcode: Optional[str] = None
    values: List[VariantValue] = Field(default_factory=list)


class Product(OfferFields):
    title: str = Field(..., min_length=1)
    slug: SlugStr
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = Field(None, description="Category id")
    image_url: HttpUrlStr = Field(..., description="Primary image")
    images: List[HttpUrlStr] = Field(default_factory=list)
    currency: str = Field("USD")
    stock: Optional[int] = None
    main_attribute_id: Optional[str] = None
    variants: List[Variant] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    total_stock: int = 0

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


# ---------- Admin payloads ----------

class AttributeIn(Document):
    name: str = Field(..., min_length=1)
    code: Optional[str] = None
    type: AttributeType = "text"
    values: List[AttributeValue] = Field(default_factory=list)
    is_active: bool = True


class AttributePatch(Document):
    name: Optional[str] = None
    code: Optional[str] = None
    type: Optional[AttributeType] = None
    values: Optional[List[AttributeValue]] = None
    is_active: Optional[bool] = None


class AttributeValueIn(Document):
    label: str = Field(..., min_length=1)
    value: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


class AttributeValuePatch(Document):
    label: Optional[str] = None
    value: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


class CategoryIn(Document):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[HttpUrlStr] = None
    is_active: bool = True


class CategoryPatch(Document):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[HttpUrlStr] = None
    is_active: Optional[bool] = None


class BannerIn(Document):
    title: str = Field(..., min_length=1)
    subtitle: Optional[str] = None
    description: Optional[str] = None
    image_url: HttpUrlStr
    link_url: Optional[HttpUrlStr] = None
    position: int = 0
    is_active: bool = True
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None


class BannerPatch(Document):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[HttpUrlStr] = None
    link_url: Optional[HttpUrlStr] = None
    position: Optional[int] = None
    is_active: Optional[bool] = None
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None


class ProductIn(Document):
    title: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    image_url: HttpUrlStr
    images: List[HttpUrlStr] = Field(default_factory=list)
    currency: str = "USD"
    price: Optional[float] = None
    sale_price: Optional[float] = None
    compare_at_price: Optional[float] = None
    offer_start: Optional[UtcDatetime] = None
    offer_end: Optional[UtcDatetime] = None
    stock: Optional[int] = None
    main_attribute_id: Optional[str] = None
    variants: List[Variant] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class ProductPatch(Document):
    """Fields left out are kept; an explicit null clears the field."""
    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[HttpUrlStr] = None
    images: Optional[List[HttpUrlStr]] = None
    currency: Optional[str] = None
    price: Optional[float] = None
    sale_price: Optional[float] = None
    compare_at_price: Optional[float] = None
    offer_start: Optional[UtcDatetime] = None
    offer_end: Optional[UtcDatetime] = None
    stock: Optional[int] = None
    main_attribute_id: Optional[str] = None
    variants: Optional[List[Variant]] = None
    attributes: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class IdList(BaseModel):
    ids: List[str] = Field(default_factory=list)


class ValueIdList(BaseModel):
    value_ids: List[str] = Field(default_factory=list)
