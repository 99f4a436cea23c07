import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaError

from catalog import AttributeService, BannerService, CategoryService, ProductService
from database import Catalog, db
from errors import CatalogError, DuplicateKey, NotFound, ValidationError
from projection import ADMIN, MOBILE
from queries import ListQuery, ProductQuery, parse_tristate
from schemas import (
    AttributeIn,
    AttributePatch,
    AttributeValueIn,
    AttributeValuePatch,
    BannerIn,
    BannerPatch,
    CategoryIn,
    CategoryPatch,
    IdList,
    ProductIn,
    ProductPatch,
    ValueIdList,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        Catalog(db).ensure_indexes()
        logger.info("Indexes ensured on database %s", db.name)
    else:
        logger.warning("DATABASE_URL not set; catalog routes will answer 503")
    yield


app = FastAPI(title="Catalog API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Helpers ----------

def get_catalog() -> Catalog:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return Catalog(db)


def attribute_service(catalog: Catalog = Depends(get_catalog)) -> AttributeService:
    return AttributeService(catalog.attributes)


def category_service(catalog: Catalog = Depends(get_catalog)) -> CategoryService:
    return CategoryService(catalog.categories)


def banner_service(catalog: Catalog = Depends(get_catalog)) -> BannerService:
    return BannerService(catalog.banners)


def product_service(catalog: Catalog = Depends(get_catalog)) -> ProductService:
    return ProductService(catalog.products, catalog.attributes)


def list_query(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    is_active: Optional[str] = None,
    sort_by: Optional[str] = None,
    order: Optional[str] = None,
) -> ListQuery:
    return ListQuery(
        page=page, limit=limit, search=search, is_active=parse_tristate(is_active), sort_by=sort_by, order=order
    )


def product_query(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    brand: Optional[str] = None,
    category: Optional[str] = None,
    in_stock: Optional[str] = None,
    has_variants: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: Optional[str] = None,
    is_active: Optional[str] = None,
) -> ProductQuery:
    return ProductQuery(
        page=page,
        limit=limit,
        search=search,
        brand=brand,
        category=category,
        in_stock=parse_tristate(in_stock) is True,
        has_variants=parse_tristate(has_variants),
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        is_active=parse_tristate(is_active),
    )

# ---------- Errors ----------

@app.exception_handler(ValidationError)
async def validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(NotFound)
async def not_found(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content=exc.to_dict())


@app.exception_handler(DuplicateKey)
async def duplicate_key(request: Request, exc: DuplicateKey):
    return JSONResponse(status_code=409, content=exc.to_dict())


@app.exception_handler(CatalogError)
async def catalog_error(request: Request, exc: CatalogError):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(SchemaError)
async def schema_error(request: Request, exc: SchemaError):
    errors = exc.errors(include_url=False, include_context=False, include_input=False)
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})

# ---------- Health ----------

@app.get("/")
def root():
    return {"message": "Catalog API running"}


@app.get("/test")
def test_database():
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "❌ Not Set",
        "collections": []
    }
    try:
        if db is not None:
            resp["database"] = "✅ Connected"
            resp["database_name"] = db.name
            resp["collections"] = db.list_collection_names()
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        resp["database"] = f"⚠️ {str(e)[:80]}"
    return resp

# ---------- Categories ----------

@app.get("/api/categories")
def list_categories(params: ListQuery = Depends(list_query), service: CategoryService = Depends(category_service)):
    return service.list(params)


@app.get("/api/categories/{id_or_slug}")
def get_category(id_or_slug: str, service: CategoryService = Depends(category_service)):
    return service.get(id_or_slug)


@app.post("/api/admin/categories", status_code=201)
def create_category(payload: CategoryIn, service: CategoryService = Depends(category_service)):
    return service.create(payload)


@app.patch("/api/admin/categories/{id_or_slug}")
def update_category(id_or_slug: str, payload: CategoryPatch, service: CategoryService = Depends(category_service)):
    return service.update(id_or_slug, payload)


@app.delete("/api/admin/categories/{id_or_slug}")
def delete_category(id_or_slug: str, service: CategoryService = Depends(category_service)):
    service.delete(id_or_slug)
    return {"message": "Category deleted successfully"}

# ---------- Banners ----------

@app.get("/api/banners")
def list_banners(
    params: ListQuery = Depends(list_query),
    now_only: bool = Query(False),
    service: BannerService = Depends(banner_service),
):
    return service.list(params, now_only=now_only)


@app.get("/api/banners/{banner_id}")
def get_banner(banner_id: str, service: BannerService = Depends(banner_service)):
    return service.get(banner_id)


@app.post("/api/admin/banners", status_code=201)
def create_banner(payload: BannerIn, service: BannerService = Depends(banner_service)):
    return service.create(payload)


@app.patch("/api/admin/banners/{banner_id}")
def update_banner(banner_id: str, payload: BannerPatch, service: BannerService = Depends(banner_service)):
    return service.update(banner_id, payload)


@app.delete("/api/admin/banners/{banner_id}")
def delete_banner(banner_id: str, service: BannerService = Depends(banner_service)):
    service.delete(banner_id)
    return {"message": "Banner deleted successfully"}

# ---------- Attributes (admin) ----------

@app.get("/api/admin/attributes")
def list_attributes(params: ListQuery = Depends(list_query), service: AttributeService = Depends(attribute_service)):
    return service.list(params)


@app.post("/api/admin/attributes", status_code=201)
def create_attribute(payload: AttributeIn, service: AttributeService = Depends(attribute_service)):
    return service.create(payload)


@app.post("/api/admin/attributes/delete")
def delete_attributes(payload: IdList, service: AttributeService = Depends(attribute_service)):
    deleted = service.delete_many(payload.ids)
    return {"message": f"{deleted} attribute(s) deleted successfully", "deleted_count": deleted}


@app.get("/api/admin/attributes/{id_or_code}")
def get_attribute(id_or_code: str, service: AttributeService = Depends(attribute_service)):
    return service.get(id_or_code)


@app.patch("/api/admin/attributes/{id_or_code}")
def update_attribute(id_or_code: str, payload: AttributePatch, service: AttributeService = Depends(attribute_service)):
    return service.update(id_or_code, payload)


@app.post("/api/admin/attributes/{id_or_code}/values", status_code=201)
def add_attribute_value(
    id_or_code: str, payload: AttributeValueIn, service: AttributeService = Depends(attribute_service)
):
    return service.add_value(id_or_code, payload)


@app.patch("/api/admin/attributes/{id_or_code}/values/{value_id}")
def update_attribute_value(
    id_or_code: str, value_id: str, payload: AttributeValuePatch, service: AttributeService = Depends(attribute_service)
):
    return service.update_value(id_or_code, value_id, payload)


@app.post("/api/admin/attributes/{id_or_code}/values/remove-many")
def remove_attribute_values(
    id_or_code: str, payload: ValueIdList, service: AttributeService = Depends(attribute_service)
):
    result = service.remove_values(id_or_code, payload.value_ids)
    return {"message": f"{result['removed']} attribute value(s) deleted successfully", **result}

# ---------- Products (admin) ----------

@app.get("/api/admin/products")
def admin_list_products(params: ProductQuery = Depends(product_query), service: ProductService = Depends(product_service)):
    return service.list(params, view=ADMIN)


@app.post("/api/admin/products", status_code=201)
def admin_create_product(payload: ProductIn, service: ProductService = Depends(product_service)):
    return service.create(payload)


@app.post("/api/admin/products/delete")
def admin_bulk_delete_products(payload: IdList, service: ProductService = Depends(product_service)):
    return service.bulk_delete(payload.ids)


@app.get("/api/admin/products/{id_or_slug}")
def admin_get_product(id_or_slug: str, service: ProductService = Depends(product_service)):
    return service.get(id_or_slug, view=ADMIN)


@app.patch("/api/admin/products/{id_or_slug}")
def admin_update_product(id_or_slug: str, payload: ProductPatch, service: ProductService = Depends(product_service)):
    return service.update(id_or_slug, payload)


@app.delete("/api/admin/products/{id_or_slug}")
def admin_delete_product(id_or_slug: str, service: ProductService = Depends(product_service)):
    service.delete(id_or_slug)
    return {"message": "Product deleted successfully"}

# ---------- Products (public / mobile) ----------

@app.get("/api/products")
def list_products(params: ProductQuery = Depends(product_query), service: ProductService = Depends(product_service)):
    return service.list(params, view=MOBILE)


@app.get("/api/products/{id_or_slug}")
def get_product(id_or_slug: str, service: ProductService = Depends(product_service)):
    return service.get(id_or_slug, view=MOBILE)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
