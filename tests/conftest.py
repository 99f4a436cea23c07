"""Shared fixtures: an in-memory MongoDB and a seeded attribute catalog."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from catalog import AttributeService, BannerService, CategoryService, ProductService
from database import Catalog
from main import app, get_catalog
from schemas import AttributeIn, AttributeValue


@pytest.fixture
def catalog():
    """Catalog backed by mongomock, with the real unique indexes."""
    database = mongomock.MongoClient()["catalog_test"]
    catalog = Catalog(database)
    catalog.ensure_indexes()
    return catalog


@pytest.fixture
def attributes(catalog):
    return AttributeService(catalog.attributes)


@pytest.fixture
def categories(catalog):
    return CategoryService(catalog.categories)


@pytest.fixture
def banners(catalog):
    return BannerService(catalog.banners)


@pytest.fixture
def products(catalog):
    return ProductService(catalog.products, catalog.attributes)


@pytest.fixture
def color(attributes):
    """Color attribute with Black and White swatches."""
    return attributes.create(
        AttributeIn(
            name="Color",
            type="color",
            values=[
                AttributeValue(label="Black", value="#000000"),
                AttributeValue(label="White", value="#ffffff"),
            ],
        )
    )


@pytest.fixture
def size(attributes):
    return attributes.create(
        AttributeIn(name="Size", type="size", values=[AttributeValue(label="S"), AttributeValue(label="M")])
    )


@pytest.fixture
def client(catalog):
    app.dependency_overrides[get_catalog] = lambda: catalog
    yield TestClient(app)
    app.dependency_overrides.clear()
