"""Service tests against an in-memory MongoDB.

Each class covers one aggregate. Stores run real query documents through
mongomock, so filters, unique indexes and bulk lookups are exercised as
written.
"""

from datetime import datetime, timedelta

import pytest
from bson import ObjectId
from pydantic import ValidationError as SchemaError

from errors import (
    DuplicateKey,
    InvalidSimplePricing,
    MainAttributeCoverageMissing,
    NotFound,
    SimpleProductRequiresPriceAndStock,
    ValidationError,
)
from projection import ADMIN, MOBILE
from queries import ListQuery, ProductQuery
from schemas import (
    AttributeIn,
    AttributePatch,
    AttributeValue,
    AttributeValueIn,
    AttributeValuePatch,
    BannerIn,
    BannerPatch,
    CategoryIn,
    CategoryPatch,
    ProductPatch,
)
from tests.factories import product_payload, value_id, variant_payload

NOW = datetime(2030, 1, 15)


# ======================================================================
# Attributes
# ======================================================================


class TestAttributes:
    @pytest.mark.parametrize("name,code", [("Color", "color"), ("Re-Chargeable!!", "re-chargeable")])
    def test_code_derived_from_name(self, attributes, name, code):
        """Given no explicit code, the name is slugged into one."""
        assert attributes.create(AttributeIn(name=name))["code"] == code

    def test_explicit_code_is_normalized(self, attributes):
        assert attributes.create(AttributeIn(name="Color", code="Main Colour"))["code"] == "main-colour"

    def test_unsluggable_name_is_rejected(self, attributes):
        with pytest.raises(ValidationError) as exc_info:
            attributes.create(AttributeIn(name="!!!"))
        assert exc_info.value.code == "SlugRequired"

    def test_duplicate_code(self, attributes, color):
        with pytest.raises(DuplicateKey) as exc_info:
            attributes.create(AttributeIn(name="color"))
        assert exc_info.value.fields == ["code"]

    def test_get_by_id_or_code(self, attributes, color):
        assert attributes.get(color["id"])["name"] == "Color"
        assert attributes.get("COLOR")["id"] == color["id"]

    def test_get_missing(self, attributes):
        with pytest.raises(NotFound):
            attributes.get(str(ObjectId()))

    def test_value_ids_are_assigned(self, color):
        ids = [v["id"] for v in color["values"]]
        assert all(ObjectId.is_valid(i) for i in ids)
        assert len(set(ids)) == 2

    def test_renaming_rederives_code_and_keeps_created_at(self, attributes, color):
        stored = attributes.get(color["id"])

        updated = attributes.update(color["id"], AttributePatch(name="Colour"))

        assert updated["code"] == "colour"
        assert updated["created_at"] == stored["created_at"]

    def test_untouched_name_keeps_code(self, attributes, color):
        assert attributes.update(color["id"], AttributePatch(type="select"))["code"] == "color"

    def test_values_replacement_keeps_supplied_ids(self, attributes, color):
        black = color["values"][0]
        values = [AttributeValue(id=black["id"], label="Jet Black"), AttributeValue(label="Red")]

        updated = attributes.update(color["id"], AttributePatch(values=values))

        assert updated["values"][0] == {"id": black["id"], "label": "Jet Black", "value": None, "meta": None}
        assert updated["values"][1]["label"] == "Red"

    def test_add_update_and_remove_values(self, attributes, color):
        added = attributes.add_value(color["id"], AttributeValueIn(label="Red", value="#ff0000"))
        red = added["values"][-1]
        assert red["label"] == "Red"

        renamed = attributes.update_value("color", red["id"], AttributeValuePatch(label="Crimson"))
        assert renamed["values"][-1] == {"id": red["id"], "label": "Crimson", "value": "#ff0000", "meta": None}

        result = attributes.remove_values("color", [red["id"], "unknown"])
        assert result["removed"] == 1
        assert [v["label"] for v in result["attribute"]["values"]] == ["Black", "White"]

    def test_update_missing_value(self, attributes, color):
        with pytest.raises(NotFound):
            attributes.update_value(color["id"], str(ObjectId()), AttributeValuePatch(label="x"))

    def test_update_value_with_malformed_id(self, attributes, color):
        with pytest.raises(ValidationError) as exc_info:
            attributes.update_value(color["id"], "nope", AttributeValuePatch(label="x"))
        assert exc_info.value.code == "InvalidPayload"

    def test_remove_nothing(self, attributes, color):
        with pytest.raises(NotFound):
            attributes.remove_values(color["id"], [str(ObjectId())])
        with pytest.raises(ValidationError):
            attributes.remove_values(color["id"], [])

    def test_delete_many(self, attributes, color, size):
        assert attributes.delete_many([color["id"], size["id"], "junk"]) == 2
        with pytest.raises(NotFound):
            attributes.delete_many([color["id"]])

    def test_list_search_and_meta(self, attributes, color, size):
        result = attributes.list(ListQuery(search="col", sort_by="name", order="asc"))

        assert [a["code"] for a in result["items"]] == ["color"]
        assert result["meta"]["total"] == 1
        assert result["meta"]["sort_by"] == "name"
        assert result["meta"]["order"] == "asc"

    def test_list_active_filter(self, attributes, color, size):
        attributes.update(size["id"], AttributePatch(is_active=False))

        result = attributes.list(ListQuery(is_active=False))

        assert [a["code"] for a in result["items"]] == ["size"]

    def test_value_ids_must_be_object_ids(self):
        with pytest.raises(SchemaError):
            AttributeValue(id="black", label="Black")
        with pytest.raises(SchemaError):
            AttributeIn(name="Color", values=[{"id": "black", "label": "Black"}])

    def test_supplied_value_id_can_be_patched(self, attributes):
        supplied = str(ObjectId())
        attributes.create(AttributeIn(name="Color", values=[AttributeValue(id=supplied, label="Black")]))

        updated = attributes.update_value("color", supplied, AttributeValuePatch(label="Jet Black"))

        assert updated["values"][0]["label"] == "Jet Black"


# ======================================================================
# Categories
# ======================================================================


class TestCategories:
    def test_slug_derived_from_name(self, categories):
        assert categories.create(CategoryIn(name="Summer Shoes"))["slug"] == "summer-shoes"

    def test_duplicate_name(self, categories):
        categories.create(CategoryIn(name="Shoes"))
        with pytest.raises(DuplicateKey) as exc_info:
            categories.create(CategoryIn(name="Shoes", slug="other-shoes"))
        assert exc_info.value.fields == ["name"]

    def test_rename_rederives_slug(self, categories):
        created = categories.create(CategoryIn(name="Shoes"))
        assert categories.update(created["id"], CategoryPatch(name="Boots"))["slug"] == "boots"

    def test_override_wins(self, categories):
        categories.create(CategoryIn(name="Shoes"))
        assert categories.update("shoes", CategoryPatch(name="Boots", slug="Winter Boots"))["slug"] == "winter-boots"

    def test_unchanged_name_keeps_slug(self, categories):
        created = categories.create(CategoryIn(name="Shoes", slug="legacy"))
        updated = categories.update(created["id"], CategoryPatch(description="All shoes"))

        assert updated["slug"] == "legacy"
        assert updated["description"] == "All shoes"

    def test_invalid_image_url(self, categories):
        with pytest.raises(SchemaError):
            CategoryIn(name="Shoes", image_url="ftp://files/shoe.png")

    def test_delete(self, categories):
        created = categories.create(CategoryIn(name="Shoes"))
        categories.delete(created["id"])
        with pytest.raises(NotFound):
            categories.get("shoes")
        with pytest.raises(NotFound):
            categories.delete("shoes")


# ======================================================================
# Banners
# ======================================================================


def banner(title, **fields):
    return BannerIn(title=title, image_url=f"https://cdn.example.com/{title}.png", **fields)


class TestBanners:
    def test_now_only_returns_live_banners(self, banners):
        banners.create(banner("always", position=2))
        banners.create(banner("running", position=1, start_date=NOW - timedelta(days=1), end_date=NOW + timedelta(days=1)))
        banners.create(banner("future", start_date=NOW + timedelta(days=1)))
        banners.create(banner("expired", end_date=NOW - timedelta(days=1)))
        banners.create(banner("hidden", is_active=False))

        live = banners.list(ListQuery(), now_only=True, now=NOW)

        assert [b["title"] for b in live["items"]] == ["running", "always"]
        assert live["total"] == 2
        assert banners.list(ListQuery())["total"] == 5

    def test_end_before_start_is_rejected(self, banners):
        with pytest.raises(SchemaError):
            banners.create(banner("bad", start_date=NOW, end_date=NOW - timedelta(days=1)))

    def test_update_and_delete(self, banners):
        created = banners.create(banner("promo"))

        updated = banners.update(created["id"], BannerPatch(subtitle="Now 20% off", position=5))
        assert (updated["subtitle"], updated["position"]) == ("Now 20% off", 5)
        assert banners.get(created["id"])["position"] == 5

        banners.delete(created["id"])
        with pytest.raises(NotFound):
            banners.get(created["id"])
        with pytest.raises(NotFound):
            banners.delete("not-an-id")


# ======================================================================
# Products
# ======================================================================


@pytest.fixture
def tee(products):
    return products.create(product_payload(price=100.0, stock=5, brand="Acme"))


@pytest.fixture
def shirt(products, color, size):
    return products.create(
        product_payload(
            title="Shirt",
            main_attribute_id=color["id"],
            variants=[
                variant_payload(color, size, "Black", "S", stock=5),
                variant_payload(color, size, "White", "M", stock=7, price=90.0),
            ],
        )
    )


class TestProductWrites:
    def test_simple_product(self, tee):
        assert tee["slug"] == "plain-tee"
        assert tee["total_stock"] == 5
        assert tee["main_attribute_id"] is None
        assert "sale_price" not in tee

    def test_variant_product_totals(self, catalog, shirt):
        """Given variants with stock 5 and 7, total_stock is 12 and no top-level stock is stored."""
        stored = catalog.products.find_by_id(shirt["id"])

        assert stored["total_stock"] == 12
        assert "stock" not in stored
        assert "price" not in stored
        assert all(ObjectId.is_valid(v["id"]) for v in stored["variants"])

    def test_simple_product_needs_price_and_stock(self, products):
        with pytest.raises(SimpleProductRequiresPriceAndStock):
            products.create(product_payload(price=10.0))

    def test_coverage_enforced_on_create(self, products, color, size):
        payload = variant_payload(color, size, "Black", "S")
        payload["values"] = payload["values"][1:]

        with pytest.raises(MainAttributeCoverageMissing) as exc_info:
            products.create(product_payload(main_attribute_id=color["id"], variants=[payload]))
        assert exc_info.value.variant == "BLACK-S"

    def test_duplicate_slug(self, products, tee):
        with pytest.raises(DuplicateKey) as exc_info:
            products.create(product_payload(price=1.0, stock=1))
        assert exc_info.value.fields == ["slug"]

    def test_invalid_category_id(self, products):
        with pytest.raises(ValidationError) as exc_info:
            products.create(product_payload(price=1.0, stock=1, category="shoes"))
        assert exc_info.value.field == "category"

    def test_patch_revalidates_merged_product(self, products, tee):
        """Given a stored price of 100, a patch touching only sale_price still checks it against price."""
        with pytest.raises(InvalidSimplePricing) as exc_info:
            products.update(tee["id"], ProductPatch(sale_price=150.0))
        assert exc_info.value.field == "sale_price"

    def test_patch_keeps_untouched_fields(self, products, tee):
        updated = products.update(tee["id"], ProductPatch(sale_price=80.0))

        assert updated["sale_price"] == 80.0
        assert updated["price"] == 100.0
        assert updated["brand"] == "Acme"

    def test_explicit_null_clears_field(self, products, tee):
        products.update(tee["id"], ProductPatch(sale_price=80.0))
        updated = products.update(tee["id"], ProductPatch.model_validate({"sale_price": None}))
        assert "sale_price" not in updated

    def test_switch_to_variants_drops_simple_pricing(self, products, tee, color, size):
        updated = products.update(
            "plain-tee",
            ProductPatch(main_attribute_id=color["id"], variants=[variant_payload(color, size, "Black", "S", stock=2)]),
        )

        assert updated["total_stock"] == 2
        assert "price" not in updated
        assert "stock" not in updated

    def test_primary_image_cannot_be_cleared(self, catalog, products, tee):
        """Given a stored product, a patch nulling image_url fails and the image stays."""
        with pytest.raises(SchemaError):
            products.update(tee["id"], ProductPatch.model_validate({"image_url": None}))

        assert catalog.products.find_by_id(tee["id"])["image_url"] == "https://cdn.example.com/tee.png"

    def test_retitle_rederives_slug(self, products, tee):
        assert products.update(tee["id"], ProductPatch(title="Fancy Tee"))["slug"] == "fancy-tee"

    def test_delete_and_bulk_delete(self, products, tee, shirt):
        products.delete("plain-tee")
        with pytest.raises(NotFound):
            products.get(tee["id"])

        result = products.bulk_delete([shirt["id"], tee["id"]])
        assert result["deleted_count"] == 1

    def test_bulk_delete_needs_ids(self, products):
        with pytest.raises(ValidationError) as exc_info:
            products.bulk_delete([])
        assert exc_info.value.code == "InvalidPayload"


class TestProductReads:
    def test_admin_detail_resolves_variants(self, products, shirt):
        detail = products.get(shirt["id"], view=ADMIN)

        first = detail["variants"][0]
        labels = [block["values"][0]["label"] for block in first["attributes_resolved"]]
        assert labels == ["Black", "S"]
        assert first["sku"] == "BLACK-S"
        assert detail["has_variants"] is True

    def test_mobile_detail(self, products, shirt, color, size):
        detail = products.get("shirt", view=MOBILE)

        assert detail["main_attribute"]["id"] == color["id"]
        assert [o["label"] for o in detail["main_options"]] == ["Black", "White"]
        assert [o["total_stock"] for o in detail["main_options"]] == [5, 7]
        assert [a["id"] for a in detail["secondary_attributes"]] == [size["id"]]
        assert "main_attribute_id" not in detail

    def test_deleted_value_degrades_to_stub(self, products, attributes, shirt, color):
        """Given a since-deleted value, the detail read still succeeds with a null record."""
        black = value_id(color, "Black")
        attributes.remove_values(color["id"], [black])

        detail = products.get(shirt["id"], view=ADMIN)

        block = detail["variants"][0]["attributes_resolved"][0]
        assert block["values"] == [{"id": black, "label": None, "value": None, "meta": None}]

    def test_deleted_attribute_degrades_to_stub(self, products, attributes, shirt, size):
        attributes.delete_many([size["id"]])

        detail = products.get(shirt["id"], view=MOBILE)

        assert detail["secondary_attributes"] == [
            {"id": size["id"], "name": None, "code": None, "type": None, "is_active": None}
        ]

    def test_mobile_hides_inactive_product(self, products, tee):
        products.update(tee["id"], ProductPatch(is_active=False))

        assert products.get(tee["id"], view=ADMIN)["is_active"] is False
        with pytest.raises(NotFound):
            products.get(tee["id"], view=MOBILE)


class TestProductListing:
    @pytest.fixture
    def stocked(self, products, color, size):
        products.create(product_payload(title="Budget", price=50.0, stock=1))
        products.create(product_payload(title="Discounted", price=200.0, sale_price=40.0, stock=1))
        products.create(
            product_payload(title="Expired Offer", price=100.0, sale_price=10.0, stock=0, offer_end=NOW - timedelta(days=1))
        )
        products.create(
            product_payload(
                title="Range",
                main_attribute_id=color["id"],
                variants=[
                    variant_payload(color, size, "Black", "S", price=30.0),
                    variant_payload(color, size, "White", "M", price=300.0),
                ],
            )
        )
        products.create(product_payload(title="Hidden", price=5.0, stock=1, is_active=False))

    def titles(self, result):
        return [item["title"] for item in result["items"]]

    def test_max_price_matches_both_modes(self, products, stocked):
        result = products.list(ProductQuery(max_price=60.0, sort="title"), view=ADMIN, now=NOW)
        assert self.titles(result) == ["Budget", "Discounted", "Hidden", "Range"]

    def test_closed_offer_is_not_a_price_match(self, products, stocked):
        result = products.list(ProductQuery(max_price=20.0, sort="title"), view=ADMIN, now=NOW)
        assert self.titles(result) == ["Hidden"]

    def test_min_price_through_a_variant(self, products, stocked):
        result = products.list(ProductQuery(min_price=250.0), view=ADMIN, now=NOW)
        assert self.titles(result) == ["Range"]

    def test_mobile_shows_active_only(self, products, stocked):
        mobile = products.list(ProductQuery(sort="title"), view=MOBILE, now=NOW)
        admin = products.list(ProductQuery(sort="title"), view=ADMIN, now=NOW)

        assert "Hidden" not in self.titles(mobile)
        assert mobile["total"] == 4
        assert admin["total"] == 5

    def test_mobile_items_carry_price_range(self, products, stocked):
        items = {i["title"]: i for i in products.list(ProductQuery(), view=MOBILE, now=NOW)["items"]}

        assert (items["Range"]["lowest_price"], items["Range"]["highest_price"]) == (30.0, 300.0)
        assert items["Discounted"]["lowest_price"] == 40.0
        assert items["Expired Offer"]["lowest_price"] == 100.0
        assert "main_attribute_id" not in items["Range"]

    def test_in_stock_and_search(self, products, stocked):
        in_stock = products.list(ProductQuery(in_stock=True, search="offer"), view=ADMIN, now=NOW)
        assert in_stock["total"] == 0

        found = products.list(ProductQuery(search="OFFER"), view=ADMIN, now=NOW)
        assert self.titles(found) == ["Expired Offer"]

    def test_paging(self, products, stocked):
        result = products.list(ProductQuery(page=2, limit=2, sort="title"), view=ADMIN, now=NOW)

        assert self.titles(result) == ["Expired Offer", "Hidden"]
        assert (result["page"], result["limit"], result["total"], result["pages"]) == (2, 2, 5, 3)


# ======================================================================
# Store
# ======================================================================


class TestDocumentStore:
    def test_replace_of_vanished_document_is_not_found(self, catalog, banners):
        """Given a banner deleted after it was loaded, writing it back fails."""
        created = banners.create(banner("gone"))
        catalog.banners.delete_one({"_id": ObjectId(created["id"])})

        with pytest.raises(NotFound):
            catalog.banners.replace(created["id"], {"title": "gone", "image_url": created["image_url"]})

        assert catalog.banners.count({}) == 0
