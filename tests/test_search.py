"""Tests for catalog search."""

import pytest

import reviews
import search


@pytest.fixture
def catalog_items(make_product):
    return {
        "plywood": make_product(tags=["sheet"]),
        "shutter": make_product(
            name="Shutter Ply", description="Film faced shutter board", price=520, stock=0, tags=["sheet", "formwork"]
        ),
        "door": make_product(
            name="Kiaat Front Door", description="Solid kiaat door", category="Doors",
            product_type="Exterior Door", wood_type="Kiaat", color="Golden Brown", price=6850, stock=4,
            featured=True,
        ),
        "hidden": make_product(name="Discontinued Board", is_available=False),
    }


class TestAdvancedSearch:
    def test_text_search(self, mongo, catalog_items):
        result = search.advanced_search(mongo, search="kiaat")
        assert [p["name"] for p in result["products"]] == ["Kiaat Front Door"]
        assert result["applied_filters"]["search"] == "kiaat"

    def test_search_escapes_regex(self, mongo, catalog_items):
        assert search.advanced_search(mongo, search="(")["products"] == []

    def test_unavailable_hidden(self, mongo, catalog_items):
        names = {p["name"] for p in search.advanced_search(mongo)["products"]}
        assert "Discontinued Board" not in names
        assert len(names) == 3

    def test_filters(self, mongo, catalog_items):
        assert len(search.advanced_search(mongo, category=["Plywood"])["products"]) == 2
        assert len(search.advanced_search(mongo, category=["Plywood", "Doors"])["products"]) == 3
        assert len(search.advanced_search(mongo, in_stock=True, category=["Plywood"])["products"]) == 1
        assert len(search.advanced_search(mongo, featured=True)["products"]) == 1
        assert len(search.advanced_search(mongo, tags=["formwork"])["products"]) == 1

        result = search.advanced_search(mongo, price_min=500, price_max=1000)
        assert [p["name"] for p in result["products"]] == ["Shutter Ply"]
        assert result["applied_filters"]["price_range"] == {"min": 500, "max": 1000}

    def test_sort_by_price(self, mongo, catalog_items):
        result = search.advanced_search(mongo, sort_by="price-asc")
        assert [p["price"] for p in result["products"]] == [450, 520, 6850]

    def test_pagination(self, mongo, catalog_items):
        result = search.advanced_search(mongo, sort_by="name", limit=2, page=2)
        assert [p["name"] for p in result["products"]] == ["Shutter Ply"]
        assert result["pagination"] == {"total": 3, "page": 2, "pages": 2, "limit": 2}

    def test_ratings(self, mongo, catalog_items, customer, other_customer):
        door_id = str(catalog_items["door"]["_id"])
        for user, rating in ((customer, 5), (other_customer, 4)):
            review = reviews.create_review(mongo, user, door_id, rating, "Great", "Heavy and solid")
            reviews.set_review_status(mongo, review["id"], "approved")

        result = search.advanced_search(mongo, min_rating=4)
        assert [p["name"] for p in result["products"]] == ["Kiaat Front Door"]
        assert result["products"][0]["average_rating"] == pytest.approx(4.5)
        assert result["products"][0]["review_count"] == 2


class TestSearchHelpers:
    def test_filter_options(self, mongo, catalog_items):
        options = search.filter_options(mongo)
        assert options["categories"] == ["Doors", "Plywood"]
        assert options["wood_types"] == ["Kiaat", "Pine"]
        assert options["price_range"] == {"min": 450, "max": 6850, "average": 2607}

    def test_similar_products(self, mongo, catalog_items):
        similar = search.similar_products(mongo, str(catalog_items["plywood"]["_id"]))
        assert [p["name"] for p in similar] == ["Shutter Ply"]

    def test_suggestions(self, mongo, catalog_items):
        assert search.suggestions(mongo, "k") == {"suggestions": [], "count": 0}
        assert search.suggestions(mongo, "ply")["suggestions"] == ["Premium Pine Plywood", "Shutter Ply"]

    def test_api(self, client, catalog_items):
        response = client.get("/api/search/advanced", params={"search": "door", "category": ["Doors"]})
        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1
        assert client.get("/api/search/suggestions", params={"q": "kiaat"}).json()["count"] == 1
