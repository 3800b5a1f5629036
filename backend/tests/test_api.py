import pytest
from fastapi.testclient import TestClient

import app as storefront
from catalog.errors import StoreError
from catalog.store import DataFrameCatalogStore


class DownStore(DataFrameCatalogStore):
    async def fetch_page(self, filters, page, page_size):
        raise StoreError("database unreachable")

    async def find_related(self, query, limit):
        raise StoreError("database unreachable")


@pytest.fixture
def client(monkeypatch, store):
    monkeypatch.setattr(storefront, "STORE", store)
    return TestClient(storefront.app)


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["catalog_size"] == 7


def test_not_ready(monkeypatch):
    monkeypatch.setattr(storefront, "STORE", None)
    res = TestClient(storefront.app).get("/catalog")
    assert res.status_code == 500


# Filters are read from the query string and echoed back canonically
def test_catalog_filters_and_pages(client):
    res = client.get("/catalog?types=sapphire&colors=blue&utm=x&pageSize=1")
    assert res.status_code == 200
    body = res.json()
    assert [i["id"] for i in body["items"]] == ["g-1"]
    assert body["pagination"]["total_items"] == 2
    assert body["pagination"]["has_next_page"]
    assert body["query"] == "colors=blue&types=sapphire"

    second = client.get("/catalog?types=sapphire&colors=blue&pageSize=1&page=2").json()
    assert [i["id"] for i in second["items"]] == ["g-7"]
    assert not second["pagination"]["has_next_page"]


def test_catalog_store_failure_is_503(monkeypatch, catalog_df):
    monkeypatch.setattr(storefront, "STORE", DownStore(catalog_df))
    res = TestClient(storefront.app).get("/catalog")
    assert res.status_code == 503


def test_facets_endpoint(client):
    body = client.get("/catalog/facets?colors=blue").json()
    colors = {o["value"]: o for o in body["facets"]["colors"]}
    assert colors["blue"]["selected"]
    assert colors["pink"]["count"] == 2
    types = {o["value"]: o["count"] for o in body["facets"]["types"]}
    assert types == {"sapphire": 2}
    assert body["price_bounds"] == {"min": 95000, "max": 250000}


def test_gemstone_lookup(client):
    assert client.get("/gemstones/g-3").json()["type"] == "ruby"
    assert client.get("/gemstones/nope").status_code == 404


def test_related_statuses(client, monkeypatch, catalog_df):
    body = client.get("/related/g-1").json()
    assert body["status"] == "ok"
    ids = [p["id"] for p in body["products"]]
    assert "g-1" not in ids and "g-4" not in ids
    assert body["tiers"][0] == "same_type_and_price"

    assert client.get("/related/g-6").json()["status"] == "empty"

    monkeypatch.setattr(storefront, "STORE", DownStore(catalog_df))
    down = TestClient(storefront.app).get("/related/g-1").json()
    assert down == {"status": "unavailable", "products": [], "tiers": []}


def test_meta_and_quick_filters(client):
    meta = client.get("/meta").json()
    assert meta["clarities"][:3] == ["FL", "IF", "VVS1"]
    assert meta["price_max"] == 2450000
    presets = client.get("/quick-filters").json()["quick_filters"]
    assert presets
    assert all({"id", "label", "description", "query"} <= set(p) for p in presets)


def test_catalog_reports_fuzzy_fallback(client):
    exact = client.get("/catalog?search=ruby").json()
    assert not exact["used_fuzzy"]
    fuzzy = client.get("/catalog?search=saphire").json()
    assert fuzzy["used_fuzzy"]
    assert fuzzy["pagination"]["total_items"] == 3


def test_search_suggestions(client):
    body = client.get("/search/suggestions?q=rubby").json()
    assert body["query"] == "rubby"
    assert body["suggestions"][0] == "ruby"
    assert client.get("/search/suggestions").json()["suggestions"] == []
