"""Autocomplete channels."""
from __future__ import annotations

import asyncio

from marketsearch.catalog import CatalogError
from marketsearch.memory_catalog import MemoryCatalog
from marketsearch.suggestions import suggest


class NoCategoriesCatalog(MemoryCatalog):
    def category_suggestions(self, term, limit):
        raise CatalogError("Category table locked")


def test_short_term_returns_empty_channels(counting_catalog):
    response = asyncio.run(suggest(counting_catalog, "p", user_id=42))

    assert response["success"] is True
    assert response["data"] == {"products": [], "categories": [], "popularSearches": [], "recentSearches": []}
    assert counting_catalog.calls == []


def test_all_channels(catalog):
    data = asyncio.run(suggest(catalog, "ph", user_id=42))["data"]

    assert data["products"] == [
        {"id": 4, "productName": "Apple Phone Case"},
        {"id": 2, "productName": "Nokia Rugged Phone"},
        {"id": 1, "productName": "Samsung Galaxy Phone"},
    ]
    assert data["categories"] == [{"id": 1, "name": "Mobile Phones"}]
    assert data["popularSearches"] == ["phone case", "phone"]
    assert data["recentSearches"] == ["phone case", "phone"]


def test_recent_searches_need_an_identity(counting_catalog):
    data = asyncio.run(suggest(counting_catalog, "ph"))["data"]

    assert data["recentSearches"] == []
    assert "recent_searches" not in counting_catalog.calls


def test_device_identity_is_enough(catalog):
    data = asyncio.run(suggest(catalog, "ph", device_id="dev-1"))["data"]

    assert data["recentSearches"] == ["phone case"]


def test_failing_channel_degrades_to_empty(snapshot, thresholds):
    data = asyncio.run(suggest(NoCategoriesCatalog(snapshot, thresholds), "ph", user_id=42))["data"]

    assert data["categories"] == []
    assert len(data["products"]) == 3
    assert data["popularSearches"] == ["phone case", "phone"]
