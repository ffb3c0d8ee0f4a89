"""Shared fixtures: a small marketplace snapshot and catalog wrappers."""
from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import pytest

from marketsearch.cache import InMemoryCache
from marketsearch.catalog import CatalogError
from marketsearch.memory_catalog import MemoryCatalog
from marketsearch.scoring import MatchThresholds


def days_ago(days: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


def _price(price_id, offer, full, **overrides):
    row = {
        "id": price_id,
        "offerPrice": offer,
        "productPrice": full,
        "status": "ACTIVE",
        "sellType": "NORMALSELL",
        "askForPrice": "false",
        "isCustomProduct": "false",
        "consumerDiscount": 0,
        "vendorDiscount": 0,
        "stock": 10,
    }
    row.update(overrides)
    return row


def _product(product_id, name, category_id, brand_id, offer, full, created, **overrides):
    row = {
        "id": product_id,
        "productName": name,
        "skuNo": f"SKU-{product_id:04d}",
        "status": "ACTIVE",
        "deletedAt": None,
        "productType": "P",
        "categoryId": category_id,
        "brandId": brand_id,
        "adminId": 1,
        "offerPrice": offer,
        "productPrice": full,
        "createdAt": created,
        "shortDescription": "",
        "description": "",
        "images": [{"id": product_id * 10, "image": f"https://cdn.example/{product_id}.jpg", "video": None}],
        "prices": [_price(product_id * 100, offer, full)],
        "reviews": [],
        "wishlist": [],
        "specs": [],
    }
    row.update(overrides)
    return row


def build_snapshot() -> dict:
    return {
        "brands": [
            {"id": 10, "brandName": "Samsung", "status": "ACTIVE"},
            {"id": 11, "brandName": "Nokia", "status": "ACTIVE"},
            {"id": 12, "brandName": "Bosch", "status": "ACTIVE"},
            {"id": 13, "brandName": "Apple", "status": "ACTIVE"},
        ],
        "categories": [
            {"id": 1, "name": "Mobile Phones", "status": "ACTIVE"},
            {"id": 2, "name": "Power Tools", "status": "ACTIVE"},
            {"id": 3, "name": "Accessories", "status": "ACTIVE"},
        ],
        "tags": [
            {"id": 1, "tagName": "smartphone", "status": "ACTIVE"},
            {"id": 2, "tagName": "android", "status": "ACTIVE"},
            {"id": 3, "tagName": "charger", "status": "ACTIVE"},
            {"id": 4, "tagName": "cordless", "status": "ACTIVE"},
            {"id": 5, "tagName": "drill bits", "status": "ACTIVE"},
            {"id": 6, "tagName": "screen protector", "status": "ACTIVE"},
        ],
        "categoryTags": [
            {"categoryId": 1, "tagId": 1, "status": "ACTIVE"},
            {"categoryId": 1, "tagId": 2, "status": "ACTIVE"},
            {"categoryId": 1, "tagId": 3, "status": "ACTIVE"},
            {"categoryId": 3, "tagId": 3, "status": "ACTIVE"},
            {"categoryId": 3, "tagId": 6, "status": "ACTIVE"},
            {"categoryId": 2, "tagId": 4, "status": "ACTIVE"},
            {"categoryId": 2, "tagId": 5, "status": "ACTIVE"},
        ],
        "products": [
            _product(
                1,
                "Samsung Galaxy Phone",
                1,
                10,
                500,
                600,
                "2024-01-10T09:00:00Z",
                reviews=[{"rating": 5}, {"rating": 5}, {"rating": 4}],
                wishlist=[42],
                specs=[{"key": "ram", "value": "8GB", "numericValue": 8}],
            ),
            _product(
                2,
                "Nokia Rugged Phone",
                1,
                11,
                150,
                150,
                "2024-03-01T09:00:00Z",
                reviews=[{"rating": 4}],
                specs=[{"key": "ram", "value": "4GB", "numericValue": 4}],
            ),
            _product(3, "Bosch Cordless Drill", 2, 12, 120, 140, "2023-12-01T09:00:00Z", adminId=7),
            _product(
                4,
                "Apple Phone Case",
                3,
                13,
                20,
                20,
                "2024-02-01T09:00:00Z",
                prices=[_price(400, 20, 20, consumerDiscount=5)],
            ),
            _product(5, "Inactive Phone", 1, 11, 90, 90, "2024-01-01T09:00:00Z", status="INACTIVE"),
            _product(
                6,
                "Quote Phone",
                1,
                11,
                80,
                80,
                "2024-01-01T09:00:00Z",
                prices=[_price(600, 80, 80, askForPrice="true")],
            ),
        ],
        "clicks": [
            {"productId": 2, "userId": 42, "createdAt": days_ago(1)},
            {"productId": 2, "userId": 43, "createdAt": days_ago(2)},
            {"productId": 2, "userId": 44, "createdAt": days_ago(3)},
            {"productId": 4, "userId": 42, "createdAt": days_ago(40)},
        ],
        "views": [
            {"productId": 3, "userId": 42, "viewCount": 4, "lastViewedAt": days_ago(2)},
            {"productId": 1, "userId": 43, "viewCount": 2, "lastViewedAt": days_ago(5)},
        ],
        "searches": [
            {"userId": 42, "searchTerm": "phone case", "createdAt": days_ago(1)},
            {"userId": 42, "searchTerm": "Phone", "createdAt": days_ago(2)},
            {"userId": 42, "searchTerm": "drill", "createdAt": days_ago(3)},
            {"userId": 7, "searchTerm": "phone case", "createdAt": days_ago(4)},
            {"deviceId": "dev-1", "searchTerm": "phone case", "createdAt": days_ago(5)},
            {"userId": 7, "searchTerm": "phone", "createdAt": days_ago(6)},
            {"userId": 8, "searchTerm": "drill", "createdAt": days_ago(2)},
            {"userId": 8, "searchTerm": "phablet", "createdAt": days_ago(1)},
            {"userId": 9, "searchTerm": "phone", "createdAt": days_ago(45)},
        ],
    }


def build_phone_shelf(count: int) -> dict:
    """A snapshot of `count` near-identical phones; the highest id is the cheapest."""
    snapshot = build_snapshot()
    snapshot["products"] = [
        _product(index, f"Phone Model {index}", 1, 11, count + 1 - index, count + 1 - index, "2024-01-01T09:00:00Z")
        for index in range(1, count + 1)
    ]
    snapshot["clicks"] = []
    snapshot["views"] = []
    return snapshot


class CountingCatalog:
    """Delegates to a real catalog and records every store method called."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []

    def __getattr__(self, attr):
        target = getattr(self.inner, attr)
        if not callable(target):
            return target

        def wrapper(*args, **kwargs):
            self.calls.append(attr)
            return target(*args, **kwargs)

        return wrapper


class FailingCatalog:
    """Every store read fails like an unreachable database."""

    name = "failing"

    def __getattr__(self, attr):
        def fail(*args, **kwargs):
            raise CatalogError(f"{attr}: connection refused")

        return fail


@pytest.fixture
def snapshot():
    return copy.deepcopy(build_snapshot())


@pytest.fixture
def thresholds():
    return MatchThresholds()


@pytest.fixture
def catalog(snapshot, thresholds):
    return MemoryCatalog(snapshot, thresholds)


@pytest.fixture
def counting_catalog(catalog):
    return CountingCatalog(catalog)


@pytest.fixture
def cache():
    return InMemoryCache()
