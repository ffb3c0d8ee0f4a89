"""Hydration restores ranked order and derives ratings."""
from __future__ import annotations

from marketsearch.hydration import average_rating, hydrate_page
from marketsearch.memory_catalog import MemoryCatalog
from marketsearch.scoring import CandidateSignals, ScoredCandidate


def scored(product_id, score):
    return ScoredCandidate(product_id=product_id, score=score, signals=CandidateSignals(product_id=product_id))


def test_average_rating_is_floored():
    assert average_rating([{"rating": 5}, {"rating": 5}, {"rating": 4}]) == 4
    assert average_rating([]) == 0
    assert average_rating([{"rating": 1}, {"rating": 2}]) == 1


def test_ranked_order_survives_hydration(catalog):
    records = hydrate_page(catalog, [scored(4, 7.5), scored(1, 2.0), scored(2, 1.0)], caller_id=None)

    assert [record["id"] for record in records] == [4, 1, 2]
    assert [record["relevanceScore"] for record in records] == [7.5, 2.0, 1.0]
    assert records[1]["averageRating"] == 4
    assert records[0]["averageRating"] == 0


def test_products_gone_at_hydration_are_dropped(catalog):
    records = hydrate_page(catalog, [scored(5, 3.0), scored(3, 1.0), scored(999, 0.5)], caller_id=None)

    assert [record["id"] for record in records] == [3]


def test_wishlist_flag_depends_on_caller(catalog):
    page = [scored(1, 1.0)]

    assert hydrate_page(catalog, page, caller_id=42)[0]["inWishlist"] is True
    assert hydrate_page(catalog, page, caller_id=7)[0]["inWishlist"] is False
    assert hydrate_page(catalog, page, caller_id=None)[0]["inWishlist"] is False


def test_cheapest_sellable_price_is_attached(snapshot, thresholds):
    product = snapshot["products"][0]
    product["prices"].append(dict(product["prices"][0], id=101, offerPrice=450))
    product["prices"].append(dict(product["prices"][0], id=102, offerPrice=10, sellType="WHOLESALE"))

    records = hydrate_page(MemoryCatalog(snapshot, thresholds), [scored(1, 1.0)], caller_id=None)

    assert records[0]["productPrices"] == [
        {"id": 101, "offerPrice": 450.0, "productPrice": 600.0, "consumerDiscount": 0, "vendorDiscount": 0, "stock": 10}
    ]


def test_empty_page_skips_the_store():
    class Untouchable:
        def hydrate(self, product_ids, caller_id):
            raise AssertionError("hydrate should not be called")

    assert hydrate_page(Untouchable(), [], caller_id=None) == []
