"""Query building for the PostgreSQL store; no database required."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from marketsearch.catalog import CatalogError
from marketsearch.filters import SearchFilters, SortMode, SpecBound, SpecFilter
from marketsearch.scoring import MatchThresholds, ScoreWeights
from marketsearch.sql_catalog import ELIGIBLE_PRODUCT_SQL, SqlCatalog, _like_escape, build_scored_query

SINCE = datetime(2024, 5, 1, tzinfo=timezone.utc)


def filters(**overrides):
    base = {"term": "Samsung Phone", "page": 1, "page_size": 10}
    base.update(overrides)
    return SearchFilters(**base)


def test_eligibility_rules_are_part_of_every_scored_query():
    query = build_scored_query(filters(), "Samsung Phone", SINCE, MatchThresholds())

    for fragment in (
        "p.\"productType\" IN ('P', 'F')",
        "pp.\"askForPrice\" = 'false'",
        "pp.\"isCustomProduct\" = 'false'",
        "pp.\"sellType\" = 'NORMALSELL'",
        "p.\"deletedAt\" IS NULL",
    ):
        assert fragment in query.select_sql
        assert fragment in ELIGIBLE_PRODUCT_SQL


def test_term_is_normalized_and_phonetic_codes_are_bound():
    query = build_scored_query(filters(), "Samsung  Phone!", SINCE, MatchThresholds())

    assert query.params["term"] == "samsung phone"
    assert query.params["since"] == SINCE
    assert "FN" in query.params["phonetic_codes"]
    assert "dmetaphone(w.token) = ANY(:phonetic_codes)" in query.select_sql


def test_short_tokens_disable_the_phonetic_channel():
    query = build_scored_query(filters(term="tv"), "tv", SINCE, MatchThresholds())

    assert "phonetic_codes" not in query.params
    assert "FALSE AS phonetic_match" in " ".join(query.select_sql.split())


def test_count_query_shares_the_match_set():
    query = build_scored_query(filters(), "phone", SINCE, MatchThresholds())

    assert query.count_sql.startswith("SELECT COUNT(*)")
    assert "LIMIT" not in query.count_sql
    assert "OFFSET" not in query.count_sql
    assert "page_size" not in query.params
    assert "s.name_similarity > :name_threshold" in query.count_sql
    assert "s.name_similarity > :name_threshold" in query.select_sql
    assert query.params["name_threshold"] == 0.15
    assert query.params["prefix_threshold"] == 0.5
    assert query.params["brand_threshold"] == 0.3


def test_page_query_orders_and_paginates_the_whole_match_set():
    query = build_scored_query(
        filters(page=52, page_size=10), "phone", SINCE, MatchThresholds(), ScoreWeights(clicks=0.02)
    )
    flat = " ".join(query.select_sql.split())

    assert flat.endswith("ORDER BY m.score DESC, m.product_id LIMIT :page_size OFFSET :offset")
    assert query.page_params["page_size"] == 10
    assert query.page_params["offset"] == 510
    assert query.page_params["w_lexical"] == 10.0
    assert query.page_params["w_clicks"] == 0.02
    assert ":w_rating * GREATEST(s.avg_rating, 0) * LN(GREATEST(s.review_count, 0) + 1)" in flat


def test_every_sort_mode_has_a_deterministic_order_clause():
    for sort in SortMode:
        query = build_scored_query(filters(sort=sort), "phone", SINCE, MatchThresholds())
        order = " ".join(query.select_sql.split()).split("ORDER BY ")[1]

        assert order.endswith("m.product_id LIMIT :page_size OFFSET :offset")

    price = build_scored_query(filters(sort=SortMode.PRICE_ASC), "phone", SINCE, MatchThresholds())
    assert "ORDER BY m.offer_price ASC, m.score DESC, m.product_id" in " ".join(price.select_sql.split())


def test_filters_become_bound_clauses():
    compiled = filters(
        category_ids=(5, 6),
        brand_ids=(9,),
        price_min=10.0,
        price_max=90.0,
        min_rating=4.0,
        has_discount=True,
        caller_id=7,
        owner_only=True,
        spec_filters=(
            SpecFilter(key="ram", bound=SpecBound.EQUALS, values=("8GB",)),
            SpecFilter(key="screen", bound=SpecBound.MIN, number=5.5),
        ),
    )
    query = build_scored_query(compiled, "phone", SINCE, MatchThresholds())

    assert query.params["category_ids"] == [5, 6]
    assert query.params["brand_ids"] == [9]
    assert query.params["price_min"] == 10.0
    assert query.params["price_max"] == 90.0
    assert query.params["min_rating"] == 4.0
    assert query.params["owner_id"] == 7
    assert query.params["spec_key_0"] == "ram"
    assert query.params["spec_values_0"] == ["8GB"]
    assert query.params["spec_number_1"] == 5.5
    assert 'sv."numericValue" >= :spec_number_1' in query.select_sql
    assert "COALESCE(dp.\"consumerDiscount\", 0) > 0" in query.select_sql
    assert "COALESCE(rv.avg_rating, 0) >= :min_rating" in query.select_sql


def test_owner_scope_without_caller_is_not_applied():
    query = build_scored_query(filters(owner_only=True), "phone", SINCE, MatchThresholds())

    assert "owner_id" not in query.params
    assert '"adminId"' not in query.select_sql


def test_like_wildcards_are_escaped():
    assert _like_escape("100%_off!") == "100!%!_off!!"


def test_ping_against_a_live_engine():
    catalog = SqlCatalog(create_engine("sqlite://"), MatchThresholds())

    assert catalog.ping() is True
    assert catalog.name == "postgres"


class DownEngine:
    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_driver_errors_become_catalog_errors():
    catalog = SqlCatalog(DownEngine(), MatchThresholds())

    assert catalog.ping() is False
    with pytest.raises(CatalogError):
        catalog.count_candidates(filters(), "phone", SINCE)
    with pytest.raises(CatalogError):
        catalog.popular_searches("ph", 5)


def test_empty_inputs_skip_the_database():
    catalog = SqlCatalog(DownEngine(), MatchThresholds())

    assert catalog.hydrate([], caller_id=None) == []
    assert catalog.tags_matching([], 5) == []
    assert catalog.categories_for_tags([]) == []
    assert catalog.sibling_tags([], [1], 8) == []
    assert catalog.recent_searches("ph", None, None, 5) == []
