"""Tests for request normalization and cache keys."""
from __future__ import annotations

import pytest

from marketsearch.config import Settings
from marketsearch.filters import (
    SortMode,
    SpecBound,
    compile_filters,
    parse_id_list,
    parse_sort,
    parse_spec_filters,
    term_too_short,
)
from marketsearch.models import SearchRequest


def test_term_length_uses_trimmed_text():
    assert term_too_short("  a  ")
    assert term_too_short(None)
    assert not term_too_short(" ab ")


def test_id_lists_become_sorted_integer_sets():
    assert parse_id_list("6, 5,x,5") == (5, 6)
    assert parse_id_list([3, "2"]) == (2, 3)
    assert parse_id_list(None) == ()


def test_unknown_sort_falls_back_to_relevance():
    assert parse_sort("PRICE_ASC") is SortMode.PRICE_ASC
    assert parse_sort("cheapest") is SortMode.RELEVANCE
    assert parse_sort(None) is SortMode.RELEVANCE


def test_compile_defaults():
    filters = compile_filters(SearchRequest(term="  galaxy   phone "))

    assert filters.term == "galaxy phone"
    assert filters.page == 1
    assert filters.page_size == 10
    assert filters.sort is SortMode.RELEVANCE
    assert filters.owner_only is False
    assert filters.owner_id is None
    assert filters.offset == 0


def test_compile_clamps_paging_and_coerces_numbers():
    config = Settings(max_page_size=50)
    filters = compile_filters(
        SearchRequest(term="phone", page="-3", limit="500", priceMin="10.5", priceMax="abc", minRating="nan"),
        config,
    )

    assert filters.page == 1
    assert filters.page_size == 50
    assert filters.offset == 0
    assert filters.price_min == 10.5
    assert filters.price_max is None
    assert filters.min_rating is None


def test_owner_scope_needs_a_caller():
    assert compile_filters(SearchRequest(term="phone", isOwner="me", userId="7")).owner_id == 7
    assert compile_filters(SearchRequest(term="phone", isOwner="me")).owner_id is None
    assert compile_filters(SearchRequest(term="phone", userId=7)).owner_id is None


def test_compiling_a_short_term_is_an_error():
    with pytest.raises(ValueError):
        compile_filters(SearchRequest(term="a"))


def test_spec_filters_parse_ranges_and_skip_junk():
    specs = parse_spec_filters('{"ram": ["8GB", "8GB", "16GB"], "screen_min": ["x", "5.5"], "color": [], "weight_max": "2"}')

    by_key = {(spec.key, spec.bound): spec for spec in specs}
    assert by_key[("ram", SpecBound.EQUALS)].values == ("16GB", "8GB")
    assert by_key[("screen", SpecBound.MIN)].number == 5.5
    assert by_key[("weight", SpecBound.MAX)].number == 2.0
    assert ("color", SpecBound.EQUALS) not in by_key


def test_malformed_spec_filters_are_ignored():
    assert parse_spec_filters("{not json") == ()
    assert parse_spec_filters('["ram"]') == ()


@pytest.mark.parametrize(
    "changes",
    [
        {"page": 2},
        {"limit": 20},
        {"sort": "price_desc"},
        {"categoryIds": "5"},
        {"brandIds": "9"},
        {"priceMin": "10"},
        {"priceMax": "90"},
        {"minRating": "4"},
        {"hasDiscount": "true"},
        {"userId": 3},
        {"specFilters": '{"ram": ["8GB"]}'},
        {"term": "phones"},
    ],
)
def test_any_changed_parameter_changes_the_cache_key(changes):
    base = {"term": "phone", "page": 1, "limit": 10}
    original = compile_filters(SearchRequest(**base)).cache_key()
    changed = compile_filters(SearchRequest(**{**base, **changes})).cache_key()

    assert original != changed
    assert changed.startswith("search:")


def test_equivalent_requests_share_a_cache_key():
    left = compile_filters(SearchRequest(term=" phone ", categoryIds="6,5"))
    right = compile_filters(SearchRequest(term="phone", categoryIds=[5, 6, 6]))

    assert left == right
    assert left.cache_key() == right.cache_key()
