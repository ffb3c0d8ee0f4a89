"""Main search pipeline: validate, cache, score, correct, rank, hydrate.

The one-shot spelling correction is a small explicit state machine::

    SCORING --(no matches)--> CORRECTING --(new term)--> RESCORING --> DONE
       |                              |
       +--(matches)--> DONE           +--(no usable correction)--> DONE

Store reads are blocking and run through ``asyncio.to_thread``; independent
reads (the ranked page and the total count) are issued concurrently. The
store orders the full match set before cutting the page.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .cache import CacheBackend
from .catalog import CatalogError, CatalogStore
from .config import Settings, settings
from .filters import SearchFilters, compile_filters, term_too_short
from .hydration import hydrate_page
from .models import SearchRequest
from .phonetics import normalize_term
from .scoring import ScoredCandidate, ScoreWeights

logger = logging.getLogger(__name__)

TERM_TOO_SHORT = "Search term too short"
SEARCH_RESULTS = "Search results"
SEARCH_FAILED = "Search failed"


class SearchStage(Enum):
    SCORING = "scoring"
    CORRECTING = "correcting"
    RESCORING = "rescoring"
    DONE = "done"


@dataclass
class SearchState:
    filters: SearchFilters
    stage: SearchStage = SearchStage.SCORING
    page: List[ScoredCandidate] = field(default_factory=list)
    total: int = 0
    suggestion: Optional[str] = None
    corrected: Optional[SearchFilters] = None


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def term_too_short_response() -> Dict[str, Any]:
    return {"success": False, "message": TERM_TOO_SHORT, "data": [], "totalCount": 0}


def activity_since(config: Settings = settings) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=config.activity_window_days)


async def _score(
    catalog: CatalogStore, filters: SearchFilters, since: datetime, config: Settings
) -> Tuple[List[ScoredCandidate], int]:
    page, total = await asyncio.gather(
        asyncio.to_thread(catalog.fetch_page, filters, filters.term, since, ScoreWeights.from_settings(config)),
        asyncio.to_thread(catalog.count_candidates, filters, filters.term, since),
    )
    return page, total


async def _closest_name(catalog: CatalogStore, term: str, threshold: float) -> Optional[str]:
    try:
        return await asyncio.to_thread(catalog.closest_product_name, term, threshold)
    except CatalogError as exc:
        logger.warning("Spelling correction lookup failed for %r: %s", term, exc)
        return None


async def _advance(state: SearchState, catalog: CatalogStore, since: datetime, config: Settings) -> None:
    if state.stage is SearchStage.SCORING:
        state.page, state.total = await _score(catalog, state.filters, since, config)
        state.stage = SearchStage.DONE if state.total else SearchStage.CORRECTING
    elif state.stage is SearchStage.CORRECTING:
        state.suggestion = await _closest_name(catalog, state.filters.term, config.name_similarity_threshold)
        if state.suggestion and normalize_term(state.suggestion) != state.filters.match_term:
            state.stage = SearchStage.RESCORING
        else:
            state.stage = SearchStage.DONE
    elif state.stage is SearchStage.RESCORING:
        corrected = state.filters.with_term(state.suggestion or "")
        page, total = await _score(catalog, corrected, since, config)
        if total:
            state.page, state.total, state.corrected = page, total, corrected
        state.stage = SearchStage.DONE


async def run_pipeline(
    catalog: CatalogStore, filters: SearchFilters, config: Settings = settings
) -> Dict[str, Any]:
    """Run everything after the cache lookup. Raises :class:`CatalogError`."""
    started = time.perf_counter()
    since = activity_since(config)
    state = SearchState(filters=filters)
    stage_ms: Dict[str, float] = {}
    while state.stage is not SearchStage.DONE:
        stage = state.stage
        stage_started = time.perf_counter()
        await _advance(state, catalog, since, config)
        stage_ms[stage.value] = _elapsed_ms(stage_started)

    hydrate_started = time.perf_counter()
    data = await asyncio.to_thread(hydrate_page, catalog, state.page, filters.caller_id)
    hydrate_ms = _elapsed_ms(hydrate_started)

    response: Dict[str, Any] = {
        "success": True,
        "message": SEARCH_RESULTS,
        "data": data,
        "totalCount": state.total,
    }
    if state.corrected is not None:
        response["autoCorrection"] = {"from": filters.term, "to": state.corrected.term}
    elif not state.total and state.suggestion:
        response["didYouMean"] = state.suggestion

    logger.info(
        "timing: total=%.1fms scoring=%.1fms correcting=%.1fms rescoring=%.1fms hydrate=%.1fms "
        "term=%r sort=%s hits=%s",
        _elapsed_ms(started),
        stage_ms.get(SearchStage.SCORING.value, 0.0),
        stage_ms.get(SearchStage.CORRECTING.value, 0.0),
        stage_ms.get(SearchStage.RESCORING.value, 0.0),
        hydrate_ms,
        filters.term,
        filters.sort.value,
        response["totalCount"],
    )
    return response


async def search_products(
    catalog: CatalogStore,
    cache: CacheBackend,
    request: SearchRequest,
    config: Settings = settings,
) -> Dict[str, Any]:
    started = time.perf_counter()
    # Term length is checked before any filter is looked at.
    if term_too_short(request.term, config.min_term_length):
        return term_too_short_response()

    filters = compile_filters(request, config)
    key = filters.cache_key(config.cache_key_prefix)
    cached = await asyncio.to_thread(cache.get, key)
    if cached is not None:
        logger.info("timing: cache_hit=1 total=%.1fms term=%r", _elapsed_ms(started), filters.term)
        return cached

    try:
        response = await run_pipeline(catalog, filters, config)
    except CatalogError as exc:
        logger.exception("Search failed for term=%r", filters.term)
        return {"success": False, "message": SEARCH_FAILED, "error": str(exc), "data": [], "totalCount": 0}

    await asyncio.to_thread(cache.set, key, response, config.cache_ttl_seconds)
    logger.debug("Cached search response key=%s ttl=%ss", key, config.cache_ttl_seconds)
    return response
