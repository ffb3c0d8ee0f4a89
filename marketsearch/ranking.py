"""Order scored candidates by sort mode and cut the requested page."""
from __future__ import annotations

from typing import Callable, Dict, List, Sequence, Tuple

from .filters import SearchFilters, SortMode
from .scoring import ScoredCandidate

SortKey = Callable[[ScoredCandidate], Tuple]


def _created(candidate: ScoredCandidate) -> float:
    created_at = candidate.signals.created_at
    return created_at.timestamp() if created_at is not None else 0.0


# Every key ends with the product id so ties resolve the same way on every call.
_SORT_KEYS: Dict[SortMode, SortKey] = {
    SortMode.RELEVANCE: lambda c: (-c.score, c.product_id),
    SortMode.PRICE_ASC: lambda c: (c.signals.offer_price, -c.score, c.product_id),
    SortMode.PRICE_DESC: lambda c: (-c.signals.offer_price, -c.score, c.product_id),
    SortMode.NEWEST: lambda c: (-_created(c), c.product_id),
    SortMode.OLDEST: lambda c: (_created(c), c.product_id),
    SortMode.POPULARITY: lambda c: (-c.signals.clicks_30d, -c.score, c.product_id),
    SortMode.RATING: lambda c: (-c.signals.avg_rating, -c.signals.review_count, c.product_id),
}


def rank_candidates(candidates: Sequence[ScoredCandidate], sort: SortMode) -> List[ScoredCandidate]:
    return sorted(candidates, key=_SORT_KEYS[sort])


def paginate(items: Sequence[ScoredCandidate], offset: int, page_size: int) -> List[ScoredCandidate]:
    offset = max(offset, 0)
    return list(items[offset : offset + page_size])


def rank_page(candidates: Sequence[ScoredCandidate], filters: SearchFilters) -> List[ScoredCandidate]:
    """Order the whole match set, then cut the page the filters ask for."""
    return paginate(rank_candidates(candidates, filters.sort), filters.offset, filters.page_size)
