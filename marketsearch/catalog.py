"""Catalog store contract shared by the PostgreSQL and snapshot backends.

Every method is a synchronous read; the async search layer runs them through
``asyncio.to_thread``. Implementations raise :class:`CatalogError` and nothing
else when the underlying store misbehaves.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from .filters import SearchFilters
from .scoring import ScoredCandidate, ScoreWeights

# Product types that can be bought directly (P: product, F: factory).
SELLABLE_PRODUCT_TYPES = ("P", "F")


class CatalogError(RuntimeError):
    """Raised when the catalog store is unreachable or a query fails."""


@dataclass(frozen=True)
class Tag:
    id: int
    name: str


class CatalogStore(Protocol):
    name: str

    def ping(self) -> bool: ...

    def fetch_page(
        self, filters: SearchFilters, term: str, since: datetime, weights: ScoreWeights
    ) -> List[ScoredCandidate]:
        """Score, order and paginate every match for ``term``; return one page."""
        ...

    def count_candidates(self, filters: SearchFilters, term: str, since: datetime) -> int: ...

    def closest_product_name(self, term: str, threshold: float) -> Optional[str]: ...

    def hydrate(self, product_ids: Sequence[int], caller_id: Optional[int]) -> List[Dict[str, Any]]: ...

    def product_name_suggestions(self, term: str, limit: int) -> List[Dict[str, Any]]: ...

    def category_suggestions(self, term: str, limit: int) -> List[Dict[str, Any]]: ...

    def popular_searches(self, term: str, limit: int) -> List[str]: ...

    def recent_searches(
        self, term: str, user_id: Optional[int], device_id: Optional[str], limit: int
    ) -> List[str]: ...

    def tags_matching(self, words: Sequence[str], limit: int) -> List[Tag]: ...

    def categories_for_tags(self, tag_ids: Sequence[int]) -> List[int]: ...

    def sibling_tags(
        self, category_ids: Sequence[int], exclude_tag_ids: Sequence[int], limit: int
    ) -> List[Tag]: ...

    def viewed_category_ids(self, user_id: int, since: datetime) -> Set[int]: ...

    def clicked_brand_ids(self, user_id: int, since: datetime) -> Set[int]: ...
