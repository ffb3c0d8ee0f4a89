"""Expand a ranked page of candidates into full product records."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .catalog import CatalogStore
from .scoring import ScoredCandidate


def average_rating(reviews: Sequence[Dict[str, Any]]) -> int:
    """Floor of the mean rating, ``0`` when there are no reviews."""
    ratings = [int(review["rating"]) for review in reviews if review.get("rating") is not None]
    if not ratings:
        return 0
    return sum(ratings) // len(ratings)


def hydrate_page(
    catalog: CatalogStore, page: Sequence[ScoredCandidate], caller_id: Optional[int]
) -> List[Dict[str, Any]]:
    """Fetch records for ``page`` and put them back in ranked order.

    The store returns records in whatever order suits it. Products that became
    ineligible between scoring and hydration are dropped.
    """

    if not page:
        return []
    position = {candidate.product_id: index for index, candidate in enumerate(page)}
    scores = {candidate.product_id: candidate.score for candidate in page}
    records = catalog.hydrate([candidate.product_id for candidate in page], caller_id)
    hydrated = [
        {
            **record,
            "averageRating": average_rating(record.get("productReview", [])),
            "relevanceScore": round(scores[record["id"]], 6),
        }
        for record in records
        if record.get("id") in position
    ]
    hydrated.sort(key=lambda record: position[record["id"]])
    return hydrated
