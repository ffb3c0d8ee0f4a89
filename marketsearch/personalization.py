"""Gentle re-ranking of a result page from the caller's recent activity.

Each product gets ``boost`` = category bonus (viewed in the window) + brand
bonus (clicked in the window). The page is re-sorted by::

    rank_weight + boost * factor,   rank_weight = 1 - position / page_length

Products with the same boost keep their relative order because their rank
weights already differ in that order.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from .catalog import CatalogError, CatalogStore
from .config import Settings, settings
from .search import activity_since

logger = logging.getLogger(__name__)


async def personalize_results(
    catalog: CatalogStore,
    products: Sequence[Dict[str, Any]],
    user_id: Optional[int],
    config: Settings = settings,
) -> List[Dict[str, Any]]:
    """Return a new, re-ordered list. Input records are never modified."""
    if user_id is None or not products:
        return list(products)
    since = activity_since(config)
    try:
        viewed, clicked = await asyncio.gather(
            asyncio.to_thread(catalog.viewed_category_ids, user_id, since),
            asyncio.to_thread(catalog.clicked_brand_ids, user_id, since),
        )
    except CatalogError as exc:
        logger.warning("Personalization skipped for user %s: %s", user_id, exc)
        return list(products)

    count = len(products)
    weighted = []
    for position, product in enumerate(products):
        boost = 0.0
        if product.get("categoryId") in viewed:
            boost += config.personal_category_boost
        if product.get("brandId") in clicked:
            boost += config.personal_brand_boost
        adjusted = (1 - position / count) + boost * config.personal_boost_factor
        weighted.append((adjusted, position, {**product, "personalBoost": round(boost, 6)}))
    weighted.sort(key=lambda item: (-item[0], item[1]))
    logger.debug("personalized user=%s viewed=%s clicked=%s", user_id, len(viewed), len(clicked))
    return [product for _, _, product in weighted]
