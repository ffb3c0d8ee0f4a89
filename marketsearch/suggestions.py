"""Autocomplete suggestions from four independent channels.

Channels run concurrently; a failing channel contributes an empty list and
never fails the whole call.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .catalog import CatalogError, CatalogStore
from .config import Settings, settings
from .filters import clean_term

logger = logging.getLogger(__name__)

SUGGESTIONS_MESSAGE = "Search suggestions"


def empty_suggestions() -> Dict[str, List[Any]]:
    return {"products": [], "categories": [], "popularSearches": [], "recentSearches": []}


async def _channel(name: str, lookup: Callable[..., List[Any]], *args: Any) -> List[Any]:
    try:
        return await asyncio.to_thread(lookup, *args)
    except CatalogError as exc:
        logger.warning("Suggestion channel %s failed: %s", name, exc)
        return []


async def _no_recent() -> List[str]:
    return []


async def suggest(
    catalog: CatalogStore,
    term: str | None,
    user_id: Optional[int] = None,
    device_id: Optional[str] = None,
    config: Settings = settings,
) -> Dict[str, Any]:
    cleaned = clean_term(term)
    if len(cleaned) < config.min_term_length:
        return {"success": True, "message": SUGGESTIONS_MESSAGE, "data": empty_suggestions()}

    has_identity = user_id is not None or bool(device_id)
    products, categories, popular, recent = await asyncio.gather(
        _channel("products", catalog.product_name_suggestions, cleaned, config.suggestion_product_limit),
        _channel("categories", catalog.category_suggestions, cleaned, config.suggestion_category_limit),
        _channel("popular", catalog.popular_searches, cleaned, config.suggestion_popular_limit),
        _channel(
            "recent", catalog.recent_searches, cleaned, user_id, device_id, config.suggestion_recent_limit
        )
        if has_identity
        else _no_recent(),
    )
    logger.debug(
        "suggestions term=%r products=%s categories=%s popular=%s recent=%s",
        cleaned,
        len(products),
        len(categories),
        len(popular),
        len(recent),
    )
    return {
        "success": True,
        "message": SUGGESTIONS_MESSAGE,
        "data": {
            "products": products,
            "categories": categories,
            "popularSearches": popular,
            "recentSearches": recent,
        },
    }
