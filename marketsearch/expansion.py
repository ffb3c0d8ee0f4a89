"""Semantic query broadening over the tag graph.

query words -> matching tags -> their categories -> sibling tags in those
categories, minus the tags we started from.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List

from .catalog import CatalogError, CatalogStore
from .config import Settings, settings

logger = logging.getLogger(__name__)

EXPANSION_MESSAGE = "Search expansions"

_WORD_RE = re.compile(r"[0-9a-z]+")


def expansion_words(term: str | None, min_length: int = 3) -> List[str]:
    words: List[str] = []
    for word in _WORD_RE.findall((term or "").lower()):
        if len(word) >= min_length and word not in words:
            words.append(word)
    return words


def _walk_tag_graph(catalog: CatalogStore, words: List[str], config: Settings) -> List[str]:
    tags = catalog.tags_matching(words, config.expansion_tag_limit)
    if not tags:
        return []
    tag_ids = [tag.id for tag in tags]
    category_ids = catalog.categories_for_tags(tag_ids)
    if not category_ids:
        return []
    siblings = catalog.sibling_tags(category_ids, tag_ids, config.expansion_sibling_limit)
    expansions: List[str] = []
    for tag in siblings:
        if tag.name and tag.name not in expansions:
            expansions.append(tag.name)
    return expansions[: config.expansion_term_limit]


async def expand_term(catalog: CatalogStore, term: str | None, config: Settings = settings) -> List[str]:
    words = expansion_words(term, config.expansion_min_word_length)
    if not words:
        return []
    try:
        return await asyncio.to_thread(_walk_tag_graph, catalog, words, config)
    except CatalogError as exc:
        logger.warning("Tag expansion failed for %r: %s", term, exc)
        return []


async def expand(catalog: CatalogStore, term: str | None, config: Settings = settings) -> Dict[str, Any]:
    expansions = await expand_term(catalog, term, config)
    return {
        "success": True,
        "message": EXPANSION_MESSAGE,
        "data": {"term": " ".join((term or "").split()), "expansions": expansions},
    }
