"""Compile raw search parameters into an immutable filter set.

Everything downstream (scoring, ranking, hydration, the cache key) reads the
:class:`SearchFilters` produced here and nothing else, so two requests that
compile to the same filters are interchangeable.
"""
from __future__ import annotations

import hashlib
import json
import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import Settings, settings
from .models import SearchRequest
from .phonetics import normalize_term

logger = logging.getLogger(__name__)


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    NEWEST = "newest"
    OLDEST = "oldest"
    POPULARITY = "popularity"
    RATING = "rating"


class SpecBound(str, Enum):
    EQUALS = "eq"
    MIN = "min"
    MAX = "max"


@dataclass(frozen=True)
class SpecFilter:
    """One specification-attribute constraint keyed by spec template key."""

    key: str
    bound: SpecBound
    values: Tuple[str, ...] = ()
    number: Optional[float] = None


@dataclass(frozen=True)
class SearchFilters:
    term: str
    page: int
    page_size: int
    sort: SortMode = SortMode.RELEVANCE
    category_ids: Tuple[int, ...] = ()
    brand_ids: Tuple[int, ...] = ()
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    min_rating: Optional[float] = None
    has_discount: bool = False
    caller_id: Optional[int] = None
    owner_only: bool = False
    spec_filters: Tuple[SpecFilter, ...] = ()

    @property
    def match_term(self) -> str:
        """The normalized term fed to the match channels."""
        return normalize_term(self.term)

    @property
    def offset(self) -> int:
        return max(self.page - 1, 0) * self.page_size

    @property
    def owner_id(self) -> Optional[int]:
        """Caller id to restrict ownership to, or ``None`` when unscoped."""
        return self.caller_id if self.owner_only else None

    def with_term(self, term: str) -> "SearchFilters":
        return replace(self, term=term)

    def cache_payload(self) -> Dict[str, Any]:
        return {
            "term": self.term,
            "sort": self.sort.value,
            "page": self.page,
            "pageSize": self.page_size,
            "categoryIds": list(self.category_ids),
            "brandIds": list(self.brand_ids),
            "priceMin": self.price_min,
            "priceMax": self.price_max,
            "minRating": self.min_rating,
            "hasDiscount": self.has_discount,
            "callerId": self.caller_id,
            "ownerOnly": self.owner_only,
            "specFilters": [
                [spec.key, spec.bound.value, list(spec.values), spec.number]
                for spec in self.spec_filters
            ],
        }

    def cache_key(self, prefix: str = "search:") -> str:
        encoded = json.dumps(self.cache_payload(), sort_keys=True, separators=(",", ":"))
        return prefix + hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def clean_term(term: str | None) -> str:
    return " ".join((term or "").split())


def term_too_short(term: str | None, min_length: int = 2) -> bool:
    return len(clean_term(term)) < min_length


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _to_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "me"}


def parse_id_list(raw: str | Iterable[Any] | None) -> Tuple[int, ...]:
    """Turn ``"5, 6,x"`` or ``[5, "6"]`` into a sorted, de-duplicated tuple."""
    if raw is None:
        return ()
    parts: Iterable[Any] = raw.split(",") if isinstance(raw, str) else raw
    ids = {number for number in (_to_int(part) for part in parts) if number is not None}
    return tuple(sorted(ids))


def parse_sort(raw: str | None) -> SortMode:
    try:
        return SortMode((raw or SortMode.RELEVANCE.value).strip().lower())
    except ValueError:
        logger.debug("Unknown sort mode %r, falling back to relevance", raw)
        return SortMode.RELEVANCE


def parse_spec_filters(raw: str | Mapping[str, Any] | None) -> Tuple[SpecFilter, ...]:
    """Compile ``{"ram": ["8GB"], "screen_size_min": ["5.5"]}`` into constraints.

    Empty value lists and non-numeric range bounds are skipped; unparsable
    JSON means no spec filters at all.
    """

    if not raw:
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring malformed specFilters payload %r", raw)
            return ()
    if not isinstance(raw, Mapping):
        return ()

    compiled: List[SpecFilter] = []
    for key in sorted(raw):
        value = raw[key]
        values = [str(item) for item in (value if isinstance(value, (list, tuple)) else [value]) if item is not None]
        if not values:
            continue
        for suffix, bound in (("_min", SpecBound.MIN), ("_max", SpecBound.MAX)):
            if key.endswith(suffix) and len(key) > len(suffix):
                number = next((n for n in (_to_float(v) for v in values) if n is not None), None)
                if number is not None:
                    compiled.append(SpecFilter(key=key[: -len(suffix)], bound=bound, number=number))
                break
        else:
            compiled.append(SpecFilter(key=key, bound=SpecBound.EQUALS, values=tuple(sorted(set(values)))))
    return tuple(compiled)


def compile_filters(request: SearchRequest, config: Settings = settings) -> SearchFilters:
    """Normalize a raw request into :class:`SearchFilters`.

    Callers check :func:`term_too_short` first; compiling a short term is a
    programming error.
    """

    term = clean_term(request.term)
    if len(term) < config.min_term_length:
        raise ValueError(f"search term shorter than {config.min_term_length} characters")

    page = _to_int(request.page) or 1
    page_size = _to_int(request.limit) or config.default_page_size
    return SearchFilters(
        term=term,
        page=max(page, 1),
        page_size=min(max(page_size, 1), config.max_page_size),
        sort=parse_sort(request.sort),
        category_ids=parse_id_list(request.categoryIds),
        brand_ids=parse_id_list(request.brandIds),
        price_min=_to_float(request.priceMin),
        price_max=_to_float(request.priceMax),
        min_rating=_to_float(request.minRating),
        has_discount=_to_flag(request.hasDiscount),
        caller_id=_to_int(request.userId),
        owner_only=_to_flag(request.isOwner),
        spec_filters=parse_spec_filters(request.specFilters),
    )
