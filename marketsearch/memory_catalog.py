"""In-memory catalog backend built from a JSON catalog snapshot.

Used for local runs, the CLI and the test-suite. It answers every
:class:`~marketsearch.catalog.CatalogStore` query with the same semantics as
the PostgreSQL store: the same eligibility rules, the same match channels (see
:mod:`marketsearch.similarity`), a 30-day activity window and a popular-search
table computed once at load time, like the ``popular_searches`` materialized
view.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .catalog import SELLABLE_PRODUCT_TYPES, CatalogError, Tag
from .filters import SearchFilters, SpecBound, SpecFilter
from .phonetics import normalize_term, phonetic_codes
from .ranking import rank_page
from .scoring import (
    CandidateSignals,
    MatchThresholds,
    ScoredCandidate,
    ScoreWeights,
    qualifies,
    score_candidates,
)
from .similarity import build_document, lexical_rank, similarity, stem_tokens, word_similarity

logger = logging.getLogger(__name__)

# The materialized view only keeps terms searched at least this often.
POPULAR_MIN_COUNT = 2
POPULAR_TABLE_SIZE = 500


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_active(row: Mapping[str, Any]) -> bool:
    return row.get("status", "ACTIVE") == "ACTIVE" and not row.get("deletedAt")


def _is_false(value: Any) -> bool:
    return str(value).lower() == "false"


def _number(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _is_sellable_price(row: Mapping[str, Any]) -> bool:
    return (
        _is_active(row)
        and _is_false(row.get("askForPrice"))
        and _is_false(row.get("isCustomProduct"))
        and row.get("sellType") == "NORMALSELL"
    )


def _has_discount(row: Mapping[str, Any]) -> bool:
    return (
        _number(row.get("offerPrice")) < _number(row.get("productPrice"))
        or (row.get("consumerDiscount") or 0) > 0
        or (row.get("vendorDiscount") or 0) > 0
    )


@dataclass
class _IndexedProduct:
    raw: Mapping[str, Any]
    id: int
    name: str
    created_at: Optional[datetime]
    sellable_prices: List[Mapping[str, Any]]
    ratings: List[int]
    document: Dict[str, float]
    name_codes: Set[str]
    wishlist: Set[int] = field(default_factory=set)
    specs: List[Mapping[str, Any]] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        return (
            _is_active(self.raw)
            and self.raw.get("productType") in SELLABLE_PRODUCT_TYPES
            and bool(self.sellable_prices)
        )

    @property
    def category_id(self) -> Optional[int]:
        return self.raw.get("categoryId")

    @property
    def brand_id(self) -> Optional[int]:
        return self.raw.get("brandId")

    @property
    def offer_price(self) -> float:
        return _number(self.raw.get("offerPrice"))

    @property
    def avg_rating(self) -> float:
        return sum(self.ratings) / len(self.ratings) if self.ratings else 0.0


class MemoryCatalog:
    name = "snapshot"

    def __init__(
        self,
        snapshot: Mapping[str, Sequence[Mapping[str, Any]]],
        thresholds: MatchThresholds,
        activity_window_days: int = 30,
        now: Optional[datetime] = None,
    ) -> None:
        self._thresholds = thresholds
        try:
            self._brands = {row["id"]: row for row in snapshot.get("brands", [])}
            self._categories = {row["id"]: row for row in snapshot.get("categories", [])}
            self._tags = {row["id"]: row for row in snapshot.get("tags", []) if _is_active(row)}
            self._category_tags = [row for row in snapshot.get("categoryTags", []) if _is_active(row)]
            self._products = {
                product.id: product for product in (self._index_product(row) for row in snapshot.get("products", []))
            }
            self._clicks = [
                {**row, "createdAt": _parse_datetime(row.get("createdAt"))}
                for row in snapshot.get("clicks", [])
                if not row.get("deletedAt")
            ]
            self._views = [
                {**row, "lastViewedAt": _parse_datetime(row.get("lastViewedAt") or row.get("createdAt"))}
                for row in snapshot.get("views", [])
                if not row.get("deletedAt")
            ]
            self._searches = [
                {**row, "createdAt": _parse_datetime(row.get("createdAt"))}
                for row in snapshot.get("searches", [])
                if not row.get("deletedAt") and row.get("searchTerm")
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise CatalogError(f"Malformed catalog snapshot: {exc!r}") from exc
        self._popular = self._build_popular_table(
            (now or datetime.now(timezone.utc)) - timedelta(days=activity_window_days)
        )

    def _index_product(self, row: Mapping[str, Any]) -> _IndexedProduct:
        name = row.get("productName") or ""
        return _IndexedProduct(
            raw=row,
            id=int(row["id"]),
            name=name,
            created_at=_parse_datetime(row.get("createdAt")),
            sellable_prices=[price for price in row.get("prices", []) if _is_sellable_price(price)],
            ratings=[
                int(review["rating"])
                for review in row.get("reviews", [])
                if _is_active(review) and review.get("rating") is not None
            ],
            document=build_document(
                {
                    "A": name,
                    "B": row.get("skuNo"),
                    "C": row.get("shortDescription"),
                    "D": row.get("description"),
                }
            ),
            name_codes=set(phonetic_codes(normalize_term(name), self._thresholds.phonetic_min_token_length)),
            wishlist={int(user_id) for user_id in row.get("wishlist", [])},
            specs=[spec for spec in row.get("specs", []) if _is_active(spec)],
        )

    def _build_popular_table(self, since: datetime) -> List[tuple[str, int]]:
        counts: Counter[str] = Counter(
            " ".join(row["searchTerm"].lower().split())
            for row in self._searches
            if row["createdAt"] is not None and row["createdAt"] > since
        )
        ranked = [(term, count) for term, count in counts.items() if count >= POPULAR_MIN_COUNT]
        ranked.sort(key=lambda item: (-item[1], item[0]))
        return ranked[:POPULAR_TABLE_SIZE]

    # -- health -----------------------------------------------------------

    def ping(self) -> bool:
        return True

    # -- scoring ----------------------------------------------------------

    def _activity(self, since: datetime) -> tuple[Counter[int], Counter[int]]:
        clicks: Counter[int] = Counter(
            row["productId"] for row in self._clicks if row["createdAt"] is not None and row["createdAt"] >= since
        )
        views: Counter[int] = Counter()
        for row in self._views:
            if row["lastViewedAt"] is not None and row["lastViewedAt"] >= since:
                views[row["productId"]] += int(row.get("viewCount") or 1)
        return clicks, views

    def _spec_matches(self, product: _IndexedProduct, spec: SpecFilter) -> bool:
        for value in product.specs:
            if value.get("key") != spec.key:
                continue
            if spec.bound is SpecBound.EQUALS and str(value.get("value")) in spec.values:
                return True
            numeric = value.get("numericValue")
            if numeric is None or spec.number is None:
                continue
            if spec.bound is SpecBound.MIN and float(numeric) >= spec.number:
                return True
            if spec.bound is SpecBound.MAX and float(numeric) <= spec.number:
                return True
        return False

    def _passes_filters(self, product: _IndexedProduct, filters: SearchFilters) -> bool:
        if not product.eligible:
            return False
        if filters.category_ids and product.category_id not in filters.category_ids:
            return False
        if filters.brand_ids and product.brand_id not in filters.brand_ids:
            return False
        if filters.price_min is not None and product.offer_price < filters.price_min:
            return False
        if filters.price_max is not None and product.offer_price > filters.price_max:
            return False
        if filters.min_rating is not None and product.avg_rating < filters.min_rating:
            return False
        if filters.has_discount and not any(_has_discount(price) for price in product.sellable_prices):
            return False
        if filters.owner_id is not None and product.raw.get("adminId") != filters.owner_id:
            return False
        return all(self._spec_matches(product, spec) for spec in filters.spec_filters)

    def _signals(
        self,
        product: _IndexedProduct,
        term: str,
        query_stems: List[str],
        query_codes: Set[str],
        clicks: Counter[int],
        views: Counter[int],
    ) -> CandidateSignals:
        brand = self._brands.get(product.brand_id) if product.brand_id is not None else None
        brand_name = brand.get("brandName") if brand and _is_active(brand) else None
        return CandidateSignals(
            product_id=product.id,
            lexical_rank=lexical_rank(query_stems, product.document),
            name_similarity=similarity(product.name, term),
            prefix_similarity=word_similarity(term, product.name),
            phonetic_match=bool(query_codes & product.name_codes),
            brand_similarity=similarity(brand_name, term) if brand_name else 0.0,
            clicks_30d=clicks.get(product.id, 0),
            views_30d=views.get(product.id, 0),
            avg_rating=product.avg_rating,
            review_count=len(product.ratings),
            offer_price=product.offer_price,
            created_at=product.created_at,
        )

    def _matching(self, filters: SearchFilters, term: str, since: datetime) -> List[CandidateSignals]:
        normalized = normalize_term(term)
        query_stems = stem_tokens(normalized)
        query_codes = set(phonetic_codes(normalized, self._thresholds.phonetic_min_token_length))
        clicks, views = self._activity(since)
        matched = []
        for product in self._products.values():
            if not self._passes_filters(product, filters):
                continue
            signals = self._signals(product, normalized, query_stems, query_codes, clicks, views)
            if qualifies(signals, self._thresholds):
                matched.append(signals)
        return matched

    def fetch_page(
        self, filters: SearchFilters, term: str, since: datetime, weights: ScoreWeights
    ) -> List[ScoredCandidate]:
        return rank_page(score_candidates(self._matching(filters, term, since), weights), filters)

    def count_candidates(self, filters: SearchFilters, term: str, since: datetime) -> int:
        return len(self._matching(filters, term, since))

    def closest_product_name(self, term: str, threshold: float) -> Optional[str]:
        normalized = normalize_term(term)
        best: Optional[tuple[float, int, str]] = None
        for product in self._products.values():
            if not product.eligible:
                continue
            score = similarity(product.name, normalized)
            if score <= threshold:
                continue
            if best is None or (-score, product.id) < (-best[0], best[1]):
                best = (score, product.id, product.name)
        return best[2] if best else None

    # -- hydration --------------------------------------------------------

    def _price_record(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "id": row.get("id"),
            "offerPrice": _number(row.get("offerPrice")),
            "productPrice": _number(row.get("productPrice")),
            "consumerDiscount": row.get("consumerDiscount"),
            "vendorDiscount": row.get("vendorDiscount"),
            "stock": row.get("stock"),
        }

    def _record(self, product: _IndexedProduct, caller_id: Optional[int]) -> Dict[str, Any]:
        raw = product.raw
        category = self._categories.get(product.category_id)
        brand = self._brands.get(product.brand_id)
        cheapest = min(product.sellable_prices, key=lambda row: (_number(row.get("offerPrice")), row.get("id") or 0))
        return {
            "id": product.id,
            "productName": product.name,
            "skuNo": raw.get("skuNo"),
            "offerPrice": product.offer_price,
            "productPrice": _number(raw.get("productPrice")),
            "categoryId": product.category_id,
            "brandId": product.brand_id,
            "adminId": raw.get("adminId"),
            "createdAt": product.created_at.isoformat() if product.created_at else None,
            "shortDescription": raw.get("shortDescription"),
            "category": {"id": category["id"], "name": category.get("name")}
            if category and _is_active(category)
            else None,
            "brand": {"id": brand["id"], "brandName": brand.get("brandName")} if brand and _is_active(brand) else None,
            "productImages": [
                {"id": image.get("id"), "image": image.get("image"), "video": image.get("video")}
                for image in raw.get("images", [])
                if _is_active(image)
            ],
            "productPrices": [self._price_record(cheapest)],
            "productReview": [{"rating": rating} for rating in product.ratings],
            "inWishlist": caller_id is not None and caller_id in product.wishlist,
        }

    def hydrate(self, product_ids: Sequence[int], caller_id: Optional[int]) -> List[Dict[str, Any]]:
        wanted = set(product_ids)
        return [
            self._record(product, caller_id)
            for product_id, product in sorted(self._products.items())
            if product_id in wanted and product.eligible
        ]

    # -- suggestions ------------------------------------------------------

    def product_name_suggestions(self, term: str, limit: int) -> List[Dict[str, Any]]:
        needle = " ".join(term.lower().split())
        hits = [
            product
            for product in self._products.values()
            if product.eligible
            and (product.name.lower().startswith(needle) or f" {needle}" in product.name.lower())
        ]
        hits.sort(key=lambda product: (-similarity(product.name, needle), product.id))
        return [{"id": product.id, "productName": product.name} for product in hits[:limit]]

    def category_suggestions(self, term: str, limit: int) -> List[Dict[str, Any]]:
        needle = term.lower().strip()
        hits = [
            row
            for row in self._categories.values()
            if _is_active(row) and needle in (row.get("name") or "").lower()
        ]
        hits.sort(key=lambda row: ((row.get("name") or "").lower(), row["id"]))
        return [{"id": row["id"], "name": row.get("name")} for row in hits[:limit]]

    def popular_searches(self, term: str, limit: int) -> List[str]:
        needle = " ".join(term.lower().split())
        return [popular for popular, _ in self._popular if popular.startswith(needle)][:limit]

    def recent_searches(
        self, term: str, user_id: Optional[int], device_id: Optional[str], limit: int
    ) -> List[str]:
        if user_id is None and not device_id:
            return []
        needle = " ".join(term.lower().split())
        latest: Dict[str, datetime] = {}
        for row in self._searches:
            mine = (user_id is not None and row.get("userId") == user_id) or (
                bool(device_id) and row.get("deviceId") == device_id
            )
            if not mine:
                continue
            normalized = " ".join(row["searchTerm"].lower().split())
            if not normalized.startswith(needle):
                continue
            created = row["createdAt"] or datetime.min.replace(tzinfo=timezone.utc)
            if normalized not in latest or created > latest[normalized]:
                latest[normalized] = created
        ordered = sorted(latest.items(), key=lambda item: (item[1], item[0]), reverse=True)
        return [recent for recent, _ in ordered[:limit]]

    # -- tag graph --------------------------------------------------------

    def tags_matching(self, words: Sequence[str], limit: int) -> List[Tag]:
        lowered = [word.lower() for word in words]
        hits = [
            Tag(id=row["id"], name=row["tagName"])
            for tag_id, row in sorted(self._tags.items())
            if any(word in (row.get("tagName") or "").lower() for word in lowered)
        ]
        return hits[:limit]

    def categories_for_tags(self, tag_ids: Sequence[int]) -> List[int]:
        wanted = set(tag_ids)
        return sorted({row["categoryId"] for row in self._category_tags if row["tagId"] in wanted})

    def sibling_tags(
        self, category_ids: Sequence[int], exclude_tag_ids: Sequence[int], limit: int
    ) -> List[Tag]:
        categories = set(category_ids)
        excluded = set(exclude_tag_ids)
        sibling_ids = sorted(
            {
                row["tagId"]
                for row in self._category_tags
                if row["categoryId"] in categories and row["tagId"] not in excluded and row["tagId"] in self._tags
            }
        )
        return [Tag(id=tag_id, name=self._tags[tag_id]["tagName"]) for tag_id in sibling_ids[:limit]]

    # -- personalization --------------------------------------------------

    def _product_attribute(self, product_ids: Iterable[int], attribute: str) -> Set[int]:
        values = set()
        for product_id in product_ids:
            product = self._products.get(product_id)
            value = getattr(product, attribute) if product else None
            if value is not None:
                values.add(value)
        return values

    def viewed_category_ids(self, user_id: int, since: datetime) -> Set[int]:
        viewed = [
            row["productId"]
            for row in self._views
            if row.get("userId") == user_id and row["lastViewedAt"] is not None and row["lastViewedAt"] >= since
        ]
        return self._product_attribute(viewed, "category_id")

    def clicked_brand_ids(self, user_id: int, since: datetime) -> Set[int]:
        clicked = [
            row["productId"]
            for row in self._clicks
            if row.get("userId") == user_id and row["createdAt"] is not None and row["createdAt"] >= since
        ]
        return self._product_attribute(clicked, "brand_id")
