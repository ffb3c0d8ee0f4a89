"""PostgreSQL catalog store.

Signals are computed inside one scored query over the marketplace schema:
``ts_rank`` over ``Product.search_vector`` for lexical matches, ``pg_trgm``
for the similarity channels and ``fuzzystrmatch`` double metaphone for the
phonetic channel. Phonetic codes of the query are computed in Python and bound
as an array; the name tokens are encoded by the database.

The page query and the count query share one builder so the two can run
concurrently and still agree on the match set. The page query applies the
weighted relevance score, the sort order and the page offset in the database.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .catalog import SELLABLE_PRODUCT_TYPES, CatalogError, Tag
from .filters import SearchFilters, SortMode, SpecBound
from .phonetics import normalize_term, phonetic_codes
from .scoring import (
    CandidateSignals,
    MatchThresholds,
    ScoredCandidate,
    ScoreWeights,
    score_candidates,
)

logger = logging.getLogger(__name__)

_PRODUCT_TYPES_SQL = ", ".join(f"'{product_type}'" for product_type in SELLABLE_PRODUCT_TYPES)


def _active(alias: str) -> str:
    return f"{alias}.status = 'ACTIVE' AND {alias}.\"deletedAt\" IS NULL"


def _sellable_price(alias: str) -> str:
    return (
        f"{_active(alias)}"
        f" AND {alias}.\"askForPrice\" = 'false'"
        f" AND {alias}.\"isCustomProduct\" = 'false'"
        f" AND {alias}.\"sellType\" = 'NORMALSELL'"
    )


ELIGIBLE_PRODUCT_SQL = f"""
    {_active("p")}
    AND p."productType" IN ({_PRODUCT_TYPES_SQL})
    AND EXISTS (
        SELECT 1 FROM "ProductPrice" pp
        WHERE pp."productId" = p.id AND {_sellable_price("pp")}
    )
"""

_LEXICAL_QUERY = "plainto_tsquery('english', :term)"

_ACTIVITY_JOINS = f"""
    LEFT JOIN "Brand" b ON b.id = p."brandId" AND {_active("b")}
    LEFT JOIN (
        SELECT "productId", COUNT(*) AS clicks
        FROM "ProductClick"
        WHERE "deletedAt" IS NULL AND "createdAt" >= :since
        GROUP BY "productId"
    ) clk ON clk."productId" = p.id
    LEFT JOIN (
        SELECT "productId", SUM(COALESCE("viewCount", 1)) AS views
        FROM "ProductView"
        WHERE "deletedAt" IS NULL AND "lastViewedAt" >= :since
        GROUP BY "productId"
    ) vw ON vw."productId" = p.id
    LEFT JOIN (
        SELECT "productId", AVG(rating) AS avg_rating, COUNT(rating) AS review_count
        FROM "ProductReview"
        WHERE status = 'ACTIVE' AND "deletedAt" IS NULL AND rating IS NOT NULL
        GROUP BY "productId"
    ) rv ON rv."productId" = p.id
"""

_MATCH_SQL = """
    s.lexical_hit
    OR s.name_similarity > :name_threshold
    OR s.prefix_similarity > :prefix_threshold
    OR s.phonetic_match
    OR s.brand_similarity > :brand_threshold
"""


@dataclass(frozen=True)
class ScoredQuery:
    select_sql: str
    count_sql: str
    params: Dict[str, Any]
    page_params: Dict[str, Any]


# Mirrors ``scoring.relevance_score`` so the database can order the whole match set.
_SCORE_SQL = """GREATEST(
            :w_lexical * s.lexical_rank
            + :w_name * s.name_similarity
            + :w_prefix * s.prefix_similarity
            + :w_phonetic * CASE WHEN s.phonetic_match THEN 1 ELSE 0 END
            + :w_brand * s.brand_similarity
            + :w_clicks * s.clicks_30d
            + :w_views * s.views_30d
            + :w_rating * GREATEST(s.avg_rating, 0) * LN(GREATEST(s.review_count, 0) + 1),
            0)"""

# Same keys as ``ranking._SORT_KEYS``; a missing creation time sorts as the epoch.
_ORDER_SQL: Dict[SortMode, str] = {
    SortMode.RELEVANCE: "m.score DESC, m.product_id",
    SortMode.PRICE_ASC: "m.offer_price ASC, m.score DESC, m.product_id",
    SortMode.PRICE_DESC: "m.offer_price DESC, m.score DESC, m.product_id",
    SortMode.NEWEST: "m.created_at DESC NULLS LAST, m.product_id",
    SortMode.OLDEST: "m.created_at ASC NULLS FIRST, m.product_id",
    SortMode.POPULARITY: "m.clicks_30d DESC, m.score DESC, m.product_id",
    SortMode.RATING: "m.avg_rating DESC, m.review_count DESC, m.product_id",
}


def _like_escape(value: str) -> str:
    return value.replace("!", "!!").replace("%", "!%").replace("_", "!_")


def _phonetic_sql(codes: Sequence[str]) -> str:
    if not codes:
        return "FALSE"
    return """EXISTS (
            SELECT 1
            FROM regexp_split_to_table(lower(p."productName"), '[^a-z0-9]+') AS w(token)
            WHERE length(w.token) >= :phonetic_min_length
              AND (dmetaphone(w.token) = ANY(:phonetic_codes) OR dmetaphone_alt(w.token) = ANY(:phonetic_codes))
        )"""


def _filter_sql(filters: SearchFilters, params: Dict[str, Any]) -> List[str]:
    clauses: List[str] = []
    if filters.category_ids:
        clauses.append('p."categoryId" = ANY(:category_ids)')
        params["category_ids"] = list(filters.category_ids)
    if filters.brand_ids:
        clauses.append('p."brandId" = ANY(:brand_ids)')
        params["brand_ids"] = list(filters.brand_ids)
    if filters.price_min is not None:
        clauses.append('p."offerPrice" >= :price_min')
        params["price_min"] = filters.price_min
    if filters.price_max is not None:
        clauses.append('p."offerPrice" <= :price_max')
        params["price_max"] = filters.price_max
    if filters.min_rating is not None:
        clauses.append("COALESCE(rv.avg_rating, 0) >= :min_rating")
        params["min_rating"] = filters.min_rating
    if filters.owner_id is not None:
        clauses.append('p."adminId" = :owner_id')
        params["owner_id"] = filters.owner_id
    if filters.has_discount:
        clauses.append(
            f"""EXISTS (
            SELECT 1 FROM "ProductPrice" dp
            WHERE dp."productId" = p.id AND {_sellable_price("dp")}
              AND (dp."offerPrice" < dp."productPrice"
                   OR COALESCE(dp."consumerDiscount", 0) > 0
                   OR COALESCE(dp."vendorDiscount", 0) > 0)
        )"""
        )
    for index, spec in enumerate(filters.spec_filters):
        params[f"spec_key_{index}"] = spec.key
        if spec.bound is SpecBound.EQUALS:
            condition = f"sv.value = ANY(:spec_values_{index})"
            params[f"spec_values_{index}"] = list(spec.values)
        else:
            operator = ">=" if spec.bound is SpecBound.MIN else "<="
            condition = f'sv."numericValue" {operator} :spec_number_{index}'
            params[f"spec_number_{index}"] = spec.number
        clauses.append(
            f"""EXISTS (
            SELECT 1 FROM product_spec_value sv
            JOIN spec_template st ON st.id = sv."specTemplateId"
            WHERE sv."productId" = p.id AND {_active("sv")}
              AND st.key = :spec_key_{index} AND {condition}
        )"""
        )
    return clauses


def build_scored_query(
    filters: SearchFilters,
    term: str,
    since: datetime,
    thresholds: MatchThresholds,
    weights: Optional[ScoreWeights] = None,
) -> ScoredQuery:
    """Build the page query and its count twin for one term.

    The page query scores, orders and paginates the full match set in the
    database; only ``page_size`` rows come back.
    """
    weights = weights or ScoreWeights()
    normalized = normalize_term(term)
    codes = phonetic_codes(normalized, thresholds.phonetic_min_token_length)
    params: Dict[str, Any] = {
        "term": normalized,
        "since": since,
        "name_threshold": thresholds.name_similarity,
        "prefix_threshold": thresholds.prefix_similarity,
        "brand_threshold": thresholds.brand_similarity,
    }
    if codes:
        params["phonetic_codes"] = codes
        params["phonetic_min_length"] = thresholds.phonetic_min_token_length
    page_params: Dict[str, Any] = {
        "w_lexical": weights.lexical,
        "w_name": weights.name_similarity,
        "w_prefix": weights.prefix_similarity,
        "w_phonetic": weights.phonetic,
        "w_brand": weights.brand_similarity,
        "w_clicks": weights.clicks,
        "w_views": weights.views,
        "w_rating": weights.rating,
        "page_size": filters.page_size,
        "offset": filters.offset,
    }

    where = " AND ".join([ELIGIBLE_PRODUCT_SQL.strip(), *_filter_sql(filters, params)])
    scored = f"""
        SELECT
            p.id AS product_id,
            p.search_vector @@ {_LEXICAL_QUERY} AS lexical_hit,
            CAST(CASE WHEN p.search_vector @@ {_LEXICAL_QUERY}
                 THEN ts_rank(p.search_vector, {_LEXICAL_QUERY}) ELSE 0 END AS double precision) AS lexical_rank,
            CAST(similarity(p."productName", :term) AS double precision) AS name_similarity,
            CAST(word_similarity(:term, p."productName") AS double precision) AS prefix_similarity,
            {_phonetic_sql(codes)} AS phonetic_match,
            CAST(COALESCE(similarity(b."brandName", :term), 0) AS double precision) AS brand_similarity,
            COALESCE(clk.clicks, 0) AS clicks_30d,
            COALESCE(vw.views, 0) AS views_30d,
            CAST(COALESCE(rv.avg_rating, 0) AS double precision) AS avg_rating,
            COALESCE(rv.review_count, 0) AS review_count,
            COALESCE(p."offerPrice", 0) AS offer_price,
            p."createdAt" AS created_at
        FROM "Product" p
        {_ACTIVITY_JOINS}
        WHERE {where}
    """
    select_sql = f"""
        SELECT m.* FROM (
            SELECT s.*, {_SCORE_SQL} AS score
            FROM ({scored}) s
            WHERE {_MATCH_SQL}
        ) m
        ORDER BY {_ORDER_SQL[filters.sort]}
        LIMIT :page_size OFFSET :offset
    """
    count_sql = f"SELECT COUNT(*) FROM ({scored}) s WHERE {_MATCH_SQL}"
    return ScoredQuery(select_sql=select_sql, count_sql=count_sql, params=params, page_params=page_params)


def _float(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


def _signals(row: Mapping[str, Any]) -> CandidateSignals:
    return CandidateSignals(
        product_id=int(row["product_id"]),
        lexical_rank=_float(row["lexical_rank"]),
        name_similarity=_float(row["name_similarity"]),
        prefix_similarity=_float(row["prefix_similarity"]),
        phonetic_match=bool(row["phonetic_match"]),
        brand_similarity=_float(row["brand_similarity"]),
        clicks_30d=int(row["clicks_30d"] or 0),
        views_30d=int(row["views_30d"] or 0),
        avg_rating=_float(row["avg_rating"]),
        review_count=int(row["review_count"] or 0),
        offer_price=_float(row["offer_price"]),
        created_at=row["created_at"],
    )


class SqlCatalog:
    name = "postgres"

    def __init__(self, engine: Engine, thresholds: MatchThresholds) -> None:
        self._engine = engine
        self._thresholds = thresholds

    def _rows(self, sql: str, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        try:
            with self._engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(text(sql), params)]
        except SQLAlchemyError as exc:
            raise CatalogError(f"Catalog query failed: {exc}") from exc

    def _scalar(self, sql: str, params: Mapping[str, Any]) -> Any:
        try:
            with self._engine.connect() as conn:
                return conn.execute(text(sql), params).scalar()
        except SQLAlchemyError as exc:
            raise CatalogError(f"Catalog query failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            return self._scalar("SELECT 1", {}) == 1
        except CatalogError as exc:
            logger.warning("Catalog ping failed: %s", exc)
            return False

    # -- scoring ----------------------------------------------------------

    def fetch_page(
        self, filters: SearchFilters, term: str, since: datetime, weights: ScoreWeights
    ) -> List[ScoredCandidate]:
        query = build_scored_query(filters, term, since, self._thresholds, weights)
        rows = self._rows(query.select_sql, {**query.params, **query.page_params})
        # Rows arrive in page order.
        return score_candidates([_signals(row) for row in rows], weights)

    def count_candidates(self, filters: SearchFilters, term: str, since: datetime) -> int:
        query = build_scored_query(filters, term, since, self._thresholds)
        return int(self._scalar(query.count_sql, query.params) or 0)

    def closest_product_name(self, term: str, threshold: float) -> Optional[str]:
        rows = self._rows(
            f"""
            SELECT p."productName" AS name, similarity(p."productName", :term) AS score
            FROM "Product" p
            WHERE {ELIGIBLE_PRODUCT_SQL} AND similarity(p."productName", :term) > :threshold
            ORDER BY score DESC, p.id
            LIMIT 1
            """,
            {"term": normalize_term(term), "threshold": threshold},
        )
        return rows[0]["name"] if rows else None

    # -- hydration --------------------------------------------------------

    def hydrate(self, product_ids: Sequence[int], caller_id: Optional[int]) -> List[Dict[str, Any]]:
        if not product_ids:
            return []
        params: Dict[str, Any] = {"ids": list(product_ids)}
        products = self._rows(
            f"""
            SELECT p.id, p."productName", p."skuNo", p."offerPrice", p."productPrice",
                   p."categoryId", p."brandId", p."adminId", p."createdAt", p."shortDescription",
                   c.id AS category_ref, c.name AS category_name,
                   b.id AS brand_ref, b."brandName" AS brand_name
            FROM "Product" p
            LEFT JOIN "Category" c ON c.id = p."categoryId" AND {_active("c")}
            LEFT JOIN "Brand" b ON b.id = p."brandId" AND {_active("b")}
            WHERE p.id = ANY(:ids) AND {ELIGIBLE_PRODUCT_SQL}
            ORDER BY p.id
            """,
            params,
        )
        images = self._rows(
            f"""
            SELECT i.id, i."productId", i.image, i.video
            FROM "ProductImages" i
            WHERE i."productId" = ANY(:ids) AND {_active("i")}
            ORDER BY i.id
            """,
            params,
        )
        prices = self._rows(
            f"""
            SELECT DISTINCT ON (pp."productId")
                   pp.id, pp."productId", pp."offerPrice", pp."productPrice",
                   pp."consumerDiscount", pp."vendorDiscount", pp.stock
            FROM "ProductPrice" pp
            WHERE pp."productId" = ANY(:ids) AND {_sellable_price("pp")}
            ORDER BY pp."productId", pp."offerPrice", pp.id
            """,
            params,
        )
        reviews = self._rows(
            f"""
            SELECT r."productId", r.rating
            FROM "ProductReview" r
            WHERE r."productId" = ANY(:ids) AND {_active("r")} AND r.rating IS NOT NULL
            ORDER BY r.id
            """,
            params,
        )
        wishlisted: Set[int] = set()
        if caller_id is not None:
            wishlisted = {
                row["productId"]
                for row in self._rows(
                    f"""
                    SELECT DISTINCT w."productId"
                    FROM "Wishlist" w
                    WHERE w."userId" = :caller_id AND w."productId" = ANY(:ids) AND {_active("w")}
                    """,
                    {**params, "caller_id": caller_id},
                )
            }

        images_by_product: Dict[int, List[Dict[str, Any]]] = {}
        for row in images:
            images_by_product.setdefault(row["productId"], []).append(
                {"id": row["id"], "image": row["image"], "video": row["video"]}
            )
        price_by_product = {
            row["productId"]: {
                "id": row["id"],
                "offerPrice": _float(row["offerPrice"]),
                "productPrice": _float(row["productPrice"]),
                "consumerDiscount": _float(row["consumerDiscount"]) if row["consumerDiscount"] is not None else None,
                "vendorDiscount": _float(row["vendorDiscount"]) if row["vendorDiscount"] is not None else None,
                "stock": row["stock"],
            }
            for row in prices
        }
        ratings_by_product: Dict[int, List[Dict[str, Any]]] = {}
        for row in reviews:
            ratings_by_product.setdefault(row["productId"], []).append({"rating": int(row["rating"])})

        return [
            {
                "id": row["id"],
                "productName": row["productName"],
                "skuNo": row["skuNo"],
                "offerPrice": _float(row["offerPrice"]),
                "productPrice": _float(row["productPrice"]),
                "categoryId": row["categoryId"],
                "brandId": row["brandId"],
                "adminId": row["adminId"],
                "createdAt": _iso(row["createdAt"]),
                "shortDescription": row["shortDescription"],
                "category": {"id": row["category_ref"], "name": row["category_name"]}
                if row["category_ref"] is not None
                else None,
                "brand": {"id": row["brand_ref"], "brandName": row["brand_name"]}
                if row["brand_ref"] is not None
                else None,
                "productImages": images_by_product.get(row["id"], []),
                "productPrices": [price_by_product[row["id"]]] if row["id"] in price_by_product else [],
                "productReview": ratings_by_product.get(row["id"], []),
                "inWishlist": row["id"] in wishlisted,
            }
            for row in products
        ]

    # -- suggestions ------------------------------------------------------

    def product_name_suggestions(self, term: str, limit: int) -> List[Dict[str, Any]]:
        needle = _like_escape(" ".join(term.lower().split()))
        rows = self._rows(
            f"""
            SELECT p.id, p."productName"
            FROM "Product" p
            WHERE {ELIGIBLE_PRODUCT_SQL}
              AND (lower(p."productName") LIKE :prefix ESCAPE '!'
                   OR lower(p."productName") LIKE :word_prefix ESCAPE '!')
            ORDER BY similarity(p."productName", :term) DESC, p.id
            LIMIT :limit
            """,
            {"prefix": f"{needle}%", "word_prefix": f"% {needle}%", "term": term, "limit": limit},
        )
        return [{"id": row["id"], "productName": row["productName"]} for row in rows]

    def category_suggestions(self, term: str, limit: int) -> List[Dict[str, Any]]:
        rows = self._rows(
            f"""
            SELECT c.id, c.name
            FROM "Category" c
            WHERE {_active("c")} AND lower(c.name) LIKE :contains ESCAPE '!'
            ORDER BY lower(c.name), c.id
            LIMIT :limit
            """,
            {"contains": f"%{_like_escape(term.lower().strip())}%", "limit": limit},
        )
        return [{"id": row["id"], "name": row["name"]} for row in rows]

    def popular_searches(self, term: str, limit: int) -> List[str]:
        rows = self._rows(
            """
            SELECT term
            FROM popular_searches
            WHERE term LIKE :prefix ESCAPE '!'
            ORDER BY search_count DESC, term
            LIMIT :limit
            """,
            {"prefix": f"{_like_escape(' '.join(term.lower().split()))}%", "limit": limit},
        )
        return [row["term"] for row in rows]

    def recent_searches(
        self, term: str, user_id: Optional[int], device_id: Optional[str], limit: int
    ) -> List[str]:
        owners = []
        params: Dict[str, Any] = {
            "prefix": f"{_like_escape(' '.join(term.lower().split()))}%",
            "limit": limit,
        }
        if user_id is not None:
            owners.append('"userId" = :user_id')
            params["user_id"] = user_id
        if device_id:
            owners.append('"deviceId" = :device_id')
            params["device_id"] = device_id
        if not owners:
            return []
        rows = self._rows(
            f"""
            SELECT lower(trim("searchTerm")) AS term, MAX("createdAt") AS last_searched
            FROM "ProductSearch"
            WHERE "deletedAt" IS NULL
              AND ({" OR ".join(owners)})
              AND lower(trim("searchTerm")) LIKE :prefix ESCAPE '!'
            GROUP BY lower(trim("searchTerm"))
            ORDER BY last_searched DESC, term DESC
            LIMIT :limit
            """,
            params,
        )
        return [row["term"] for row in rows]

    # -- tag graph --------------------------------------------------------

    def tags_matching(self, words: Sequence[str], limit: int) -> List[Tag]:
        if not words:
            return []
        rows = self._rows(
            f"""
            SELECT t.id, t."tagName"
            FROM "Tags" t
            WHERE {_active("t")} AND lower(t."tagName") LIKE ANY(:patterns)
            ORDER BY t.id
            LIMIT :limit
            """,
            # Words are alphanumeric tokens, so no LIKE escaping is needed.
            {"patterns": [f"%{word.lower()}%" for word in words], "limit": limit},
        )
        return [Tag(id=row["id"], name=row["tagName"]) for row in rows]

    def categories_for_tags(self, tag_ids: Sequence[int]) -> List[int]:
        if not tag_ids:
            return []
        rows = self._rows(
            f"""
            SELECT DISTINCT ct."categoryId"
            FROM category_tag ct
            WHERE ct."tagId" = ANY(:tag_ids) AND {_active("ct")}
            ORDER BY ct."categoryId"
            """,
            {"tag_ids": list(tag_ids)},
        )
        return [row["categoryId"] for row in rows]

    def sibling_tags(
        self, category_ids: Sequence[int], exclude_tag_ids: Sequence[int], limit: int
    ) -> List[Tag]:
        if not category_ids:
            return []
        rows = self._rows(
            f"""
            SELECT DISTINCT t.id, t."tagName"
            FROM category_tag ct
            JOIN "Tags" t ON t.id = ct."tagId"
            WHERE ct."categoryId" = ANY(:category_ids)
              AND NOT (ct."tagId" = ANY(:exclude_ids))
              AND {_active("ct")} AND {_active("t")}
            ORDER BY t.id
            LIMIT :limit
            """,
            {"category_ids": list(category_ids), "exclude_ids": list(exclude_tag_ids), "limit": limit},
        )
        return [Tag(id=row["id"], name=row["tagName"]) for row in rows]

    # -- personalization --------------------------------------------------

    def viewed_category_ids(self, user_id: int, since: datetime) -> Set[int]:
        rows = self._rows(
            """
            SELECT DISTINCT p."categoryId" AS value
            FROM "ProductView" v
            JOIN "Product" p ON p.id = v."productId"
            WHERE v."userId" = :user_id AND v."deletedAt" IS NULL
              AND v."lastViewedAt" >= :since AND p."categoryId" IS NOT NULL
            """,
            {"user_id": user_id, "since": since},
        )
        return {row["value"] for row in rows}

    def clicked_brand_ids(self, user_id: int, since: datetime) -> Set[int]:
        rows = self._rows(
            """
            SELECT DISTINCT p."brandId" AS value
            FROM "ProductClick" c
            JOIN "Product" p ON p.id = c."productId"
            WHERE c."userId" = :user_id AND c."deletedAt" IS NULL
              AND c."createdAt" >= :since AND p."brandId" IS NOT NULL
            """,
            {"user_id": user_id, "since": since},
        )
        return {row["value"] for row in rows}
