"""FastAPI application wiring the search service."""
from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Query

from .backends import build_catalog
from .cache import CacheBackend, build_cache
from .catalog import CatalogStore
from .config import Settings, settings
from .expansion import expand
from .models import ExpansionResponse, SearchRequest, SearchResponse, SuggestionsResponse
from .personalization import personalize_results
from .search import search_products
from .suggestions import suggest

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(settings.log_level.upper())

# ``force=True`` replaces uvicorn's default handlers so pipeline timing lines
# share one format with the access log.
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    logging.getLogger(name).setLevel(LOG_LEVEL)

logger = logging.getLogger(__name__)
logger.info("Logging configured at %s", settings.log_level.upper())


def create_app(
    catalog: CatalogStore | None = None,
    cache: CacheBackend | None = None,
    config: Settings = settings,
) -> FastAPI:
    """Build the app. Missing collaborators are created from ``config`` at startup."""
    app = FastAPI(title="Product Search Service")
    app.state.catalog = catalog
    app.state.cache = cache
    app.state.config = config

    @app.on_event("startup")
    async def startup_event() -> None:
        if app.state.catalog is None:
            app.state.catalog = await asyncio.to_thread(build_catalog, config)
        if app.state.cache is None:
            app.state.cache = await asyncio.to_thread(build_cache, config)
        logger.info("Search service ready: catalog=%s cache=%s", app.state.catalog.name, app.state.cache.name)

    @app.get("/health")
    async def health() -> dict:
        reachable = await asyncio.to_thread(app.state.catalog.ping)
        return {
            "catalog": app.state.catalog.name,
            "catalogReachable": reachable,
            "cache": app.state.cache.name,
        }

    @app.get("/search", response_model=SearchResponse, response_model_exclude_unset=True)
    async def search(
        term: str = Query("", description="Search term"),
        page: int | None = None,
        limit: int | None = Query(None, description="Page size"),
        sort: str | None = Query(None, description="relevance, price_asc, price_desc, newest, oldest, popularity, rating"),
        categoryIds: str | None = Query(None, description="Comma-separated category ids"),
        brandIds: str | None = Query(None, description="Comma-separated brand ids"),
        priceMin: float | None = None,
        priceMax: float | None = None,
        minRating: float | None = None,
        hasDiscount: bool | None = None,
        userId: int | None = None,
        isOwner: str | None = Query(None, description="'me' restricts results to the caller's products"),
        specFilters: str | None = Query(None, description="JSON map of spec key to values"),
        personalize: bool = False,
    ) -> dict:
        request = SearchRequest(
            term=term,
            page=page,
            limit=limit,
            sort=sort,
            categoryIds=categoryIds,
            brandIds=brandIds,
            priceMin=priceMin,
            priceMax=priceMax,
            minRating=minRating,
            hasDiscount=hasDiscount,
            userId=userId,
            isOwner=isOwner,
            specFilters=specFilters,
        )
        payload = await search_products(app.state.catalog, app.state.cache, request, config)
        if personalize and userId is not None and payload.get("data"):
            ranked = await personalize_results(app.state.catalog, payload["data"], userId, config)
            payload = {**payload, "data": ranked}
        return payload

    @app.get("/search/suggestions", response_model=SuggestionsResponse)
    async def suggestions(
        term: str = Query("", description="Partial search term"),
        userId: int | None = None,
        deviceId: str | None = None,
    ) -> dict:
        return await suggest(app.state.catalog, term, userId, deviceId, config)

    @app.get("/search/expand", response_model=ExpansionResponse)
    async def expansion(term: str = Query("", description="Search term to broaden")) -> dict:
        return await expand(app.state.catalog, term, config)

    return app


app = create_app()
