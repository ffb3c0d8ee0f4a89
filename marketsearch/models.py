"""Pydantic models for request/response payloads."""
from __future__ import annotations

from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    """Raw search parameters exactly as callers send them."""

    term: str = Field("", description="Free-text search term")
    page: Union[int, str, None] = None
    limit: Union[int, str, None] = Field(None, description="Page size")
    sort: str | None = None
    categoryIds: Union[str, List[int], None] = Field(None, description="Comma-separated category ids")
    brandIds: Union[str, List[int], None] = Field(None, description="Comma-separated brand ids")
    priceMin: Union[float, str, None] = None
    priceMax: Union[float, str, None] = None
    minRating: Union[float, str, None] = None
    hasDiscount: Union[bool, str, None] = None
    userId: Union[int, str, None] = None
    isOwner: str | None = Field(None, description="'me' restricts results to the caller's products")
    specFilters: Union[str, Dict[str, Any], None] = Field(None, description="JSON map of spec key to values")


class AutoCorrection(BaseModel):
    from_: str = Field(..., alias="from")
    to: str

    model_config = {"populate_by_name": True}


class SearchResponse(BaseModel):
    success: bool
    message: str
    data: List[Dict[str, Any]] = Field(default_factory=list)
    totalCount: int = 0
    autoCorrection: AutoCorrection | None = None
    didYouMean: str | None = None
    error: str | None = None


class ProductSuggestion(BaseModel):
    id: int
    productName: str


class CategorySuggestion(BaseModel):
    id: int
    name: str


class Suggestions(BaseModel):
    products: List[ProductSuggestion] = Field(default_factory=list)
    categories: List[CategorySuggestion] = Field(default_factory=list)
    popularSearches: List[str] = Field(default_factory=list)
    recentSearches: List[str] = Field(default_factory=list)


class SuggestionsResponse(BaseModel):
    success: bool
    message: str
    data: Suggestions


class Expansion(BaseModel):
    term: str
    expansions: List[str] = Field(default_factory=list)


class ExpansionResponse(BaseModel):
    success: bool
    message: str
    data: Expansion
