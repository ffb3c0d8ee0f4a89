"""Relevance scoring over precomputed match signals.

Retrieval (how the signals are obtained) lives in the catalog stores; this
module only turns a :class:`CandidateSignals` row into one relevance number:

    score = 10*lexical + 5*name_similarity + 3*prefix_similarity
          + 2*phonetic + 2*brand_similarity
          + 0.01*clicks_30d + 0.005*views_30d
          + 0.5*avg_rating*ln(review_count + 1)

The weights are the defaults of :class:`ScoreWeights` and can be tuned through
the ``SCORE_WEIGHT_*`` settings.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from .config import Settings, settings


@dataclass(frozen=True)
class ScoreWeights:
    lexical: float = 10.0
    name_similarity: float = 5.0
    prefix_similarity: float = 3.0
    phonetic: float = 2.0
    brand_similarity: float = 2.0
    clicks: float = 0.01
    views: float = 0.005
    rating: float = 0.5

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ScoreWeights":
        return cls(
            lexical=config.weight_lexical,
            name_similarity=config.weight_name_similarity,
            prefix_similarity=config.weight_prefix_similarity,
            phonetic=config.weight_phonetic,
            brand_similarity=config.weight_brand_similarity,
            clicks=config.weight_clicks,
            views=config.weight_views,
            rating=config.weight_rating,
        )


@dataclass(frozen=True)
class MatchThresholds:
    name_similarity: float = 0.15
    prefix_similarity: float = 0.5
    brand_similarity: float = 0.3
    phonetic_min_token_length: int = 3

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "MatchThresholds":
        return cls(
            name_similarity=config.name_similarity_threshold,
            prefix_similarity=config.prefix_similarity_threshold,
            brand_similarity=config.brand_similarity_threshold,
            phonetic_min_token_length=config.phonetic_min_token_length,
        )


@dataclass(frozen=True)
class CandidateSignals:
    """Per-candidate inputs to the relevance score, plus the sort keys."""

    product_id: int
    lexical_rank: float = 0.0
    name_similarity: float = 0.0
    prefix_similarity: float = 0.0
    phonetic_match: bool = False
    brand_similarity: float = 0.0
    clicks_30d: int = 0
    views_30d: int = 0
    avg_rating: float = 0.0
    review_count: int = 0
    offer_price: float = 0.0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ScoredCandidate:
    product_id: int
    score: float
    signals: CandidateSignals


def qualifies(signals: CandidateSignals, thresholds: MatchThresholds) -> bool:
    """A candidate is retrieved when any one match channel fires."""
    return (
        signals.lexical_rank > 0
        or signals.name_similarity > thresholds.name_similarity
        or signals.prefix_similarity > thresholds.prefix_similarity
        or signals.phonetic_match
        or signals.brand_similarity > thresholds.brand_similarity
    )


def relevance_score(signals: CandidateSignals, weights: ScoreWeights) -> float:
    rating_term = max(signals.avg_rating, 0.0) * math.log(max(signals.review_count, 0) + 1)
    score = (
        weights.lexical * signals.lexical_rank
        + weights.name_similarity * signals.name_similarity
        + weights.prefix_similarity * signals.prefix_similarity
        + weights.phonetic * (1.0 if signals.phonetic_match else 0.0)
        + weights.brand_similarity * signals.brand_similarity
        + weights.clicks * signals.clicks_30d
        + weights.views * signals.views_30d
        + weights.rating * rating_term
    )
    return max(score, 0.0)


def score_candidates(candidates: Iterable[CandidateSignals], weights: ScoreWeights) -> List[ScoredCandidate]:
    return [
        ScoredCandidate(product_id=signals.product_id, score=relevance_score(signals, weights), signals=signals)
        for signals in candidates
    ]
