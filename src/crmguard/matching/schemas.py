"""Pydantic schemas for duplicate matching."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from src.crmguard.matching.similarity import SimilarityWeights


class MatchConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    MatchConfidence.HIGH: 3,
    MatchConfidence.MEDIUM: 2,
    MatchConfidence.LOW: 1,
}


class MatchStrategy(str, Enum):
    """Search pattern that surfaced a candidate."""

    EXACT = "exact"
    PREFIX = "prefix"
    WILDCARD = "wildcard"
    FUZZY = "fuzzy"
    NORMALIZED = "normalized"


class MatchThresholds(BaseModel):
    """Score cut-offs for confidence tiers (HIGH >= high, MEDIUM >= medium)."""

    high: float = Field(default=0.95, ge=0.0, le=1.0)
    medium: float = Field(default=0.75, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_order(self) -> MatchThresholds:
        if self.medium > self.high:
            raise ValueError("medium threshold must not exceed high threshold")
        return self

    def tier(self, score: float) -> MatchConfidence:
        if score >= self.high:
            return MatchConfidence.HIGH
        if score >= self.medium:
            return MatchConfidence.MEDIUM
        return MatchConfidence.LOW


class SearchConfig(BaseModel):
    """What to search and how to score it."""

    sobject: str
    field: str = "Name"
    return_fields: list[str] = Field(default_factory=lambda: ["Id", "Name"])
    limit: int = Field(default=10, ge=1)
    min_confidence: MatchConfidence | None = None
    similarity_weights: SimilarityWeights | None = None


class MatchResult(BaseModel):
    """A candidate record scored against the search term."""

    record: dict[str, Any]
    confidence: MatchConfidence
    score: float
    matched_by: list[MatchStrategy] = Field(default_factory=list)
    normalized_input: str
    normalized_record: str
