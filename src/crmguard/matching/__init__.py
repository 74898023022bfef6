"""Fuzzy matching -- text normalization, string similarity, and duplicate search.

Provides:
- normalizer: multilingual canonicalization (diacritics, legal-entity suffixes)
- similarity: Levenshtein, Jaro-Winkler, trigram Dice, Soundex, and a weighted composite
- SmartMatcher: multi-pattern SOSL search with local re-scoring and confidence tiers
"""

from src.crmguard.matching.matcher import (
    SmartMatcher,
    format_matches_for_user,
    get_match_summary,
)
from src.crmguard.matching.normalizer import normalize, normalize_for_field
from src.crmguard.matching.schemas import (
    MatchConfidence,
    MatchResult,
    MatchStrategy,
    MatchThresholds,
    SearchConfig,
)
from src.crmguard.matching.similarity import (
    SimilarityResult,
    SimilarityWeights,
    composite_similarity,
)

__all__ = [
    "SmartMatcher",
    "MatchConfidence",
    "MatchResult",
    "MatchStrategy",
    "MatchThresholds",
    "SearchConfig",
    "SimilarityResult",
    "SimilarityWeights",
    "composite_similarity",
    "normalize",
    "normalize_for_field",
    "get_match_summary",
    "format_matches_for_user",
]
