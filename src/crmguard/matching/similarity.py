"""String similarity algorithms for duplicate detection.

Four independent measures plus a weighted composite:

    LEVENSHTEIN:   1 - (edit_distance / max_len), case-insensitive
    JARO_WINKLER:  Jaro similarity with a prefix bonus (0.1 per char, up to 4)
    TRIGRAM:       Dice coefficient over padded 3-character windows
    SOUNDEX:       1.0 if the 4-character phonetic codes agree, else 0.0

Edit distance, Jaro and the common prefix come from rapidfuzz. The trigram
and Soundex measures have no rapidfuzz counterpart and are computed here.
Every sub-score is returned alongside the blended number so callers can see
which signal dominated.
"""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, Field
from rapidfuzz.distance import Jaro, Levenshtein, Prefix

# ── Levenshtein ─────────────────────────────────────────────────────────────


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost edit distance (insertion, deletion, substitution)."""
    return Levenshtein.distance(a, b)


def levenshtein_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return Levenshtein.normalized_similarity(a.lower(), b.lower())


# ── Jaro-Winkler ────────────────────────────────────────────────────────────

JARO_WINKLER_SCALING = 0.1
JARO_WINKLER_PREFIX = 4


def jaro_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return Jaro.similarity(a, b)


def jaro_winkler_similarity(a: str, b: str) -> float:
    """Jaro similarity boosted by the shared prefix, case-insensitive.

    The bonus applies at every Jaro score. rapidfuzz's JaroWinkler skips it
    at or below 0.7.
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    a, b = a.lower(), b.lower()
    jaro = Jaro.similarity(a, b)
    prefix = min(Prefix.similarity(a, b), JARO_WINKLER_PREFIX)
    return jaro + prefix * JARO_WINKLER_SCALING * (1 - jaro)


# ── Trigram ─────────────────────────────────────────────────────────────────


def trigrams(text: str) -> set[str]:
    padded = f"  {text.lower()}  "
    return {padded[i:i + 3] for i in range(len(padded) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    grams_a = trigrams(a)
    grams_b = trigrams(b)
    return 2 * len(grams_a & grams_b) / (len(grams_a) + len(grams_b))


# ── Soundex ─────────────────────────────────────────────────────────────────

SOUNDEX_LENGTH = 4

_SOUNDEX_TABLE: dict[str, str] = {
    "B": "1", "F": "1", "P": "1", "V": "1",
    "C": "2", "G": "2", "J": "2", "K": "2", "Q": "2", "S": "2", "X": "2", "Z": "2",
    "D": "3", "T": "3",
    "L": "4",
    "M": "5", "N": "5",
    "R": "6",
}


def soundex_encode(text: str) -> str:
    """Encode text as a 4-character Soundex code ("Robert" -> "R163").

    The first letter is kept. Vowels and H/W/Y map to "0" and are skipped
    without resetting the previous code.
    """
    if not text:
        return ""
    upper = text.upper()
    code = upper[0]
    previous = _SOUNDEX_TABLE.get(upper[0], "0")

    for char in upper[1:]:
        if len(code) >= SOUNDEX_LENGTH:
            break
        current = _SOUNDEX_TABLE.get(char, "0")
        if current == "0":
            continue
        if current != previous:
            code += current
        previous = current

    return code.ljust(SOUNDEX_LENGTH, "0")


def soundex_matches(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return soundex_encode(a) == soundex_encode(b)


def soundex_similarity(a: str, b: str) -> float:
    return 1.0 if soundex_matches(a, b) else 0.0


# ── Composite ───────────────────────────────────────────────────────────────


class SimilarityAlgorithm(str, Enum):
    LEVENSHTEIN = "LEVENSHTEIN"
    JARO_WINKLER = "JARO_WINKLER"
    TRIGRAM = "TRIGRAM"
    SOUNDEX = "SOUNDEX"


class SimilarityWeights(BaseModel):
    """Per-algorithm weights for the composite score."""

    levenshtein: float = Field(default=0.3, ge=0.0)
    jaro_winkler: float = Field(default=0.4, ge=0.0)
    trigram: float = Field(default=0.2, ge=0.0)
    soundex: float = Field(default=0.1, ge=0.0)

    @property
    def total(self) -> float:
        return math.fsum((self.levenshtein, self.jaro_winkler, self.trigram, self.soundex))


class SimilarityScores(BaseModel):
    levenshtein: float
    jaro_winkler: float
    trigram: float
    soundex: float


class SimilarityResult(BaseModel):
    """Composite score plus every individual sub-score."""

    score: float
    scores: SimilarityScores
    algorithm: SimilarityAlgorithm


DEFAULT_WEIGHTS = SimilarityWeights()


def composite_similarity(
    a: str,
    b: str,
    weights: SimilarityWeights | None = None,
) -> SimilarityResult:
    """Blend all four measures into one score in [0, 1].

    Weights are normalized by their total, so overriding them never pushes
    the composite outside [0, 1]. With the default weights (which sum to
    1.0) this is a plain weighted sum.

    Args:
        a: First string.
        b: Second string.
        weights: Optional weight override (defaults to 0.3/0.4/0.2/0.1).

    Returns:
        SimilarityResult with the composite score, all sub-scores, and the
        algorithm that produced the highest individual score (first wins on
        ties, in LEVENSHTEIN, JARO_WINKLER, TRIGRAM, SOUNDEX order).
    """
    w = weights or DEFAULT_WEIGHTS
    scores = SimilarityScores(
        levenshtein=levenshtein_similarity(a, b),
        jaro_winkler=jaro_winkler_similarity(a, b),
        trigram=trigram_similarity(a, b),
        soundex=soundex_similarity(a, b),
    )

    total = w.total
    if total > 0:
        weighted = math.fsum(
            (
                scores.levenshtein * w.levenshtein,
                scores.jaro_winkler * w.jaro_winkler,
                scores.trigram * w.trigram,
                scores.soundex * w.soundex,
            )
        )
        score = min(1.0, max(0.0, weighted / total))
    else:
        score = 0.0

    ranked = [
        (SimilarityAlgorithm.LEVENSHTEIN, scores.levenshtein),
        (SimilarityAlgorithm.JARO_WINKLER, scores.jaro_winkler),
        (SimilarityAlgorithm.TRIGRAM, scores.trigram),
        (SimilarityAlgorithm.SOUNDEX, scores.soundex),
    ]
    best = max(value for _, value in ranked)
    algorithm = next(name for name, value in ranked if value == best)

    return SimilarityResult(score=score, scores=scores, algorithm=algorithm)
