"""Multi-strategy duplicate matcher.

Issues up to five SOSL search patterns against the remote CRM (exact,
prefix, substring wildcard, native fuzzy, and a normalized-term repeat),
unions the hits by record id, then re-scores each distinct record locally
with the composite similarity engine. Candidates surfaced by more than one
pattern get a +0.05 boost per extra pattern, capped at 1.0.

A failing search pattern (e.g. fuzzy search unsupported on the org) is
logged and skipped; the other patterns still contribute.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import structlog

from src.crmguard.matching.normalizer import normalize_for_field
from src.crmguard.matching.schemas import (
    MatchConfidence,
    MatchResult,
    MatchStrategy,
    MatchThresholds,
    SearchConfig,
)
from src.crmguard.matching.similarity import SimilarityWeights, composite_similarity
from src.crmguard.remote.service import RemoteDataService

logger = structlog.get_logger(__name__)

MULTI_STRATEGY_BOOST = 0.05
SEARCH_RESULT_LIMIT = 20

_SOSL_RESERVED = re.compile(r"""[?&|!{}\[\]()^~*:\\"'+\-]""")


def escape_sosl(term: str) -> str:
    """Backslash-escape SOSL reserved characters and trim."""
    return _SOSL_RESERVED.sub(lambda m: "\\" + m.group(0), term).strip()


def build_sosl(term: str, sobject: str, return_fields: list[str], strategy: MatchStrategy) -> str:
    """Build the SOSL FIND clause for one search strategy.

    The term is escaped here; wildcard and fuzzy operators are appended
    after escaping so they keep their search meaning.
    """
    escaped = escape_sosl(term)
    if strategy == MatchStrategy.PREFIX:
        pattern = f"{escaped}*"
    elif strategy == MatchStrategy.WILDCARD:
        pattern = f"*{escaped}*"
    elif strategy == MatchStrategy.FUZZY:
        pattern = f"{escaped}~"
    else:
        pattern = escaped
    fields = ", ".join(return_fields)
    return f"FIND {{{pattern}}} IN ALL FIELDS RETURNING {sobject}({fields}) LIMIT {SEARCH_RESULT_LIMIT}"


class SmartMatcher:
    """Finds likely duplicates of a value in the remote CRM.

    Args:
        service: Remote data service used for SOSL searches.
        thresholds: Confidence tier cut-offs (defaults HIGH 0.95 / MEDIUM 0.75).
        weights: Default similarity weights; SearchConfig may override per call.
    """

    def __init__(
        self,
        service: RemoteDataService,
        thresholds: MatchThresholds | None = None,
        weights: SimilarityWeights | None = None,
    ) -> None:
        self._service = service
        self._thresholds = thresholds or MatchThresholds()
        self._weights = weights or SimilarityWeights()

    async def find_matches(self, search_term: str, config: SearchConfig) -> list[MatchResult]:
        """Search the remote CRM and return scored candidates, best first.

        Args:
            search_term: Raw value to look for (e.g. an account name).
            config: Target entity, field, return fields, limit, and optional
                minimum confidence tier.

        Returns:
            At most ``config.limit`` MatchResults sorted by descending score,
            filtered to ``config.min_confidence`` if set. Empty search term
            yields an empty list.
        """
        if not search_term or not escape_sosl(search_term):
            return []

        return_fields = list(config.return_fields)
        for required in ("Id", config.field):
            if required not in return_fields:
                return_fields.append(required)

        normalized_input = normalize_for_field(search_term, config.field)
        candidates = await self._run_searches(search_term, normalized_input, config, return_fields)

        weights = config.similarity_weights or self._weights
        results = [
            self._score(record, strategies, normalized_input, config.field, weights)
            for record, strategies in candidates.values()
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        results = results[: config.limit]

        if config.min_confidence is not None:
            floor = config.min_confidence.rank
            results = [r for r in results if r.confidence.rank >= floor]

        logger.debug(
            "matcher.search_complete",
            sobject=config.sobject,
            field=config.field,
            candidates=len(candidates),
            returned=len(results),
        )
        return results

    async def find_duplicates(
        self,
        record_data: dict[str, Any],
        config: SearchConfig,
    ) -> list[MatchResult]:
        """Look for existing records matching ``record_data[config.field]``.

        Confidence is floored at MEDIUM; a missing or empty field value
        yields no matches.
        """
        value = record_data.get(config.field)
        if not value or not isinstance(value, str):
            return []
        floor = config.min_confidence
        if floor is None or floor.rank < MatchConfidence.MEDIUM.rank:
            floor = MatchConfidence.MEDIUM
        return await self.find_matches(value, config.model_copy(update={"min_confidence": floor}))

    # ── Search fan-out ──────────────────────────────────────────────────────

    async def _run_searches(
        self,
        search_term: str,
        normalized_term: str,
        config: SearchConfig,
        return_fields: list[str],
    ) -> dict[str, tuple[dict[str, Any], list[MatchStrategy]]]:
        """Issue each search pattern and union hits by record id.

        Returns:
            Mapping of record id to (record, strategies that found it), in
            first-seen order.
        """
        plans: list[tuple[MatchStrategy, str]] = [
            (MatchStrategy.EXACT, build_sosl(search_term, config.sobject, return_fields, MatchStrategy.EXACT)),
            (MatchStrategy.PREFIX, build_sosl(search_term, config.sobject, return_fields, MatchStrategy.PREFIX)),
            (MatchStrategy.WILDCARD, build_sosl(search_term, config.sobject, return_fields, MatchStrategy.WILDCARD)),
            (MatchStrategy.FUZZY, build_sosl(search_term, config.sobject, return_fields, MatchStrategy.FUZZY)),
        ]
        if normalized_term and normalized_term != search_term.lower():
            plans.append(
                (
                    MatchStrategy.NORMALIZED,
                    build_sosl(normalized_term, config.sobject, return_fields, MatchStrategy.EXACT),
                )
            )

        outcomes = await asyncio.gather(
            *[self._service.search(sosl) for _, sosl in plans],
            return_exceptions=True,
        )

        merged: dict[str, tuple[dict[str, Any], list[MatchStrategy]]] = {}
        for (strategy, _), outcome in zip(plans, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "matcher.search_pattern_failed",
                    strategy=strategy.value,
                    sobject=config.sobject,
                    error=str(outcome),
                )
                continue
            for record in (outcome or {}).get("searchRecords") or []:
                record_id = record.get("Id")
                if not record_id:
                    continue
                if record_id in merged:
                    strategies = merged[record_id][1]
                    if strategy not in strategies:
                        strategies.append(strategy)
                else:
                    merged[record_id] = (record, [strategy])
        return merged

    def _score(
        self,
        record: dict[str, Any],
        strategies: list[MatchStrategy],
        normalized_input: str,
        field: str,
        weights: SimilarityWeights,
    ) -> MatchResult:
        value = record.get(field)
        normalized_record = normalize_for_field(value, field) if isinstance(value, str) else ""
        similarity = composite_similarity(normalized_input, normalized_record, weights)

        score = similarity.score
        if len(strategies) > 1:
            score = min(1.0, score + (len(strategies) - 1) * MULTI_STRATEGY_BOOST)

        return MatchResult(
            record=record,
            confidence=self._thresholds.tier(score),
            score=score,
            matched_by=list(strategies),
            normalized_input=normalized_input,
            normalized_record=normalized_record,
        )


# ── Presentation ────────────────────────────────────────────────────────────


def get_match_summary(match: MatchResult) -> str:
    """One-line description, e.g. "HIGH confidence (97.5%) - Matched by: exact, prefix"."""
    strategies = ", ".join(s.value for s in match.matched_by)
    return f"{match.confidence.value} confidence ({match.score * 100:.1f}%) - Matched by: {strategies}"


def format_matches_for_user(matches: list[MatchResult]) -> str:
    """Render matches as a numbered, human-readable list."""
    if not matches:
        return "No potential duplicates found."

    plural = "es" if len(matches) > 1 else ""
    lines = [f"Found {len(matches)} potential match{plural}:", ""]
    for index, match in enumerate(matches, start=1):
        record = match.record
        lines.append(f"{index}. {record.get('Name') or record.get('Id')}")
        lines.append(f"   {get_match_summary(match)}")
        lines.append(f"   ID: {record.get('Id')}")
        for key, value in record.items():
            if key in ("Id", "Name") or key.startswith("attributes"):
                continue
            lines.append(f"   {key}: {value}")
        lines.append("")
    return "\n".join(lines)
