"""
Category Matcher - deterministic fuzzy mapping of feed labels to catalog

NO AI CALLS - pure in-memory string similarity. Fast, free and always
available, so it runs first; low-confidence results can be escalated to the
AI batch classifier by the caller.

Confidence bands (see ConfidenceBucket):
- > 0.8       high: auto-map
- (0.6, 0.8]  medium: manual confirmation
- (0.4, 0.6]  low: check alternatives
- <= 0.4      no match

Never raises: "no match" is returned as category=None.
"""
from typing import Any, Iterable, List, Optional

import structlog

from feedmap.domain.reconciliation.fuzzy_index import FuzzyIndex
from feedmap.domain.reconciliation.schemas import (
    BucketedMappings,
    ConfidenceBucket,
    FuzzyMatch,
    MappingResult,
    MappingSummary,
    MatchCandidate,
    MatchSource,
    RankedCandidate,
)

logger = structlog.get_logger()


class CategoryMatcher:
    """
    Wraps a FuzzyIndex and turns distance scores into confidences.

    Usage:
        matcher = CategoryMatcher(categories)
        match = matcher.find_category("Spor Ayakkabı")
        if match.category:
            print(match.category.name, match.confidence)
    """

    SEARCH_LIMIT = 5
    MAX_ALTERNATIVES = 2

    def __init__(
        self,
        categories: Optional[Iterable[Any]] = None,
        auto_accept_threshold: float = 0.6,
        search_threshold: float = 0.6,
        description_weight: float = 0.3,
        min_match_char_length: int = 2,
    ):
        """
        Args:
            categories: Initial catalog snapshot (Category objects or dicts)
            auto_accept_threshold: Top hit becomes the suggestion only above this
            search_threshold: Maximum distance score kept by the index
            description_weight: Weight of description vs name
            min_match_char_length: Minimum query length to attempt a match
        """
        self.auto_accept_threshold = auto_accept_threshold
        self.index = FuzzyIndex(
            description_weight=description_weight,
            threshold=search_threshold,
            min_match_char_length=min_match_char_length,
        )
        self.index.build(categories)

    @classmethod
    def from_settings(cls, settings, categories: Optional[Iterable[Any]] = None) -> "CategoryMatcher":
        """Build a matcher from application Settings"""
        return cls(
            categories,
            auto_accept_threshold=settings.fuzzy_auto_accept_threshold,
            search_threshold=settings.fuzzy_search_threshold,
            description_weight=settings.fuzzy_description_weight,
            min_match_char_length=settings.fuzzy_min_match_char_length,
        )

    def update_categories(self, categories: Optional[Iterable[Any]]) -> None:
        """Rebuild the index for a new catalog snapshot (same matcher instance)"""
        self.index.build(categories)

    def find_category(self, label: Optional[str]) -> FuzzyMatch:
        """
        Best category for one external label.

        The confidence always reflects the best raw score, even when it is
        too low for the category to be suggested.
        """
        hits = self.index.search(label, limit=self.SEARCH_LIMIT)
        if not hits:
            return FuzzyMatch()

        best = hits[0]
        confidence = self._confidence(best.score)
        alternatives = [
            MatchCandidate(category=hit.category, confidence=self._confidence(hit.score))
            for hit in hits[1:1 + self.MAX_ALTERNATIVES]
        ]

        return FuzzyMatch(
            category=best.category if confidence > self.auto_accept_threshold else None,
            confidence=confidence,
            alternatives=alternatives,
        )

    def find_multiple_categories(self, label: Optional[str], limit: int = 5) -> List[RankedCandidate]:
        """Up to `limit` ranked candidates with matched field and span"""
        hits = self.index.search(label, limit=limit, include_matches=True)
        return [
            RankedCandidate(
                category=hit.category,
                confidence=self._confidence(hit.score),
                matches=hit.matches,
            )
            for hit in hits
        ]

    def match(self, label: str) -> MappingResult:
        """find_category wrapped as a MappingResult"""
        found = self.find_category(label)
        if found.category:
            reasoning = (
                f'Fuzzy match: "{label}" -> "{found.category.name}" '
                f"(confidence {found.confidence:.2f})"
            )
        else:
            reasoning = f'No suitable category found for "{label}"'

        return MappingResult(
            xml_category=label,
            suggested_category=found.category,
            confidence=found.confidence,
            alternatives=found.alternatives,
            reasoning=reasoning,
            source=MatchSource.FUZZY,
        )

    def auto_map_categories(
        self,
        labels: Iterable[str],
        categories: Optional[Iterable[Any]] = None,
    ) -> List[MappingResult]:
        """
        Map every label, preserving input order (no de-duplication).

        Args:
            labels: External labels
            categories: Optional catalog snapshot; rebuilds the index first

        Returns:
            One MappingResult per label
        """
        if categories is not None:
            self.update_categories(categories)

        results = [self.match(label) for label in labels]

        summary = summarize(results)
        logger.info("fuzzy_auto_map_complete",
                    total=summary.total,
                    mapped=summary.mapped,
                    average_confidence=round(summary.average_confidence, 3))
        return results

    @staticmethod
    def categorize_by_confidence(mappings: Iterable[MappingResult]) -> BucketedMappings:
        """Partition mappings into high/medium/low/no_match"""
        buckets = BucketedMappings()
        targets = {
            ConfidenceBucket.HIGH: buckets.high,
            ConfidenceBucket.MEDIUM: buckets.medium,
            ConfidenceBucket.LOW: buckets.low,
            ConfidenceBucket.NO_MATCH: buckets.no_match,
        }
        for mapping in mappings:
            targets[mapping.bucket].append(mapping)
        return buckets

    @staticmethod
    def _confidence(score: float) -> float:
        return min(1.0, max(0.0, 1.0 - score))


def summarize(mappings: Iterable[MappingResult]) -> MappingSummary:
    """Totals and mean confidence of mapped results"""
    mappings = list(mappings)
    mapped = [m for m in mappings if m.suggested_category is not None]
    average = sum(m.confidence for m in mapped) / len(mapped) if mapped else 0.0

    return MappingSummary(
        total=len(mappings),
        mapped=len(mapped),
        unmapped=len(mappings) - len(mapped),
        average_confidence=min(1.0, average),
    )
