"""
Fuzzy Index - approximate multi-field search over the internal catalog

Each category is indexed by its normalized name (full weight) and description
(partial weight). Scoring uses rapidfuzz WRatio, which already blends plain,
token-sort, token-set and partial ratios, so word order and substring
position do not matter.

Scores follow the "distance" convention: 0.0 is a perfect match, 1.0 is no
similarity. Hits with a distance above ``threshold`` are dropped.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import ValidationError
from rapidfuzz import fuzz

from feedmap.domain.reconciliation.normalizer import normalize
from feedmap.domain.reconciliation.schemas import Category, FieldMatch

logger = structlog.get_logger()


@dataclass
class IndexedCategory:
    """Category plus its normalized searchable fields"""
    category: Category
    fields: Dict[str, str]


@dataclass
class SearchHit:
    """
    One search result.

    Attributes:
        category: Matched category
        score: Distance score (0.0 = perfect, 1.0 = unrelated)
        matches: Per-field provenance (only filled when requested)
    """
    category: Category
    score: float
    matches: List[FieldMatch] = field(default_factory=list)


class FuzzyIndex:
    """
    Searchable structure over a catalog snapshot.

    Usage:
        index = FuzzyIndex()
        index.build(categories)
        hits = index.search("spor ayakkabi", limit=5)
    """

    NAME_WEIGHT = 1.0

    def __init__(
        self,
        description_weight: float = 0.3,
        threshold: float = 0.6,
        min_match_char_length: int = 2,
    ):
        """
        Args:
            description_weight: Weight of the description field relative to name
            threshold: Maximum distance score for a hit to be returned
            min_match_char_length: Queries with fewer characters never match
        """
        self.description_weight = description_weight
        self.threshold = threshold
        self.min_match_char_length = min_match_char_length
        self._entries: List[IndexedCategory] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def categories(self) -> List[Category]:
        return [entry.category for entry in self._entries]

    def build(self, categories: Optional[Iterable[Any]]) -> None:
        """
        (Re)build the index in place.

        Accepts Category objects or plain dicts with id/name/description.
        Invalid entries are skipped, never raised.
        """
        entries: List[IndexedCategory] = []
        seen_ids = set()

        for raw in categories or []:
            try:
                category = raw if isinstance(raw, Category) else Category.model_validate(raw)
            except ValidationError as e:
                logger.warning("fuzzy_index_invalid_category", category=repr(raw)[:100], error=str(e))
                continue

            name = normalize(category.name)
            if not name:
                logger.debug("fuzzy_index_empty_name", category_id=category.id)
                continue

            if category.id in seen_ids:
                logger.warning("fuzzy_index_duplicate_id", category_id=category.id)
            seen_ids.add(category.id)

            fields = {"name": name}
            description = normalize(category.description)
            if description:
                fields["description"] = description
            entries.append(IndexedCategory(category=category, fields=fields))

        self._entries = entries
        logger.info("fuzzy_index_built", categories=len(entries))

    def search(self, query: Optional[str], limit: int = 5, include_matches: bool = False) -> List[SearchHit]:
        """
        Rank catalog entries against a query.

        Args:
            query: Raw external label (normalized here)
            limit: Maximum number of hits
            include_matches: Attach FieldMatch provenance to each hit

        Returns:
            Hits sorted by ascending distance; ties keep catalog order
        """
        normalized = normalize(query)
        if limit <= 0 or len(normalized.replace(" ", "")) < self.min_match_char_length:
            return []

        hits: List[SearchHit] = []
        for entry in self._entries:
            field_scores = {
                name: fuzz.WRatio(normalized, value) / 100.0
                for name, value in entry.fields.items()
            }
            similarity = self._combine(field_scores)
            score = 1.0 - similarity
            if score > self.threshold:
                continue

            matches = self._field_matches(normalized, entry, field_scores) if include_matches else []
            hits.append(SearchHit(category=entry.category, score=score, matches=matches))

        hits.sort(key=lambda hit: hit.score)
        return hits[:limit]

    def _combine(self, field_scores: Dict[str, float]) -> float:
        """Name similarity, boosted by the weighted description when that helps"""
        name_score = field_scores.get("name", 0.0)
        if "description" not in field_scores or self.description_weight <= 0:
            return name_score

        weighted = (
            self.NAME_WEIGHT * name_score + self.description_weight * field_scores["description"]
        ) / (self.NAME_WEIGHT + self.description_weight)
        return min(1.0, max(name_score, weighted))

    def _field_matches(
        self,
        normalized: str,
        entry: IndexedCategory,
        field_scores: Dict[str, float],
    ) -> List[FieldMatch]:
        matches: List[FieldMatch] = []
        for name, value in entry.fields.items():
            if field_scores[name] <= 0:
                continue
            alignment = fuzz.partial_ratio_alignment(normalized, value)
            if alignment is None:
                span = (0, len(value))
            else:
                span = (alignment.dest_start, alignment.dest_end)
            matches.append(FieldMatch(
                field=name,
                value=value,
                span=span,
                score=round(field_scores[name], 4),
            ))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches
