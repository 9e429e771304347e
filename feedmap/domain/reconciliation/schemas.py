"""
Data schemas for the reconciliation module

MappingResult is the unit exchanged with callers on both the fuzzy and the AI
path. "No match" is data (suggested_category=None), never an exception.
"""
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class MatchSource(str, Enum):
    """Which path produced a mapping"""
    FUZZY = "fuzzy"   # Deterministic approximate-string matcher
    AI = "ai"         # Claude batch classifier


class ConfidenceBucket(str, Enum):
    """Confidence bands used for review triage"""
    HIGH = "high"          # > 0.8  - auto-map
    MEDIUM = "medium"      # (0.6, 0.8] - manual confirmation
    LOW = "low"            # (0.4, 0.6] - check alternatives
    NO_MATCH = "no_match"  # <= 0.4

    @classmethod
    def for_confidence(cls, confidence: float) -> "ConfidenceBucket":
        if confidence > 0.8:
            return cls.HIGH
        if confidence > 0.6:
            return cls.MEDIUM
        if confidence > 0.4:
            return cls.LOW
        return cls.NO_MATCH


class Category(BaseModel):
    """Internal catalog category (read-only to the core)"""
    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True, from_attributes=True)

    id: str = Field(..., description="Opaque identifier, unique per catalog snapshot")
    name: str = Field(..., description="Display name")
    description: Optional[str] = Field(None, description="Optional longer description")


class MatchCandidate(BaseModel):
    """A ranked candidate category with its confidence"""
    model_config = ConfigDict(frozen=True)

    category: Category
    confidence: float = Field(..., ge=0.0, le=1.0)


class MappingResult(BaseModel):
    """
    Mapping suggestion for one external label.

    This is what callers persist as a mapping record.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "xml_category": "Fantazi Sütyen",
                "suggested_category": {"id": "12", "name": "İç Giyim", "description": None},
                "confidence": 0.86,
                "alternatives": [],
                "reasoning": "Fantazi sütyen bir iç giyim ürünüdür",
                "source": "ai",
            }
        },
    )

    xml_category: str = Field(..., description="External label as received")
    suggested_category: Optional[Category] = Field(None, description="Best internal category, or None")
    confidence: float = Field(..., ge=0.0, le=1.0)
    alternatives: List[MatchCandidate] = Field(default_factory=list)
    reasoning: Optional[str] = Field(None, description="Explanation of the suggestion")
    source: MatchSource = MatchSource.FUZZY

    @property
    def bucket(self) -> ConfidenceBucket:
        return ConfidenceBucket.for_confidence(self.confidence)


class FuzzyMatch(BaseModel):
    """Raw result of a single fuzzy lookup"""
    model_config = ConfigDict(frozen=True)

    category: Optional[Category] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    alternatives: List[MatchCandidate] = Field(default_factory=list)


class FieldMatch(BaseModel):
    """Which indexed field produced a hit, and where"""
    model_config = ConfigDict(frozen=True)

    field: str                       # "name" or "description"
    value: str                       # normalized field text
    span: Tuple[int, int]            # [start, end) of the matched substring in value
    score: float = Field(..., ge=0.0, le=1.0)


class RankedCandidate(BaseModel):
    """Candidate with provenance, for UI explainability"""
    model_config = ConfigDict(frozen=True)

    category: Category
    confidence: float = Field(..., ge=0.0, le=1.0)
    matches: List[FieldMatch] = Field(default_factory=list)


class BucketedMappings(BaseModel):
    """Mappings partitioned by ConfidenceBucket (each mapping in exactly one list)"""
    high: List[MappingResult] = Field(default_factory=list)
    medium: List[MappingResult] = Field(default_factory=list)
    low: List[MappingResult] = Field(default_factory=list)
    no_match: List[MappingResult] = Field(default_factory=list)

    def total(self) -> int:
        return len(self.high) + len(self.medium) + len(self.low) + len(self.no_match)


class MappingSummary(BaseModel):
    """Aggregate stats reported after a mapping run"""
    total: int
    mapped: int
    unmapped: int
    average_confidence: float = Field(..., ge=0.0, le=1.0, description="Mean confidence of mapped results")


class BatchPlan(BaseModel):
    """Ordered partition of labels into fixed-size chunks"""
    batch_size: int = Field(..., ge=1)
    chunks: List[List[str]] = Field(default_factory=list)

    @classmethod
    def from_labels(cls, labels: List[str], batch_size: int) -> "BatchPlan":
        chunks = [labels[i:i + batch_size] for i in range(0, len(labels), batch_size)]
        return cls(batch_size=batch_size, chunks=chunks)

    def __len__(self) -> int:
        return len(self.chunks)


# --- AI response boundary -------------------------------------------------

class AIMappingItem(BaseModel):
    """One entry of the model's JSON reply (camelCase as requested in the prompt)"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    xml_category: Optional[str] = Field(None, alias="xmlCategory")
    suggested_category_id: Optional[str] = Field(None, alias="suggestedCategoryId")
    confidence: Optional[float] = None
    reasoning: Optional[str] = None


class AIMappingResponse(BaseModel):
    """Top-level JSON object the model must return"""
    model_config = ConfigDict(extra="ignore")

    mappings: List[AIMappingItem] = Field(default_factory=list)
