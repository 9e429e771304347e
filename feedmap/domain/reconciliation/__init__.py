"""
Reconciliation Module - map supplier feed categories onto the internal catalog

Two paths:
1. Fuzzy matching (rules): normalized approximate string search, no AI
2. AI batch mapping (Claude): bounded batches with retries, model fallback
   and exponential backoff

Example flow:
- "Sütyen" → fuzzy → "Sütyen" (confidence 1.0, high)
- "Fantazi Sütyen Takımı" → fuzzy → low confidence → AI → "Sütyen" (0.86)
- "Spor Ayakkabı" with no shoe category → no match on both paths (None)
"""

from feedmap.domain.reconciliation.ai_classifier import AIBatchClassifier, classify_api_error, validate_catalog
from feedmap.domain.reconciliation.batch_orchestrator import BatchMappingOrchestrator
from feedmap.domain.reconciliation.category_matcher import CategoryMatcher, summarize
from feedmap.domain.reconciliation.errors import (
    AccessDeniedError,
    InvalidCredentialError,
    MalformedResponseError,
    NotConfiguredError,
    QuotaExceededError,
    ReconciliationError,
    RetryExhaustedError,
    TransientServiceError,
)
from feedmap.domain.reconciliation.fuzzy_index import FuzzyIndex
from feedmap.domain.reconciliation.normalizer import normalize
from feedmap.domain.reconciliation.reconciliation_service import CategoryReconciliationService
from feedmap.domain.reconciliation.retry_policy import RetryPolicy
from feedmap.domain.reconciliation.schemas import (
    BatchPlan,
    BucketedMappings,
    Category,
    ConfidenceBucket,
    MappingResult,
    MappingSummary,
    MatchCandidate,
    MatchSource,
    RankedCandidate,
)

__all__ = [
    'AIBatchClassifier',
    'BatchMappingOrchestrator',
    'CategoryMatcher',
    'CategoryReconciliationService',
    'FuzzyIndex',
    'RetryPolicy',
    'classify_api_error',
    'normalize',
    'summarize',
    'validate_catalog',
    'BatchPlan',
    'BucketedMappings',
    'Category',
    'ConfidenceBucket',
    'MappingResult',
    'MappingSummary',
    'MatchCandidate',
    'MatchSource',
    'RankedCandidate',
    'AccessDeniedError',
    'InvalidCredentialError',
    'MalformedResponseError',
    'NotConfiguredError',
    'QuotaExceededError',
    'ReconciliationError',
    'RetryExhaustedError',
    'TransientServiceError',
]
