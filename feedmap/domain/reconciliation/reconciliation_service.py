"""
Category Reconciliation Service - library facade over both mapping paths

Flow:
1. Fuzzy matcher maps every label (free, synchronous, never raises)
2. Optionally, labels at or below a confidence threshold are escalated to the
   AI batch orchestrator (async, raises typed errors)
3. Both paths return MappingResult lists for the caller to persist

Error signalling differs on purpose: the fuzzy path reports "no match" as
suggested_category=None, the AI path raises ReconciliationError subclasses
for real failures and also uses suggested_category=None for "nothing fits".
"""
import asyncio
from typing import Any, Iterable, List, Optional

import structlog

from feedmap.common.config import Settings
from feedmap.domain.reconciliation.ai_classifier import AIBatchClassifier
from feedmap.domain.reconciliation.batch_orchestrator import BatchMappingOrchestrator
from feedmap.domain.reconciliation.category_matcher import CategoryMatcher, summarize
from feedmap.domain.reconciliation.errors import NotConfiguredError
from feedmap.domain.reconciliation.retry_policy import RetryPolicy, Sleep
from feedmap.domain.reconciliation.schemas import BucketedMappings, MappingResult, MappingSummary

logger = structlog.get_logger()


class CategoryReconciliationService:
    """
    Usage:
        service = CategoryReconciliationService.from_settings(get_settings(), catalog)
        results = service.match_batch(labels)
        results = await service.reconcile(labels)
    """

    def __init__(
        self,
        matcher: CategoryMatcher,
        classifier: Optional[AIBatchClassifier] = None,
        orchestrator: Optional[BatchMappingOrchestrator] = None,
        default_model: str = "claude-sonnet-4-5",
        escalation_threshold: float = 0.6,
    ):
        """
        Args:
            matcher: Deterministic matcher (owns the fuzzy index)
            classifier: AI classifier (optional; AI path unavailable without it)
            orchestrator: Batch orchestrator around the classifier
            default_model: Model id used when callers do not pass one
            escalation_threshold: reconcile() escalates results at or below this
        """
        self.matcher = matcher
        self.classifier = classifier or AIBatchClassifier()
        self.orchestrator = orchestrator or BatchMappingOrchestrator(self.classifier)
        self.default_model = default_model
        self.escalation_threshold = escalation_threshold
        self._rebuild_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        categories: Optional[Iterable[Any]] = None,
        sleep: Optional[Sleep] = None,
    ) -> "CategoryReconciliationService":
        """Wire matcher, classifier and orchestrator from Settings"""
        classifier = AIBatchClassifier.from_settings(settings)
        return cls(
            matcher=CategoryMatcher.from_settings(settings, categories),
            classifier=classifier,
            orchestrator=BatchMappingOrchestrator.from_settings(settings, classifier, sleep=sleep),
            default_model=settings.reconciliation_model,
            escalation_threshold=settings.fuzzy_auto_accept_threshold,
        )

    # --- deterministic path ------------------------------------------------

    def match_one(self, label: str, catalog: Optional[Iterable[Any]] = None) -> MappingResult:
        """Best fuzzy mapping for one label (catalog rebuilds the index first)"""
        if catalog is not None:
            self.rebuild_index(catalog)
        return self.matcher.match(label)

    def match_batch(self, labels: Iterable[str], catalog: Optional[Iterable[Any]] = None) -> List[MappingResult]:
        """Fuzzy mapping per label, input order preserved"""
        return self.matcher.auto_map_categories(labels, catalog)

    def bucket_by_confidence(self, results: Iterable[MappingResult]) -> BucketedMappings:
        return self.matcher.categorize_by_confidence(results)

    def summarize(self, results: Iterable[MappingResult]) -> MappingSummary:
        return summarize(results)

    def rebuild_index(self, catalog: Iterable[Any]) -> None:
        """Replace the catalog snapshot (callers sharing the service must serialize)"""
        self.matcher.update_categories(catalog)

    async def arebuild_index(self, catalog: Iterable[Any]) -> None:
        """rebuild_index serialized against other async rebuilds"""
        async with self._rebuild_lock:
            self.rebuild_index(catalog)

    # --- AI path -----------------------------------------------------------

    async def classify_batch_with_ai(
        self,
        labels: Iterable[str],
        catalog: Iterable[Any],
        model_id: Optional[str] = None,
        credential: Optional[str] = None,
    ) -> List[MappingResult]:
        """
        AI mapping for any number of labels (batched, retried, in order).

        Args:
            labels: External labels
            catalog: Full catalog ({id, name} dicts or Category objects)
            model_id: Preferred model (defaults to the configured one)
            credential: API key overriding the configured classifier

        Raises:
            ReconciliationError subclasses (see errors module)
        """
        model = model_id or self.default_model
        if not credential:
            return await self.orchestrator.map_all(labels, catalog, model)

        # per-call client, closed once this mapping run ends
        classifier = AIBatchClassifier(
            api_key=credential,
            max_tokens=self.classifier.max_tokens,
            timeout=self.classifier.timeout,
            high_confidence_threshold=self.classifier.high_confidence_threshold,
            reasoning_max_length=self.classifier.reasoning_max_length,
            batch_size_hint=self.classifier.batch_size_hint,
        )
        orchestrator = BatchMappingOrchestrator(
            classifier,
            retry_policy=self.orchestrator.retry_policy,
            batch_size=self.orchestrator.batch_size,
            inter_batch_delay=self.orchestrator.inter_batch_delay,
            sleep=self.orchestrator.sleep,
        )
        try:
            return await orchestrator.map_all(labels, catalog, model)
        finally:
            await classifier.aclose()

    async def reconcile(
        self,
        labels: Iterable[str],
        catalog: Optional[Iterable[Any]] = None,
        escalate_below: Optional[float] = None,
        model_id: Optional[str] = None,
    ) -> List[MappingResult]:
        """
        Fuzzy first, AI for the uncertain rest.

        Results at or below ``escalate_below`` go to the AI path. An AI result
        without a category keeps the fuzzy result. Without an API key the
        fuzzy results are returned as they are.
        """
        labels = list(labels)
        threshold = self.escalation_threshold if escalate_below is None else escalate_below

        if catalog is not None:
            await self.arebuild_index(catalog)

        results = self.matcher.auto_map_categories(labels)
        uncertain = [i for i, r in enumerate(results) if r.confidence <= threshold]

        if not uncertain:
            return results

        if not self.classifier.is_configured:
            logger.warning("ai_escalation_skipped",
                           reason="no_api_key",
                           uncertain=len(uncertain),
                           message="Using fuzzy results only")
            return results

        catalog_snapshot = self.matcher.index.categories
        if not catalog_snapshot:
            raise NotConfiguredError("No catalog categories loaded")

        logger.info("ai_escalation_started", uncertain=len(uncertain), total=len(labels))
        ai_results = await self.orchestrator.map_all(
            [labels[i] for i in uncertain],
            catalog_snapshot,
            model_id or self.default_model,
        )

        merged = list(results)
        for index, ai_result in zip(uncertain, ai_results):
            if ai_result.suggested_category is not None:
                merged[index] = ai_result

        summary = summarize(merged)
        logger.info("reconciliation_complete",
                    total=summary.total,
                    mapped=summary.mapped,
                    escalated=len(uncertain),
                    average_confidence=round(summary.average_confidence, 3))
        return merged
