"""
Batch Mapping Orchestrator - drives the AI classifier over large label sets

Flow:
1. Split labels into fixed-size chunks (BatchPlan), original order
2. Run chunks strictly one after another, pausing between chunks
3. Wrap every chunk call in RetryPolicy (model fallback + backoff)
4. Concatenate chunk results, so output order == input order

The first permanent or exhausted failure ends the run; results of completed
chunks are not kept anywhere by the orchestrator.
"""
import asyncio
import time
from typing import Any, Iterable, List, Optional

import structlog

from feedmap.domain.reconciliation.ai_classifier import AIBatchClassifier, validate_catalog
from feedmap.domain.reconciliation.errors import NotConfiguredError
from feedmap.domain.reconciliation.retry_policy import RetryPolicy, Sleep
from feedmap.domain.reconciliation.schemas import BatchPlan, MappingResult

logger = structlog.get_logger()


class BatchMappingOrchestrator:
    """
    Sequential, rate-limit friendly batch mapping.

    Usage:
        orchestrator = BatchMappingOrchestrator(classifier, RetryPolicy(fallback_models=[...]))
        results = await orchestrator.map_all(labels, catalog, model="claude-sonnet-4-5")
    """

    def __init__(
        self,
        classifier: AIBatchClassifier,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = 20,
        inter_batch_delay: float = 1.0,
        sleep: Optional[Sleep] = None,
    ):
        """
        Args:
            classifier: Client used for each chunk
            retry_policy: Retry/fallback/backoff policy per chunk
            batch_size: Labels per chunk
            inter_batch_delay: Seconds to wait between chunks
            sleep: Awaitable sleep (asyncio.sleep by default; injectable for tests)
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.classifier = classifier
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        settings,
        classifier: AIBatchClassifier,
        sleep: Optional[Sleep] = None,
    ) -> "BatchMappingOrchestrator":
        return cls(
            classifier,
            retry_policy=RetryPolicy.from_settings(settings),
            batch_size=settings.reconciliation_batch_size,
            inter_batch_delay=settings.reconciliation_inter_batch_delay_seconds,
            sleep=sleep,
        )

    def plan_batches(self, labels: List[str]) -> BatchPlan:
        """Fixed-size, order-preserving partition of labels"""
        return BatchPlan.from_labels(list(labels), self.batch_size)

    async def map_all(
        self,
        labels: Iterable[str],
        catalog: Iterable[Any],
        model: str,
    ) -> List[MappingResult]:
        """
        Map every label through the AI classifier, chunk by chunk.

        Args:
            labels: External labels (any number)
            catalog: Full internal catalog, sent with every chunk
            model: Preferred model id (attempt 0 of every chunk)

        Returns:
            MappingResult per label, in input order

        Raises:
            NotConfiguredError: Before any call, when the classifier has no key
                or the catalog is empty or malformed
            ReconciliationError: First permanent or exhausted chunk failure
        """
        labels = list(labels)
        categories = validate_catalog(catalog, model=model)

        if not self.classifier.is_configured:
            raise NotConfiguredError("Anthropic API key is not configured", model=model)
        if not categories:
            raise NotConfiguredError("No catalog categories loaded", model=model)

        plan = self.plan_batches(labels)
        logger.info("batch_mapping_started",
                    labels=len(labels),
                    batches=len(plan),
                    batch_size=self.batch_size,
                    model=model)

        started = time.monotonic()
        results: List[MappingResult] = []

        for number, chunk in enumerate(plan.chunks, start=1):
            if number > 1 and self.inter_batch_delay > 0:
                await self.sleep(self.inter_batch_delay)

            logger.info("batch_started", batch=number, batches=len(plan), labels=len(chunk))

            chunk_results = await self.retry_policy.run(
                lambda attempt_model, chunk=chunk: self.classifier.classify_batch(chunk, categories, attempt_model),
                requested_model=model,
                sleep=self.sleep,
                context={"batch": number, "batches": len(plan)},
            )
            results.extend(chunk_results)

            logger.info("batch_complete",
                        batch=number,
                        batches=len(plan),
                        mapped=sum(1 for r in chunk_results if r.suggested_category is not None))

        logger.info("batch_mapping_complete",
                    labels=len(labels),
                    results=len(results),
                    duration_seconds=round(time.monotonic() - started, 2))
        return results
