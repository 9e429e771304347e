"""
AI Batch Classifier - Claude-assisted mapping of feed labels to the catalog

One call maps one batch of external labels against the FULL catalog: the
model needs every category to pick the most specific one instead of a
generic parent. Batching and retries live in BatchMappingOrchestrator.

Example:
- Input: ["Fantazi Sütyen", "Spor Ayakkabı"] + catalog of 300 categories
- AI Output: {"mappings": [{"xmlCategory": "Fantazi Sütyen",
                            "suggestedCategoryId": "12", "confidence": 0.86,
                            "reasoning": "..."}, ...]}
- Result: MappingResult per label, in input order

"Nothing suitable" comes back as data (suggested_category=None). Genuine
failures raise typed ReconciliationError subclasses.
"""
import json
import math
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import anthropic
import structlog
from pydantic import ValidationError

from feedmap.domain.reconciliation.errors import (
    AccessDeniedError,
    InvalidCredentialError,
    MalformedResponseError,
    NotConfiguredError,
    QuotaExceededError,
    ReconciliationError,
    TransientServiceError,
)
from feedmap.domain.reconciliation.normalizer import normalize
from feedmap.domain.reconciliation.schemas import (
    AIMappingItem,
    AIMappingResponse,
    Category,
    MappingResult,
    MatchSource,
)

logger = structlog.get_logger()

QUOTA_MARKERS = ("quota", "credit balance", "billing", "spend limit")


def validate_catalog(catalog: Iterable[Any], model: Optional[str] = None) -> List[Category]:
    """
    Coerce catalog entries to Category, rejecting malformed ones.

    Raises:
        NotConfiguredError: An entry is missing an id or name
    """
    categories = []
    for entry in catalog:
        if isinstance(entry, Category):
            categories.append(entry)
            continue
        try:
            categories.append(Category.model_validate(entry))
        except ValidationError as e:
            raise NotConfiguredError(
                f"Invalid catalog entry {entry!r}: {e.error_count()} validation error(s)",
                model=model,
            ) from e
    return categories


def classify_api_error(error: Exception, model: Optional[str] = None) -> ReconciliationError:
    """
    Translate an Anthropic SDK exception into the reconciliation taxonomy.

    Args:
        error: Exception raised by the SDK
        model: Model id used for the failed call

    Returns:
        ReconciliationError subclass (caller raises it)
    """
    message = str(error)
    lowered = message.lower()

    if isinstance(error, anthropic.AuthenticationError):
        return InvalidCredentialError(f"Anthropic API key is invalid: {message}", model=model)

    if any(marker in lowered for marker in QUOTA_MARKERS) and isinstance(
        error, (anthropic.RateLimitError, anthropic.PermissionDeniedError, anthropic.BadRequestError)
    ):
        return QuotaExceededError(f"Anthropic API quota exceeded: {message}", model=model)

    if isinstance(error, anthropic.PermissionDeniedError):
        return AccessDeniedError(f"Anthropic API access denied: {message}", model=model)

    if isinstance(error, (anthropic.RateLimitError, anthropic.InternalServerError, anthropic.APIConnectionError)):
        return TransientServiceError(f"Anthropic API temporarily unavailable: {message}", model=model)

    # 529 overloaded and other 5xx not covered by InternalServerError
    if isinstance(error, anthropic.APIStatusError) and error.status_code >= 500:
        return TransientServiceError(f"Anthropic API temporarily unavailable: {message}", model=model)

    return ReconciliationError(f"AI mapping failed: {message}", model=model)


class AIBatchClassifier:
    """
    Claude-backed classifier for one batch of labels.

    The API key is bound at construction; nothing is read from the
    environment here.

    Usage:
        classifier = AIBatchClassifier(api_key=settings.anthropic_api_key)
        results = await classifier.classify_batch(labels, catalog, "claude-sonnet-4-5")
    """

    # Claude Sonnet 4.5 pricing, used for cost logging only
    INPUT_COST_PER_1K = Decimal("0.003")
    OUTPUT_COST_PER_1K = Decimal("0.015")

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        high_confidence_threshold: float = 0.9,
        reasoning_max_length: int = 200,
        batch_size_hint: int = 20,
        client: Optional[Any] = None,
    ):
        """
        Args:
            api_key: Anthropic API key (None leaves the classifier unconfigured)
            max_tokens: Response token budget per call
            timeout: Per-request timeout in seconds
            high_confidence_threshold: Confidence reserved for very strong matches in the prompt
            reasoning_max_length: Reasoning strings are truncated to this many chars
            batch_size_hint: Batches larger than this are logged as oversized
            client: Pre-built AsyncAnthropic-compatible client (tests)
        """
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.high_confidence_threshold = high_confidence_threshold
        self.reasoning_max_length = reasoning_max_length
        self.batch_size_hint = batch_size_hint

        if client is not None:
            self.client = client
        elif api_key:
            self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)
        else:
            self.client = None

    @classmethod
    def from_settings(cls, settings, api_key: Optional[str] = None) -> "AIBatchClassifier":
        return cls(
            api_key=api_key or settings.anthropic_api_key,
            max_tokens=settings.ai_max_tokens,
            timeout=settings.ai_request_timeout_seconds,
            high_confidence_threshold=settings.ai_high_confidence_threshold,
            reasoning_max_length=settings.ai_reasoning_max_length,
            batch_size_hint=settings.reconciliation_batch_size,
        )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def aclose(self) -> None:
        """Close the underlying HTTP client, if one was built"""
        if self.client is not None:
            await self.client.close()

    async def classify_batch(
        self,
        labels: List[str],
        catalog: Iterable[Any],
        model: str,
    ) -> List[MappingResult]:
        """
        Map one batch of labels with a single model call.

        Args:
            labels: External labels (one batch, ideally <= batch_size_hint)
            catalog: Full internal catalog (Category objects or {id, name} dicts)
            model: Anthropic model id

        Returns:
            One MappingResult per label, in input order

        Raises:
            NotConfiguredError: No API key, empty catalog or malformed catalog entry
            InvalidCredentialError, QuotaExceededError, AccessDeniedError,
            TransientServiceError: Translated SDK failures
            MalformedResponseError: Reply was not valid mapping JSON
        """
        if not self.client:
            raise NotConfiguredError("Anthropic API key is not configured", model=model)

        categories = validate_catalog(catalog, model=model)
        if not categories:
            raise NotConfiguredError("No catalog categories loaded", model=model)

        if not labels:
            return []

        if len(labels) > self.batch_size_hint:
            logger.warning("ai_batch_oversized", batch_size=len(labels), recommended=self.batch_size_hint)

        logger.info("ai_batch_mapping_started",
                    model=model,
                    labels=len(labels),
                    catalog_size=len(categories))

        prompt = self._build_mapping_prompt(labels, categories)

        try:
            response = await self.client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                temperature=0.0,  # Deterministic for consistency
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ]
            )
        except anthropic.APIError as e:
            error = classify_api_error(e, model=model)
            logger.error("ai_batch_mapping_failed",
                         model=model,
                         error_type=type(error).__name__,
                         status_code=getattr(e, "status_code", None),
                         error=str(e),
                         exc_info=True)
            raise error from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info("ai_batch_mapping_complete",
                        model=model,
                        input_tokens=usage.input_tokens,
                        output_tokens=usage.output_tokens,
                        cost_usd=float(self._calculate_cost(usage.input_tokens, usage.output_tokens)))

        text = "".join(
            getattr(block, "text", "") for block in response.content
            if getattr(block, "type", "text") == "text"
        )
        results = self._parse_ai_response(text, labels, categories, model)

        logger.info("ai_batch_mapping_parsed",
                    model=model,
                    mappings=len(results),
                    mapped=sum(1 for r in results if r.suggested_category is not None))
        return results

    def _build_mapping_prompt(self, labels: List[str], categories: List[Category]) -> str:
        """
        Build prompt embedding the batch labels and the whole catalog.

        Args:
            labels: Batch of external labels
            categories: Full catalog

        Returns:
            Prompt text for the messages API
        """
        label_lines = "\n".join(f"{i}. {label}" for i, label in enumerate(labels, start=1))
        category_lines = "\n".join(
            f"{i}. {category.name} (ID: {category.id})"
            for i, category in enumerate(categories, start=1)
        )
        high = self.high_confidence_threshold

        return f"""You are an e-commerce catalog expert. Map supplier feed categories to our internal categories.

FEED CATEGORIES:
{label_lines}

INTERNAL CATEGORIES:
{category_lines}

INSTRUCTIONS:
1. If a feed category has the same name as an internal category, choose it.
2. Otherwise choose the closest match by meaning, then by wording.
3. Prefer the MOST SPECIFIC category (e.g. "Fantazi Sütyen" -> "Sütyen", not a generic "Giyim").
4. If nothing fits, set suggestedCategoryId to null. Do not force a weak match.
5. Set confidence between 0 and 1:
   - Above {high}: reserved for very strong matches (same name or unambiguous synonym)
   - Lower it whenever the mapping is uncertain
6. Return exactly one entry per feed category, copying xmlCategory verbatim.
7. Keep reasoning to one short sentence.

RESPONSE FORMAT (return ONLY this JSON, no other text):
{{
  "mappings": [
    {{
      "xmlCategory": "feed category exactly as listed",
      "suggestedCategoryId": "internal category ID or null",
      "confidence": 0.85,
      "reasoning": "short explanation"
    }}
  ]
}}
"""

    def _parse_ai_response(
        self,
        response_text: str,
        labels: List[str],
        categories: List[Category],
        model: Optional[str] = None,
    ) -> List[MappingResult]:
        """
        Parse and validate the model's JSON reply.

        Args:
            response_text: Raw reply text (may be wrapped in code fences)
            labels: Labels of the batch, in input order
            categories: Catalog used to resolve suggestedCategoryId
            model: Model id (for error context)

        Returns:
            MappingResult per label, in input order

        Raises:
            MalformedResponseError: Not JSON, or not the expected shape
        """
        cleaned = self._strip_code_fences(response_text)

        try:
            data = json.loads(cleaned)
            parsed = AIMappingResponse.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("ai_response_parse_failed",
                         model=model,
                         response=response_text[:500],
                         error=str(e))
            raise MalformedResponseError(
                f"AI response is not valid mapping JSON: {e}",
                raw_response=response_text,
                model=model,
            ) from e

        by_id: Dict[str, Category] = {}
        for category in categories:
            by_id.setdefault(category.id, category)

        pending = list(parsed.mappings)
        results = []
        for label in labels:
            item = self._take_item(pending, label)
            if item is None:
                logger.warning("ai_mapping_missing_label", model=model, xml_category=label)
                results.append(MappingResult(
                    xml_category=label,
                    suggested_category=None,
                    confidence=0.0,
                    reasoning="Model returned no mapping for this category",
                    source=MatchSource.AI,
                ))
                continue
            results.append(self._to_mapping_result(label, item, by_id))

        if pending:
            logger.warning("ai_mapping_unexpected_entries",
                           model=model,
                           entries=[item.xml_category for item in pending][:10])
        return results

    @staticmethod
    def _strip_code_fences(response_text: str) -> str:
        """Claude should return clean JSON, but extract it if wrapped in markdown"""
        text = (response_text or "").strip()
        if "```json" in text:
            text = text.split("```json", 1)[1].split("```", 1)[0]
        elif "```" in text:
            text = text.split("```", 1)[1].split("```", 1)[0]
        return text.strip()

    @staticmethod
    def _take_item(pending: List[AIMappingItem], label: str) -> Optional[AIMappingItem]:
        """Pop the first entry for a label: exact text first, then normalized"""
        for i, item in enumerate(pending):
            if item.xml_category == label:
                return pending.pop(i)

        wanted = normalize(label)
        for i, item in enumerate(pending):
            if item.xml_category is not None and normalize(item.xml_category) == wanted:
                return pending.pop(i)
        return None

    def _to_mapping_result(
        self,
        label: str,
        item: AIMappingItem,
        by_id: Dict[str, Category],
    ) -> MappingResult:
        category_id = (item.suggested_category_id or "").strip()
        suggested = by_id.get(category_id) if category_id and category_id.lower() != "null" else None

        confidence = item.confidence or 0.0
        if math.isnan(confidence):
            confidence = 0.0
        confidence = min(max(confidence, 0.0), 1.0)
        reasoning = (item.reasoning or "No explanation provided")[:self.reasoning_max_length]

        return MappingResult(
            xml_category=label,
            suggested_category=suggested,
            confidence=confidence,
            reasoning=reasoning,
            source=MatchSource.AI,
        )

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> Decimal:
        """Estimated USD cost of one call"""
        input_cost = (Decimal(input_tokens) / 1000) * self.INPUT_COST_PER_1K
        output_cost = (Decimal(output_tokens) / 1000) * self.OUTPUT_COST_PER_1K
        return input_cost + output_cost
