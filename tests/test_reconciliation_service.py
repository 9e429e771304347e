import anthropic
import httpx
import pytest

from conftest import make_message
from feedmap.common.config import Settings
from feedmap.domain.reconciliation.ai_classifier import AIBatchClassifier
from feedmap.domain.reconciliation.batch_orchestrator import BatchMappingOrchestrator
from feedmap.domain.reconciliation.category_matcher import CategoryMatcher
from feedmap.domain.reconciliation.errors import InvalidCredentialError, NotConfiguredError
from feedmap.domain.reconciliation.reconciliation_service import CategoryReconciliationService
from feedmap.domain.reconciliation.retry_policy import RetryPolicy
from feedmap.domain.reconciliation.schemas import MatchSource


def make_service(catalog, classifier, sleep):
    orchestrator = BatchMappingOrchestrator(classifier, retry_policy=RetryPolicy(), sleep=sleep)
    return CategoryReconciliationService(
        matcher=CategoryMatcher(catalog),
        classifier=classifier,
        orchestrator=orchestrator,
        default_model="primary",
    )


def test_match_one_and_batch(catalog, sleep_recorder):
    service = make_service(catalog, AIBatchClassifier(), sleep_recorder)

    assert service.match_one("Telefon").suggested_category.id == "2"

    results = service.match_batch(["Giyim", "Kamera"])
    assert [r.xml_category for r in results] == ["Giyim", "Kamera"]
    assert results[0].suggested_category.id == "4"

    buckets = service.bucket_by_confidence(results)
    assert buckets.total() == 2


def test_match_one_with_new_catalog_rebuilds(catalog, sleep_recorder):
    service = make_service(catalog, AIBatchClassifier(), sleep_recorder)

    result = service.match_one("Sütyen", [{"id": "1", "name": "Sütyen"}])

    assert result.suggested_category.id == "1"
    assert service.match_one("Telefon").suggested_category is None


@pytest.mark.asyncio
async def test_reconcile_escalates_only_uncertain_labels(catalog, fake_classifier_factory, sleep_recorder):
    classifier = fake_classifier_factory()
    service = make_service(catalog, classifier, sleep_recorder)

    results = await service.reconcile(["Telefon", "Kamera"])

    assert classifier.calls == [(["Kamera"], "primary")]
    assert results[0].source == MatchSource.FUZZY
    assert results[0].suggested_category.id == "2"
    assert results[1].source == MatchSource.AI
    assert results[1].suggested_category is not None


@pytest.mark.asyncio
async def test_reconcile_keeps_fuzzy_result_when_ai_finds_nothing(catalog, fake_classifier_factory, sleep_recorder):
    classifier = fake_classifier_factory(suggest=False)
    service = make_service(catalog, classifier, sleep_recorder)

    results = await service.reconcile(["Kamera"])

    assert len(classifier.calls) == 1
    assert results[0].source == MatchSource.FUZZY
    assert results[0].suggested_category is None


@pytest.mark.asyncio
async def test_reconcile_without_api_key_returns_fuzzy_results(catalog, sleep_recorder):
    service = make_service(catalog, AIBatchClassifier(), sleep_recorder)

    results = await service.reconcile(["Telefon", "Kamera"])

    assert [r.source for r in results] == [MatchSource.FUZZY, MatchSource.FUZZY]


@pytest.mark.asyncio
async def test_classify_batch_with_ai_requires_credential(catalog, sleep_recorder):
    service = make_service(catalog, AIBatchClassifier(), sleep_recorder)

    with pytest.raises(NotConfiguredError):
        await service.classify_batch_with_ai(["Kamera"], catalog)


@pytest.mark.asyncio
async def test_classify_batch_with_ai_uses_default_model(catalog, fake_classifier_factory, sleep_recorder):
    classifier = fake_classifier_factory()
    service = make_service(catalog, classifier, sleep_recorder)

    results = await service.classify_batch_with_ai(["Kamera", "Tablet"], [{"id": c.id, "name": c.name} for c in catalog])

    assert classifier.calls == [(["Kamera", "Tablet"], "primary")]
    assert [r.xml_category for r in results] == ["Kamera", "Tablet"]


@pytest.fixture
def per_call_client(mocker, anthropic_client):
    """Client built for a call-time credential"""
    anthropic_client.close = mocker.AsyncMock()
    factory = mocker.patch(
        "feedmap.domain.reconciliation.ai_classifier.anthropic.AsyncAnthropic",
        return_value=anthropic_client,
    )
    return factory, anthropic_client


@pytest.mark.asyncio
async def test_credential_client_is_closed_after_mapping(catalog, sleep_recorder, per_call_client):
    factory, client = per_call_client
    client.messages.create.return_value = make_message(
        '{"mappings": [{"xmlCategory": "Kamera", "suggestedCategoryId": "1", "confidence": 0.8}]}'
    )
    service = make_service(catalog, AIBatchClassifier(), sleep_recorder)

    results = await service.classify_batch_with_ai(["Kamera"], catalog, credential="sk-call")

    assert results[0].suggested_category.id == "1"
    assert factory.call_args.kwargs["api_key"] == "sk-call"
    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_credential_client_is_closed_when_mapping_fails(catalog, sleep_recorder, per_call_client):
    _, client = per_call_client
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    client.messages.create.side_effect = anthropic.AuthenticationError(
        "invalid x-api-key", response=httpx.Response(401, request=request), body=None,
    )
    service = make_service(catalog, AIBatchClassifier(), sleep_recorder)

    with pytest.raises(InvalidCredentialError):
        await service.classify_batch_with_ai(["Kamera"], catalog, credential="sk-bad")

    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_arebuild_index(catalog, sleep_recorder):
    service = make_service([], AIBatchClassifier(), sleep_recorder)

    await service.arebuild_index(catalog)

    assert service.match_one("Ayakkabı").suggested_category.id == "5"


def test_from_settings_wires_configuration(catalog, sleep_recorder):
    settings = Settings(
        _env_file=None,
        ANTHROPIC_API_KEY=None,
        RECONCILIATION_MODEL="model-x",
        RECONCILIATION_FALLBACK_MODELS="model-y, model-z",
        RECONCILIATION_BATCH_SIZE=10,
        FUZZY_AUTO_ACCEPT_THRESHOLD=0.7,
    )

    service = CategoryReconciliationService.from_settings(settings, catalog, sleep=sleep_recorder)

    assert service.default_model == "model-x"
    assert service.orchestrator.batch_size == 10
    assert service.orchestrator.retry_policy.fallback_models == ["model-y", "model-z"]
    assert service.matcher.auto_accept_threshold == 0.7
    assert not service.classifier.is_configured
