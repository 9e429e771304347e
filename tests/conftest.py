"""
Pytest configuration and fixtures for reconciliation tests
"""
from types import SimpleNamespace

import pytest

from feedmap.domain.reconciliation.schemas import Category, MappingResult, MatchSource


@pytest.fixture
def catalog():
    """Small Turkish catalog with descriptions."""
    return [
        Category(id="1", name="Elektronik", description="Elektronik ürünler ve aksesuarları"),
        Category(id="2", name="Telefon", description="Akıllı telefonlar ve cep telefonları"),
        Category(id="3", name="Bilgisayar", description="Masaüstü bilgisayarlar ve laptoplar"),
        Category(id="4", name="Giyim", description="Erkek ve kadın giyim ürünleri"),
        Category(id="5", name="Ayakkabı", description="Spor ayakkabı, bot, terlik ve sandalet"),
    ]


@pytest.fixture
def feed_labels():
    return [
        "Elektronik Ürünler",
        "Cep Telefonu",
        "Akıllı Telefon",
        "Laptop Bilgisayar",
        "Masaüstü PC",
        "Erkek Giyim",
        "Spor Ayakkabı",
        "Bot ve Çizme",
        "Televizyon",
        "Kamera",
    ]


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records requested waits."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


class FakeClassifier:
    """
    Stand-in for AIBatchClassifier.

    errors: per-call outcomes consumed in order (exception to raise, or None
    for success); once exhausted every call succeeds unless always_raise is set.
    """

    def __init__(self, errors=None, always_raise=None, suggest=True, is_configured=True):
        self.errors = list(errors or [])
        self.always_raise = always_raise
        self.suggest = suggest
        self.is_configured = is_configured
        self.calls = []

    async def classify_batch(self, labels, catalog, model):
        self.calls.append((list(labels), model))
        if self.always_raise is not None:
            raise self.always_raise
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return [
            MappingResult(
                xml_category=label,
                suggested_category=catalog[0] if self.suggest else None,
                confidence=0.9 if self.suggest else 0.1,
                reasoning="fake",
                source=MatchSource.AI,
            )
            for label in labels
        ]


@pytest.fixture
def fake_classifier_factory():
    return FakeClassifier


def make_message(text, input_tokens=120, output_tokens=80):
    """Minimal object shaped like an Anthropic Message."""
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


@pytest.fixture
def anthropic_client(mocker):
    """Mock AsyncAnthropic client; set messages.create return_value/side_effect per test."""
    client = mocker.Mock()
    client.messages.create = mocker.AsyncMock()
    return client
