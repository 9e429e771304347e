import pytest

from feedmap.domain.reconciliation.normalizer import normalize


@pytest.mark.parametrize("raw, expected", [
    ("Sütyen", "sutyen"),
    ("İÇ GİYİM", "ic giyim"),
    ("  Spor   Ayakkabı!! ", "spor ayakkabi"),
    ("ığüşöç ĞÜŞİÖÇ", "igusoc gusioc"),
    ("T-shirt & Şort", "t shirt sort"),
    ("IPHONE 15 Kılıf", "iphone 15 kilif"),
    ("Café/Crème", "cafe creme"),
    ("Elektronik > Telefon > Aksesuar", "elektronik telefon aksesuar"),
])
def test_normalize_examples(raw, expected):
    assert normalize(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "!!!", "---"])
def test_normalize_empty_like_input(raw):
    assert normalize(raw) == ""


@pytest.mark.parametrize("raw", [
    "Sütyen",
    "İç Giyim & Pijama",
    "  ÇOCUK   ayakkabı ",
    "日本語 テキスト",
    "Tab\tand\nnewline",
    "ß straße",
    "ȧb",
])
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


def test_normalize_output_alphabet():
    result = normalize("Ürün #42 — özel/İndirim %50!")
    assert all(ch.isascii() and (ch.isalnum() or ch == " ") for ch in result)
    assert "  " not in result
    assert result == result.strip()
