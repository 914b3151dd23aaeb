"""Tests for keyword-based outcome classification."""

import pytest

from src.core.heuristics import KeywordTable
from src.tools.classify import ContentClassifier, UrlSignal


@pytest.fixture
def classifier():
    return ContentClassifier()


@pytest.mark.parametrize(
    "url,signal",
    [
        ("https://merchant.example.com/payment/success", UrlSignal.SUCCESS),
        ("https://merchant.example.com/odeme/basarili", UrlSignal.SUCCESS),
        ("https://n8n.example.com/webhook/payment-test/3d/callback", UrlSignal.SUCCESS),
        ("https://www.akbank.com/3ds/done", UrlSignal.SUCCESS),
        ("https://acs.akbank.net/3ds/page", UrlSignal.BANK_COMPLETION),
        ("https://acs.bank.com/finishBkm3dsProcess", UrlSignal.SUCCESS),
        ("https://acs.bank.com/emvtds/page", UrlSignal.BANK_COMPLETION),
        ("https://goguvenliodeme.bkm.com.tr/troy/approve", UrlSignal.NONE),
    ],
)
def test_url_signal(classifier, url, signal):
    """Success keywords win over bank completion markers."""
    assert classifier.url_signal(url) is signal


def test_url_matching_is_case_insensitive(classifier):
    assert classifier.url_signal("https://acs.bank.com/FINISHBKM") is UrlSignal.SUCCESS
    assert classifier.url_signal("https://acs.bank.com/3DSPROCESS") is UrlSignal.BANK_COMPLETION


@pytest.mark.parametrize(
    "text,keyword",
    [
        ("Girdiğiniz kod geçersiz", "geçersiz"),
        ("İşlem reddedildi", "reddedildi"),
        ("Authentication failed", "failed"),
        ("Bir HATA oluştu", "hata"),
    ],
)
def test_text_error(classifier, text, keyword):
    indicator = classifier.text_error(text)

    assert indicator.text == f"Error keyword found: {keyword}"
    assert indicator.source == "text content"


def test_no_error_in_clean_text(classifier):
    assert classifier.text_error("Lütfen SMS ile gelen kodu giriniz") is None


@pytest.mark.parametrize("text", ["İşlem başarılı", "Payment approved", "Ödeme onaylandı", "Process complete"])
def test_text_success(classifier, text):
    assert classifier.text_success(text) is True


def test_text_without_success_keyword(classifier):
    assert classifier.text_success("Lütfen bekleyiniz") is False


def test_keyword_table_is_injectable():
    """Another locale can be added without touching the classifier."""
    classifier = ContentClassifier(KeywordTable(
        url_success=["erfolg"],
        bank_completion_url=[],
        content_success=["zahlung bestätigt"],
        content_error=["fehler"],
    ))

    assert classifier.url_signal("https://shop.example.de/erfolg") is UrlSignal.SUCCESS
    assert classifier.url_signal("https://shop.example.de/success") is UrlSignal.NONE
    assert classifier.text_success("Zahlung bestätigt") is True
    assert classifier.text_error("Ein Fehler ist aufgetreten").text == "Error keyword found: fehler"
