"""Tests for pii_detection/logic/document_classifier.py."""
import pytest

from pii_detection.core.definitions import DocumentType
from pii_detection.logic.document_classifier import DocumentClassifier, DocumentClassifierConfig


GERMAN_INVOICE = (
    "Rechnung Nr. 2024-001\n"
    "Betrag: CHF 1'250.00\n"
    "MwSt 8.1%\n"
    "Zahlbar innert 30 Tagen\n"
    "Bitte überweisen Sie den Betrag."
)

ENGLISH_LETTER = "Dear Mr. Smith,\n\nThank you for your letter.\n\nSincerely,\nJohn"

FRENCH_FORM = (
    "Veuillez remplir le formulaire.\n"
    "Nom: ________\n"
    "Date de naissance: ________\n"
    "Oui [ ] Non [ ]\n"
    "Signature: ________"
)


class TestClassify:
    def test_german_invoice(self, classifier):
        result = classifier.classify(GERMAN_INVOICE)
        assert result.document_type == DocumentType.INVOICE
        assert result.language == "de"
        assert 0.25 <= result.confidence <= 1.0

    def test_english_letter(self, classifier):
        result = classifier.classify(ENGLISH_LETTER)
        assert result.document_type == DocumentType.LETTER
        assert result.language == "en"

    def test_french_form(self, classifier):
        result = classifier.classify(FRENCH_FORM)
        assert result.document_type == DocumentType.FORM
        assert result.language == "fr"

    def test_empty_text_is_unknown(self, classifier):
        result = classifier.classify("   ")
        assert result.document_type == DocumentType.UNKNOWN
        assert result.confidence == 0.0

    def test_featureless_text_is_unknown(self, classifier):
        result = classifier.classify("xyz 123")
        assert result.document_type == DocumentType.UNKNOWN
        assert result.features == []

    def test_language_hint_skips_detection(self, classifier):
        assert classifier.classify(GERMAN_INVOICE, language="fr").language == "fr"

    def test_unsupported_hint_is_ignored(self, classifier):
        assert classifier.classify(GERMAN_INVOICE, language="it").language == "de"

    def test_features_are_sorted_and_bounded(self, classifier):
        features = classifier.classify(GERMAN_INVOICE + "\n" + ENGLISH_LETTER).features
        weights = [f.weight for f in features]
        assert len(features) <= 10
        assert weights == sorted(weights, reverse=True)

    def test_higher_threshold_yields_unknown(self):
        strict = DocumentClassifier(DocumentClassifierConfig(min_confidence=0.99))
        assert strict.classify(ENGLISH_LETTER).document_type == DocumentType.UNKNOWN


class TestLanguageDetection:
    def test_stop_word_vote(self, classifier):
        assert classifier.detect_language("le client et la facture sont dans le dossier") == "fr"
        assert classifier.detect_language("die rechnung und der betrag sind bitte") == "de"

    def test_tie_goes_to_english(self, classifier):
        assert classifier.detect_language("xyz") == "en"


def test_is_type(classifier):
    assert classifier.is_type(GERMAN_INVOICE, DocumentType.INVOICE, min_confidence=0.25)
    assert not classifier.is_type(GERMAN_INVOICE, DocumentType.LETTER)


def test_applicable_rules():
    assert "vatNumber" in DocumentClassifier.get_applicable_rules(DocumentType.INVOICE)
    assert DocumentClassifier.get_applicable_rules(DocumentType.UNKNOWN) == []


def test_keyword_weight():
    assert DocumentClassifier.keyword_weight("invoice", 1) == pytest.approx(0.105)
    # Repeated hits grow sublinearly
    assert DocumentClassifier.keyword_weight("invoice", 4) < 4 * DocumentClassifier.keyword_weight("invoice", 1)
