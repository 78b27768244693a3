"""Tests for pii_detection/engine/recognizers.py."""
import pytest

from pii_detection.core.definitions import EntitySource, EntityType
from pii_detection.engine.recognizers import RegexDetector, create_regex_recognizers


def _found(detector: RegexDetector, text: str):
    return [(e.entity_type, e.text) for e in detector.detect(text)]


def test_one_recognizer_per_regex_type():
    recognizers = create_regex_recognizers()
    names = {r.name for r in recognizers}
    assert len(recognizers) == len(EntityType.REGEX_TYPES)
    assert "Regex_IBAN_Recognizer" in names


def test_avs_and_email(regex_detector):
    entities = regex_detector.detect("AVS: 756.1234.5678.97, contact test@example.com")

    assert [(e.entity_type, e.text) for e in entities] == [
        (EntityType.SWISS_AVS, "756.1234.5678.97"),
        (EntityType.EMAIL, "test@example.com"),
    ]
    avs = entities[0]
    assert avs.source == EntitySource.RULE
    assert avs.confidence == pytest.approx(0.7)
    assert avs.metadata["recognizer"] == "Regex_SWISS_AVS_Recognizer"
    assert avs.metadata["pattern"] == "avs_dotted"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("IBAN CH93 0076 2011 6238 5295 7", (EntityType.IBAN, "CH93 0076 2011 6238 5295 7")),
        ("Tel. +41 79 123 45 67", (EntityType.PHONE, "+41 79 123 45 67")),
        ("UID CHE-116.281.710 MWST", (EntityType.VAT_NUMBER, "CHE-116.281.710 MWST")),
        ("Datum: 12.03.2024", (EntityType.DATE, "12.03.2024")),
        ("le 12 mars 2021", (EntityType.DATE, "12 mars 2021")),
        ("Adresse: Bahnhofstrasse 12", (EntityType.ADDRESS, "Bahnhofstrasse 12")),
    ],
)
def test_pattern_types(regex_detector, text, expected):
    assert expected in _found(regex_detector, text)


def test_swiss_postal_locality(regex_detector):
    assert (EntityType.SWISS_ADDRESS, "8001 Zürich") in _found(regex_detector, "Bahnhofstrasse 1, 8001 Zürich")


def test_results_are_ordered_by_start(regex_detector):
    entities = regex_detector.detect("mail a@b.ch, AVS 756.1234.5678.97, mail c@d.ch")
    starts = [e.start for e in entities]
    assert starts == sorted(starts)


def test_score_override():
    detector = RegexDetector(score=0.5, entity_types=[EntityType.EMAIL])
    [entity] = detector.detect("test@example.com")
    assert entity.confidence == pytest.approx(0.5)


def test_entity_type_subset():
    detector = RegexDetector(entity_types=[EntityType.EMAIL])
    assert detector.entity_types == [EntityType.EMAIL]
    assert detector.detect("AVS 756.1234.5678.97") == []


def test_empty_text(regex_detector):
    assert regex_detector.detect("") == []
