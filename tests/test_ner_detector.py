"""Tests for pii_detection/engine/ner_detector.py.

The spaCy pipeline is replaced by a callable returning token-like objects,
so no model has to be installed.
"""
import time
from types import SimpleNamespace
from typing import List, Tuple

import pytest

from pii_detection.core.definitions import EntitySource, EntityType
from pii_detection.core.exceptions import InferenceError
from pii_detection.engine.ner_detector import NerDetector, NerToken


TEXT = "Jean Dupont works at Acme in Geneva"
TAGS = [("B", "PER"), ("I", "PER"), ("O", ""), ("O", ""), ("B", "ORG"), ("O", ""), ("B", "LOC")]


def _fake_doc(text: str, tags: List[Tuple[str, str]]):
    tokens = []
    cursor = 0
    for word, (iob, label) in zip(text.split(" "), tags):
        idx = text.index(word, cursor)
        tokens.append(SimpleNamespace(text=word, idx=idx, ent_iob_=iob, ent_type_=label))
        cursor = idx + len(word)
    return tokens


def _detector(nlp, **kwargs) -> NerDetector:
    detector = NerDetector(**kwargs)
    detector._nlp = nlp
    return detector


@pytest.fixture
def detector():
    detector = _detector(lambda text: _fake_doc(text, TAGS))
    yield detector
    detector.shutdown()


class TestDetect:
    def test_entities_are_mapped_and_merged(self, detector):
        entities = detector.detect(TEXT)

        assert [(e.text, e.entity_type) for e in entities] == [
            ("Jean Dupont", EntityType.PERSON),
            ("Acme", EntityType.ORGANIZATION),
            ("Geneva", EntityType.LOCATION),
        ]
        assert all(e.source == EntitySource.ML for e in entities)
        assert all(e.confidence == 0.85 for e in entities)

    def test_unmapped_labels_are_ignored(self):
        detector = _detector(lambda text: _fake_doc(text, [("B", "MISC"), ("I", "MISC")]))
        assert detector.detect("Swiss francs") == []

    def test_scores_below_threshold_are_ignored(self):
        detector = _detector(lambda text: _fake_doc(text, TAGS), default_score=0.2, threshold=0.3)
        assert detector.detect(TEXT) == []

    def test_below_threshold_skips_inference(self):
        calls = []

        def nlp(text):
            calls.append(text)
            return _fake_doc(text, TAGS)

        detector = _detector(nlp, default_score=0.2, threshold=0.3)
        assert detector.tag(TEXT) == []
        assert calls == []

    def test_score_equal_to_threshold_is_kept(self):
        detector = _detector(lambda text: _fake_doc(text, TAGS), default_score=0.3, threshold=0.3)
        assert len(detector.detect(TEXT)) == 3

    def test_empty_text(self, detector):
        assert detector.detect("") == []

    def test_tag_returns_prefixed_tokens(self, detector):
        tokens = detector.tag(TEXT)
        assert tokens[0] == NerToken("Jean", "B-PERSON", 0, 4, 0.85)
        assert tokens[1].prefix == "I"
        assert tokens[1].entity_type == EntityType.PERSON


class TestFailures:
    def test_missing_model_disables_ner(self):
        detector = NerDetector(model_name="no_such_spacy_model")
        try:
            assert detector.detect(TEXT) is None
            assert detector.available is False
        finally:
            detector.shutdown()

    def test_timeout_returns_none(self):
        def slow(text):
            time.sleep(0.5)
            return _fake_doc(text, TAGS)

        detector = _detector(slow, timeout=0.05, max_retries=0)
        try:
            assert detector.detect(TEXT) is None
            # The model itself is still usable for the next document
            assert detector.available is True
        finally:
            detector.shutdown()

    def test_failed_attempt_is_retried(self):
        calls = []

        def flaky(text):
            calls.append(text)
            if len(calls) == 1:
                raise RuntimeError("transient")
            return _fake_doc(text, TAGS)

        detector = _detector(flaky, max_retries=1)
        try:
            assert len(detector.detect(TEXT)) == 3
            assert len(calls) == 2
        finally:
            detector.shutdown()

    def test_exhausted_retries_raise_from_tag(self):
        def broken(text):
            raise RuntimeError("model crashed")

        detector = _detector(broken, max_retries=2)
        try:
            with pytest.raises(InferenceError):
                detector.tag(TEXT)
        finally:
            detector.shutdown()
