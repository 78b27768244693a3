"""Shared fixtures for the detection test suite.

NER is replaced by StubNerDetector so no spaCy model download is needed.
"""
from typing import Dict, List, Optional

import pytest

from pii_detection.core.definitions import EntitySource
from pii_detection.core.domain import Entity
from pii_detection.context.context_enhancer import ContextEnhancer
from pii_detection.context.deny_list import DenyList
from pii_detection.engine.recognizers import RegexDetector
from pii_detection.logic.address_linker import AddressLinker
from pii_detection.logic.document_classifier import DocumentClassifier
from pii_detection.logic.rule_engine import RuleEngine
from pii_detection.logic.validators import FormatValidationPass, build_default_registry
from pii_detection.preprocessing.lemmatizer import Lemmatizer
from pii_detection.preprocessing.text_normalizer import TextNormalizer
from pii_detection.service.pipeline import DetectionPipeline


class StubNerDetector:
    """Finds fixed strings instead of running a model.

    Returns None from detect() when ``fail`` is set, like a timed-out model.
    """

    def __init__(
        self,
        names: Optional[Dict[str, str]] = None,
        score: float = 0.85,
        fail: bool = False,
        available: bool = True,
    ):
        self.names = names or {}
        self.score = score
        self.fail = fail
        self.available = available

    def detect(self, text: str) -> Optional[List[Entity]]:
        if self.fail or not self.available:
            return None
        entities = []
        for name, entity_type in self.names.items():
            start = text.find(name)
            if start == -1:
                continue
            entities.append(
                Entity(
                    text=name,
                    entity_type=entity_type,
                    start=start,
                    end=start + len(name),
                    confidence=self.score,
                    source=EntitySource.ML,
                )
            )
        return entities


@pytest.fixture
def stub_ner():
    return StubNerDetector


@pytest.fixture(scope="session")
def regex_detector() -> RegexDetector:
    return RegexDetector()


@pytest.fixture(scope="session")
def classifier() -> DocumentClassifier:
    return DocumentClassifier()


@pytest.fixture
def deny_list() -> DenyList:
    return DenyList()


@pytest.fixture
def enhancer(deny_list: DenyList) -> ContextEnhancer:
    return ContextEnhancer(deny_list=deny_list, lemmatizer=Lemmatizer())


@pytest.fixture
def make_pipeline(regex_detector, classifier):
    """Factory building a pipeline around an optional stub NER detector."""

    def _make(ner_detector=None, rule_engine=None, classifier_override=None, deny=None, address_linker=None):
        deny = deny or DenyList()
        return DetectionPipeline(
            normalizer=TextNormalizer(),
            regex_detector=regex_detector,
            ner_detector=ner_detector,
            context_enhancer=ContextEnhancer(deny_list=deny, lemmatizer=Lemmatizer()),
            deny_list=deny,
            validation_pass=FormatValidationPass(build_default_registry()),
            classifier=classifier_override or classifier,
            rule_engine=rule_engine or RuleEngine(),
            address_linker=address_linker or AddressLinker(),
        )

    return _make
