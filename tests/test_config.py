"""Tests for settings, pattern loading and logging configuration."""
import io
import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from pii_detection.core.definitions import DocumentType, EntityType
from pii_detection.core.loader import PatternLoader
from pii_detection.logging_config import StructuredFormatter, configure_logging
from pii_detection.service.config import Settings


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self):
        config = Settings(_env_file=None)
        assert config.spacy_model == "xx_ent_wiki_sm"
        assert config.enable_ner is True
        assert config.rule_confidence == 0.7
        assert config.rules_path is None
        assert config.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PII_ENABLE_NER", "false")
        monkeypatch.setenv("PII_NER_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("PII_LOG_LEVEL", "debug")

        config = Settings(_env_file=None)

        assert config.enable_ner is False
        assert config.ner_timeout_seconds == 2.5
        assert config.log_level == "DEBUG"

    def test_unknown_log_level_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, log_level="LOUD")

    def test_empty_model_name_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, spacy_model="  ")

    def test_out_of_range_values_are_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, rule_confidence=1.5)


# ---------------------------------------------------------------------------
# Pattern loader
# ---------------------------------------------------------------------------


class TestPatternLoader:
    def test_singleton(self):
        assert PatternLoader.get_instance() is PatternLoader.get_instance()

    def test_every_regex_type_has_patterns(self):
        loader = PatternLoader.get_instance()
        for entity_type in EntityType.REGEX_TYPES:
            assert loader.get_patterns(entity_type), entity_type

    def test_unknown_type_has_no_patterns(self):
        assert PatternLoader.get_instance().get_patterns("UNKNOWN_TYPE") == []

    def test_context_words_per_language(self):
        words = PatternLoader.get_instance().get_context_words(EntityType.SWISS_AVS, "de")
        assert "ahv" in [w.word for w in words]

    def test_applicable_rules(self):
        assert "vatNumber" in PatternLoader.get_instance().get_applicable_rules(DocumentType.INVOICE)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def test_structured_formatter_includes_extra_fields():
    record = logging.LogRecord("pii_detection.test", logging.INFO, __file__, 10, "Detection completed", None, None)
    record.document_id = "doc-1"
    record.entity_count = 3

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["message"] == "Detection completed"
    assert payload["level"] == "INFO"
    assert payload["document_id"] == "doc-1"
    assert payload["entity_count"] == 3
    assert "args" not in payload


def test_configure_logging_writes_json_to_stream():
    stream = io.StringIO()
    root = logging.getLogger()
    previous_handlers, previous_level = list(root.handlers), root.level
    try:
        configure_logging("WARNING", stream=stream)
        logging.getLogger("pii_detection.test").warning("Pass failed", extra={"pass_name": "sort"})
    finally:
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert lines[-1]["message"] == "Pass failed"
    assert lines[-1]["pass_name"] == "sort"
