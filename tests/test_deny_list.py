"""Tests for pii_detection/context/deny_list.py."""
import json
import re

import pytest

from pii_detection.core.definitions import EntityType
from pii_detection.core.exceptions import ConfigurationError
from pii_detection.context.deny_list import DenyList, DenyListConfig, load_deny_list_config


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_global_labels_are_denied_case_insensitively(self, deny_list):
        assert deny_list.is_denied("Montant")
        assert deny_list.is_denied("montant")
        assert deny_list.is_denied("  Total  ")

    def test_regular_values_pass(self, deny_list):
        assert not deny_list.is_denied("John Smith", EntityType.PERSON)
        assert not deny_list.is_denied("test@example.com", EntityType.EMAIL)

    def test_acronyms_denied_only_as_person(self, deny_list):
        assert deny_list.is_denied("ABC", EntityType.PERSON)
        assert not deny_list.is_denied("ABC", EntityType.LOCATION)

    def test_company_suffix_denied_as_person(self, deny_list):
        assert deny_list.is_denied("Muster AG", EntityType.PERSON)
        assert deny_list.is_denied("Acme GmbH", EntityType.PERSON)

    def test_month_abbreviation_denied_as_person(self, deny_list):
        assert deny_list.is_denied("Okt", EntityType.PERSON)


# ---------------------------------------------------------------------------
# Runtime additions
# ---------------------------------------------------------------------------


class TestAddPattern:
    def test_add_global_string(self, deny_list):
        deny_list.add_pattern("Kontoinhaber")
        assert deny_list.is_denied("kontoinhaber")

    def test_add_regex_to_entity_type(self, deny_list):
        deny_list.add_pattern(re.compile(r"^Test\b"), EntityType.EMAIL)
        assert deny_list.is_denied("Test address", EntityType.EMAIL)
        assert not deny_list.is_denied("Test address", EntityType.PERSON)

    def test_add_language_pattern(self, deny_list):
        deny_list.add_language_pattern("Madame", "fr")
        assert deny_list.is_denied("Madame", language="fr")
        assert not deny_list.is_denied("Madame", language="de")

    def test_additions_create_new_snapshot(self, deny_list):
        before = deny_list.config
        deny_list.add_pattern("Kontoinhaber")
        assert deny_list.config is not before
        assert not before.is_denied("Kontoinhaber")

    def test_reset_restores_defaults(self, deny_list):
        deny_list.add_pattern("Kontoinhaber")
        deny_list.reset()
        assert not deny_list.is_denied("Kontoinhaber")
        assert deny_list.is_denied("Montant")


def test_patterns_for_combines_scopes():
    config = DenyListConfig.build(["a"], {EntityType.PERSON: ["b"]}, {"fr": ["c"]})
    assert config.patterns_for(EntityType.PERSON, "fr") == ["a", "b", "c"]
    assert config.patterns_for() == ["a"]


# ---------------------------------------------------------------------------
# Configuration files
# ---------------------------------------------------------------------------


YAML_CONFIG = """
version: "1.0.0"
global:
  - Kontoinhaber
  - pattern: "^ref-\\\\d+$"
    type: regex
    flags: i
byEntityType:
  PERSON:
    - pattern: Muster
      type: string
byLanguage:
  fr:
    - Madame
"""


class TestConfigFile:
    def test_yaml_file_is_loaded(self, tmp_path):
        path = tmp_path / "deny.yaml"
        path.write_text(YAML_CONFIG, encoding="utf-8")

        deny = DenyList.from_file(path)

        assert deny.is_denied("Kontoinhaber")
        assert deny.is_denied("REF-123")
        assert deny.is_denied("Muster", EntityType.PERSON)
        assert deny.is_denied("Madame", language="fr")

    def test_file_replaces_defaults(self, tmp_path):
        path = tmp_path / "deny.yaml"
        path.write_text(YAML_CONFIG, encoding="utf-8")
        assert not DenyList.from_file(path).is_denied("Montant")

    def test_json_file_is_loaded(self, tmp_path):
        path = tmp_path / "deny.json"
        path.write_text(json.dumps({"global": ["Kontoinhaber"]}), encoding="utf-8")
        assert DenyList.from_file(path).is_denied("Kontoinhaber")

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        deny = DenyList.from_file(tmp_path / "missing.yaml")
        assert deny.is_denied("Montant")

    def test_invalid_regex_raises(self, tmp_path):
        path = tmp_path / "deny.yaml"
        path.write_text('global:\n  - pattern: "([a-z"\n', encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_deny_list_config(path)

    def test_unknown_flag_raises(self, tmp_path):
        path = tmp_path / "deny.yaml"
        path.write_text('global:\n  - pattern: "abc"\n    flags: x\n', encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_deny_list_config(path)

    def test_non_mapping_raises(self, tmp_path):
        path = tmp_path / "deny.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_deny_list_config(path)

    def test_non_utf8_file_raises_configuration_error(self, tmp_path):
        path = tmp_path / "deny.yaml"
        path.write_bytes(b"global:\n  - \xff\xfe\n")
        with pytest.raises(ConfigurationError):
            load_deny_list_config(path)

    def test_directory_path_raises_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_deny_list_config(tmp_path)

    def test_non_utf8_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "deny.yaml"
        path.write_bytes(b"\xff\xfe\xfa")
        assert DenyList.from_file(path).is_denied("Montant")

    def test_directory_path_falls_back_to_defaults(self, tmp_path):
        assert DenyList.from_file(tmp_path).is_denied("Montant")
