# pii_detection/logic/rule_engine.py

"""Document type specific confidence boosts and thresholds.

The rule engine runs last so its thresholds see final confidence values.
Each entity is boosted by the structural zone it sits in (header, footer,
labeled form field, table row) and by its entity type, then either
dropped, flagged for review or marked for automatic anonymization.
"""

import re
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator
from pydantic.alias_generators import to_camel

from pii_detection.core.definitions import DocumentType, EntityType
from pii_detection.core.domain import DocumentClassification, Entity
from pii_detection.core.exceptions import ConfigurationError
from pii_detection.logic.document_rules import RULE_HANDLERS, run_rules

logger = logging.getLogger(__name__)


class _RuleModel(BaseModel):
    # Accept both snake_case and camelCase keys in rule files
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Thresholds(_RuleModel):
    auto_anonymize: float = Field(default=0.8, ge=0.0, le=1.0)
    flag_for_review: float = Field(default=0.6, ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.4, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_order(self) -> "Thresholds":
        """Ensure auto_anonymize >= flag_for_review >= min_confidence."""
        if self.auto_anonymize < self.flag_for_review:
            raise ValueError("auto_anonymize threshold must be >= flag_for_review")
        if self.flag_for_review < self.min_confidence:
            raise ValueError("flag_for_review threshold must be >= min_confidence")
        return self


class DocumentTypeRuleConfig(_RuleModel):
    enabled: bool = True
    rules: List[str] = Field(default_factory=list)
    confidence_boosts: Dict[str, float] = Field(default_factory=dict)
    entity_type_boosts: Dict[str, float] = Field(default_factory=dict)
    thresholds: Thresholds = Field(default_factory=Thresholds)


class GlobalRuleSettings(_RuleModel):
    enable_document_type_detection: bool = True
    fallback_to_unknown: bool = True
    min_classification_confidence: float = Field(default=0.4, ge=0.0, le=1.0)
    log_classification_results: bool = True


class RulesConfiguration(_RuleModel):
    version: str = "1.0.0"
    description: str = ""
    document_types: Dict[str, DocumentTypeRuleConfig] = Field(default_factory=dict)
    global_settings: GlobalRuleSettings = Field(default_factory=GlobalRuleSettings)
    rule_definitions: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


DEFAULT_RULES: Dict[str, Any] = {
    "version": "1.0.0",
    "description": "Default detection rules configuration",
    "document_types": {
        DocumentType.INVOICE: {
            "rules": ["invoiceNumber", "vatNumber", "paymentRef", "iban"],
            "confidence_boosts": {"header": 0.2, "table": 0.1},
            "entity_type_boosts": {
                EntityType.IBAN: 0.2,
                EntityType.VAT_NUMBER: 0.15,
                EntityType.PAYMENT_REF: 0.15,
            },
            "thresholds": {"auto_anonymize": 0.85, "flag_for_review": 0.6, "min_confidence": 0.4},
        },
        DocumentType.LETTER: {
            "rules": ["salutation", "recipient", "signature", "letterDate", "referenceLine"],
            "confidence_boosts": {"header": 0.15, "signature_area": 0.25},
            "entity_type_boosts": {EntityType.PERSON: 0.1, EntityType.ADDRESS: 0.1, EntityType.DATE: 0.05},
            "thresholds": {"auto_anonymize": 0.8, "flag_for_review": 0.55, "min_confidence": 0.35},
        },
        DocumentType.FORM: {
            "rules": ["signature"],
            "confidence_boosts": {"labeled_field": 0.3},
            "entity_type_boosts": {EntityType.PERSON: 0.1, EntityType.DATE: 0.1},
            "thresholds": {"auto_anonymize": 0.75, "flag_for_review": 0.5, "min_confidence": 0.3},
        },
        DocumentType.CONTRACT: {
            "rules": ["signature"],
            "confidence_boosts": {"parties_clause": 0.25, "signature_block": 0.2},
            "entity_type_boosts": {
                EntityType.PERSON: 0.15,
                EntityType.ORGANIZATION: 0.15,
                EntityType.DATE: 0.1,
                EntityType.ADDRESS: 0.1,
            },
            "thresholds": {"auto_anonymize": 0.85, "flag_for_review": 0.6, "min_confidence": 0.4},
        },
        DocumentType.REPORT: {
            "rules": [],
            "confidence_boosts": {"author_block": 0.25},
            "entity_type_boosts": {EntityType.PERSON: 0.1, EntityType.ORGANIZATION: 0.1, EntityType.DATE: 0.05},
            "thresholds": {"auto_anonymize": 0.8, "flag_for_review": 0.55, "min_confidence": 0.35},
        },
        DocumentType.UNKNOWN: {
            "thresholds": {"auto_anonymize": 0.8, "flag_for_review": 0.6, "min_confidence": 0.4},
        },
    },
    "global_settings": {
        "enable_document_type_detection": True,
        "fallback_to_unknown": True,
        "min_classification_confidence": 0.4,
        "log_classification_results": True,
    },
}


def default_rules_configuration() -> RulesConfiguration:
    return RulesConfiguration.model_validate(DEFAULT_RULES)


def _merge_model(base: BaseModel, override: BaseModel) -> BaseModel:
    """Replaces only the fields explicitly present in override."""
    values = base.model_dump()
    values.update(override.model_dump(include=override.model_fields_set))
    return type(base).model_validate(values)


def merge_configs(base: RulesConfiguration, override: Union[RulesConfiguration, Dict[str, Any]]) -> RulesConfiguration:
    """Deterministically merges a partial override into a base configuration.

    Document types are merged one by one, and within a type only the
    fields present in the override replace the base values. Thresholds
    and global settings are merged field by field.

    Args:
        base: Complete configuration
        override: Partial configuration, as a model or raw mapping

    Returns:
        New RulesConfiguration; neither input is modified

    Raises:
        ConfigurationError: If the override or the merged result is invalid
    """
    try:
        if not isinstance(override, RulesConfiguration):
            override = RulesConfiguration.model_validate(override)

        document_types = dict(base.document_types)
        for name, type_override in override.document_types.items():
            current = document_types.get(name)
            if current is None:
                document_types[name] = type_override
                continue
            merged = current.model_dump()
            for field_name in type_override.model_fields_set:
                value = getattr(type_override, field_name)
                if field_name == "thresholds":
                    merged["thresholds"] = _merge_model(current.thresholds, value).model_dump()
                else:
                    merged[field_name] = value
            document_types[name] = DocumentTypeRuleConfig.model_validate(merged)

        global_settings = base.global_settings
        if "global_settings" in override.model_fields_set:
            global_settings = _merge_model(base.global_settings, override.global_settings)

        rule_definitions = dict(base.rule_definitions)
        rule_definitions.update(override.rule_definitions)

        return RulesConfiguration(
            version=override.version if "version" in override.model_fields_set else base.version,
            description=override.description if "description" in override.model_fields_set else base.description,
            document_types=document_types,
            global_settings=global_settings,
            rule_definitions=rule_definitions,
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid rules configuration: {e}") from e


def load_rules_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Reads a YAML or JSON rules file into a mapping.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    config_path = Path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read rules file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Rules file {config_path} must contain a mapping")
    return data


class RuleEngine:
    """Applies document type rules to the final entity list."""

    HEADER_FRACTION = 0.2
    FOOTER_FRACTION = 0.2

    LABEL_PREFIX = re.compile(r"\w[\w .'-]*:\s*$")

    # Zone names used in confidence_boosts and the region each one covers
    ZONE_REGIONS: Dict[str, str] = {
        "header": "header",
        "parties_clause": "header",
        "author_block": "header",
        "footer": "footer",
        "signature_area": "footer",
        "signature_block": "footer",
        "labeled_field": "labeled_field",
        "table": "table",
    }

    def __init__(self, config: Optional[RulesConfiguration] = None):
        self.config = config or default_rules_configuration()

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]]) -> "RuleEngine":
        """Builds an engine from a rules file merged over the defaults.

        A missing or invalid file logs once and falls back to the defaults.
        """
        base = default_rules_configuration()
        if not path:
            return cls(base)

        try:
            config = merge_configs(base, load_rules_file(path))
            logger.info("Rules configuration loaded", extra={"rules_path": str(path)})
            return cls(config)
        except ConfigurationError as e:
            logger.warning(f"Failed to load rules configuration, using defaults: {e}")
            return cls(base)

    def get_type_config(self, classification: DocumentClassification) -> Tuple[str, Optional[DocumentTypeRuleConfig]]:
        """Resolves the document type whose rules apply to a classification."""
        settings = self.config.global_settings
        document_type = classification.document_type

        if not settings.enable_document_type_detection:
            document_type = DocumentType.UNKNOWN
        elif (
            settings.fallback_to_unknown
            and classification.confidence < settings.min_classification_confidence
        ):
            document_type = DocumentType.UNKNOWN

        type_config = self.config.document_types.get(document_type)
        if type_config is None and settings.fallback_to_unknown:
            document_type = DocumentType.UNKNOWN
            type_config = self.config.document_types.get(document_type)

        return document_type, type_config

    def apply_rules(
        self,
        text: str,
        classification: DocumentClassification,
        entities: List[Entity],
    ) -> List[Entity]:
        """Runs the type's extraction rules, then applies zone boosts, type boosts and thresholds.

        Args:
            text: Text the entity offsets index into
            classification: Result of the document classifier
            entities: Entities after validation

        Returns:
            Annotated entities; only those below min_confidence are removed
        """
        document_type, type_config = self.get_type_config(classification)

        if self.config.global_settings.log_classification_results:
            logger.info(
                f"Applying rules for document type {document_type}",
                extra={
                    "classified_as": classification.document_type,
                    "classification_confidence": round(classification.confidence, 3),
                    "entity_count": len(entities),
                },
            )

        if type_config is None or not type_config.enabled:
            return [e.with_metadata(document_type=document_type) for e in entities]

        entities = self.merge_rule_entities(entities, run_rules(type_config.rules, text, classification.language))

        thresholds = type_config.thresholds
        results: List[Entity] = []
        dropped = 0

        for entity in entities:
            zone, zone_boost = self._zone_boost(text, entity, type_config.confidence_boosts)
            type_boost = self._type_boost(entity.entity_type, type_config.entity_type_boosts)
            confidence = min(1.0, entity.confidence + zone_boost + type_boost)

            if confidence < thresholds.min_confidence:
                dropped += 1
                continue

            metadata = dict(entity.metadata)
            metadata.update(
                document_type=document_type,
                position_zone=zone,
                type_boost_applied=type_boost,
                flagged_for_review=confidence < thresholds.flag_for_review,
                auto_anonymize=confidence >= thresholds.auto_anonymize,
            )
            results.append(replace(entity, confidence=confidence, metadata=metadata))

        if dropped:
            logger.debug(f"Dropped {dropped} entities below min_confidence", extra={"document_type": document_type})

        return sorted(results, key=lambda e: (e.start, -e.end))

    @staticmethod
    def merge_rule_entities(entities: List[Entity], rule_entities: List[Entity]) -> List[Entity]:
        """Adds document rule matches to the detected entities.

        A rule match over an entity of the same type only annotates that
        entity with the rule name. Otherwise it replaces the entities it
        overlaps when it is more confident than all of them, and is
        dropped when it is not.
        """
        merged = list(entities)
        for candidate in rule_entities:
            overlapping = [e for e in merged if e.overlaps(candidate)]
            if not overlapping:
                merged.append(candidate)
                continue

            same_type = next((e for e in overlapping if e.entity_type == candidate.entity_type), None)
            if same_type is not None:
                rules = list(same_type.metadata.get("rule_matches", []))
                if candidate.metadata["rule"] not in rules:
                    rules.append(candidate.metadata["rule"])
                merged[merged.index(same_type)] = same_type.with_metadata(rule_matches=rules)
                continue

            if all(candidate.confidence > e.confidence for e in overlapping):
                merged = [e for e in merged if e not in overlapping]
                merged.append(candidate)
        return merged

    def get_zones(self, text: str, entity: Entity) -> List[str]:
        """Returns the regions (header, footer, labeled_field, table) an entity lies in."""
        regions = []
        length = len(text)
        if length == 0:
            return regions

        if entity.start < length * self.HEADER_FRACTION:
            regions.append("header")
        if entity.start >= length * (1 - self.FOOTER_FRACTION):
            regions.append("footer")

        line_start = text.rfind("\n", 0, entity.start) + 1
        line_end = text.find("\n", entity.end)
        if line_end == -1:
            line_end = length

        if self.LABEL_PREFIX.search(text[line_start : entity.start]):
            regions.append("labeled_field")

        line = text[line_start:line_end]
        if "\t" in line or "|" in line:
            regions.append("table")

        return regions

    def _zone_boost(self, text: str, entity: Entity, boosts: Dict[str, float]) -> Tuple[Optional[str], float]:
        if not boosts:
            return None, 0.0

        regions = self.get_zones(text, entity)
        best_zone, best_boost = None, 0.0
        for zone, boost in boosts.items():
            region = self.ZONE_REGIONS.get(zone)
            if region in regions and boost > best_boost:
                best_zone, best_boost = zone, boost

        if best_zone is None and regions:
            best_zone = regions[0]
        return best_zone, best_boost

    @staticmethod
    def _type_boost(entity_type: str, boosts: Dict[str, float]) -> float:
        if entity_type in boosts:
            return boosts[entity_type]
        if entity_type in EntityType.ADDRESS_TYPES:
            return boosts.get(EntityType.ADDRESS, 0.0)
        return 0.0

    def validate_configuration(self) -> List[str]:
        """Checks the loaded configuration for inconsistencies.

        Returns:
            Human-readable error messages, empty when the configuration is sound
        """
        errors = []

        for name, type_config in self.config.document_types.items():
            if name not in DocumentType.ALL:
                errors.append(f"{name}: unknown document type")

            for zone, boost in type_config.confidence_boosts.items():
                if zone not in self.ZONE_REGIONS:
                    errors.append(f"{name}: unknown zone '{zone}'")
                if not 0.0 <= boost <= 1.0:
                    errors.append(f"{name}: boost for '{zone}' must be between 0 and 1")

            for entity_type, boost in type_config.entity_type_boosts.items():
                if not 0.0 <= boost <= 1.0:
                    errors.append(f"{name}: boost for entity type '{entity_type}' must be between 0 and 1")

            for rule in type_config.rules:
                if rule not in RULE_HANDLERS:
                    errors.append(f"{name}: unknown rule '{rule}'")

            thresholds = type_config.thresholds
            if thresholds.auto_anonymize < thresholds.flag_for_review:
                errors.append(f"{name}: auto_anonymize threshold should be >= flag_for_review")
            if thresholds.flag_for_review < thresholds.min_confidence:
                errors.append(f"{name}: flag_for_review threshold should be >= min_confidence")

        if DocumentType.UNKNOWN not in self.config.document_types:
            errors.append("UNKNOWN: fallback document type is not configured")

        return errors
