# pii_detection/engine/recognizers.py

"""Presidio pattern recognizers for Swiss and EU identifiers."""

import re
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from presidio_analyzer import Pattern, PatternRecognizer, RecognizerResult

from pii_detection.core.definitions import EntitySource, EntityType
from pii_detection.core.domain import Entity
from pii_detection.core.loader import PatternLoader

logger = logging.getLogger(__name__)

# Case sensitivity is set per pattern with an inline (?i)
REGEX_FLAGS = re.DOTALL | re.MULTILINE

_PATTERN_CACHE: Dict[Tuple[str, Optional[float]], List[Pattern]] = {}


def _get_cached_patterns(entity_type: str, score: Optional[float] = None) -> List[Pattern]:
    """Retrieves list of Pattern objects from cache or creates them.

    Args:
        entity_type: Entity type constant
        score: Overrides the score declared in patterns.yaml when given
    """
    cache_key = (entity_type, score)
    if cache_key in _PATTERN_CACHE:
        return _PATTERN_CACHE[cache_key]

    loader = PatternLoader.get_instance()
    pattern_defs = loader.get_patterns(entity_type)

    patterns = [
        Pattern(
            name=p["name"],
            regex=p["regex"],
            score=score if score is not None else float(p.get("score", 0.7)),
        )
        for p in pattern_defs
    ]

    _PATTERN_CACHE[cache_key] = patterns
    return patterns


def create_regex_recognizers(
    score: Optional[float] = None,
    entity_types: Optional[Sequence[str]] = None,
) -> List[PatternRecognizer]:
    """Creates one PatternRecognizer per regex entity type.

    Types without patterns are skipped with a warning.
    """
    recognizers = []

    for entity in entity_types or EntityType.REGEX_TYPES:
        patterns = _get_cached_patterns(entity, score)
        if patterns:
            recognizers.append(
                PatternRecognizer(
                    supported_entity=entity,
                    name=f"Regex_{entity}_Recognizer",
                    patterns=patterns,
                    global_regex_flags=REGEX_FLAGS,
                )
            )
        else:
            logger.warning(f"Skipping Regex Recognizer for {entity}: No patterns found.")

    logger.info(f"Initialized {len(recognizers)} regex recognizers")
    return recognizers


class RegexDetector:
    """Runs the pattern recognizers and converts their results to entities."""

    def __init__(
        self,
        score: Optional[float] = None,
        entity_types: Optional[Sequence[str]] = None,
    ):
        self.recognizers = create_regex_recognizers(score, entity_types)

    @property
    def entity_types(self) -> List[str]:
        return [r.supported_entities[0] for r in self.recognizers]

    def detect(self, text: str) -> List[Entity]:
        """Finds all pattern matches in text.

        Args:
            text: Normalized text

        Returns:
            Entities with source RULE, ordered by start offset
        """
        if not text:
            return []

        entities: List[Entity] = []
        for recognizer in self.recognizers:
            results: List[RecognizerResult] = recognizer.analyze(
                text=text, entities=recognizer.supported_entities
            )
            for result in results or []:
                if result.end <= result.start:
                    continue
                explanation = result.analysis_explanation
                entities.append(
                    Entity(
                        text=text[result.start : result.end],
                        entity_type=result.entity_type,
                        start=result.start,
                        end=result.end,
                        confidence=result.score,
                        source=EntitySource.RULE,
                        metadata={
                            "recognizer": recognizer.name,
                            "pattern": explanation.pattern_name if explanation else None,
                        },
                    )
                )

        entities.sort(key=lambda e: (e.start, -e.length))
        logger.debug(f"Regex detection found {len(entities)} matches", extra={"text_length": len(text)})
        return entities
