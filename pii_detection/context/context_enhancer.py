# pii_detection/context/context_enhancer.py

"""Context-aware confidence adjustment.

Looks at a window of text before and after an entity and adjusts its
confidence based on nearby context words ("IBAN:", "Nom", "Telefon").
Preceding context weighs more than following context because labels
usually precede values. The calibration follows Presidio's
LemmaContextAwareEnhancer (similarity factor 0.35, floor 0.4).
"""

import re
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from pii_detection.core.definitions import EntityType
from pii_detection.core.domain import ContextWord, EnhancementResult, Entity
from pii_detection.context.deny_list import DenyList
from pii_detection.preprocessing.lemmatizer import Lemmatizer

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"\w+")


@dataclass(frozen=True)
class ContextEnhancerConfig:
    window_size: int = 100
    similarity_factor: float = 0.35
    min_score_with_context: float = 0.4
    preceding_weight: float = 1.2
    following_weight: float = 0.8
    per_entity_type: Dict[str, Dict[str, float]] = field(
        default_factory=lambda: {
            EntityType.PERSON: {"window_size": 150},
            EntityType.IBAN: {"window_size": 40},
            EntityType.EMAIL: {"window_size": 50},
            EntityType.PHONE: {"window_size": 60},
            EntityType.SWISS_AVS: {"window_size": 60},
        }
    )

    def for_entity_type(self, entity_type: str) -> "ContextEnhancerConfig":
        override = self.per_entity_type.get(entity_type)
        if not override:
            return self
        return replace(self, **override)


class ContextEnhancer:
    """Adjusts entity confidence from surrounding context words.

    Entities denied by the DenyList are never boosted: enhancement is
    skipped and the entity is returned unchanged.
    """

    def __init__(
        self,
        deny_list: Optional[DenyList] = None,
        lemmatizer: Optional[Lemmatizer] = None,
        config: Optional[ContextEnhancerConfig] = None,
    ):
        self.deny_list = deny_list or DenyList()
        self.lemmatizer = lemmatizer or Lemmatizer()
        self.config = config or ContextEnhancerConfig()

    def window_size(self, entity_type: str) -> int:
        return self.config.for_entity_type(entity_type).window_size

    def enhance(
        self,
        entity: Entity,
        full_text: str,
        context_words: Sequence[ContextWord],
        language: Optional[str] = None,
    ) -> Entity:
        return self.enhance_with_details(entity, full_text, context_words, language).entity

    def enhance_with_details(
        self,
        entity: Entity,
        full_text: str,
        context_words: Sequence[ContextWord],
        language: Optional[str] = None,
    ) -> EnhancementResult:
        """Computes the context-adjusted confidence of an entity.

        Args:
            entity: Entity whose offsets index into full_text
            full_text: Document text the entity was found in
            context_words: Positive and negative context words for the entity type
            language: Language used for lemmatization and deny-list scope

        Returns:
            EnhancementResult with the adjusted entity and the matched words
        """
        original = entity.confidence

        if self.deny_list.is_denied(entity.text, entity.entity_type, language):
            return EnhancementResult(
                entity=entity,
                original_confidence=original,
                skipped=True,
                skip_reason="Entity denied by DenyList",
            )

        if not context_words:
            return EnhancementResult(entity=entity, original_confidence=original)

        cfg = self.config.for_entity_type(entity.entity_type)
        window = int(cfg.window_size)
        preceding = full_text[max(0, entity.start - window) : entity.start].lower()
        following = full_text[entity.end : entity.end + window].lower()
        preceding_lemmas = self._lemma_sequence(preceding, language)
        following_lemmas = self._lemma_sequence(following, language)

        found: List[str] = []
        positive_total = 0.0
        negative_total = 0.0

        for context_word in context_words:
            word = context_word.word.lower()
            word_lemmas = self._lemma_sequence(word, language) if len(word) >= 3 else None

            in_preceding = word in preceding or self._contains(preceding_lemmas, word_lemmas)
            in_following = word in following or self._contains(following_lemmas, word_lemmas)
            if not (in_preceding or in_following):
                continue

            found.append(context_word.word)
            contribution = 0.0
            if in_preceding:
                contribution += context_word.weight * cfg.preceding_weight
            if in_following:
                contribution += context_word.weight * cfg.following_weight
            contribution = min(contribution, context_word.weight * 2)

            if context_word.is_positive:
                positive_total += contribution
            else:
                negative_total += contribution

        max_direction = max(cfg.preceding_weight, cfg.following_weight)
        positive = min(positive_total / max_direction * cfg.similarity_factor, cfg.similarity_factor)
        negative = min(negative_total / max_direction * cfg.similarity_factor, cfg.similarity_factor)
        net = positive - negative

        confidence = original + net
        if positive > 0 and net > 0:
            floor = min(cfg.min_score_with_context, original + cfg.similarity_factor)
            confidence = max(confidence, floor)
        confidence = max(0.0, min(1.0, confidence))

        if found:
            logger.debug(
                "Context words found",
                extra={
                    "entity_type": entity.entity_type,
                    "context_count": len(found),
                    "boost": round(confidence - original, 4),
                },
            )

        return EnhancementResult(
            entity=replace(entity, confidence=confidence),
            context_found=found,
            boost_applied=confidence - original,
            original_confidence=original,
        )

    def enhance_all(
        self,
        entities: Sequence[Entity],
        full_text: str,
        context_words: Sequence[ContextWord],
        language: Optional[str] = None,
    ) -> List[Entity]:
        return [self.enhance(e, full_text, context_words, language) for e in entities]

    def _lemma_sequence(self, text: str, language: Optional[str]) -> Tuple[str, ...]:
        return tuple(
            self.lemmatizer.lemmatize(token, language) for token in WORD_PATTERN.findall(text)
        )

    @staticmethod
    def _contains(haystack: Tuple[str, ...], needle: Optional[Tuple[str, ...]]) -> bool:
        if not needle or len(needle) > len(haystack):
            return False
        if len(needle) == 1:
            return needle[0] in haystack
        width = len(needle)
        return any(haystack[i : i + width] == needle for i in range(len(haystack) - width + 1))
