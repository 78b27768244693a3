# pii_detection/context/context_words.py

"""Lookup of context words per entity type and language."""

from typing import List, Optional

from pii_detection.core.definitions import EntityType, DEFAULT_LANGUAGE
from pii_detection.core.domain import ContextWord
from pii_detection.core.loader import PatternLoader

# Entity types that share another type's context vocabulary
_ALIASES = {
    EntityType.SWISS_ADDRESS: EntityType.ADDRESS,
    EntityType.EU_ADDRESS: EntityType.ADDRESS,
    EntityType.LOCATION: EntityType.ADDRESS,
}


def get_context_words(entity_type: str, language: Optional[str] = None) -> List[ContextWord]:
    """Returns context words for an entity type, falling back to English.

    Args:
        entity_type: Entity type constant
        language: Two-letter language code

    Returns:
        List of ContextWord, empty if the type has no vocabulary
    """
    loader = PatternLoader.get_instance()
    key = _ALIASES.get(entity_type, entity_type)
    words = loader.get_context_words(key, language or DEFAULT_LANGUAGE)
    if not words and language != DEFAULT_LANGUAGE:
        words = loader.get_context_words(key, DEFAULT_LANGUAGE)
    return words


def get_positive_context_words(entity_type: str, language: Optional[str] = None) -> List[ContextWord]:
    return [w for w in get_context_words(entity_type, language) if w.is_positive]


def get_negative_context_words(entity_type: str, language: Optional[str] = None) -> List[ContextWord]:
    return [w for w in get_context_words(entity_type, language) if not w.is_positive]
