# pii_detection/preprocessing/lemmatizer.py

"""Rule-based suffix-stripping lemmatizer for EN/FR/DE context matching."""

import logging
import threading
from collections import OrderedDict
from typing import Dict, List, NamedTuple, Optional

from pii_detection.core.definitions import SUPPORTED_LANGUAGES, DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)


class SuffixRule(NamedTuple):
    suffix: str
    replacement: str
    min_length: int


# Rules are tried in order; the first rule whose resulting stem is long
# enough wins.
ENGLISH_RULES = [
    SuffixRule("resses", "ress", 4),  # addresses -> address
    SuffixRule("nesses", "ness", 4),
    SuffixRule("ations", "ation", 5),
    SuffixRule("ements", "ement", 5),
    SuffixRule("ments", "ment", 4),
    SuffixRule("ings", "ing", 4),
    SuffixRule("sses", "ss", 4),
    SuffixRule("ies", "y", 3),  # entries -> entry
    SuffixRule("ves", "fe", 4),  # lives -> life
    SuffixRule("es", "e", 4),  # phones -> phone
    SuffixRule("ed", "", 4),  # emailed -> email
    SuffixRule("ss", "ss", 3),  # address stays address
    SuffixRule("s", "", 4),  # contacts -> contact
]

FRENCH_RULES = [
    SuffixRule("ations", "ation", 5),
    SuffixRule("ements", "ement", 5),
    SuffixRule("ments", "ment", 4),
    SuffixRule("euses", "euse", 4),
    SuffixRule("eurs", "eur", 4),
    SuffixRule("eaux", "eau", 4),  # bureaux -> bureau
    SuffixRule("aux", "al", 3),  # journaux -> journal
    SuffixRule("es", "", 3),
    SuffixRule("s", "", 3),  # téléphones -> téléphone
]

GERMAN_RULES = [
    SuffixRule("ungen", "ung", 4),  # Rechnungen -> Rechnung
    SuffixRule("heiten", "heit", 4),
    SuffixRule("keiten", "keit", 4),
    SuffixRule("ieren", "ieren", 5),  # verbs are kept
    SuffixRule("nummern", "nummer", 6),  # Telefonnummern -> Telefonnummer
    SuffixRule("ssen", "ss", 4),
    SuffixRule("en", "", 3),
    SuffixRule("er", "", 3),
    SuffixRule("e", "", 3),
    SuffixRule("n", "", 3),
    SuffixRule("s", "", 3),
]

RULES_BY_LANGUAGE: Dict[str, List[SuffixRule]] = {
    "en": ENGLISH_RULES,
    "fr": FRENCH_RULES,
    "de": GERMAN_RULES,
}


class Lemmatizer:
    """Language-aware suffix stripper with a bounded cache.

    Used only by the context enhancer, so precision matters less than
    mapping inflected labels ("Adressen", "emails") onto their base form.
    """

    def __init__(self, default_language: str = DEFAULT_LANGUAGE, cache_limit: int = 1000):
        self.default_language = self._normalize_language(default_language, DEFAULT_LANGUAGE)
        self.cache_limit = cache_limit
        self._cache: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    def lemmatize(self, word: str, language: Optional[str] = None) -> str:
        """Returns the lemma of a word, preserving its case pattern.

        Words shorter than three characters are returned unchanged.
        """
        if not word or len(word) < 3:
            return word

        lang = self._normalize_language(language, self.default_language)
        cache_key = f"{lang}:{word}"

        with self._lock:
            cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        result = self._apply_rules(word, lang)

        with self._lock:
            if len(self._cache) >= self.cache_limit:
                # Evict the oldest quarter
                for _ in range(max(1, self.cache_limit // 4)):
                    self._cache.popitem(last=False)
            self._cache[cache_key] = result

        return result

    def lemmatize_all(self, words: List[str], language: Optional[str] = None) -> List[str]:
        return [self.lemmatize(w, language) for w in words]

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @staticmethod
    def _apply_rules(word: str, language: str) -> str:
        lower = word.lower()
        for rule in RULES_BY_LANGUAGE.get(language, ENGLISH_RULES):
            if lower.endswith(rule.suffix):
                stem = lower[: len(lower) - len(rule.suffix)] + rule.replacement
                if len(stem) >= rule.min_length:
                    return Lemmatizer._preserve_case(word, stem)
        return word

    @staticmethod
    def _preserve_case(original: str, lemma: str) -> str:
        if original.isupper():
            return lemma.upper()
        if original[0].isupper():
            return lemma[:1].upper() + lemma[1:]
        return lemma

    @staticmethod
    def _normalize_language(language: Optional[str], fallback: str) -> str:
        if not language:
            return fallback
        lang = language.lower()[:2]
        return lang if lang in SUPPORTED_LANGUAGES else fallback
