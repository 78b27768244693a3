# pii_detection/preprocessing/text_normalizer.py

"""Offset-preserving text normalization.

Canonicalizes raw text before detection:

- Unicode NFKC normalization (fullwidth characters, ligatures)
- Zero-width character removal and non-breaking space collapsing
- De-obfuscation of emails written as "name (at) domain (dot) com" and the
  French ("arobase"/"point") and German ("Klammeraffe"/"Punkt") variants
- Removal of the parenthesized trunk prefix in "+41 (0) 44 ..."

Every step updates an index map so that spans found in the normalized text
can be translated back to the caller's original coordinates.
"""

import re
import logging
import unicodedata
from dataclasses import dataclass
from typing import List, Tuple, Pattern, Union, Callable

from pii_detection.core.domain import NormalizationResult

logger = logging.getLogger(__name__)

ZERO_WIDTH_CHARS = frozenset("\u200b\u200c\u200d\u2060\ufeff")
NBSP_CHARS = frozenset("\u00a0\u2007\u202f")

Replacement = Union[str, Callable[["re.Match[str]"], str]]

# Order matters: parenthesized forms must run before the bare-word forms.
EMAIL_PATTERNS: List[Tuple[Pattern[str], Replacement]] = [
    (re.compile(r"\s*\(at\)\s*", re.IGNORECASE), "@"),
    (re.compile(r"\s*\[at\]\s*", re.IGNORECASE), "@"),
    (re.compile(r"\s*\{at\}\s*", re.IGNORECASE), "@"),
    (re.compile(r"\s*\(dot\)\s*", re.IGNORECASE), "."),
    (re.compile(r"\s*\[dot\]\s*", re.IGNORECASE), "."),
    (re.compile(r"\s*\{dot\}\s*", re.IGNORECASE), "."),
    # French
    (re.compile(r"\s*\(arobase\)\s*", re.IGNORECASE), "@"),
    (re.compile(r"\s*\barobase\b\s*", re.IGNORECASE), "@"),
    (re.compile(r"\s*\(point\)\s*", re.IGNORECASE), "."),
    (re.compile(r"\s*\bpoint\s+", re.IGNORECASE), "."),
    # German
    (re.compile(r"\s*\(Klammeraffe\)\s*", re.IGNORECASE), "@"),
    (re.compile(r"\s*\bKlammeraffe\b\s*", re.IGNORECASE), "@"),
    (re.compile(r"\s*\(Punkt\)\s*", re.IGNORECASE), "."),
]

PHONE_PATTERNS: List[Tuple[Pattern[str], Replacement]] = [
    (re.compile(r"(\+\d{1,3})\s*\(0\)\s*"), lambda m: f"{m.group(1)} "),
]


@dataclass(frozen=True)
class TextNormalizerOptions:
    handle_emails: bool = True
    handle_phones: bool = True
    normalize_unicode: bool = True
    normalize_whitespace: bool = True
    normalization_form: str = "NFKC"


class TextNormalizer:
    """Normalizes text while tracking an index map to original offsets.

    The normalizer is stateless apart from its options and never raises:
    empty input returns an empty result.
    """

    def __init__(self, options: TextNormalizerOptions = None):
        self.options = options or TextNormalizerOptions()

    def normalize(self, text: str) -> NormalizationResult:
        """Normalizes text and builds the index map.

        Args:
            text: Raw input text

        Returns:
            NormalizationResult where index_map[i] is the original index of
            normalized character i
        """
        if not text:
            return NormalizationResult(normalized_text="", index_map=[])

        if self.options.normalize_unicode:
            current, index_map = self._apply_unicode_normalization(text)
        else:
            current, index_map = text, list(range(len(text)))

        if self.options.normalize_whitespace:
            current, index_map = self._apply_whitespace_normalization(
                current, index_map
            )

        if self.options.handle_emails:
            current, index_map = self._apply_patterns(
                current, index_map, EMAIL_PATTERNS
            )

        if self.options.handle_phones:
            current, index_map = self._apply_patterns(
                current, index_map, PHONE_PATTERNS
            )

        if len(current) != len(text):
            logger.debug(
                "Text normalized",
                extra={"original_length": len(text), "normalized_length": len(current)},
            )

        return NormalizationResult(normalized_text=current, index_map=index_map)

    @staticmethod
    def map_span(start: int, end: int, index_map: List[int]) -> Tuple[int, int]:
        """Maps a normalized span [start, end) to [index_map[start], index_map[end - 1] + 1).

        Out-of-range positions are clamped to the text boundaries. An empty
        map returns the span unchanged. Combining marks that followed the
        last mapped character are not included; callers holding the
        original text extend the end with ``extend_over_marks``.
        """
        if not index_map:
            return start, end

        last = len(index_map) - 1
        mapped_start = index_map[min(max(start, 0), last)]

        if end <= 0:
            mapped_end = 0
        elif end > len(index_map):
            mapped_end = index_map[last] + 1
        else:
            mapped_end = index_map[end - 1] + 1

        return mapped_start, max(mapped_start, mapped_end)

    @staticmethod
    def extend_over_marks(original_text: str, end: int) -> int:
        """Moves end past combining marks composed into the preceding character."""
        while end < len(original_text) and unicodedata.combining(original_text[end]):
            end += 1
        return end

    def _apply_unicode_normalization(self, text: str) -> Tuple[str, List[int]]:
        form = self.options.normalization_form
        normalized = unicodedata.normalize(form, text)

        if normalized == text:
            return text, list(range(len(text)))

        # Normalize per cluster (base character plus combining marks) so that
        # composition never crosses a mapped boundary.
        pieces: List[str] = []
        index_map: List[int] = []
        cluster_start = 0
        for i in range(1, len(text) + 1):
            if i < len(text) and unicodedata.combining(text[i]):
                continue
            piece = unicodedata.normalize(form, text[cluster_start:i])
            pieces.append(piece)
            index_map.extend([cluster_start] * len(piece))
            cluster_start = i

        return "".join(pieces), index_map

    @staticmethod
    def _apply_whitespace_normalization(
        text: str, input_map: List[int]
    ) -> Tuple[str, List[int]]:
        chars: List[str] = []
        index_map: List[int] = []

        for i, char in enumerate(text):
            if char in ZERO_WIDTH_CHARS:
                continue
            chars.append(" " if char in NBSP_CHARS else char)
            index_map.append(input_map[i])

        return "".join(chars), index_map

    @staticmethod
    def _apply_patterns(
        text: str,
        input_map: List[int],
        patterns: List[Tuple[Pattern[str], Replacement]],
    ) -> Tuple[str, List[int]]:
        """Applies replacement patterns, re-pointing new characters at the match start."""
        for pattern, replacement in patterns:
            matches = list(pattern.finditer(text))
            if not matches:
                continue

            chars: List[str] = []
            index_map: List[int] = []
            cursor = 0
            for match in matches:
                start, end = match.span()
                if start == end:
                    continue
                chars.append(text[cursor:start])
                index_map.extend(input_map[cursor:start])

                new_text = (
                    replacement(match) if callable(replacement) else replacement
                )
                chars.append(new_text)
                index_map.extend([input_map[start]] * len(new_text))
                cursor = end

            chars.append(text[cursor:])
            index_map.extend(input_map[cursor:])
            text, input_map = "".join(chars), index_map

        return text, input_map
