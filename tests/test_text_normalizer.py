"""Tests for pii_detection/preprocessing/text_normalizer.py."""
import pytest

from pii_detection.preprocessing.text_normalizer import TextNormalizer, TextNormalizerOptions


@pytest.fixture
def normalizer() -> TextNormalizer:
    return TextNormalizer()


def _roundtrip(normalizer: TextNormalizer, original: str, start: int, end: int) -> str:
    """Maps a normalized span back and returns the original substring."""
    result = normalizer.normalize(original)
    s, e = TextNormalizer.map_span(start, end, result.index_map)
    return original[s:e]


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------


def test_plain_text_is_unchanged(normalizer):
    result = normalizer.normalize("Hello world")
    assert result.normalized_text == "Hello world"
    assert result.index_map == list(range(11))


def test_empty_text(normalizer):
    result = normalizer.normalize("")
    assert result.normalized_text == ""
    assert result.index_map == []


def test_index_map_length_matches_text(normalizer):
    text = "ﬁle\u200b an\u00a0Müller (at) firma (dot) ch, +41 (0) 44 123 45 67"
    result = normalizer.normalize(text)
    assert len(result.index_map) == len(result.normalized_text)
    assert all(0 <= i < len(text) for i in result.index_map)


# ---------------------------------------------------------------------------
# Unicode and whitespace
# ---------------------------------------------------------------------------


def test_fullwidth_characters_are_folded(normalizer):
    result = normalizer.normalize("ＡＢＣ")
    assert result.normalized_text == "ABC"
    assert result.index_map == [0, 1, 2]


def test_ligature_expands_to_two_characters_of_one_origin(normalizer):
    result = normalizer.normalize("ﬁle")
    assert result.normalized_text == "file"
    assert result.index_map == [0, 0, 1, 2]


def test_combining_mark_is_composed(normalizer):
    result = normalizer.normalize("Cafe\u0301 Bar")
    assert result.normalized_text == "Caf\u00e9 Bar"
    assert TextNormalizer.map_span(0, 4, result.index_map) == (0, 4)
    # The composed mark is recovered from the original text
    assert TextNormalizer.extend_over_marks("Cafe\u0301 Bar", 4) == 5


def test_zero_width_characters_are_removed(normalizer):
    result = normalizer.normalize("a\u200bb\ufeffc")
    assert result.normalized_text == "abc"
    assert result.index_map == [0, 2, 4]


def test_non_breaking_spaces_become_spaces(normalizer):
    result = normalizer.normalize("CHF\u00a0100\u202f000")
    assert result.normalized_text == "CHF 100 000"
    assert result.index_map == list(range(11))


# ---------------------------------------------------------------------------
# De-obfuscation
# ---------------------------------------------------------------------------


class TestEmailDeobfuscation:
    def test_english_brackets(self, normalizer):
        result = normalizer.normalize("john (at) example (dot) com")
        assert result.normalized_text == "john@example.com"

    def test_square_and_curly_brackets(self, normalizer):
        result = normalizer.normalize("john[at]example{dot}com")
        assert result.normalized_text == "john@example.com"

    def test_french_words(self, normalizer):
        result = normalizer.normalize("jean arobase exemple point fr")
        assert result.normalized_text == "jean@exemple.fr"

    def test_german_words(self, normalizer):
        result = normalizer.normalize("hans (Klammeraffe) beispiel (Punkt) de")
        assert result.normalized_text == "hans@beispiel.de"

    def test_span_maps_back_to_obfuscated_text(self, normalizer):
        original = "Mail: john (at) example (dot) com."
        result = normalizer.normalize(original)
        start = result.normalized_text.index("john")
        end = start + len("john@example.com")
        assert _roundtrip(normalizer, original, start, end) == "john (at) example (dot) com"

    def test_disabled_by_option(self):
        normalizer = TextNormalizer(TextNormalizerOptions(handle_emails=False))
        assert normalizer.normalize("john (at) example").normalized_text == "john (at) example"


def test_phone_trunk_prefix_is_removed(normalizer):
    result = normalizer.normalize("Tel. +41 (0) 44 123 45 67")
    assert result.normalized_text == "Tel. +41 44 123 45 67"


def test_phone_span_maps_back(normalizer):
    original = "Tel. +41 (0) 44 123 45 67"
    result = normalizer.normalize(original)
    start = result.normalized_text.index("+41")
    assert _roundtrip(normalizer, original, start, len(result.normalized_text)) == "+41 (0) 44 123 45 67"


# ---------------------------------------------------------------------------
# map_span
# ---------------------------------------------------------------------------


class TestMapSpan:
    def test_empty_map_returns_span_unchanged(self):
        assert TextNormalizer.map_span(3, 7, []) == (3, 7)

    def test_out_of_range_is_clamped(self):
        assert TextNormalizer.map_span(-5, 100, [0, 1, 2]) == (0, 3)

    def test_split_inside_ligature_keeps_whole_origin(self):
        assert TextNormalizer.map_span(0, 1, [0, 0, 1, 2]) == (0, 1)

    def test_extend_over_marks_stops_at_base_characters(self):
        assert TextNormalizer.extend_over_marks("ab", 1) == 1
        assert TextNormalizer.extend_over_marks("ab", 2) == 2

    def test_end_never_precedes_start(self):
        start, end = TextNormalizer.map_span(2, 0, [0, 1, 2])
        assert end >= start

    def test_renormalizing_mapped_span_reproduces_characters(self, normalizer):
        original = "ＩＢＡＮ\u200b CH93"
        result = normalizer.normalize(original)
        start = result.normalized_text.index("CH93")
        end = start + 4
        s, e = TextNormalizer.map_span(start, end, result.index_map)
        assert normalizer.normalize(original[s:e]).normalized_text == "CH93"
