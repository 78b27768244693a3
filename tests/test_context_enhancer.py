"""Tests for pii_detection/context/context_enhancer.py and context_words.py."""
import pytest

from pii_detection.core.definitions import EntityType
from pii_detection.core.domain import ContextWord, Entity
from pii_detection.context.context_words import (
    get_context_words,
    get_negative_context_words,
    get_positive_context_words,
)


def _entity_at(text: str, value: str, entity_type: str, confidence: float = 0.5) -> Entity:
    start = text.index(value)
    return Entity(
        text=value,
        entity_type=entity_type,
        start=start,
        end=start + len(value),
        confidence=confidence,
    )


IBAN_TEXT = "IBAN: CH93 0076 2011 6238 5295 7"
IBAN_VALUE = "CH93 0076 2011 6238 5295 7"


# ---------------------------------------------------------------------------
# Boosts and penalties
# ---------------------------------------------------------------------------


class TestEnhance:
    def test_preceding_context_boosts(self, enhancer):
        entity = _entity_at(IBAN_TEXT, IBAN_VALUE, EntityType.IBAN)
        result = enhancer.enhance_with_details(entity, IBAN_TEXT, [ContextWord("iban")])

        assert result.entity.confidence == pytest.approx(0.85)
        assert result.context_found == ["iban"]
        assert result.boost_applied == pytest.approx(0.35)
        assert result.original_confidence == 0.5

    def test_following_context_weighs_less_than_preceding(self, enhancer):
        text = f"{IBAN_VALUE} is the IBAN"
        entity = _entity_at(text, IBAN_VALUE, EntityType.IBAN)

        enhanced = enhancer.enhance(entity, text, [ContextWord("iban")])

        assert enhanced.confidence == pytest.approx(0.5 + 0.8 / 1.2 * 0.35)
        assert enhanced.confidence < 0.85

    def test_negative_context_penalizes(self, enhancer):
        text = "placeholder: test@example.com"
        entity = _entity_at(text, "test@example.com", EntityType.EMAIL)

        enhanced = enhancer.enhance(
            entity, text, [ContextWord("placeholder", 1.0, "negative")]
        )

        assert enhanced.confidence == pytest.approx(0.15)

    def test_confidence_is_clamped_to_one(self, enhancer):
        entity = _entity_at(IBAN_TEXT, IBAN_VALUE, EntityType.IBAN, confidence=0.9)
        assert enhancer.enhance(entity, IBAN_TEXT, [ContextWord("iban")]).confidence == 1.0

    def test_lemma_match_without_substring_match(self, enhancer):
        text = "Entry: Dupont"
        entity = _entity_at(text, "Dupont", EntityType.PERSON)

        result = enhancer.enhance_with_details(entity, text, [ContextWord("entries")])

        assert result.context_found == ["entries"]
        assert result.entity.confidence > 0.5

    def test_weak_context_lifts_to_floor(self, enhancer):
        text = "client Dupont"
        entity = _entity_at(text, "Dupont", EntityType.PERSON, confidence=0.1)

        enhanced = enhancer.enhance(entity, text, [ContextWord("client", 0.2)])

        assert enhanced.confidence == pytest.approx(0.4)

    def test_context_outside_window_is_ignored(self, enhancer):
        text = "IBAN" + " filler" * 20 + " " + IBAN_VALUE
        entity = _entity_at(text, IBAN_VALUE, EntityType.IBAN)

        result = enhancer.enhance_with_details(entity, text, [ContextWord("iban")])

        assert result.context_found == []
        assert result.entity.confidence == 0.5


class TestMonotonic:
    WORDS = ["customer", "client", "holder", "owner", "signed", "contact", "name", "mister"]
    TEXT = "customer client holder owner signed contact name mister: Dupont"

    def test_each_added_positive_word_never_lowers_confidence(self, enhancer):
        entity = _entity_at(self.TEXT, "Dupont", EntityType.PERSON, confidence=0.3)

        previous = entity.confidence
        for count in range(1, len(self.WORDS) + 1):
            words = [ContextWord(word, 0.6) for word in self.WORDS[:count]]
            confidence = enhancer.enhance(entity, self.TEXT, words).confidence
            assert confidence >= previous
            assert confidence <= 0.3 + 0.35 + 1e-9
            previous = confidence

    def test_many_heavy_words_are_capped(self, enhancer):
        entity = _entity_at(self.TEXT, "Dupont", EntityType.PERSON, confidence=0.3)
        words = [ContextWord(word, 1.0) for word in self.WORDS]

        assert enhancer.enhance(entity, self.TEXT, words).confidence == pytest.approx(0.65)

    def test_words_appearing_in_text_one_at_a_time(self, enhancer):
        words = [ContextWord(word, 0.6) for word in self.WORDS]

        previous = 0.3
        for count in range(len(self.WORDS) + 1):
            text = " ".join(self.WORDS[:count]) + ": Dupont"
            entity = _entity_at(text, "Dupont", EntityType.PERSON, confidence=0.3)
            confidence = enhancer.enhance(entity, text, words).confidence
            assert previous <= confidence <= 0.3 + 0.35 + 1e-9
            previous = confidence


class TestSkips:
    def test_denied_entity_is_not_boosted(self, enhancer):
        text = "Name: Montant"
        entity = _entity_at(text, "Montant", EntityType.PERSON)

        result = enhancer.enhance_with_details(entity, text, [ContextWord("name")])

        assert result.skipped
        assert result.skip_reason == "Entity denied by DenyList"
        assert result.entity is entity

    def test_no_context_words_returns_entity_unchanged(self, enhancer):
        entity = _entity_at(IBAN_TEXT, IBAN_VALUE, EntityType.IBAN)
        result = enhancer.enhance_with_details(entity, IBAN_TEXT, [])
        assert result.entity == entity
        assert not result.skipped


def test_window_size_per_entity_type(enhancer):
    assert enhancer.window_size(EntityType.IBAN) == 40
    assert enhancer.window_size(EntityType.PERSON) == 150
    assert enhancer.window_size(EntityType.DATE) == 100


def test_enhance_all_keeps_order(enhancer):
    text = "IBAN: CH93 0076 2011 6238 5295 7, Montant"
    entities = [
        _entity_at(text, IBAN_VALUE, EntityType.IBAN),
        _entity_at(text, "Montant", EntityType.PERSON),
    ]
    enhanced = enhancer.enhance_all(entities, text, [ContextWord("iban")])
    assert [e.text for e in enhanced] == [IBAN_VALUE, "Montant"]
    assert enhanced[1].confidence == 0.5


# ---------------------------------------------------------------------------
# Context word lookup
# ---------------------------------------------------------------------------


class TestContextWords:
    def test_address_types_share_vocabulary(self):
        assert get_context_words(EntityType.SWISS_ADDRESS, "en") == get_context_words(
            EntityType.ADDRESS, "en"
        )

    def test_unknown_language_falls_back_to_english(self):
        assert get_context_words(EntityType.EMAIL, "it") == get_context_words(EntityType.EMAIL, "en")

    def test_polarity_split(self):
        positive = get_positive_context_words(EntityType.EMAIL, "en")
        negative = get_negative_context_words(EntityType.EMAIL, "en")
        assert positive and negative
        assert all(w.is_positive for w in positive)
        assert not any(w.is_positive for w in negative)
