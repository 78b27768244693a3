# pii_detection/logic/document_classifier.py

"""Keyword and structure based document type classifier.

Scores each document type from three signals: weighted keyword hits in
the detected language, structural regexes (invoice numbers, salutations,
checkboxes, clause headings) and position boosts for elements that belong
at the top or bottom of a document.
"""

import re
import math
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from pii_detection.core.definitions import DocumentType, SUPPORTED_LANGUAGES, DEFAULT_LANGUAGE
from pii_detection.core.domain import ClassificationFeature, DocumentClassification
from pii_detection.core.loader import PatternLoader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentClassifierConfig:
    min_confidence: float = 0.25
    detect_language: bool = True
    analyze_structure: bool = True
    max_possible_score: float = 3.0
    secondary_threshold: float = 0.2
    max_features: int = 10


class DocumentClassifier:
    """Classifies documents into INVOICE, LETTER, FORM, CONTRACT or REPORT.

    Keyword and stop-word lists come from the packaged patterns.yaml; the
    structural patterns are compiled once at class level.
    """

    STRUCTURAL_WEIGHT = 0.15
    POSITION_LINES = 5

    STRUCTURAL_PATTERNS: Dict[str, List[Pattern[str]]] = {
        DocumentType.INVOICE: [
            re.compile(r"(?:invoice|rechnung|facture)\s*(?:no\.?|nr\.?|#|:)\s*[\w-]+", re.IGNORECASE),
            re.compile(r"(?:total|montant|betrag)\s*[:=]?\s*(?:chf|eur|usd|€|£|\$)?\s*[\d',.\s]+", re.IGNORECASE),
            re.compile(r"(?:qty|menge|quantité)\s+(?:unit|preis|prix)", re.IGNORECASE),
            re.compile(r"(?:chf|eur|usd)\s*[\d',.\s]+", re.IGNORECASE),
            re.compile(r"\d+[.,]\d{2}\s*(?:chf|eur|usd|€)", re.IGNORECASE),
        ],
        DocumentType.LETTER: [
            re.compile(r"^(?:dear|sehr geehrte[r]?|cher|chère|madame|monsieur)", re.IGNORECASE | re.MULTILINE),
            # Sign-off, optionally followed by the sender's name on the same line
            re.compile(
                r"(?:sincerely|regards|cordialement|grüße|grüssen|salutations)\b[ \t,]*(?:[^\W\d_][^\n]{0,40})?$",
                re.IGNORECASE | re.MULTILINE,
            ),
            re.compile(r"^(?:re:|betreff:|objet:|subject:)", re.IGNORECASE | re.MULTILINE),
            re.compile(r"(?:enclosed|anbei|ci-joint)", re.IGNORECASE),
        ],
        DocumentType.FORM: [
            re.compile(r"\[\s*\]|\(\s*\)|□|☐|☑|☒"),
            re.compile(r"(?:name|nom):\s*_{2,}|_{5,}", re.IGNORECASE),
            re.compile(r"(?:yes|no|oui|non|ja|nein)\s*(?:\[\s*\]|\(\s*\))", re.IGNORECASE),
            re.compile(r"please\s+(?:check|tick|fill|complete)", re.IGNORECASE),
            re.compile(r"\*\s*(?:required|obligatoire|pflichtfeld)", re.IGNORECASE),
        ],
        DocumentType.CONTRACT: [
            re.compile(r"(?:between|entre|zwischen)\s+(?:the\s+)?(?:parties|parteien|les parties)", re.IGNORECASE),
            re.compile(r"(?:article|clause|section)\s+\d+", re.IGNORECASE),
            re.compile(r"(?:whereas|attendu que|in anbetracht)", re.IGNORECASE),
            re.compile(r"(?:hereby|par les présentes|hiermit)\s+(?:agree|conviennent|vereinbaren)", re.IGNORECASE),
            re.compile(r"(?:witness|témoin|zeuge)\s+(?:whereof|de quoi)", re.IGNORECASE),
        ],
        DocumentType.REPORT: [
            re.compile(r"(?:table\s+of\s+contents|inhaltsverzeichnis|table\s+des\s+matières)", re.IGNORECASE),
            re.compile(r"(?:executive\s+summary|zusammenfassung|résumé)", re.IGNORECASE),
            re.compile(r"^(?:\d+\.|\d+\))\s+(?:introduction|methodology|results|conclusion)", re.IGNORECASE | re.MULTILINE),
            re.compile(r"(?:appendix|anhang|annexe)\s+[a-z\d]", re.IGNORECASE),
            re.compile(r"(?:figure|table|abbildung|tabelle)\s+\d+", re.IGNORECASE),
        ],
    }

    # (document type, feature name, zone, pattern, weight)
    POSITION_BOOSTS: List[Tuple[str, str, str, Pattern[str], float]] = [
        (DocumentType.INVOICE, "invoice_header", "head", re.compile(r"invoice|rechnung|facture"), 0.2),
        (DocumentType.LETTER, "salutation_start", "head", re.compile(r"dear|sehr geehrte|cher|madame|monsieur"), 0.2),
        (DocumentType.LETTER, "signature_end", "tail", re.compile(r"sincerely|regards|grüß|cordialement|salutations"), 0.15),
        (DocumentType.CONTRACT, "parties_clause", "head", re.compile(r"between|entre|zwischen.*(?:parties|parteien)"), 0.2),
        (DocumentType.REPORT, "toc_header", "head", re.compile(r"table of contents|inhaltsverzeichnis|table des matières"), 0.25),
    ]

    def __init__(self, config: Optional[DocumentClassifierConfig] = None):
        self.config = config or DocumentClassifierConfig()
        loader = PatternLoader.get_instance()
        self._keywords = self._compile_keywords(loader.get_classifier_keywords())
        self._stop_words = {
            language: [self._word_pattern(w) for w in words]
            for language, words in loader.get_stop_words().items()
        }

    def classify(self, text: str, language: Optional[str] = None) -> DocumentClassification:
        """Classifies a document.

        Args:
            text: Document text
            language: Optional language hint; skips language detection

        Returns:
            DocumentClassification, UNKNOWN when no type reaches min_confidence
        """
        if not text or not text.strip():
            return DocumentClassification(language=language or DEFAULT_LANGUAGE)

        lowered = text.lower()
        features: List[ClassificationFeature] = []
        scores: Dict[str, float] = {t: 0.0 for t in DocumentType.ALL if t != DocumentType.UNKNOWN}

        if language in SUPPORTED_LANGUAGES:
            lang = language
        elif self.config.detect_language:
            lang = self.detect_language(lowered)
        else:
            lang = DEFAULT_LANGUAGE

        self._score_keywords(lowered, lang, scores, features)
        if self.config.analyze_structure:
            self._score_structure(text, scores, features)
        self._apply_position_boosts(lowered, scores, features)

        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        primary_type, primary_score = ranked[0]
        secondary_type, secondary_score = ranked[1]

        confidence = min(primary_score / self.config.max_possible_score, 1.0)
        document_type = primary_type if confidence >= self.config.min_confidence else DocumentType.UNKNOWN

        features.sort(key=lambda f: f.weight, reverse=True)

        logger.debug(
            f"Document classified as {document_type}",
            extra={"confidence": round(confidence, 3), "language": lang, "feature_count": len(features)},
        )

        return DocumentClassification(
            document_type=document_type,
            confidence=confidence,
            secondary_type=secondary_type if secondary_score > self.config.secondary_threshold else None,
            language=lang,
            features=features[: self.config.max_features],
        )

    def detect_language(self, lowered_text: str) -> str:
        """Stop-word frequency vote over the supported languages; ties go to English."""
        best_language, best_score = DEFAULT_LANGUAGE, 0
        for language in SUPPORTED_LANGUAGES:
            score = sum(len(p.findall(lowered_text)) for p in self._stop_words.get(language, []))
            if score > best_score:
                best_language, best_score = language, score
        return best_language

    def is_type(self, text: str, document_type: str, min_confidence: float = 0.5) -> bool:
        classification = self.classify(text)
        return classification.document_type == document_type and classification.confidence >= min_confidence

    @staticmethod
    def get_applicable_rules(document_type: str) -> List[str]:
        return PatternLoader.get_instance().get_applicable_rules(document_type)

    @staticmethod
    def keyword_weight(keyword: str, match_count: int) -> float:
        """Longer keywords are more specific; repeated hits have diminishing returns."""
        length_factor = min(len(keyword) / 8, 1.5)
        count_factor = 1 + math.log2(match_count + 1) * 0.5
        return 0.08 * length_factor * count_factor

    def _score_keywords(
        self,
        lowered: str,
        language: str,
        scores: Dict[str, float],
        features: List[ClassificationFeature],
    ) -> None:
        for document_type, by_language in self._keywords.items():
            keywords = by_language.get(language) or by_language.get(DEFAULT_LANGUAGE, [])
            for keyword, pattern in keywords:
                matches = pattern.findall(lowered)
                if not matches:
                    continue
                weight = self.keyword_weight(keyword, len(matches))
                scores[document_type] += weight
                features.append(ClassificationFeature(name=f"keyword:{keyword}", weight=weight, match=matches[0]))

    def _score_structure(self, text: str, scores: Dict[str, float], features: List[ClassificationFeature]) -> None:
        for document_type, patterns in self.STRUCTURAL_PATTERNS.items():
            for pattern in patterns:
                match = pattern.search(text)
                if not match:
                    continue
                scores[document_type] += self.STRUCTURAL_WEIGHT
                features.append(
                    ClassificationFeature(
                        name=f"pattern:{document_type.lower()}",
                        weight=self.STRUCTURAL_WEIGHT,
                        match=match.group(0)[:50],
                        position=match.start() / len(text),
                    )
                )

    def _apply_position_boosts(
        self, lowered: str, scores: Dict[str, float], features: List[ClassificationFeature]
    ) -> None:
        lines = lowered.split("\n")
        zones = {
            "head": "\n".join(lines[: self.POSITION_LINES]),
            "tail": "\n".join(lines[-self.POSITION_LINES :]),
        }
        for document_type, name, zone, pattern, weight in self.POSITION_BOOSTS:
            if pattern.search(zones[zone]):
                scores[document_type] += weight
                features.append(
                    ClassificationFeature(
                        name=f"position:{name}", weight=weight, position=0.0 if zone == "head" else 1.0
                    )
                )

    def _compile_keywords(
        self, keywords: Dict[str, Dict[str, List[str]]]
    ) -> Dict[str, Dict[str, List[Tuple[str, Pattern[str]]]]]:
        compiled: Dict[str, Dict[str, List[Tuple[str, Pattern[str]]]]] = {}
        for document_type, by_language in keywords.items():
            if document_type not in DocumentType.ALL:
                logger.warning(f"Ignoring keywords for unknown document type {document_type}")
                continue
            compiled[document_type] = {
                language: [(str(kw).lower(), self._word_pattern(str(kw).lower())) for kw in words]
                for language, words in by_language.items()
            }
        return compiled

    @staticmethod
    def _word_pattern(word: str) -> Pattern[str]:
        # Lookarounds instead of \b so keywords ending in ':' or '/' still match
        return re.compile(rf"(?<!\w){re.escape(word)}(?!\w)")
