# pii_detection/service/pipeline.py

"""Main detection service pipeline."""

import time
import logging
import threading
from collections import Counter
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from pii_detection.service.config import Settings, settings
from pii_detection.core.definitions import DetectionMode, DocumentType, SUPPORTED_LANGUAGES
from pii_detection.core.domain import DetectionResult, DocumentClassification, Entity, PassResult
from pii_detection.core.exceptions import (
    ConfigurationError,
    DetectionCancelled,
    InitializationError,
    PipelineError,
    ValidationError,
)
from pii_detection.context.context_enhancer import ContextEnhancer
from pii_detection.context.context_words import get_context_words
from pii_detection.context.deny_list import DenyList
from pii_detection.engine.merger import fuse
from pii_detection.engine.ner_detector import NerDetector
from pii_detection.engine.recognizers import RegexDetector
from pii_detection.logic.address_linker import AddressLinker
from pii_detection.logic.document_classifier import DocumentClassifier
from pii_detection.logic.rule_engine import RuleEngine
from pii_detection.logic.validators import FormatValidationPass, build_default_registry
from pii_detection.preprocessing.lemmatizer import Lemmatizer
from pii_detection.preprocessing.text_normalizer import TextNormalizer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


class CancellationToken:
    """Thread-safe flag checked by the pipeline between passes."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class _DocumentState:
    """Per-document values produced by one pass and read by later ones."""

    def __init__(self, text: str, language: Optional[str]):
        self.original_text = text
        self.text = text
        self.index_map: List[int] = []
        self.language = language
        self.mode = DetectionMode.FULL
        self.classification = DocumentClassification()


class DetectionPipeline:
    """Runs the detection passes over one document.

    Passes run sequentially on immutable entity lists. A pass that raises
    is logged and skipped; the entities from the previous pass carry on.
    The pipeline is synchronous and knows nothing about the worker that
    may be driving it.
    """

    # Pass names and the methods implementing them, in execution order
    STEPS: Tuple[Tuple[str, str], ...] = (
        ("normalization", "_normalize"),
        ("detection", "_detect"),
        ("context_enhancement", "_enhance_context"),
        ("deny_list_filter", "_filter_denied"),
        ("format_validation", "_validate_formats"),
        ("address_linking", "_link_addresses"),
        ("document_type", "_apply_document_rules"),
        ("offset_mapping", "_map_offsets"),
        ("deduplication", "_deduplicate"),
        ("sort", "_sort"),
    )
    PASSES = tuple(name for name, _ in STEPS)

    def __init__(
        self,
        normalizer: Optional[TextNormalizer],
        regex_detector: RegexDetector,
        ner_detector: Optional[NerDetector],
        context_enhancer: ContextEnhancer,
        deny_list: DenyList,
        validation_pass: FormatValidationPass,
        classifier: DocumentClassifier,
        rule_engine: RuleEngine,
        address_linker: Optional[AddressLinker] = None,
    ):
        self.normalizer = normalizer
        self.regex_detector = regex_detector
        self.ner_detector = ner_detector
        self.context_enhancer = context_enhancer
        self.deny_list = deny_list
        self.validation_pass = validation_pass
        self.classifier = classifier
        self.rule_engine = rule_engine
        self.address_linker = address_linker

    def process(
        self,
        text: str,
        document_id: Optional[str] = None,
        language: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DetectionResult:
        """Detects PII in a document.

        Args:
            text: Raw document text
            document_id: Caller-supplied identifier echoed in the metadata
            language: Optional language hint (en, fr, de)
            progress: Called with (percent, stage) after each pass
            cancel_token: Checked before each pass

        Returns:
            DetectionResult with offsets in original text coordinates

        Raises:
            DetectionCancelled: If cancel_token was tripped between passes
        """
        if not isinstance(text, str) or not text.strip():
            error = "Invalid input format" if not isinstance(text, str) else "Empty input provided"
            logger.warning(f"Malformed input: {error}", extra={"document_id": document_id})
            return DetectionResult(
                metadata={"error": error, "document_id": document_id, "pass_results": []}
            )

        started = time.perf_counter()
        hint = language.lower()[:2] if language else None
        state = _DocumentState(text, hint if hint in SUPPORTED_LANGUAGES else None)
        pass_results: List[PassResult] = []
        entities: List[Entity] = []

        steps: List[Tuple[str, Callable[[_DocumentState, List[Entity]], List[Entity]]]] = [
            (name, getattr(self, method)) for name, method in self.STEPS
        ]

        for index, (name, step) in enumerate(steps):
            if cancel_token is not None and cancel_token.is_cancelled:
                logger.info(f"Detection cancelled before {name}", extra={"document_id": document_id})
                raise DetectionCancelled(f"Detection cancelled before pass '{name}'")

            entities = self._run_pass(name, step, state, entities, pass_results)

            if progress is not None:
                self._report_progress(progress, int((index + 1) * 100 / len(steps)), name)

        flagged = sum(1 for e in entities if e.metadata.get("flagged_for_review"))
        total_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "Detection completed",
            extra={
                "document_id": document_id,
                "entity_count": len(entities),
                "text_length": len(text),
                "mode": state.mode,
                "duration_ms": round(total_ms, 2),
            },
        )

        return DetectionResult(
            entities=entities,
            document_type=state.classification.document_type,
            metadata={
                "document_id": document_id,
                "mode": state.mode,
                "language": state.language,
                "classification": state.classification,
                "pass_results": pass_results,
                "entity_counts": dict(Counter(e.entity_type for e in entities)),
                "flagged_count": flagged,
                "total_duration_ms": total_ms,
            },
        )

    def _run_pass(
        self,
        name: str,
        step: Callable[[_DocumentState, List[Entity]], List[Entity]],
        state: _DocumentState,
        entities: List[Entity],
        pass_results: List[PassResult],
    ) -> List[Entity]:
        started = time.perf_counter()
        try:
            result = step(state, entities)
        except DetectionCancelled:
            raise
        except Exception as e:
            logger.error(
                f"Pass '{name}' failed, keeping previous entities",
                exc_info=True,
                extra={"entity_count": len(entities)},
            )
            pass_results.append(
                PassResult(
                    pass_name=name,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    error=f"{type(e).__name__}: {e}",
                )
            )
            return entities

        added, modified, removed = self._diff(name, entities, result)
        pass_results.append(
            PassResult(
                pass_name=name,
                entities_added=added,
                entities_modified=modified,
                entities_removed=removed,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        )
        return result

    @staticmethod
    def _diff(name: str, before: List[Entity], after: List[Entity]) -> Tuple[int, int, int]:
        if name == "offset_mapping":
            # Spans move between coordinate spaces; compare position by position
            return 0, sum(1 for a, b in zip(before, after) if a != b), 0

        before_by_key = {e.key: e for e in before}
        after_by_key = {e.key: e for e in after}
        added = len(after_by_key.keys() - before_by_key.keys())
        removed = len(before_by_key.keys() - after_by_key.keys())
        modified = sum(
            1 for key, e in after_by_key.items() if key in before_by_key and before_by_key[key] != e
        )
        return added, modified, removed

    @staticmethod
    def _report_progress(progress: ProgressCallback, percent: int, stage: str) -> None:
        try:
            progress(percent, stage)
        except Exception:
            logger.warning(f"Progress callback failed at stage '{stage}'", exc_info=True)

    # Passes

    def _normalize(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        if self.normalizer is not None:
            normalized = self.normalizer.normalize(state.original_text)
            state.text = normalized.normalized_text
            state.index_map = normalized.index_map

        if state.language is None:
            state.language = self.classifier.detect_language(state.text.lower())
        return entities

    def _detect(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        regex_entities = self.regex_detector.detect(state.text)

        ml_entities: List[Entity] = []
        if self.ner_detector is None:
            state.mode = DetectionMode.REGEX_ONLY
        else:
            detected = self.ner_detector.detect(state.text)
            if detected is None:
                state.mode = DetectionMode.FALLBACK if self.ner_detector.available else DetectionMode.REGEX_ONLY
            else:
                ml_entities = detected

        return fuse(regex_entities, ml_entities)

    def _enhance_context(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        enhanced = []
        for entity in entities:
            words = get_context_words(entity.entity_type, state.language)
            enhanced.append(self.context_enhancer.enhance(entity, state.text, words, state.language))
        return enhanced

    def _filter_denied(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        return [
            e for e in entities if not self.deny_list.is_denied(e.text, e.entity_type, state.language)
        ]

    def _validate_formats(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        return self.validation_pass.apply(entities)

    def _link_addresses(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        if self.address_linker is None:
            return entities
        return self.address_linker.link(state.text, entities)

    def _apply_document_rules(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        state.classification = self.classifier.classify(state.text, state.language)
        return self.rule_engine.apply_rules(state.text, state.classification, entities)

    def _map_offsets(self, state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        if not state.index_map:
            return entities

        mapped = []
        for entity in entities:
            start, end = TextNormalizer.map_span(entity.start, entity.end, state.index_map)
            end = TextNormalizer.extend_over_marks(state.original_text, end)
            mapped.append(
                replace(entity, start=start, end=end, text=state.original_text[start:end])
            )
        return mapped

    @staticmethod
    def _deduplicate(state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        ranked = sorted(entities, key=lambda e: (-e.confidence, -e.length, e.start))
        kept: List[Entity] = []
        for entity in ranked:
            if not any(entity.overlaps(other) for other in kept):
                kept.append(entity)
        return kept

    @staticmethod
    def _sort(state: _DocumentState, entities: List[Entity]) -> List[Entity]:
        return sorted(entities, key=lambda e: (e.start, e.end))


@dataclass
class SharedComponents:
    """Heavy, read-only components shared by every pipeline."""

    normalizer: Optional[TextNormalizer]
    regex_detector: RegexDetector
    ner_detector: Optional[NerDetector]
    context_enhancer: ContextEnhancer
    deny_list: DenyList
    validation_pass: FormatValidationPass
    classifier: DocumentClassifier
    rule_engine: RuleEngine
    address_linker: Optional[AddressLinker] = None


def build_components(config: Settings) -> SharedComponents:
    """Builds the shared components from settings.

    Raises:
        InitializationError: If a component cannot be constructed.
    """
    try:
        deny_list = DenyList.from_file(config.deny_list_path) if config.deny_list_path else DenyList()
        ner_detector = None
        if config.enable_ner:
            ner_detector = NerDetector(
                model_name=config.spacy_model,
                timeout=config.ner_timeout_seconds,
                max_retries=config.ner_max_retries,
                default_score=config.ner_default_score,
                threshold=config.ner_confidence_threshold,
            )

        return SharedComponents(
            normalizer=TextNormalizer() if config.enable_normalization else None,
            regex_detector=RegexDetector(score=config.rule_confidence),
            ner_detector=ner_detector,
            context_enhancer=ContextEnhancer(deny_list=deny_list, lemmatizer=Lemmatizer()),
            deny_list=deny_list,
            validation_pass=FormatValidationPass(build_default_registry()),
            classifier=DocumentClassifier(),
            rule_engine=RuleEngine.from_file(config.rules_path),
            address_linker=AddressLinker() if config.enable_address_linking else None,
        )
    except ConfigurationError:
        raise
    except Exception as e:
        raise InitializationError(f"Failed to build detection components: {e}") from e


class DetectionService:
    """Singleton holder of the shared detection components.

    Manages component lifecycle and hands out lightweight per-document
    pipelines built on top of them.
    """

    _instance: Optional[SharedComponents] = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> SharedComponents:
        """Returns the shared components, building them on first use.

        Raises:
            InitializationError: If component initialization fails
        """
        if cls._instance is None:
            with cls._lock:
                # Double-checked locking pattern
                if cls._instance is None:
                    try:
                        logger.info("Initializing detection components")
                        cls._instance = build_components(settings)
                        logger.info("Detection components initialized successfully")

                    except Exception as e:
                        logger.error("Failed to initialize detection components", exc_info=True)
                        if isinstance(e, (InitializationError, ConfigurationError)):
                            raise
                        raise InitializationError("Detection component initialization failed") from e

        return cls._instance

    @classmethod
    def create_pipeline(cls, enable_ner: Optional[bool] = None) -> DetectionPipeline:
        """Creates a pipeline over the shared components.

        Args:
            enable_ner: Overrides settings.enable_ner for this pipeline only
        """
        components = cls.get_instance()
        ner_detector = components.ner_detector if enable_ner is not False else None
        return DetectionPipeline(
            normalizer=components.normalizer,
            regex_detector=components.regex_detector,
            ner_detector=ner_detector,
            context_enhancer=components.context_enhancer,
            deny_list=components.deny_list,
            validation_pass=components.validation_pass,
            classifier=components.classifier,
            rule_engine=components.rule_engine,
            address_linker=components.address_linker,
        )

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            if cls._instance is not None and cls._instance.ner_detector is not None:
                cls._instance.ner_detector.shutdown()
            cls._instance = None


def detect_pii(
    text: str,
    document_id: Optional[str] = None,
    language: Optional[str] = None,
    enable_ner: Optional[bool] = None,
) -> DetectionResult:
    """Main entry point for PII detection.

    Args:
        text: Input text to scan
        document_id: Optional identifier echoed in the result metadata
        language: Optional language hint (en, fr, de)
        enable_ner: Overrides settings.enable_ner for this call

    Returns:
        DetectionResult with entities in original coordinates.
        On failure, returns a result indicating the error safely.
    """
    if not text:
        logger.warning("Empty text provided for detection")
        return DetectionResult(metadata={"error": "Empty input provided", "document_id": document_id})

    if not isinstance(text, str):
        logger.error(f"Invalid input type received: {type(text)}")
        return DetectionResult(metadata={"error": "Invalid input format", "document_id": document_id})

    try:
        pipeline = DetectionService.create_pipeline(enable_ner=enable_ner)

        logger.info(
            "Starting detection request",
            extra={"text_length": len(text), "document_id": document_id, "language": language},
        )

        return pipeline.process(text, document_id=document_id, language=language)

    except (InitializationError, ConfigurationError, PipelineError, ValidationError) as e:
        # Known errors: log with context but hide internal details in the response
        logger.error(
            f"Known error during detection: {type(e).__name__}",
            exc_info=True,
            extra={"text_length": len(text)},
        )
        return DetectionResult(
            document_type=DocumentType.UNKNOWN,
            metadata={
                "error": "The detection service encountered a processing error.",
                "status": "failed",
                "error_type": type(e).__name__,
                "document_id": document_id,
            },
        )

    except Exception:
        # Catch-all for unexpected bugs
        logger.error(
            "Unexpected critical error in detection pipeline",
            exc_info=True,
            extra={"text_length": len(text)},
        )
        return DetectionResult(
            metadata={
                "error": "An unexpected system error occurred.",
                "status": "failed",
                "document_id": document_id,
            },
        )
