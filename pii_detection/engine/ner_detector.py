# pii_detection/engine/ner_detector.py

"""spaCy named entity detection with a timeout and retries.

The model is loaded lazily on first use. A model that cannot be loaded
switches the detector to regex-only mode for the process lifetime; an
inference failure or timeout only affects the current document, which
then runs in fallback mode.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Any, Dict, List, NamedTuple, Optional

import spacy

from pii_detection.core.definitions import EntityType
from pii_detection.core.domain import Entity
from pii_detection.core.exceptions import InferenceError
from pii_detection.engine.merger import merge_subword_tokens

logger = logging.getLogger(__name__)

# Model labels mapped to entity types; anything else (MISC, DATE, ...) is ignored
LABEL_MAPPING: Dict[str, str] = {
    "PER": EntityType.PERSON,
    "PERSON": EntityType.PERSON,
    "ORG": EntityType.ORGANIZATION,
    "LOC": EntityType.LOCATION,
    "GPE": EntityType.LOCATION,
}


class NerToken(NamedTuple):
    """A B-/I- tagged token emitted by the NER model."""

    text: str
    label: str
    start: int
    end: int
    score: float

    @property
    def prefix(self) -> str:
        return self.label.partition("-")[0]

    @property
    def entity_type(self) -> str:
        return self.label.partition("-")[2]


class NerDetector:
    """Runs a spaCy pipeline and converts its entities to domain entities.

    Thread-safe: the model is loaded once under a lock and inference is
    dispatched to a shared executor so a timeout can be enforced.
    """

    def __init__(
        self,
        model_name: str = "xx_ent_wiki_sm",
        timeout: float = 30.0,
        max_retries: int = 1,
        default_score: float = 0.85,
        threshold: float = 0.3,
    ):
        self.model_name = model_name
        self.timeout = timeout
        self.max_retries = max_retries
        self.default_score = default_score
        self.threshold = threshold
        # spaCy gives every entity the same score, so the threshold either keeps or drops all of them
        self._below_threshold = default_score < threshold
        if self._below_threshold:
            logger.warning(
                f"NER default score {default_score} is below threshold {threshold}, NER entities will be discarded"
            )

        self._nlp: Any = None
        self._unavailable = False
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(thread_name_prefix="ner")

    @property
    def available(self) -> bool:
        """False once model loading has failed."""
        if self._nlp is None and not self._unavailable:
            self.load()
        return not self._unavailable

    def load(self) -> bool:
        """Loads the spaCy model once.

        Returns:
            True if the model is ready, False if NER is unavailable
        """
        if self._nlp is not None:
            return True
        if self._unavailable:
            return False

        with self._lock:
            if self._nlp is None and not self._unavailable:
                try:
                    logger.info(f"Loading spaCy model '{self.model_name}'")
                    self._nlp = spacy.load(self.model_name)
                    logger.info(
                        f"Loaded spaCy model '{self.model_name}'",
                        extra={"pipe_names": list(self._nlp.pipe_names)},
                    )
                except OSError:
                    logger.error(
                        f"SpaCy model '{self.model_name}' not found, continuing with regex detection only",
                        exc_info=True,
                    )
                    self._unavailable = True

        return self._nlp is not None

    def detect(self, text: str) -> Optional[List[Entity]]:
        """Detects named entities in text.

        Args:
            text: Normalized text

        Returns:
            ML entities, or None when the model is unavailable or inference
            failed for this document
        """
        if not text:
            return []
        if not self.load():
            return None

        try:
            tokens = self.tag(text)
        except InferenceError as e:
            logger.warning(f"NER inference failed, using fallback mode: {e}", extra={"text_length": len(text)})
            return None

        entities = merge_subword_tokens(tokens, text)
        logger.debug(f"NER found {len(entities)} entities", extra={"token_count": len(tokens)})
        return entities

    def tag(self, text: str) -> List[NerToken]:
        """Runs the model and returns B-/I- tagged tokens of mapped types.

        Raises:
            InferenceError: If every attempt failed or timed out.
        """
        tokens: List[NerToken] = []
        if self._below_threshold:
            return tokens

        doc = self._run_with_retries(text)
        for token in doc:
            if token.ent_iob_ not in ("B", "I"):
                continue
            entity_type = LABEL_MAPPING.get(token.ent_type_)
            if entity_type is None:
                continue
            tokens.append(
                NerToken(
                    text=token.text,
                    label=f"{token.ent_iob_}-{entity_type}",
                    start=token.idx,
                    end=token.idx + len(token.text),
                    score=self.default_score,
                )
            )
        return tokens

    def _run_with_retries(self, text: str) -> Any:
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_retries + 1):
            future = self._executor.submit(self._nlp, text)
            try:
                return future.result(timeout=self.timeout)
            except FuturesTimeoutError as e:
                future.cancel()
                last_error = e
                logger.warning(
                    f"NER timed out after {self.timeout}s",
                    extra={"attempt": attempt + 1, "text_length": len(text)},
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    f"NER attempt failed: {type(e).__name__}",
                    extra={"attempt": attempt + 1, "text_length": len(text)},
                )

        raise InferenceError(f"NER failed after {self.max_retries + 1} attempts") from last_error

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
