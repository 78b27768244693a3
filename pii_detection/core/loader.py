# pii_detection/core/loader.py

"""Loader for the packaged detection data (patterns, context words, vocabularies)."""

import yaml
import logging
import threading
from pathlib import Path
from typing import Dict, List, Any, Optional

from pii_detection.core.domain import ContextWord
from pii_detection.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class PatternLoader:
    """Singleton loader for regex patterns, context words and classifier data.

    Loads configuration once from patterns.yaml and caches it for the
    application lifecycle. Thread-safe for concurrent requests.
    """

    _instance: Optional["PatternLoader"] = None
    _lock = threading.Lock()
    _config: Dict[str, Any] = {}
    _loaded: bool = False
    _context_words: Dict[str, Dict[str, List[ContextWord]]] = {}

    def __new__(cls) -> "PatternLoader":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not PatternLoader._loaded:
            with PatternLoader._lock:
                if not PatternLoader._loaded:
                    self._load_config()

    def _load_config(self) -> None:
        """Loads patterns.yaml from the module directory.

        Raises:
            ConfigurationError: If file is missing, invalid, or empty.
        """
        try:
            config_path = Path(__file__).parent / "patterns.yaml"

            if not config_path.exists():
                error_msg = f"Configuration file not found: {config_path}"
                logger.error(error_msg)
                raise ConfigurationError(error_msg)

            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if not config:
                raise ConfigurationError("Configuration file is empty or invalid")

            PatternLoader._config = config
            self._validate_config()

            # Pre-build context word objects for fast access
            PatternLoader._context_words = {
                entity_type: {
                    language: [
                        ContextWord(word=str(word), weight=float(weight), polarity=polarity)
                        for word, weight, polarity in entries
                    ]
                    for language, entries in by_language.items()
                }
                for entity_type, by_language in config["context_words"].items()
            }

            PatternLoader._loaded = True
            logger.info(
                "Configuration loaded successfully",
                extra={
                    "config_path": str(config_path),
                    "pattern_count": len(config.get("patterns", {})),
                    "context_types": len(PatternLoader._context_words),
                },
            )

        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error: {e}", exc_info=True)
            raise ConfigurationError(f"Failed to parse patterns.yaml: {e}") from e
        except Exception as e:
            if isinstance(e, ConfigurationError):
                raise
            logger.error(f"Configuration loading failed: {e}", exc_info=True)
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def _validate_config(self) -> None:
        """Validates required configuration sections exist.

        Raises:
            ConfigurationError: If required sections are missing.
        """
        required_sections = ["patterns", "context_words", "classifier"]
        missing = [s for s in required_sections if s not in PatternLoader._config]

        if missing:
            error_msg = f"Missing required configuration sections: {missing}"
            logger.error(error_msg)
            raise ConfigurationError(error_msg)

    @classmethod
    def get_instance(cls) -> "PatternLoader":
        """Returns the singleton instance of PatternLoader."""
        if cls._instance is None or not cls._loaded:
            cls._instance = cls()
        return cls._instance

    def get_patterns(self, entity_type: str) -> List[Dict[str, Any]]:
        """Returns regex patterns for a specific entity type.

        Args:
            entity_type: Entity type constant (e.g., EntityType.IBAN)

        Returns:
            List of pattern dictionaries with 'name', 'regex', 'score' keys
        """
        patterns = self._config.get("patterns", {}).get(entity_type, [])
        return patterns if patterns else []

    def get_context_words(self, entity_type: str, language: str) -> List[ContextWord]:
        """Returns context words for an entity type in one language.

        Args:
            entity_type: Key in the context_words section (e.g., 'PERSON')
            language: Two-letter language code

        Returns:
            List of ContextWord, empty list if the type or language is unknown
        """
        by_language = self._context_words.get(entity_type, {})
        return list(by_language.get(language, []))

    def get_classifier_keywords(self) -> Dict[str, Dict[str, List[str]]]:
        """Returns keyword lists keyed by document type and language."""
        return self._config.get("classifier", {}).get("keywords", {})

    def get_stop_words(self) -> Dict[str, List[str]]:
        """Returns language voting stop words keyed by language."""
        return self._config.get("classifier", {}).get("stop_words", {})

    def get_applicable_rules(self, document_type: str) -> List[str]:
        rules = (
            self._config.get("classifier", {})
            .get("applicable_rules", {})
            .get(document_type, [])
        )
        return rules if rules else []
