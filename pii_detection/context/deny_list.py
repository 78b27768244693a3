# pii_detection/context/deny_list.py

"""Deny-list of known false positives.

Three scopes are checked in order: global, per entity type and per language.
Each scope holds a lowercase string set and a list of compiled regexes.
The active configuration is an immutable snapshot; runtime additions build
a new snapshot and swap it in atomically.
"""

import re
import json
import yaml
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Literal, Optional, Pattern, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from pii_detection.core.definitions import EntityType
from pii_detection.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DenyEntry = Union[str, Pattern[str]]

GLOBAL_SCOPE = "global"

DEFAULT_GLOBAL: List[DenyEntry] = [
    # French invoice labels
    "Montant", "Libellé", "Description", "Quantité", "Prix", "Total",
    "Sous-total", "TVA", "Rabais", "Réduction", "Référence", "Numéro",
    "Facture", "Client", "Fournisseur", "Désignation", "Unité", "Remise",
    "HT", "TTC",
    # German invoice labels
    "Beschreibung", "Betrag", "Menge", "Preis", "Summe", "MwSt",
    "Zwischensumme", "Rabatt", "Referenz", "Nummer", "Rechnung", "Kunde",
    "Lieferant", "Bezeichnung", "Einheit", "Netto", "Brutto",
    # English invoice labels
    "Amount", "Quantity", "Price", "Subtotal", "Tax", "Discount",
    "Reference", "Number", "Invoice", "Customer", "Supplier", "Unit", "Net",
    "Gross", "Date", "Datum",
]

DEFAULT_BY_ENTITY_TYPE: Dict[str, List[DenyEntry]] = {
    EntityType.PERSON: [
        re.compile(r"^[A-Z]{2,4}$"),
        re.compile(r"^\d+$"),
        re.compile(r"^(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)$", re.IGNORECASE),
        re.compile(r"^(Mon|Tue|Wed|Thu|Fri|Sat|Sun)$", re.IGNORECASE),
        re.compile(r"^(Janv|Févr|Mars|Avr|Mai|Juin|Juil|Août|Sept|Oct|Nov|Déc)$", re.IGNORECASE),
        re.compile(r"^(Jan|Feb|Mär|Apr|Mai|Jun|Jul|Aug|Sep|Okt|Nov|Dez)$", re.IGNORECASE),
        re.compile(
            r"\b(Ltd|AG|SA|GmbH|Inc|Corp|LLC|Sàrl|SARL|Cie|KG|OHG|SE|NV|BV|Plc)\.?$",
            re.IGNORECASE,
        ),
        re.compile(
            r"^(Via|Viale|Piazza|Corso|Vicolo|Largo|Rue|Avenue|Boulevard|Chemin|Route"
            r"|Place|Allée|Strasse|Straße|Gasse|Weg|Platz|Allee)\b",
            re.IGNORECASE,
        ),
        re.compile(
            r"\b(Holding|Group|Technologies|Services|Solutions|Systems|Consulting"
            r"|Partners|Associates|Foundation|Institute|Bank)\s*$",
            re.IGNORECASE,
        ),
        re.compile(
            r"^(Case|Notre|Votre|Services|Gestion|Module|Données|Coordonnées)\s",
            re.IGNORECASE,
        ),
    ],
    EntityType.ORGANIZATION: [],
}

DEFAULT_BY_LANGUAGE: Dict[str, List[DenyEntry]] = {"en": [], "fr": [], "de": []}

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
}


class PatternEntryModel(BaseModel):
    """A regex (or literal) deny-list entry in a config file."""

    pattern: str
    type: Literal["string", "regex"] = "regex"
    flags: str = ""


EntryModel = Union[str, PatternEntryModel]


class DenyListFileModel(BaseModel):
    """Schema of a deny-list configuration file (YAML or JSON)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: str = "1.0.0"
    global_: List[EntryModel] = Field(default_factory=list, alias="global")
    by_entity_type: Dict[str, List[EntryModel]] = Field(
        default_factory=dict, alias="byEntityType"
    )
    by_language: Dict[str, List[EntryModel]] = Field(
        default_factory=dict, alias="byLanguage"
    )


def compile_entry(entry: EntryModel) -> DenyEntry:
    """Turns a config entry into a literal string or a compiled regex.

    Raises:
        ConfigurationError: If the regex or its flags are invalid.
    """
    if isinstance(entry, str):
        return entry
    if entry.type == "string":
        return entry.pattern

    flags = 0
    for flag in entry.flags:
        if flag not in _FLAG_MAP:
            raise ConfigurationError(f"Unsupported regex flag '{flag}' in deny-list entry")
        flags |= _FLAG_MAP[flag]

    try:
        return re.compile(entry.pattern, flags)
    except re.error as e:
        raise ConfigurationError(f"Invalid deny-list regex '{entry.pattern}': {e}") from e


def _split(entries: Iterable[DenyEntry]) -> Tuple[FrozenSet[str], Tuple[Pattern[str], ...]]:
    strings = frozenset(e.lower() for e in entries if isinstance(e, str))
    regexes = tuple(e for e in entries if not isinstance(e, str))
    return strings, regexes


@dataclass(frozen=True)
class DenyListConfig:
    """Immutable snapshot of the deny-list with precomputed lookups."""

    global_entries: Tuple[DenyEntry, ...] = ()
    by_entity_type: Dict[str, Tuple[DenyEntry, ...]] = field(default_factory=dict)
    by_language: Dict[str, Tuple[DenyEntry, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_global", _split(self.global_entries))
        object.__setattr__(
            self, "_types", {k: _split(v) for k, v in self.by_entity_type.items()}
        )
        object.__setattr__(
            self, "_languages", {k: _split(v) for k, v in self.by_language.items()}
        )

    @classmethod
    def default(cls) -> "DenyListConfig":
        return cls.build(DEFAULT_GLOBAL, DEFAULT_BY_ENTITY_TYPE, DEFAULT_BY_LANGUAGE)

    @classmethod
    def build(
        cls,
        global_entries: Iterable[DenyEntry],
        by_entity_type: Dict[str, Iterable[DenyEntry]],
        by_language: Dict[str, Iterable[DenyEntry]],
    ) -> "DenyListConfig":
        return cls(
            global_entries=tuple(global_entries),
            by_entity_type={k: tuple(v) for k, v in by_entity_type.items()},
            by_language={k: tuple(v) for k, v in by_language.items()},
        )

    @classmethod
    def from_model(cls, model: DenyListFileModel) -> "DenyListConfig":
        return cls.build(
            [compile_entry(e) for e in model.global_],
            {k: [compile_entry(e) for e in v] for k, v in model.by_entity_type.items()},
            {k: [compile_entry(e) for e in v] for k, v in model.by_language.items()},
        )

    def with_entry(self, entry: DenyEntry, scope: str) -> "DenyListConfig":
        """Returns a new snapshot with one entry added to a global or type scope."""
        if scope == GLOBAL_SCOPE:
            return DenyListConfig(
                global_entries=self.global_entries + (entry,),
                by_entity_type=self.by_entity_type,
                by_language=self.by_language,
            )
        by_type = dict(self.by_entity_type)
        by_type[scope] = by_type.get(scope, ()) + (entry,)
        return DenyListConfig(
            global_entries=self.global_entries,
            by_entity_type=by_type,
            by_language=self.by_language,
        )

    def with_language_entry(self, entry: DenyEntry, language: str) -> "DenyListConfig":
        by_language = dict(self.by_language)
        by_language[language] = by_language.get(language, ()) + (entry,)
        return DenyListConfig(
            global_entries=self.global_entries,
            by_entity_type=self.by_entity_type,
            by_language=by_language,
        )

    def is_denied(
        self, text: str, entity_type: Optional[str] = None, language: Optional[str] = None
    ) -> bool:
        stripped = text.strip()
        lower = stripped.lower()

        scopes = [self._global]
        if entity_type and entity_type in self._types:
            scopes.append(self._types[entity_type])
        if language and language in self._languages:
            scopes.append(self._languages[language])

        for strings, regexes in scopes:
            if lower in strings:
                return True
            if any(regex.search(stripped) for regex in regexes):
                return True
        return False

    def patterns_for(
        self, entity_type: Optional[str] = None, language: Optional[str] = None
    ) -> List[DenyEntry]:
        patterns = list(self.global_entries)
        if entity_type:
            patterns.extend(self.by_entity_type.get(entity_type, ()))
        if language:
            patterns.extend(self.by_language.get(language, ()))
        return patterns


class DenyList:
    """Holder of the active deny-list snapshot.

    Reads are lock-free against an immutable snapshot; mutations build a
    new snapshot under a lock and replace the reference in one assignment.
    """

    def __init__(self, config: Optional[DenyListConfig] = None):
        self._config = config or DenyListConfig.default()
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DenyList":
        """Loads a deny-list file, falling back to the embedded defaults.

        Args:
            path: YAML or JSON file with global/byEntityType/byLanguage sections

        Returns:
            DenyList using the file contents, or the defaults if the file
            is missing or invalid
        """
        try:
            return cls(load_deny_list_config(path))
        except ConfigurationError as e:
            logger.warning(
                f"Deny-list file unusable, using defaults: {e}",
                extra={"deny_list_path": str(path)},
            )
            return cls()

    @property
    def config(self) -> DenyListConfig:
        return self._config

    def is_denied(
        self, text: str, entity_type: Optional[str] = None, language: Optional[str] = None
    ) -> bool:
        """Checks whether text is a known false positive.

        Args:
            text: Candidate entity text (trimmed before the check)
            entity_type: Entity type scope to consult
            language: Language scope to consult

        Returns:
            True if any applicable scope matches
        """
        return self._config.is_denied(text, entity_type, language)

    def add_pattern(self, pattern: DenyEntry, scope: str = GLOBAL_SCOPE) -> None:
        """Adds a string or compiled regex to the global or an entity type scope."""
        with self._lock:
            self._config = self._config.with_entry(pattern, scope)
        logger.info("Deny-list pattern added", extra={"scope": scope})

    def add_language_pattern(self, pattern: DenyEntry, language: str) -> None:
        with self._lock:
            self._config = self._config.with_language_entry(pattern, language)
        logger.info("Deny-list language pattern added", extra={"language": language})

    def replace_config(self, config: DenyListConfig) -> None:
        with self._lock:
            self._config = config

    def reset(self) -> None:
        self.replace_config(DenyListConfig.default())


def load_deny_list_config(path: Union[str, Path]) -> DenyListConfig:
    """Parses and validates a deny-list file.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Deny-list file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix.lower() == ".json":
                raw = json.load(f)
            else:
                raw = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Failed to read deny-list file {config_path}: {e}") from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse deny-list file: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError("Deny-list file must contain a mapping")

    try:
        model = DenyListFileModel.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid deny-list file: {e}") from e

    config = DenyListConfig.from_model(model)
    logger.info(
        "Deny-list configuration loaded",
        extra={
            "deny_list_path": str(config_path),
            "global_count": len(config.global_entries),
            "entity_types": len(config.by_entity_type),
        },
    )
    return config
