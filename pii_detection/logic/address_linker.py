# pii_detection/logic/address_linker.py

"""Links separately detected address parts into one address entity.

Street, postal locality, city and country matches that sit close together
are grouped, scored on completeness and postal validity, and replace the
address fragments they cover. Entities of other types are left alone.
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from pii_detection.core.definitions import EntitySource, EntityType
from pii_detection.core.domain import Entity

logger = logging.getLogger(__name__)

SWISS_CANTONS: Dict[str, str] = {
    "AG": "Aargau",
    "AI": "Appenzell Innerrhoden",
    "AR": "Appenzell Ausserrhoden",
    "BE": "Bern",
    "BL": "Basel-Landschaft",
    "BS": "Basel-Stadt",
    "FR": "Fribourg",
    "GE": "Genève",
    "GL": "Glarus",
    "GR": "Graubünden",
    "JU": "Jura",
    "LU": "Luzern",
    "NE": "Neuchâtel",
    "NW": "Nidwalden",
    "OW": "Obwalden",
    "SG": "St. Gallen",
    "SH": "Schaffhausen",
    "SO": "Solothurn",
    "SZ": "Schwyz",
    "TG": "Thurgau",
    "TI": "Ticino",
    "UR": "Uri",
    "VD": "Vaud",
    "VS": "Valais",
    "ZG": "Zug",
    "ZH": "Zürich",
}

# Swiss Post ranges; a range shared by several cantons lists all of them
SWISS_POSTAL_RANGES: Tuple[Tuple[int, int, str], ...] = (
    (1000, 1299, "VD"),
    (1300, 1399, "VD/VS"),
    (1400, 1499, "VD"),
    (1500, 1699, "FR/VD"),
    (1700, 1799, "FR"),
    (1800, 1899, "VD/VS"),
    (1900, 1999, "VS"),
    (2000, 2299, "NE"),
    (2300, 2499, "NE/BE"),
    (2500, 2599, "BE"),
    (2600, 2699, "BE/SO"),
    (2700, 2799, "BE/JU"),
    (2800, 2999, "JU"),
    (3000, 3999, "BE"),
    (4000, 4999, "BS/BL/SO/AG"),
    (5000, 5999, "AG/SO"),
    (6000, 6999, "LU/ZG/SZ/NW/OW/UR/TI"),
    (7000, 7999, "GR"),
    (8000, 8999, "ZH/SH/TG/SG"),
    (9000, 9999, "SG/AR/AI/TG/SH"),
)

SWISS_CITIES = frozenset({
    "zurich", "zurigo", "geneve", "geneva", "genf", "ginevra", "basel", "bale", "basilea",
    "bern", "berne", "berna", "lausanne", "losanna", "winterthur", "winterthour",
    "luzern", "lucerne", "lucerna", "st. gallen", "st.gallen", "saint-gall", "san gallo",
    "lugano", "biel", "bienne", "thun", "thoune", "fribourg", "freiburg", "friburgo",
    "neuchatel", "neuenburg", "sion", "sitten", "chur", "coire", "coira", "montreux",
    "zug", "zoug",
})

COUNTRY_PATTERN = re.compile(
    r"\b(?:Switzerland|Schweiz|Suisse|Svizzera|Germany|Deutschland|Allemagne|France|Frankreich"
    r"|Austria|Österreich|Autriche|Italy|Italien|Italie|Liechtenstein)\b"
)

_CITY_FOLD = str.maketrans({
    "ä": "a", "à": "a", "â": "a",
    "é": "e", "è": "e", "ê": "e", "ë": "e",
    "î": "i", "ï": "i", "ì": "i",
    "ö": "o", "ô": "o", "ò": "o",
    "ü": "u", "ù": "u", "û": "u",
    "ç": "c", "ß": "ss",
})

_POSTAL_LOCALITY = re.compile(r"^(?:(CH)[- ]?|[DF]-)?(\d{4,5})\s+(.+)$", re.IGNORECASE | re.DOTALL)
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")


def clean_postal_code(code: Optional[str]) -> str:
    """Strips a CH prefix and whitespace: "CH-8001" and "CH 8001" become "8001"."""
    if not code:
        return ""
    cleaned = re.sub(r"^CH[-\s]?", "", str(code).strip().upper())
    return re.sub(r"\s", "", cleaned)


def normalize_city(city: Optional[str]) -> str:
    """Lowercases and folds accents so "Genève" and "geneve" compare equal."""
    if not city:
        return ""
    return city.lower().translate(_CITY_FOLD).strip()


def is_swiss_postal_code(code: str) -> bool:
    return bool(re.fullmatch(r"[1-9]\d{3}", code))


def canton_for_postal_code(code: str) -> Optional[str]:
    """Returns the canton abbreviation(s) covering a Swiss postal code."""
    if not is_swiss_postal_code(code):
        return None
    number = int(code)
    for low, high, canton in SWISS_POSTAL_RANGES:
        if low <= number <= high:
            return canton
    return None


class AddressComponent(NamedTuple):
    kind: str
    text: str
    start: int
    end: int
    confidence: float


class ComponentKind:
    STREET = "street"
    POSTAL_LOCALITY = "postal_locality"
    CITY = "city"
    COUNTRY = "country"


# Entity types that stand for a single address component
COMPONENT_KINDS: Dict[str, str] = {
    EntityType.ADDRESS: ComponentKind.STREET,
    EntityType.SWISS_ADDRESS: ComponentKind.POSTAL_LOCALITY,
    EntityType.EU_ADDRESS: ComponentKind.POSTAL_LOCALITY,
    EntityType.LOCATION: ComponentKind.CITY,
}

# Street and postal locality count as two parts each (name and number, code and city)
COMPONENT_UNITS: Dict[str, int] = {
    ComponentKind.STREET: 2,
    ComponentKind.POSTAL_LOCALITY: 2,
    ComponentKind.CITY: 1,
    ComponentKind.COUNTRY: 1,
}


@dataclass(frozen=True)
class GroupedAddress:
    components: Tuple[AddressComponent, ...]
    start: int
    end: int
    pattern: str
    postal_code: str = ""
    city: str = ""
    country: str = ""

    @property
    def kinds(self) -> frozenset:
        return frozenset(c.kind for c in self.components)


class AddressLinker:
    """Groups nearby address components and scores the result.

    Args:
        max_gap: Largest number of characters allowed between two linked components
        min_components: Fewest components a grouped address needs
        max_length: Grouped addresses longer than this are rejected
    """

    # Weights of the scoring factors; the final score is their sum over the total
    WEIGHTS = {
        "completeness": 1.0,
        "pattern": 0.3,
        "postal_code": 0.2,
        "city": 0.1,
        "country": 0.1,
    }

    def __init__(self, max_gap: int = 50, min_components: int = 2, max_length: int = 100):
        self.max_gap = max_gap
        self.min_components = min_components
        self.max_length = max_length

    def link(self, text: str, entities: Sequence[Entity]) -> List[Entity]:
        """Replaces linked address fragments with grouped address entities.

        Args:
            text: Text the entity offsets index into
            entities: Entities after validation

        Returns:
            Entities sorted by start offset; fragments covered by a grouped
            address are removed, everything else is kept unchanged
        """
        components = self.collect_components(text, entities)
        groups = [g for g in (self._build(text, c) for c in self.group(text, components)) if g]
        if not groups:
            return list(entities)

        grouped = [self.to_entity(text, group) for group in groups]
        kept = [
            e for e in entities
            if e.entity_type not in EntityType.ADDRESS_TYPES or not any(e.overlaps(g) for g in grouped)
        ]

        logger.debug(
            f"Linked {len(grouped)} grouped addresses",
            extra={"component_count": len(components), "replaced": len(entities) - len(kept)},
        )
        return sorted(kept + grouped, key=lambda e: e.start)

    def collect_components(self, text: str, entities: Sequence[Entity]) -> List[AddressComponent]:
        """Turns address entities and country names into components, without overlaps."""
        found = [
            AddressComponent(COMPONENT_KINDS[e.entity_type], e.text, e.start, e.end, e.confidence)
            for e in entities
            if e.entity_type in COMPONENT_KINDS and e.metadata.get("validation_status") != "invalid"
        ]
        found.extend(
            AddressComponent(ComponentKind.COUNTRY, m.group(), m.start(), m.end(), 0.0)
            for m in COUNTRY_PATTERN.finditer(text)
        )

        # Longest first so a postal locality wins over the city name inside it
        components: List[AddressComponent] = []
        for component in sorted(found, key=lambda c: (-(c.end - c.start), c.start)):
            if not any(component.start < o.end and o.start < component.end for o in components):
                components.append(component)
        return sorted(components, key=lambda c: c.start)

    def group(self, text: str, components: Sequence[AddressComponent]) -> List[List[AddressComponent]]:
        """Splits position-sorted components into runs of close neighbours.

        A paragraph break between two components always ends a run.
        """
        groups: List[List[AddressComponent]] = []
        current: List[AddressComponent] = []

        for component in components:
            if current:
                previous = current[-1]
                between = text[previous.end : component.start]
                if len(between) > self.max_gap or _PARAGRAPH_BREAK.search(between):
                    groups.append(current)
                    current = []
            current.append(component)
        if current:
            groups.append(current)

        return [g for g in groups if len(g) >= self.min_components]

    def _build(self, text: str, components: List[AddressComponent]) -> Optional[GroupedAddress]:
        kinds = [c.kind for c in components]
        anchored = ComponentKind.STREET in kinds or ComponentKind.POSTAL_LOCALITY in kinds
        if not anchored or len(set(kinds)) < 2:
            return None

        start, end = components[0].start, components[-1].end
        span = text[start:end]
        if len(span) > self.max_length or "#" in span or span.count("\n\n") > 1:
            logger.debug("Rejected grouped address", extra={"length": len(span)})
            return None

        postal_code, city, country = "", "", ""
        for component in components:
            if component.kind == ComponentKind.POSTAL_LOCALITY and not postal_code:
                match = _POSTAL_LOCALITY.match(component.text.strip())
                if match:
                    postal_code = f"CH-{match.group(2)}" if match.group(1) else match.group(2)
                    city = match.group(3).strip()
            elif component.kind == ComponentKind.CITY and not city:
                city = component.text.strip()
            elif component.kind == ComponentKind.COUNTRY and not country:
                country = component.text

        return GroupedAddress(
            components=tuple(components),
            start=start,
            end=end,
            pattern=self._pattern(kinds),
            postal_code=postal_code,
            city=city,
            country=country,
        )

    @staticmethod
    def _pattern(kinds: List[str]) -> str:
        has_street = ComponentKind.STREET in kinds
        has_postal = ComponentKind.POSTAL_LOCALITY in kinds
        if has_street and has_postal:
            if ComponentKind.COUNTRY in kinds:
                return "EU"
            if kinds.index(ComponentKind.STREET) < kinds.index(ComponentKind.POSTAL_LOCALITY):
                return "SWISS"
            return "ALTERNATIVE"
        return "PARTIAL"

    def score(self, group: GroupedAddress) -> Dict[str, float]:
        """Scores each factor of a grouped address."""
        weights = self.WEIGHTS
        units = sum(COMPONENT_UNITS[kind] for kind in group.kinds)
        pattern_share = {"SWISS": 1.0, "EU": 1.0, "ALTERNATIVE": 0.8, "PARTIAL": 0.5}

        code = clean_postal_code(group.postal_code)
        if is_swiss_postal_code(code):
            postal = weights["postal_code"]
        elif len(code) == 5:
            postal = weights["postal_code"] * 0.8
        elif code:
            postal = weights["postal_code"] * 0.3
        else:
            postal = 0.0

        if normalize_city(group.city) in SWISS_CITIES:
            city = weights["city"]
        elif group.city:
            city = weights["city"] * (0.5 if code else 0.3)
        else:
            city = 0.0

        if group.country:
            country = weights["country"]
        elif group.postal_code.upper().startswith("CH"):
            country = weights["country"] * 0.5
        else:
            country = 0.0

        return {
            "completeness": min(units * 0.2, weights["completeness"]),
            "pattern": weights["pattern"] * pattern_share[group.pattern],
            "postal_code": postal,
            "city": city,
            "country": country,
        }

    def to_entity(self, text: str, group: GroupedAddress) -> Entity:
        factors = self.score(group)
        score = sum(factors.values()) / sum(self.WEIGHTS.values())
        # Grouping never makes an address less certain than its strongest part
        confidence = round(min(1.0, max(score, max(c.confidence for c in group.components))), 4)

        code = clean_postal_code(group.postal_code)
        metadata = {
            "is_grouped_address": True,
            "component_count": len(group.components),
            "address_pattern": group.pattern,
            "address_score": round(score, 4),
            "address_components": {
                "postal_code": code or None,
                "city": group.city or None,
                "country": group.country or None,
            },
        }
        canton = canton_for_postal_code(code)
        if canton:
            metadata["canton"] = canton

        return Entity(
            text=text[group.start : group.end],
            entity_type=self._address_type(group, code),
            start=group.start,
            end=group.end,
            confidence=confidence,
            source=EntitySource.RULE,
            metadata=metadata,
        )

    @staticmethod
    def _address_type(group: GroupedAddress, code: str) -> str:
        if group.postal_code.upper().startswith("CH") or is_swiss_postal_code(code):
            return EntityType.SWISS_ADDRESS
        if group.pattern == "EU" or group.country or len(code) == 5:
            return EntityType.EU_ADDRESS
        return EntityType.ADDRESS
