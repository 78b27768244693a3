# pii_detection/logic/document_rules.py

"""Extraction rules that only apply to one kind of document.

Each rule is a plain function taking the document text and language and
returning new entities. Rules are looked up by the names used in the
``rules`` list of a document type configuration.
"""

import re
import logging
from typing import Callable, Dict, Iterator, List, Match, Pattern, Tuple

from pii_detection.core.definitions import EntitySource, EntityType
from pii_detection.core.domain import Entity
from pii_detection.logic.validators import ValidationLogic

logger = logging.getLogger(__name__)

RuleHandler = Callable[[str, str], List[Entity]]

# Capitalized name of up to four words on one line
NAME = r"[A-ZÀ-ÖØ-Þ][\w'’-]+(?:[ \t]+[A-ZÀ-ÖØ-Þ][\w'’-]+){0,3}"

HEADER_FRACTION = 0.2


def _rule_entity(
    text: str, start: int, end: int, entity_type: str, confidence: float, rule: str, **metadata
) -> Entity:
    return Entity(
        text=text[start:end],
        entity_type=entity_type,
        start=start,
        end=end,
        confidence=confidence,
        source=EntitySource.RULE,
        metadata={"rule": rule, **metadata},
    )


def _matches(patterns: Tuple[Pattern, ...], text: str) -> Iterator[Match]:
    for pattern in patterns:
        yield from pattern.finditer(text)


def _trimmed_group(match: Match, group: int = 1, chars: str = " \t\n-/.,") -> Tuple[int, int]:
    """Span of a group with trailing separators removed."""
    start, end = match.span(group)
    value = match.group(group)
    return start, end - (len(value) - len(value.rstrip(chars)))


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

INVOICE_NUMBER_PATTERNS = (
    re.compile(
        r"\b(?:invoice|inv\.|bill)[ \t]*(?:no\.?|nr\.?|number|num\.?)?[ \t]*[:#]?[ \t]*([A-Z0-9][\w/-]{2,20})",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:rechnungs?|rg\.)[ \t]*-?[ \t]*(?:nr\.?|nummer)[ \t]*[:#]?[ \t]*([A-Z0-9][\w/-]{2,20})",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:facture|fact\.)[ \t]*(?:n[°o]\.?|numéro|num\.?)?[ \t]*[:#]?[ \t]*([A-Z0-9][\w/-]{2,20})",
        re.IGNORECASE,
    ),
)

SWISS_VAT_PATTERN = re.compile(r"\bCHE[- ]?(\d{3})[. ]?(\d{3})[. ]?(\d{3})(?:[ \t]*(?:MWST|TVA|IVA))?\b")

EU_VAT_PATTERNS: Dict[str, Pattern] = {
    "AT": re.compile(r"\bATU\d{8}\b"),
    "BE": re.compile(r"\bBE0?\d{9,10}\b"),
    "DE": re.compile(r"\bDE\d{9}\b"),
    "FR": re.compile(r"\bFR[A-Z0-9]{2}\d{9}\b"),
    "IT": re.compile(r"\bIT\d{11}\b"),
    "NL": re.compile(r"\bNL\d{9}B\d{2}\b"),
    "ES": re.compile(r"\bES[A-Z0-9]\d{7}[A-Z0-9]\b"),
    "LU": re.compile(r"\bLU\d{8}\b"),
}

QR_REFERENCE_PATTERNS = (
    re.compile(r"\b\d{2}(?: ?\d{5}){5}\b"),
    re.compile(r"\b\d{26,27}\b"),
)
CREDITOR_REFERENCE_PATTERN = re.compile(r"\bRF\d{2}[A-Z0-9]{1,21}\b")

IBAN_PATTERN = re.compile(r"\b[A-Z]{2}\d{2}(?: ?[A-Z0-9]{1,4}){3,8}\b")


def extract_invoice_numbers(text: str, language: str) -> List[Entity]:
    """Finds invoice numbers after an EN/DE/FR invoice label.

    Only the number is returned; it must contain a digit and be longer
    than three characters when purely numeric.
    """
    entities = []
    seen = set()
    for match in _matches(INVOICE_NUMBER_PATTERNS, text):
        start, end = _trimmed_group(match)
        number = text[start:end]
        if (start, end) in seen or len(number) < 3 or not any(c.isdigit() for c in number):
            continue
        if number.isdigit() and len(number) <= 3:
            continue
        seen.add((start, end))
        label = text[match.start() : match.start(1)].strip()
        entities.append(_rule_entity(text, start, end, EntityType.INVOICE_NUMBER, 0.85, "invoiceNumber", label=label))
    return entities


def extract_vat_numbers(text: str, language: str) -> List[Entity]:
    entities = []
    for match in SWISS_VAT_PATTERN.finditer(text):
        digits = "".join(match.groups())
        if not ValidationLogic.swiss_uid_check(digits):
            continue
        entities.append(
            _rule_entity(text, match.start(), match.end(), EntityType.VAT_NUMBER, 0.95, "vatNumber", country="CH")
        )

    for country, pattern in EU_VAT_PATTERNS.items():
        for match in pattern.finditer(text):
            entities.append(
                _rule_entity(
                    text, match.start(), match.end(), EntityType.VAT_NUMBER, 0.9, "vatNumber", country=country
                )
            )
    return entities


def extract_payment_references(text: str, language: str) -> List[Entity]:
    """Finds QR bill references (26-27 digits) and ISO 11649 creditor references."""
    entities = []
    seen = set()
    for match in _matches(QR_REFERENCE_PATTERNS, text):
        compact = match.group().replace(" ", "")
        if match.span() in seen or not 20 <= len(compact) <= 27:
            continue
        seen.add(match.span())
        entities.append(
            _rule_entity(
                text, match.start(), match.end(), EntityType.PAYMENT_REF, 0.85, "paymentRef", reference_type="QR"
            )
        )

    for match in CREDITOR_REFERENCE_PATTERN.finditer(text):
        # Creditor references use the same mod-97 check as IBANs
        if not ValidationLogic.mod97_check(match.group()):
            continue
        entities.append(
            _rule_entity(
                text, match.start(), match.end(), EntityType.PAYMENT_REF, 0.85, "paymentRef", reference_type="ISO11649"
            )
        )
    return entities


def extract_ibans(text: str, language: str) -> List[Entity]:
    """Finds IBANs that pass the mod-97 check.

    A spaced match may run into a following word ("... 5295 7 CHF"), so
    trailing groups are dropped until the checksum holds.
    """
    entities = []
    for match in IBAN_PATTERN.finditer(text):
        candidate = match.group()
        while True:
            compact = candidate.replace(" ", "")
            if 15 <= len(compact) <= 34 and ValidationLogic.mod97_check(compact):
                start = match.start()
                entities.append(
                    _rule_entity(
                        text, start, start + len(candidate), EntityType.IBAN, 0.95, "iban", country=compact[:2]
                    )
                )
                break
            if " " not in candidate or len(compact) < 15:
                break
            candidate = candidate.rsplit(" ", 1)[0]
    return entities


# ---------------------------------------------------------------------------
# Letters
# ---------------------------------------------------------------------------

SALUTATION_PATTERNS: Dict[str, Tuple[Pattern, ...]] = {
    "en": (
        re.compile(rf"\b(?i:dear)[ \t]+(?:(?i:mr|mrs|ms|miss|dr|prof)\.?[ \t]+)?({NAME})"),
    ),
    "fr": (
        re.compile(rf"\b(?i:ch(?:er|ère))[ \t]+(?:Monsieur|Madame|M\.|Mme\.?)[ \t]+({NAME})"),
        re.compile(rf"\b(?:Monsieur|Madame)[ \t]+({NAME})"),
    ),
    "de": (
        re.compile(rf"\b(?i:sehr[ \t]+geehrter?)[ \t]+(?:Herr|Frau)[ \t]+(?:(?:Dr|Prof)\.?[ \t]+)?({NAME})"),
        re.compile(rf"\b(?i:lieber?)[ \t]+(?:(?:Herr|Frau)[ \t]+)?({NAME})"),
        re.compile(rf"\b(?:Herr|Frau)[ \t]+(?:(?:Dr|Prof)\.?[ \t]+)?({NAME})"),
    ),
}

# Words that follow a salutation but do not name anyone
GENERIC_ADDRESSEES = frozenset({
    "sir", "sirs", "madam", "madame", "monsieur", "mesdames", "messieurs", "customer", "customers",
    "client", "clients", "colleague", "colleagues", "team", "all", "friends", "members",
    "kunde", "kundin", "kunden", "damen", "herren", "kollege", "kollegin", "kollegen", "kolleginnen",
    "grüsse", "grüße", "gruesse", "grüssen", "grüßen",
})

CLOSING_PATTERNS = (
    re.compile(
        r"(?i:sincerely|(?:best|kind|warm)[ \t]+regards|regards|yours[ \t]+(?:truly|faithfully|sincerely)"
        r"|best[ \t]+wishes|cordialement|(?:meilleures[ \t]+)?salutations|bien[ \t]+à[ \t]+vous|amicalement"
        r"|mit[ \t]+freundlichen[ \t]+gr(?:ü|ue)(?:ß|ss)en|hochachtungsvoll"
        r"|(?:beste|freundliche)[ \t]+gr(?:ü|ue)(?:ß|ss)e)"
        rf"[ \t]*,?[ \t]*\n+[ \t]*({NAME})"
    ),
    re.compile(rf"(?i:veuillez[ \t]+agréer|je[ \t]+vous[ \t]+prie[ \t]+d'agréer)[^\n]*\n+[ \t]*({NAME})"),
)

RECIPIENT_PATTERN = re.compile(
    r"^[ \t]*(?:(?:to|attn|attention|à|destinataire|an)[ \t]*:|z\.[ \t]?hd\.)[ \t]*\n?((?:[^\n]*\S[^\n]*(?:\n|$)){1,5})",
    re.IGNORECASE | re.MULTILINE,
)

MONTHS = (
    r"January|February|March|April|May|June|July|August|September|October|November|December"
    r"|janvier|février|mars|avril|mai|juin|juillet|août|septembre|octobre|novembre|décembre"
    r"|Januar|Februar|März|Juni|Juli|Oktober|Dezember"
)

LETTER_DATE_PATTERNS = (
    re.compile(
        r"\b(?:January|February|March|April|May|June|July|August|September|October|November|December"
        r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\.?[ \t]+\d{1,2},?[ \t]+\d{4}\b",
        re.IGNORECASE,
    ),
    re.compile(rf"\b\d{{1,2}}\.?[ \t]+(?:{MONTHS})[ \t]+\d{{4}}\b", re.IGNORECASE),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}[./]\d{1,2}[./]\d{4}\b"),
)

REFERENCE_PATTERN = re.compile(
    r"^[ \t]*(?:re|ref|reference|référence|subject|betreff|betr|objet|concerne)[ \t]*[:.][ \t]*(\S[^\n]{3,99})$",
    re.IGNORECASE | re.MULTILINE,
)


def extract_salutation_names(text: str, language: str) -> List[Entity]:
    """Finds the name in a salutation such as "Dear Mr. Smith" or "Sehr geehrte Frau Muster".

    The document language selects the salutation forms; unknown languages
    use the English ones. Generic salutations ("Dear Sir") are skipped.
    """
    patterns = SALUTATION_PATTERNS.get(language, SALUTATION_PATTERNS["en"])
    entities = []
    seen = set()
    for match in _matches(patterns, text):
        start, end = _trimmed_group(match)
        name = text[start:end]
        if (start, end) in seen or len(name) < 2 or name.split()[0].lower() in GENERIC_ADDRESSEES:
            continue
        seen.add((start, end))
        entities.append(_rule_entity(text, start, end, EntityType.PERSON, 0.85, "salutation", language=language))
    return entities


def extract_recipient_block(text: str, language: str) -> List[Entity]:
    """Finds the lines after a "To:", "An:" or "À:" label, up to five lines."""
    entities = []
    for match in RECIPIENT_PATTERN.finditer(text):
        start, end = _trimmed_group(match, chars=" \t\n")
        if end - start < 10:
            continue
        entities.append(_rule_entity(text, start, end, EntityType.ADDRESS, 0.8, "recipient"))
    return entities


def extract_signature(text: str, language: str) -> List[Entity]:
    entities = []
    seen = set()
    for match in _matches(CLOSING_PATTERNS, text):
        start, end = _trimmed_group(match)
        if (start, end) in seen or end - start < 2:
            continue
        seen.add((start, end))
        entities.append(_rule_entity(text, start, end, EntityType.PERSON, 0.9, "signature"))
    return entities


def extract_letter_date(text: str, language: str) -> List[Entity]:
    """Finds dates; the first one in the header is taken as the letter date."""
    header_end = len(text) * HEADER_FRACTION
    spans: List[Tuple[int, int]] = []
    for match in _matches(LETTER_DATE_PATTERNS, text):
        span = match.span()
        if not any(span[0] < e and s < span[1] for s, e in spans):
            spans.append(span)

    entities = []
    letter_date_found = False
    for start, end in sorted(spans):
        in_header = start < header_end
        is_letter_date = in_header and not letter_date_found
        letter_date_found = letter_date_found or is_letter_date
        entities.append(
            _rule_entity(
                text,
                start,
                end,
                EntityType.DATE,
                0.85 if in_header else 0.7,
                "letterDate",
                is_letter_date=is_letter_date,
            )
        )
    return entities


def extract_reference_line(text: str, language: str) -> List[Entity]:
    entities = []
    for match in REFERENCE_PATTERN.finditer(text):
        start, end = _trimmed_group(match, chars=" \t")
        if end - start < 5:
            continue
        entities.append(_rule_entity(text, start, end, EntityType.REFERENCE, 0.75, "referenceLine"))
    return entities


RULE_HANDLERS: Dict[str, RuleHandler] = {
    "invoiceNumber": extract_invoice_numbers,
    "vatNumber": extract_vat_numbers,
    "paymentRef": extract_payment_references,
    "iban": extract_ibans,
    "salutation": extract_salutation_names,
    "recipient": extract_recipient_block,
    "signature": extract_signature,
    "letterDate": extract_letter_date,
    "referenceLine": extract_reference_line,
}


def run_rules(rule_names: List[str], text: str, language: str) -> List[Entity]:
    """Runs the named rules in order and concatenates their entities.

    Unknown names are skipped; RuleEngine.validate_configuration reports them.
    A rule that raises is logged and contributes nothing.
    """
    entities: List[Entity] = []
    for name in rule_names:
        handler = RULE_HANDLERS.get(name)
        if handler is None:
            continue
        try:
            found = handler(text, language)
        except Exception:
            logger.warning(f"Document rule '{name}' failed", exc_info=True)
            continue
        entities.extend(found)
    return entities
