# pii_detection/core/definitions.py

"""Entity, source and document type constants."""


class EntityType:
    """Constants representing detectable PII entity types."""

    # Pattern-based identifiers
    SWISS_AVS = "SWISS_AVS"
    IBAN = "IBAN"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    VAT_NUMBER = "VAT_NUMBER"
    PAYMENT_REF = "PAYMENT_REF"
    DATE = "DATE"

    # Addresses
    SWISS_ADDRESS = "SWISS_ADDRESS"
    EU_ADDRESS = "EU_ADDRESS"
    ADDRESS = "ADDRESS"

    # Named entities (NER)
    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    LOCATION = "LOCATION"

    # Document rules only
    INVOICE_NUMBER = "INVOICE_NUMBER"
    REFERENCE = "REFERENCE"

    ADDRESS_TYPES = (SWISS_ADDRESS, EU_ADDRESS, ADDRESS, LOCATION)

    REGEX_TYPES = (
        SWISS_AVS,
        IBAN,
        EMAIL,
        PHONE,
        VAT_NUMBER,
        PAYMENT_REF,
        SWISS_ADDRESS,
        EU_ADDRESS,
        ADDRESS,
        DATE,
    )


class EntitySource:
    """Which detector produced an entity."""

    RULE = "RULE"
    ML = "ML"
    BOTH = "BOTH"
    MANUAL = "MANUAL"


class DocumentType:
    """Document categories recognised by the classifier."""

    INVOICE = "INVOICE"
    LETTER = "LETTER"
    FORM = "FORM"
    CONTRACT = "CONTRACT"
    REPORT = "REPORT"
    UNKNOWN = "UNKNOWN"

    ALL = (INVOICE, LETTER, FORM, CONTRACT, REPORT, UNKNOWN)


class DetectionMode:
    """Capability level reached for a document."""

    FULL = "full"
    REGEX_ONLY = "regex-only"
    FALLBACK = "fallback"


SUPPORTED_LANGUAGES = ("en", "fr", "de")
DEFAULT_LANGUAGE = "en"
