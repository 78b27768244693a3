# pii_detection/logic/validators.py

"""Checksum and format validators for detected entities.

Each validator converts a raw pattern match into a graded confidence drawn
from a small fixed lattice, so results are comparable across entity types.
Malformed input is an expected outcome and never raises.
"""

import re
import logging
import calendar
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional

from pii_detection.core.definitions import EntityType
from pii_detection.core.domain import Entity, ValidationResult

logger = logging.getLogger(__name__)


class ConfidenceLevel:
    """Confidence lattice shared by all validators."""

    CHECKSUM_VALID = 0.95
    FORMAT_VALID = 0.90
    STANDARD = 0.85
    KNOWN_VALID = 0.82
    MODERATE = 0.75
    WEAK = 0.50
    INVALID_FORMAT = 0.40
    FAILED = 0.30
    FALSE_POSITIVE = 0.20


class ValidationLogic:
    """Utility methods for validation algorithms."""

    # Pre-compiled regex patterns for performance
    NON_DIGIT = re.compile(r"[^0-9]")
    IBAN_CHARS = re.compile(r"[A-Z0-9]+")
    WHITESPACE = re.compile(r"\s+")

    @staticmethod
    def mod97_check(iban: str) -> bool:
        """Performs the ISO 13616 mod-97 IBAN checksum.

        Args:
            iban: Uppercase IBAN without separators

        Returns:
            True if the remainder is 1
        """
        # ASCII only; int() rejects digits such as "²" that isdigit() accepts
        if not ValidationLogic.IBAN_CHARS.fullmatch(iban):
            return False

        rearranged = iban[4:] + iban[:4]
        remainder = 0
        for char in rearranged:
            value = int(char) if "0" <= char <= "9" else ord(char) - ord("A") + 10
            for digit in str(value):
                remainder = (remainder * 10 + int(digit)) % 97

        return remainder == 1

    @staticmethod
    def ean13_check_digit(digits: str) -> int:
        """Computes the EAN-13 check digit over the first 12 digits."""
        total = sum(
            int(d) * (3 if i % 2 == 1 else 1) for i, d in enumerate(digits[:12])
        )
        return (10 - total % 10) % 10

    @staticmethod
    def swiss_uid_check(digits: str) -> bool:
        """Validates a 9-digit Swiss UID (CHE number) with its mod-11 check digit."""
        weights = [5, 4, 3, 2, 7, 6, 5, 4]
        total = sum(int(d) * w for d, w in zip(digits[:8], weights))
        expected = 11 - total % 11
        if expected == 11:
            expected = 0
        return expected == int(digits[8])


class ValidatorStrategy(ABC):
    """Base class for entity-specific validation strategies."""

    entity_type: str = ""
    MAX_LENGTH: int = 100

    @property
    def name(self) -> str:
        return type(self).__name__

    def validate(self, text: str) -> ValidationResult:
        """Validates entity text after bounding its length.

        Args:
            text: Matched entity text

        Returns:
            ValidationResult graded on the confidence lattice
        """
        if len(text) > self.MAX_LENGTH:
            return ValidationResult(
                is_valid=False,
                confidence=ConfidenceLevel.FAILED,
                reason=f"Input exceeds maximum length ({self.MAX_LENGTH})",
            )
        return self._validate(text)

    @abstractmethod
    def _validate(self, text: str) -> ValidationResult:
        pass


class IbanValidator(ValidatorStrategy):
    """Validator for IBANs: country length table plus mod-97."""

    entity_type = EntityType.IBAN
    MAX_LENGTH = 34

    COUNTRY_LENGTHS: Dict[str, int] = {
        "CH": 21, "LI": 21, "DE": 22, "AT": 20, "FR": 27, "IT": 27,
        "ES": 24, "NL": 18, "BE": 16, "LU": 20, "GB": 22, "IE": 22,
        "PT": 25, "GR": 27, "PL": 28, "CZ": 24, "SK": 24, "HU": 28,
        "SE": 24, "DK": 18, "NO": 15, "FI": 18,
    }

    def validate(self, text: str) -> ValidationResult:
        # Bound on the compact form, separators do not count
        return super().validate(ValidationLogic.WHITESPACE.sub("", text).upper())

    def _validate(self, text: str) -> ValidationResult:
        if len(text) < 15:
            return ValidationResult(False, ConfidenceLevel.FAILED, f"Too short: {len(text)}")

        country = text[:2]
        expected = self.COUNTRY_LENGTHS.get(country)
        if expected is not None and len(text) != expected:
            return ValidationResult(
                False,
                ConfidenceLevel.INVALID_FORMAT,
                f"Invalid length for {country}: expected {expected}, got {len(text)}",
            )

        if not ValidationLogic.mod97_check(text):
            return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, "Checksum failed")

        return ValidationResult(True, ConfidenceLevel.CHECKSUM_VALID)


class SwissAvsValidator(ValidatorStrategy):
    """Validator for Swiss AVS/AHV numbers (756.XXXX.XXXX.XX, EAN-13)."""

    entity_type = EntityType.SWISS_AVS
    MAX_LENGTH = 20

    def _validate(self, text: str) -> ValidationResult:
        digits = ValidationLogic.NON_DIGIT.sub("", text)

        if len(digits) != 13:
            return ValidationResult(False, ConfidenceLevel.FAILED, f"Expected 13 digits, got {len(digits)}")

        if not digits.startswith("756"):
            return ValidationResult(False, ConfidenceLevel.FAILED, "Missing 756 country prefix")

        if ValidationLogic.ean13_check_digit(digits) != int(digits[12]):
            return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, "EAN-13 checksum failed")

        return ValidationResult(True, ConfidenceLevel.CHECKSUM_VALID)


class DateValidator(ValidatorStrategy):
    """Validator for numeric and month-name dates."""

    entity_type = EntityType.DATE
    MAX_LENGTH = 50

    EURO_PATTERN = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})$")
    MONTH_NAME_PATTERN = re.compile(r"^(\d{1,2})\.?\s*([^\W\d_]+)\.?\s*(\d{2,4})$")

    MONTH_NAME_TO_NUMBER: Dict[str, int] = {
        # English
        "january": 1, "february": 2, "march": 3, "april": 4, "may": 5,
        "june": 6, "july": 7, "august": 8, "september": 9, "october": 10,
        "november": 11, "december": 12,
        "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7,
        "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
        # German
        "januar": 1, "februar": 2, "märz": 3, "maerz": 3, "mai": 5,
        "juni": 6, "juli": 7, "oktober": 10, "dezember": 12,
        # French
        "janvier": 1, "février": 2, "fevrier": 2, "mars": 3, "avril": 4,
        "juin": 6, "juillet": 7, "août": 8, "aout": 8, "septembre": 9,
        "octobre": 10, "novembre": 11, "décembre": 12, "decembre": 12,
        # Italian
        "gennaio": 1, "febbraio": 2, "marzo": 3, "aprile": 4, "maggio": 5,
        "giugno": 6, "luglio": 7, "agosto": 8, "settembre": 9, "ottobre": 10,
        "dicembre": 12,
    }

    def _validate(self, text: str) -> ValidationResult:
        s = text.strip().lower()

        match = self.EURO_PATTERN.match(s)
        if match:
            day, month, year = int(match.group(1)), int(match.group(2)), match.group(3)
        else:
            match = self.MONTH_NAME_PATTERN.match(s)
            if not match or match.group(2) not in self.MONTH_NAME_TO_NUMBER:
                return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, "Unparseable date")
            day = int(match.group(1))
            month = self.MONTH_NAME_TO_NUMBER[match.group(2)]
            year = match.group(3)

        full_year = int(year)
        if len(year) == 2:
            full_year += 1900 if full_year > 30 else 2000

        if not 1 <= month <= 12:
            return ValidationResult(False, ConfidenceLevel.FAILED, f"Invalid month: {month}")

        if not 1900 <= full_year <= 2100:
            return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, f"Year out of range: {full_year}")

        days_in_month = calendar.monthrange(full_year, month)[1]
        if not 1 <= day <= days_in_month:
            return ValidationResult(False, ConfidenceLevel.FAILED, f"Invalid day: {day}")

        return ValidationResult(True, ConfidenceLevel.STANDARD)


class EmailValidator(ValidatorStrategy):
    """Validator for email addresses (RFC 5322 simplified)."""

    entity_type = EntityType.EMAIL
    MAX_LENGTH = 254

    EMAIL_PATTERN = re.compile(
        r"^[a-z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
        r"(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)+$",
        re.IGNORECASE,
    )

    def _validate(self, text: str) -> ValidationResult:
        s = text.strip()

        if ".." in s:
            return ValidationResult(False, ConfidenceLevel.FAILED, "Consecutive dots")

        if not self.EMAIL_PATTERN.match(s):
            return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, "Invalid email format")

        tld = s.rsplit(".", 1)[-1]
        if len(tld) < 2:
            return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, "TLD too short")

        return ValidationResult(True, ConfidenceLevel.FORMAT_VALID)


class PhoneValidator(ValidatorStrategy):
    """Validator for Swiss and neighbouring European phone numbers."""

    entity_type = EntityType.PHONE
    MAX_LENGTH = 20

    VALID_PREFIXES = ("41", "49", "33", "39", "43", "32", "31", "352")
    SWISS_MOBILE_PREFIXES = ("76", "77", "78", "79")

    def _validate(self, text: str) -> ValidationResult:
        digits = ValidationLogic.NON_DIGIT.sub("", text)

        if not 9 <= len(digits) <= 15:
            return ValidationResult(False, ConfidenceLevel.FAILED, f"Invalid length: {len(digits)} digits")

        if digits.startswith("00"):
            digits = digits[2:]
            is_local = False
        else:
            is_local = digits.startswith("0")

        if not is_local and not digits.startswith(self.VALID_PREFIXES):
            return ValidationResult(False, ConfidenceLevel.WEAK, "No recognized country code")

        if is_local or digits.startswith("41"):
            local_part = digits[1:] if is_local else digits[2:]
            if local_part.startswith(self.SWISS_MOBILE_PREFIXES):
                return ValidationResult(True, ConfidenceLevel.FORMAT_VALID)

        return ValidationResult(True, ConfidenceLevel.MODERATE)


class PostalCodeValidator(ValidatorStrategy):
    """Validator for Swiss postal codes (NPA/PLZ 1000-9699)."""

    entity_type = EntityType.SWISS_ADDRESS
    MAX_LENGTH = 100

    POSTAL_PATTERN = re.compile(r"\b([1-9]\d{3})\b")

    def _validate(self, text: str) -> ValidationResult:
        match = self.POSTAL_PATTERN.search(text)
        if not match:
            return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, "No postal code found")

        code = int(match.group(1))
        if not 1000 <= code <= 9699:
            return ValidationResult(False, ConfidenceLevel.WEAK, f"Postal code {code} outside Swiss range")

        return ValidationResult(True, ConfidenceLevel.STANDARD)


class SwissAddressValidator(PostalCodeValidator):
    """Postal code check plus a sanity check on the locality name."""

    NON_CITY_WORDS = frozenset({
        "attestation", "rapport", "report", "bericht", "document", "dokument",
        "contrat", "contract", "vertrag", "version", "edition", "ausgabe",
        "année", "annee", "year", "jahr", "execution", "exécution",
        "pour", "and", "oder", "from", "with", "date", "depuis", "since",
        "fondation", "stiftung",
    })

    def _validate(self, text: str) -> ValidationResult:
        result = super()._validate(text)
        if not result.is_valid:
            return result

        locality = self.POSTAL_PATTERN.split(text, maxsplit=1)[-1].strip()
        if len(locality) < 3:
            return ValidationResult(False, ConfidenceLevel.FAILED, "Locality name too short")

        first_word = locality.split()[0].lower()
        if first_word in self.NON_CITY_WORDS:
            return ValidationResult(
                False, ConfidenceLevel.INVALID_FORMAT, f"'{first_word}' is not a locality"
            )

        return result


class VatNumberValidator(ValidatorStrategy):
    """Validator for Swiss UID (CHE) and selected EU VAT numbers."""

    entity_type = EntityType.VAT_NUMBER
    MAX_LENGTH = 30

    EU_VAT_PATTERN = re.compile(r"^(DE|FR|IT|AT)\d{8,11}$")

    def _validate(self, text: str) -> ValidationResult:
        s = text.upper()

        if s.startswith("CHE"):
            digits = ValidationLogic.NON_DIGIT.sub("", s)
            if len(digits) != 9:
                return ValidationResult(
                    False, ConfidenceLevel.INVALID_FORMAT, f"Invalid Swiss VAT length: {len(digits)} digits"
                )
            if not ValidationLogic.swiss_uid_check(digits):
                return ValidationResult(False, ConfidenceLevel.WEAK, "Swiss UID checksum failed")
            return ValidationResult(True, ConfidenceLevel.FORMAT_VALID)

        if self.EU_VAT_PATTERN.match(ValidationLogic.WHITESPACE.sub("", s)):
            return ValidationResult(True, ConfidenceLevel.MODERATE)

        return ValidationResult(False, ConfidenceLevel.INVALID_FORMAT, "Unrecognized VAT format")


class ValidatorRegistry:
    """Explicit entity type to validator table.

    Built once at pipeline construction and injected where needed.
    """

    def __init__(self, validators: Optional[List[ValidatorStrategy]] = None):
        self._validators: Dict[str, ValidatorStrategy] = {}
        for validator in validators or []:
            self.register(validator)

    def register(self, validator: ValidatorStrategy, entity_type: Optional[str] = None) -> None:
        key = entity_type or validator.entity_type
        if key in self._validators:
            logger.warning(f"Replacing validator for {key}")
        self._validators[key] = validator

    def get(self, entity_type: str) -> Optional[ValidatorStrategy]:
        return self._validators.get(entity_type)

    def has(self, entity_type: str) -> bool:
        return entity_type in self._validators

    @property
    def entity_types(self) -> List[str]:
        return sorted(self._validators)


def build_default_registry() -> ValidatorRegistry:
    """Creates the registry with one validator per supported entity type."""
    return ValidatorRegistry(
        [
            IbanValidator(),
            SwissAvsValidator(),
            DateValidator(),
            EmailValidator(),
            PhoneValidator(),
            SwissAddressValidator(),
            VatNumberValidator(),
        ]
    )


class FormatValidationPass:
    """Applies validators to entities without ever dropping them.

    A valid result boosts confidence by 20%; an invalid one caps it at the
    validator's confidence so a reviewer can still see the entity.
    """

    VALID_BOOST = 1.2

    def __init__(self, registry: Optional[ValidatorRegistry] = None):
        self.registry = registry or build_default_registry()

    def apply(self, entities: List[Entity]) -> List[Entity]:
        results = []
        for entity in entities:
            validator = self.registry.get(entity.entity_type)
            if validator is None:
                results.append(entity.with_metadata(validation_status="unchecked"))
                continue

            outcome = validator.validate(entity.text)
            if outcome.is_valid:
                confidence = min(1.0, entity.confidence * self.VALID_BOOST)
                status = "valid"
            else:
                confidence = min(entity.confidence, outcome.confidence)
                status = "invalid"

            metadata = dict(entity.metadata)
            metadata.update(
                validation_status=status,
                validation_reason=outcome.reason,
                validated_by=validator.name,
            )
            results.append(replace(entity, confidence=confidence, metadata=metadata))

        return results
