"""
PII Validation using External Libraries

Format and checksum validation for entities detected by the pattern
recognizers. Every validator is a pure function returning a ValidationResult
whose confidence is drawn from the fixed ConfidenceLevel scale.

Libraries used:
- python-stdnum: ISO 7064 MOD 97-10 (IBAN), EAN-13 check digit (AVS),
  Swiss UID check digit (CHE VAT)
- phonenumbers: Swiss/EU phone number classification

Usage:
    from veil_engine.detectors.validators import (
        validate_iban, create_default_validator_registry
    )

    result = validate_iban("CH93 0076 2011 6238 5295 7")
    if result.is_valid:
        print(result.confidence)   # 0.95

    registry = create_default_validator_registry()
    registry.validate("EMAIL", "hans@example.ch")
"""

import calendar
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberType
from stdnum import ean
from stdnum.ch import uid
from stdnum.iso7064 import mod_97_10

from veil_engine.data.swiss_postal import (
    MAX_SWISS_POSTAL,
    MIN_SWISS_POSTAL,
    get_postal_database,
)
from veil_engine.types import RegistryFrozenError

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIDENCE SCALE
# =============================================================================

class ConfidenceLevel:
    """Ordered confidence scale; validators never return other values."""

    CHECKSUM_VALID = 0.95
    FORMAT_VALID = 0.90
    STANDARD = 0.85
    KNOWN_VALID = 0.82
    MODERATE = 0.75
    WEAK = 0.50
    INVALID_FORMAT = 0.40
    FAILED = 0.30
    FALSE_POSITIVE = 0.20

    @classmethod
    def values(cls) -> List[float]:
        return [
            cls.CHECKSUM_VALID, cls.FORMAT_VALID, cls.STANDARD, cls.KNOWN_VALID,
            cls.MODERATE, cls.WEAK, cls.INVALID_FORMAT, cls.FAILED, cls.FALSE_POSITIVE,
        ]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    confidence: float
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _valid(confidence: float, **metadata) -> ValidationResult:
    return ValidationResult(True, confidence, None, metadata)


def _invalid(confidence: float, reason: str) -> ValidationResult:
    return ValidationResult(False, confidence, reason)


# =============================================================================
# LOCALE DATA
# =============================================================================

MONTH_NAME_TO_NUMBER: Dict[str, int] = {
    # English
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    # German
    "januar": 1, "februar": 2, "märz": 3, "maerz": 3, "mai": 5, "juni": 6,
    "juli": 7, "oktober": 10, "dezember": 12,
    # French
    "janvier": 1, "février": 2, "fevrier": 2, "mars": 3, "avril": 4, "juin": 6,
    "juillet": 7, "août": 8, "aout": 8, "septembre": 9, "octobre": 10,
    "novembre": 11, "décembre": 12, "decembre": 12,
    # Italian
    "gennaio": 1, "febbraio": 2, "marzo": 3, "aprile": 4, "maggio": 5, "giugno": 6,
    "luglio": 7, "agosto": 8, "settembre": 9, "ottobre": 10, "dicembre": 12,
}

MONTH_NAMES = frozenset(MONTH_NAME_TO_NUMBER)

# Street keywords (EN/FR/DE/IT); German suffixes attach to the street name
STREET_KEYWORDS_PATTERN = re.compile(
    r"(?:\b(?:rue|route|rte|chemin|ch\.|avenue|av\.|boulevard|bd|place|pl\.|quai|allée|"
    r"impasse|passage|via|viale|piazza|corso|vicolo|street|st\.|road|rd\.|lane|drive|"
    r"gasse|weg|platz|allee|ring)\b"
    r"|(?:strasse|straße|str\.|gasse|weg|platz|allee|ring)\b)",
    re.IGNORECASE,
)

HOUSE_NUMBER_PATTERN = re.compile(r"\b\d{1,4}[a-zA-Z]?\b")


# =============================================================================
# CHECKSUM ALGORITHMS
# =============================================================================

def iban_checksum_valid(iban: str) -> bool:
    """
    ISO 7064 MOD 97-10 over the rearranged IBAN.
    First four characters move to the end; letters count as two-digit numbers.
    """
    rearranged = iban[4:] + iban[:4]
    return mod_97_10.checksum(rearranged) == 1


def ean13_check_digit(first12: str) -> int:
    """EAN-13 check digit: weights 1/3 alternating from the left."""
    return int(ean.calc_check_digit(first12))


def swiss_uid_check_digit(first8: str) -> Optional[int]:
    """Swiss UID mod-11 check digit; None when the remainder makes it invalid (10)."""
    check = int(uid.calc_check_digit(first8))
    return None if check == 10 else check


# =============================================================================
# IBAN VALIDATION
# =============================================================================

IBAN_MAX_LENGTH = 34

IBAN_LENGTHS = {
    "CH": 21, "LI": 21, "DE": 22, "AT": 20, "FR": 27, "IT": 27,
    "ES": 24, "NL": 18, "BE": 16, "LU": 20, "GB": 22, "IE": 22,
    "PT": 25, "GR": 27, "PL": 28, "CZ": 24, "SK": 24, "HU": 28,
    "SE": 24, "DK": 18, "NO": 15, "FI": 18, "MT": 31,
}

_IBAN_SHAPE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]+$")


def validate_iban(text: str, context: str = "") -> ValidationResult:
    """
    Validate an IBAN (with or without spaces).

    Returns CHECKSUM_VALID on success; a failed MOD 97-10 check yields
    INVALID_FORMAT with reason "checksum failed".
    """
    iban = re.sub(r"\s+", "", text).upper()

    if len(iban) > IBAN_MAX_LENGTH:
        return _invalid(ConfidenceLevel.FAILED, "too long")

    if len(iban) < 15:
        return _invalid(ConfidenceLevel.FAILED, "too short")
    if not _IBAN_SHAPE.match(iban):
        return _invalid(ConfidenceLevel.FAILED, "invalid characters")

    country = iban[:2]
    expected = IBAN_LENGTHS.get(country)
    if expected is not None and len(iban) != expected:
        return _invalid(ConfidenceLevel.INVALID_FORMAT, f"invalid length for {country}")

    if not iban_checksum_valid(iban):
        return _invalid(ConfidenceLevel.INVALID_FORMAT, "checksum failed")

    return _valid(ConfidenceLevel.CHECKSUM_VALID, country=country)


# =============================================================================
# SWISS AVS (AHV / social security number)
# =============================================================================

def validate_swiss_avs(text: str, context: str = "") -> ValidationResult:
    digits = re.sub(r"\D", "", text)

    if len(digits) != 13:
        return _invalid(ConfidenceLevel.FAILED, f"invalid length: {len(digits)} digits")
    if not digits.startswith("756"):
        return _invalid(ConfidenceLevel.FAILED, "missing 756 prefix")

    if ean13_check_digit(digits[:12]) != int(digits[12]):
        return _invalid(ConfidenceLevel.INVALID_FORMAT, "checksum failed")

    return _valid(ConfidenceLevel.CHECKSUM_VALID, formatted=format_avs(digits))


def format_avs(digits: str) -> str:
    """Render 13 digits as 756.XXXX.XXXX.XX"""
    digits = re.sub(r"\D", "", digits)
    return f"{digits[:3]}.{digits[3:7]}.{digits[7:11]}.{digits[11:13]}"


def generate_avs(body: str) -> str:
    """Build a checksum-valid AVS number from 9 body digits (test fixtures)."""
    if len(body) != 9 or not body.isdigit():
        raise ValueError("AVS body must be exactly 9 digits")
    first12 = "756" + body
    return format_avs(first12 + str(ean13_check_digit(first12)))


# =============================================================================
# VAT NUMBER VALIDATION
# =============================================================================

_EU_VAT = re.compile(r"^(DE|FR|IT|AT)\d{8,11}$")


def validate_vat(text: str, context: str = "") -> ValidationResult:
    value = text.upper()

    if value.startswith("CHE"):
        digits = re.sub(r"\D", "", value)
        if len(digits) != 9:
            return _invalid(ConfidenceLevel.INVALID_FORMAT, f"invalid Swiss VAT length: {len(digits)} digits")
        if swiss_uid_check_digit(digits[:8]) != int(digits[8]):
            return _invalid(ConfidenceLevel.WEAK, "checksum failed")
        return _valid(ConfidenceLevel.FORMAT_VALID, country="CH")

    if _EU_VAT.match(re.sub(r"\s+", "", value)):
        return _valid(ConfidenceLevel.MODERATE, country=value[:2])

    return _invalid(ConfidenceLevel.INVALID_FORMAT, "Unrecognized VAT format")


# =============================================================================
# DATE VALIDATION
# =============================================================================

_NUMERIC_DATE = re.compile(r"(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})")
_NAMED_DATE = re.compile(r"(\d{1,2})\.?\s*([a-zäöüéèû]+)\s*(\d{2,4})")


def _expand_year(year: int) -> int:
    if year < 100:
        year += 1900 if year > 30 else 2000
    return year


def _parse_date(text: str):
    match = _NUMERIC_DATE.search(text)
    if match:
        return int(match.group(1)), int(match.group(2)), _expand_year(int(match.group(3)))

    match = _NAMED_DATE.search(text.lower())
    if match:
        month = MONTH_NAME_TO_NUMBER.get(match.group(2))
        if month:
            return int(match.group(1)), month, _expand_year(int(match.group(3)))
    return None


def validate_date(text: str, context: str = "") -> ValidationResult:
    parsed = _parse_date(text)
    if parsed is None:
        return _invalid(ConfidenceLevel.INVALID_FORMAT, "could not parse date")

    day, month, year = parsed
    if not 1 <= month <= 12:
        return _invalid(ConfidenceLevel.FAILED, f"invalid month: {month}")
    if year < 1900 or year > 2100:
        return _invalid(ConfidenceLevel.INVALID_FORMAT, f"year out of range: {year}")

    days_in_month = calendar.monthrange(year, month)[1]
    if not 1 <= day <= days_in_month:
        return _invalid(ConfidenceLevel.FAILED, f"invalid day: {day}")

    return _valid(ConfidenceLevel.STANDARD, iso=f"{year:04d}-{month:02d}-{day:02d}")


# =============================================================================
# EMAIL VALIDATION
# =============================================================================

EMAIL_MAX_LENGTH = 254

_EMAIL = re.compile(
    r"^[a-z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
    r"(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)+$"
)


def validate_email(text: str, context: str = "") -> ValidationResult:
    if len(text) > EMAIL_MAX_LENGTH:
        return _invalid(ConfidenceLevel.FAILED, "too long")

    email = text.strip().lower()
    if not _EMAIL.match(email):
        return _invalid(ConfidenceLevel.FAILED, "does not match email format")
    if ".." in email:
        return _invalid(ConfidenceLevel.FAILED, "consecutive dots")

    tld = email.rsplit(".", 1)[-1]
    if len(tld) < 2 or not tld.isalpha():
        return _invalid(ConfidenceLevel.FAILED, "invalid TLD")

    return _valid(ConfidenceLevel.FORMAT_VALID)


# =============================================================================
# PHONE NUMBER VALIDATION
# =============================================================================

PHONE_MAX_LENGTH = 20

PHONE_COUNTRY_PREFIXES = ("41", "49", "33", "39", "43", "32", "31", "352")


def validate_phone(text: str, context: str = "", default_region: str = "CH") -> ValidationResult:
    """
    Validate a Swiss/EU phone number.

    Swiss mobile numbers score FORMAT_VALID, other valid numbers MODERATE.
    A number without a recognized country prefix (or national 0) is WEAK.
    """
    if len(text) > PHONE_MAX_LENGTH:
        return _invalid(ConfidenceLevel.FAILED, "too long")

    digits = re.sub(r"\D", "", text)
    if not 9 <= len(digits) <= 15:
        return _invalid(ConfidenceLevel.FAILED, f"invalid length: {len(digits)} digits")

    stripped = text.strip()
    international = stripped.startswith("+") or digits.startswith("00")
    national = digits.startswith("0") and not digits.startswith("00")
    bare = digits[2:] if digits.startswith("00") else digits

    if international or not national:
        if not any(bare.startswith(prefix) for prefix in PHONE_COUNTRY_PREFIXES):
            return _invalid(ConfidenceLevel.WEAK, "no recognized country code")
        if not international:
            stripped = "+" + bare

    try:
        parsed = phonenumbers.parse(stripped, default_region)
    except NumberParseException:
        return _valid(ConfidenceLevel.WEAK, parse_failed=True)

    if not phonenumbers.is_valid_number(parsed):
        return _valid(ConfidenceLevel.WEAK, number_valid=False)

    country = phonenumbers.region_code_for_number(parsed)
    num_type = phonenumbers.number_type(parsed)
    metadata = {
        "country": country,
        "e164": phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164),
    }

    if country == "CH" and num_type == PhoneNumberType.MOBILE:
        return _valid(ConfidenceLevel.FORMAT_VALID, type="mobile", **metadata)
    return _valid(ConfidenceLevel.MODERATE, **metadata)


# =============================================================================
# SWISS POSTAL CODE / ADDRESS VALIDATION
# =============================================================================

def validate_swiss_postal_code(text: str, context: str = "") -> ValidationResult:
    match = re.search(r"\b([1-9]\d{3})\b", text)
    if not match:
        return _invalid(ConfidenceLevel.INVALID_FORMAT, "no postal code found")

    code = match.group(1)
    if not MIN_SWISS_POSTAL <= int(code) <= MAX_SWISS_POSTAL:
        return _invalid(ConfidenceLevel.WEAK, "outside Swiss range")

    info = get_postal_database().lookup(code)
    if info is not None:
        return _valid(ConfidenceLevel.KNOWN_VALID, city=info["city"], canton=info["canton"])
    return _valid(ConfidenceLevel.STANDARD)


NON_CITY_WORDS = frozenset({
    "attestation", "rapport", "report", "bericht", "document", "dokument",
    "contrat", "contract", "vertrag", "contratto",
    "version", "edition", "ausgabe", "edizione",
    "année", "annee", "year", "jahr", "anno",
    "execution", "exécution", "ausführung", "esecuzione",
    "pour", "and", "oder", "from", "with", "date", "depuis", "since", "ab",
    "fondation", "collective", "stiftung", "fondazione",
    "l'exécution", "l'execution", "l'année", "l'annee",
})

KNOWN_SWISS_CITIES_IN_YEAR_RANGE = frozenset({
    "sion", "sierre", "martigny", "monthey", "saxon", "fully", "leytron",
    "chamoson", "conthey", "vétroz", "vetroz", "ardon", "riddes", "saillon",
    "brig", "visp", "naters", "zermatt", "saas-fee",
    "neuchâtel", "neuchatel", "fleurier",
    "couvet", "môtiers", "motiers", "travers", "boudry", "cortaillod",
    "colombier", "auvernier", "bevaix", "gorgier", "saint-aubin",
})

_DATE_PREFIX = re.compile(r"\d{1,2}[./]\d{1,2}[./]?\s*$")
_DATE_KEYWORD_BEFORE = re.compile(
    r"\b(?:date|depuis|since|ab|from|le|am|on|year|année|annee|jahr|anno|en|im|in|vom|du)\s*[:.]?\s*$",
    re.IGNORECASE,
)


def _year_range_check(address: str, city: str, context: str) -> ValidationResult:
    first_word = (city.split() or [""])[0].lower()

    if first_word in KNOWN_SWISS_CITIES_IN_YEAR_RANGE:
        return _valid(ConfidenceLevel.STANDARD, known_city=True)
    if first_word in MONTH_NAMES:
        return _invalid(ConfidenceLevel.FALSE_POSITIVE, "year followed by month name")
    if first_word in NON_CITY_WORDS:
        return _invalid(ConfidenceLevel.FAILED, "year followed by non-city word")

    if context:
        position = context.find(address)
        if position > 0:
            before = context[max(0, position - 20):position]
            if _DATE_PREFIX.search(before) or _DATE_KEYWORD_BEFORE.search(before):
                return _invalid(ConfidenceLevel.FAILED, "preceded by date context")

    return _valid(ConfidenceLevel.MODERATE)


def validate_swiss_address(text: str, context: str = "") -> ValidationResult:
    """
    Validate a "postal code + city" span.

    Codes 1900-2099 collide with years and get extra scrutiny.
    """
    address = re.sub(r"^CH[-\s]?", "", text.strip(), flags=re.IGNORECASE)
    code_text = address[:4]
    if not code_text.isdigit():
        return _invalid(ConfidenceLevel.FAILED, "missing postal code")

    code = int(code_text)
    if not 1000 <= code <= 9999:
        return _invalid(ConfidenceLevel.FAILED, "outside Swiss range")

    city = address[4:].strip()
    if len(city) < 3:
        return _invalid(ConfidenceLevel.FAILED, "city too short")

    if 1900 <= code <= 2099:
        return _year_range_check(text, city, context)

    first_word = (city.split() or [""])[0].lower()
    if first_word in NON_CITY_WORDS:
        return _invalid(ConfidenceLevel.INVALID_FORMAT, "not a city name")

    return _valid(ConfidenceLevel.KNOWN_VALID)


def validate_street_address(text: str, context: str = "") -> ValidationResult:
    has_keyword = STREET_KEYWORDS_PATTERN.search(text) is not None
    has_number = HOUSE_NUMBER_PATTERN.search(text) is not None

    if has_keyword and has_number:
        return _valid(ConfidenceLevel.STANDARD)
    if has_keyword:
        return _valid(ConfidenceLevel.WEAK, missing="house number")
    return _invalid(ConfidenceLevel.FAILED, "no street keyword")


# =============================================================================
# VALIDATOR REGISTRY
# =============================================================================

Validator = Callable[..., ValidationResult]


class ValidatorRegistry:
    """
    Validators keyed by entity type.

    Registration is idempotent per type: a higher priority replaces the
    existing validator, an equal or lower one is ignored.
    """

    def __init__(self):
        self._validators: Dict[str, Dict[str, Any]] = {}
        self._frozen = False

    def register(self, entity_type: str, validator: Validator, priority: int = 0):
        if self._frozen:
            raise RegistryFrozenError(f"validator registry is frozen; cannot register {entity_type}")

        existing = self._validators.get(entity_type)
        if existing is None or priority > existing["priority"]:
            self._validators[entity_type] = {"validator": validator, "priority": priority}

    def get(self, entity_type: str) -> Optional[Validator]:
        entry = self._validators.get(entity_type)
        return entry["validator"] if entry else None

    def has(self, entity_type: str) -> bool:
        return entity_type in self._validators

    def validate(self, entity_type: str, text: str, context: str = "") -> Optional[ValidationResult]:
        """Run the validator for the type; None when the type has none."""
        validator = self.get(entity_type)
        if validator is None:
            return None
        return validator(text, context)

    def get_all(self) -> Dict[str, Validator]:
        return {etype: entry["validator"] for etype, entry in self._validators.items()}

    def freeze(self):
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def size(self) -> int:
        return len(self._validators)

    def reset(self):
        """Clear and unfreeze (test isolation)."""
        self._validators.clear()
        self._frozen = False


DEFAULT_VALIDATORS: Dict[str, Validator] = {
    "IBAN": validate_iban,
    "SWISS_AVS": validate_swiss_avs,
    "VAT_NUMBER": validate_vat,
    "DATE": validate_date,
    "EMAIL": validate_email,
    "PHONE_NUMBER": validate_phone,
    "SWISS_POSTAL_CODE": validate_swiss_postal_code,
    "SWISS_ADDRESS": validate_swiss_address,
    "STREET_ADDRESS": validate_street_address,
}


def create_default_validator_registry() -> ValidatorRegistry:
    """Frozen registry holding every built-in validator."""
    registry = ValidatorRegistry()
    for entity_type, validator in DEFAULT_VALIDATORS.items():
        registry.register(entity_type, validator)
    registry.freeze()
    logger.debug(f"Validator registry ready with {registry.size} validators")
    return registry
