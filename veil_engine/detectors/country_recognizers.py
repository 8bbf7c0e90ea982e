"""
Built-in Swiss/EU recognizers.

Priorities order conflicting claims on the same span; specificity breaks
ties between equal priorities (country > region > global).
"""

from typing import List

from veil_engine.detectors.recognizers import (
    COUNTRY,
    GLOBAL,
    REGION,
    PatternRecognizer,
    PatternSpec,
    RecognizerConfig,
)
from veil_engine.detectors.validators import MONTH_NAMES

LANGUAGES = ("en", "fr", "de")
EU_COUNTRIES = ("CH", "LI", "DE", "AT", "FR", "IT", "BE", "NL", "LU")

_MONTHS = "|".join(sorted(MONTH_NAMES, key=len, reverse=True))

# Capitalised word, case-sensitive even under the global IGNORECASE flag
_CAP_WORD = r"(?-i:[A-ZÄÖÜÉÈÀ][a-zäöüéèàçëïôâ]+)"
_NAME = rf"{_CAP_WORD}(?:-{_CAP_WORD})?"

PERSON_TITLES = ("Herr", "Frau", "Monsieur", "Madame", "Mme", "Mlle", "Mr", "Mrs", "Ms", "Dr", "Prof")


def _title_lookbehind() -> str:
    # One fixed-width lookbehind per title form ("Dr " and "Dr. ")
    parts = []
    for title in PERSON_TITLES:
        parts.append(rf"(?<=\b{title} )")
        parts.append(rf"(?<=\b{title}\. )")
    return "(?:" + "|".join(parts) + ")"


SWISS_AVS = RecognizerConfig(
    name="SwissAVS",
    supported_languages=LANGUAGES,
    supported_countries=("CH",),
    patterns=[
        PatternSpec(r"\b756\.\d{4}\.\d{4}\.\d{2}\b", 0.7, "SWISS_AVS", "avs_formatted"),
        PatternSpec(r"\b756[\s.]?\d{4}[\s.]?\d{4}[\s.]?\d{2}\b", 0.6, "SWISS_AVS", "avs_compact"),
    ],
    priority=70,
    specificity=COUNTRY,
    context_words=("AHV", "AVS", "AHV-Nr", "No AVS", "Sozialversicherungsnummer", "numéro AVS", "social security"),
    validator="SWISS_AVS",
)

IBAN = RecognizerConfig(
    name="IBAN",
    supported_languages=LANGUAGES,
    supported_countries=EU_COUNTRIES,
    patterns=[
        PatternSpec(
            r"\b[A-Z]{2}\d{2}(?:\s?[A-Z0-9]{4}){2,7}(?:\s?[A-Z0-9]{1,3})?\b",
            0.5, "IBAN", "iban_grouped",
        ),
    ],
    priority=65,
    specificity=REGION,
    context_words=("IBAN", "Konto", "compte", "account", "Bankverbindung", "coordonnées bancaires"),
    validator="IBAN",
)

SWISS_VAT = RecognizerConfig(
    name="SwissVAT",
    supported_languages=LANGUAGES,
    supported_countries=("CH",),
    patterns=[
        PatternSpec(
            r"\bCHE[-\s]?\d{3}[.\s]?\d{3}[.\s]?\d{3}(?:\s*(?:MWST|TVA|IVA))?\b",
            0.6, "VAT_NUMBER", "che_uid",
        ),
    ],
    priority=60,
    specificity=COUNTRY,
    context_words=("MWST", "TVA", "IVA", "UID", "VAT", "Mehrwertsteuer"),
    validator="VAT_NUMBER",
)

EU_VAT = RecognizerConfig(
    name="EUVAT",
    supported_languages=LANGUAGES,
    supported_countries=("DE", "FR", "IT", "AT"),
    patterns=[
        PatternSpec(r"\b(?-i:DE|FR|IT|AT)\s?\d{8,11}\b", 0.5, "VAT_NUMBER", "eu_vat"),
    ],
    priority=55,
    specificity=REGION,
    context_words=("USt-IdNr", "VAT", "TVA", "numéro de TVA", "Umsatzsteuer"),
    validator="VAT_NUMBER",
)

EMAIL = RecognizerConfig(
    name="Email",
    supported_languages=LANGUAGES,
    supported_countries=(),
    patterns=[
        PatternSpec(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", 0.5, "EMAIL", "email"),
    ],
    priority=60,
    specificity=GLOBAL,
    context_words=("email", "e-mail", "courriel", "mail"),
    validator="EMAIL",
)

PHONE = RecognizerConfig(
    name="Phone",
    supported_languages=LANGUAGES,
    supported_countries=EU_COUNTRIES,
    patterns=[
        PatternSpec(
            r"(?<![\w+])(?:(?:\+|00)(?:41|49|33|39|43|32|31|352)[\s.-]?(?:\(0\)[\s.-]?)?\d{1,4}|0\d{1,3})"
            r"(?:[\s.-]?\d{2,4}){2,4}(?!\w)",
            0.4, "PHONE_NUMBER", "phone_eu",
        ),
    ],
    priority=50,
    specificity=REGION,
    context_words=("Tel", "Tél", "Telefon", "téléphone", "phone", "mobile", "Natel", "Handy", "Fax"),
    validator="PHONE_NUMBER",
)

SWISS_POSTAL_CITY = RecognizerConfig(
    name="SwissPostalCity",
    supported_languages=LANGUAGES,
    supported_countries=("CH",),
    patterns=[
        PatternSpec(
            rf"\b(?:CH[-\s]?)?[1-9]\d{{3}}\s+{_CAP_WORD}(?:-[A-Za-zäöüéèàç]+)*",
            0.5, "SWISS_ADDRESS", "postal_city",
        ),
    ],
    priority=45,
    specificity=COUNTRY,
    context_words=("Adresse", "address", "domicile", "Wohnort"),
    validator="SWISS_ADDRESS",
)

DATE = RecognizerConfig(
    name="Date",
    supported_languages=LANGUAGES,
    supported_countries=(),
    patterns=[
        PatternSpec(r"\b\d{1,2}[./-]\d{1,2}[./-](?:\d{4}|\d{2})\b", 0.6, "DATE", "date_numeric"),
        PatternSpec(rf"\b\d{{1,2}}\.?\s+(?:{_MONTHS})\s+\d{{4}}\b", 0.65, "DATE", "date_named"),
    ],
    priority=40,
    specificity=GLOBAL,
    context_words=("geboren", "né le", "born", "Geburtsdatum", "date de naissance", "date of birth"),
    validator="DATE",
)

PERSON_TITLE = RecognizerConfig(
    name="PersonTitle",
    supported_languages=LANGUAGES,
    supported_countries=(),
    patterns=[
        PatternSpec(rf"{_title_lookbehind()}{_NAME}(?: {_NAME})?", 0.6, "PERSON_NAME", "titled_name"),
    ],
    priority=40,
    specificity=GLOBAL,
    context_words=("Herr", "Frau", "Monsieur", "Madame", "Mr", "Mrs", "Dr"),
)

BUILTIN_RECOGNIZERS = (
    SWISS_AVS, IBAN, SWISS_VAT, EU_VAT, EMAIL, PHONE, SWISS_POSTAL_CITY, DATE, PERSON_TITLE,
)


def create_builtin_recognizers() -> List[PatternRecognizer]:
    """One PatternRecognizer per built-in config."""
    return [PatternRecognizer(config) for config in BUILTIN_RECOGNIZERS]
