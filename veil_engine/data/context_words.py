#!/usr/bin/env python3
"""
Context Words for Confidence Enhancement

Lexical cues that raise (positive) or lower (negative) the confidence of a
nearby entity, per entity type and language (en/fr/de).

Usage:
    from veil_engine.data.context_words import get_context_words

    words = get_context_words("IBAN", "de")
"""

from dataclasses import dataclass
from typing import Dict, List

POSITIVE = "positive"
NEGATIVE = "negative"


@dataclass(frozen=True)
class ContextWord:
    word: str
    weight: float = 1.0
    polarity: str = POSITIVE

    def __post_init__(self):
        if not 0.0 <= self.weight <= 1.0:
            raise ValueError(f"context word weight must be within [0, 1], got {self.weight}")
        if self.polarity not in (POSITIVE, NEGATIVE):
            raise ValueError(f"unknown polarity: {self.polarity}")


def _pos(*pairs) -> List[ContextWord]:
    return [ContextWord(word, weight, POSITIVE) for word, weight in pairs]


def _neg(*pairs) -> List[ContextWord]:
    return [ContextWord(word, weight, NEGATIVE) for word, weight in pairs]


# ============================================================================
# Per-type tables
# ============================================================================

CONTEXT_WORDS: Dict[str, Dict[str, List[ContextWord]]] = {
    "PERSON_NAME": {
        "en": _pos(("mr", 0.9), ("mrs", 0.9), ("ms", 0.8), ("dr", 0.8), ("name", 0.7),
                   ("dear", 0.8), ("signed", 0.6), ("patient", 0.6), ("contact", 0.5),
                   ("employee", 0.5))
              + _neg(("company", 0.6), ("street", 0.5), ("product", 0.5), ("inc", 0.7)),
        "fr": _pos(("monsieur", 0.9), ("madame", 0.9), ("mme", 0.9), ("m.", 0.7), ("nom", 0.7),
                   ("prénom", 0.8), ("cher", 0.7), ("chère", 0.7), ("signé", 0.6),
                   ("collaborateur", 0.5))
              + _neg(("société", 0.6), ("rue", 0.5), ("produit", 0.5), ("sàrl", 0.7)),
        "de": _pos(("herr", 0.9), ("frau", 0.9), ("name", 0.7), ("vorname", 0.8),
                   ("nachname", 0.8), ("sehr geehrte", 0.8), ("sehr geehrter", 0.8),
                   ("unterschrift", 0.6), ("mitarbeiter", 0.5))
              + _neg(("firma", 0.6), ("strasse", 0.5), ("produkt", 0.5), ("gmbh", 0.7)),
    },
    "PHONE_NUMBER": {
        "en": _pos(("phone", 1.0), ("tel", 0.9), ("mobile", 0.9), ("cell", 0.8), ("fax", 0.7),
                   ("call", 0.6))
              + _neg(("invoice no", 0.6), ("order", 0.5), ("reference", 0.5)),
        "fr": _pos(("téléphone", 1.0), ("tél", 0.9), ("tel", 0.9), ("portable", 0.9),
                   ("mobile", 0.9), ("natel", 0.9), ("fax", 0.7))
              + _neg(("facture no", 0.6), ("commande", 0.5), ("référence", 0.5)),
        "de": _pos(("telefon", 1.0), ("tel", 0.9), ("handy", 0.9), ("mobil", 0.9),
                   ("natel", 0.9), ("fax", 0.7), ("rufnummer", 0.8))
              + _neg(("rechnungsnummer", 0.6), ("bestellung", 0.5), ("referenz", 0.5)),
    },
    "EMAIL": {
        "en": _pos(("email", 1.0), ("e-mail", 1.0), ("mail", 0.7), ("contact", 0.5)),
        "fr": _pos(("courriel", 1.0), ("e-mail", 1.0), ("email", 1.0), ("adresse électronique", 0.9)),
        "de": _pos(("e-mail", 1.0), ("email", 1.0), ("mail", 0.7), ("kontakt", 0.5)),
    },
    "ADDRESS": {
        "en": _pos(("address", 1.0), ("resides", 0.7), ("domicile", 0.7), ("located", 0.5),
                   ("ship to", 0.8), ("bill to", 0.8)),
        "fr": _pos(("adresse", 1.0), ("domicile", 0.8), ("domicilié", 0.8), ("domiciliée", 0.8),
                   ("sis", 0.6), ("livraison", 0.6)),
        "de": _pos(("adresse", 1.0), ("anschrift", 1.0), ("wohnhaft", 0.9), ("wohnort", 0.8),
                   ("lieferadresse", 0.8)),
    },
    "IBAN": {
        "en": _pos(("iban", 1.0), ("account", 0.8), ("bank", 0.7), ("transfer", 0.6)),
        "fr": _pos(("iban", 1.0), ("compte", 0.8), ("banque", 0.7), ("virement", 0.7),
                   ("coordonnées bancaires", 0.9)),
        "de": _pos(("iban", 1.0), ("konto", 0.8), ("bank", 0.7), ("überweisung", 0.7),
                   ("bankverbindung", 0.9)),
    },
    "SWISS_AVS": {
        "en": _pos(("avs", 1.0), ("ahv", 1.0), ("social security", 0.9), ("insurance number", 0.7)),
        "fr": _pos(("avs", 1.0), ("numéro avs", 1.0), ("assurance sociale", 0.9), ("no avs", 1.0)),
        "de": _pos(("ahv", 1.0), ("ahv-nr", 1.0), ("sozialversicherungsnummer", 1.0),
                   ("versichertennummer", 0.8)),
    },
    "SWISS_POSTAL_CODE": {
        "en": _pos(("zip", 0.8), ("postal code", 0.9), ("postcode", 0.9)),
        "fr": _pos(("npa", 1.0), ("code postal", 0.9), ("localité", 0.7)),
        "de": _pos(("plz", 1.0), ("postleitzahl", 0.9), ("ort", 0.6)),
    },
    "DATE": {
        "en": _pos(("born", 0.9), ("date of birth", 1.0), ("dob", 1.0), ("birthday", 0.9))
              + _neg(("invoice date", 0.6), ("due", 0.5), ("issued", 0.4), ("version", 0.6)),
        "fr": _pos(("né le", 1.0), ("née le", 1.0), ("date de naissance", 1.0))
              + _neg(("date de facture", 0.6), ("échéance", 0.5), ("version", 0.6)),
        "de": _pos(("geboren", 1.0), ("geb.", 0.9), ("geburtsdatum", 1.0))
              + _neg(("rechnungsdatum", 0.6), ("fällig", 0.5), ("version", 0.6)),
    },
    "ORGANIZATION": {
        "en": _pos(("company", 0.8), ("inc", 0.9), ("ltd", 0.9), ("employer", 0.7), ("corporation", 0.8)),
        "fr": _pos(("société", 0.8), ("sa", 0.7), ("sàrl", 0.9), ("entreprise", 0.8), ("employeur", 0.7)),
        "de": _pos(("firma", 0.8), ("ag", 0.7), ("gmbh", 0.9), ("unternehmen", 0.8), ("arbeitgeber", 0.7)),
    },
}

# Words that signal PII regardless of type
GLOBAL_CONTEXT_WORDS: Dict[str, List[ContextWord]] = {
    "en": _pos(("personal", 0.5), ("confidential", 0.4), ("client", 0.4)),
    "fr": _pos(("personnel", 0.5), ("confidentiel", 0.4), ("client", 0.4)),
    "de": _pos(("persönlich", 0.5), ("vertraulich", 0.4), ("kunde", 0.4)),
}


# ============================================================================
# Lookup helpers
# ============================================================================

def get_context_words(entity_type: str, language: str) -> List[ContextWord]:
    """Context words for one type and language (empty when unknown)."""
    return list(CONTEXT_WORDS.get(entity_type, {}).get(language, []))


def get_all_context_words(entity_type: str) -> List[ContextWord]:
    """Every language's words for a type, deduplicated by (word, polarity)."""
    seen = set()
    words = []
    for language_words in CONTEXT_WORDS.get(entity_type, {}).values():
        for word in language_words:
            key = (word.word, word.polarity)
            if key in seen:
                continue
            seen.add(key)
            words.append(word)
    return words


def get_positive_words(entity_type: str, language: str) -> List[ContextWord]:
    return [w for w in get_context_words(entity_type, language) if w.polarity == POSITIVE]


def get_negative_words(entity_type: str, language: str) -> List[ContextWord]:
    return [w for w in get_context_words(entity_type, language) if w.polarity == NEGATIVE]


def get_global_context_words(language: str) -> List[ContextWord]:
    return list(GLOBAL_CONTEXT_WORDS.get(language, []))
