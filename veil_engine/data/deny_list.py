#!/usr/bin/env python3
"""
Deny-list for PII Detection False Positive Suppression

Known false positives (invoice table headers, acronyms, month abbreviations,
company and street words) organized as global, per-entity-type and
per-language scopes.

String patterns compare case-insensitively after trimming; regex patterns
test the untrimmed matched text.

Usage:
    from veil_engine.data.deny_list import DenyList

    deny_list = DenyList()
    deny_list.is_denied("Montant", "PERSON_NAME", "fr")   # True

    custom = DenyList.from_file("deny_list.yaml")
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Set, Union

import yaml

logger = logging.getLogger(__name__)

DenyEntry = Union[str, Pattern]

GLOBAL_SCOPE = "global"
ENTITY_TYPE_SCOPE = "entity_type"
LANGUAGE_SCOPE = "language"


# ============================================================================
# Invoice / table headers (global)
# ============================================================================

TABLE_HEADERS_FR: Set[str] = {
    "Montant", "Libellé", "Description", "Quantité", "Prix", "Total",
    "Sous-total", "TVA", "Rabais", "Réduction", "Référence", "Numéro",
    "Facture", "Client", "Fournisseur", "Désignation", "Unité", "Remise",
    "HT", "TTC",
}

TABLE_HEADERS_DE: Set[str] = {
    "Beschreibung", "Betrag", "Menge", "Preis", "Summe", "MwSt",
    "Zwischensumme", "Rabatt", "Referenz", "Nummer", "Rechnung", "Kunde",
    "Lieferant", "Bezeichnung", "Einheit", "Netto", "Brutto",
}

TABLE_HEADERS_EN: Set[str] = {
    "Amount", "Quantity", "Price", "Subtotal", "Tax", "Discount",
    "Reference", "Number", "Invoice", "Customer", "Supplier", "Unit",
    "Net", "Gross",
}

DATE_HEADERS: Set[str] = {"Date", "Datum"}


# ============================================================================
# PERSON_NAME false positive shapes
# ============================================================================

PERSON_NAME_PATTERNS: List[Pattern] = [
    # 2-4 letter uppercase acronyms
    re.compile(r"^[A-Z]{2,4}$"),
    # Pure numbers
    re.compile(r"^\d+$"),
    # Month / day abbreviations (EN/FR/DE)
    re.compile(r"^(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)$", re.IGNORECASE),
    re.compile(r"^(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun)$", re.IGNORECASE),
    re.compile(r"^(?:Janv|Févr|Mars|Avr|Mai|Juin|Juil|Août|Sept|Oct|Nov|Déc)$", re.IGNORECASE),
    re.compile(r"^(?:Jan|Feb|Mär|Apr|Mai|Jun|Jul|Aug|Sep|Okt|Nov|Dez)$", re.IGNORECASE),
    # Legal-form suffixes
    re.compile(r"\b(?:Ltd|AG|SA|GmbH|Inc|Corp|LLC|Sàrl|SARL|Cie|KG|OHG|SE|NV|BV|Plc)\.?$", re.IGNORECASE),
    # Street prefixes (IT/FR/DE)
    re.compile(
        r"^(?:Via|Viale|Piazza|Corso|Vicolo|Largo|Rue|Avenue|Boulevard|Chemin|Route|"
        r"Place|Allée|Strasse|Straße|Gasse|Weg|Platz|Allee)\b",
        re.IGNORECASE,
    ),
    # Company / service endings
    re.compile(
        r"\b(?:Holding|Group|Technologies|Services|Solutions|Systems|Consulting|"
        r"Partners|Associates|Foundation|Institute|Bank)\s*$",
        re.IGNORECASE,
    ),
    # Capitalized product/service word pairs
    re.compile(r"^(?:Case|Notre|Votre|Services|Gestion|Module|Données|Coordonnées)\s", re.IGNORECASE),
]


def parse_regex_flags(flags: Optional[str]) -> int:
    """Translate JS-style flag letters ("i", "m", "s") into re flags."""
    value = 0
    for flag in flags or "":
        if flag == "i":
            value |= re.IGNORECASE
        elif flag == "m":
            value |= re.MULTILINE
        elif flag == "s":
            value |= re.DOTALL
        elif flag not in "gu":
            raise ValueError(f"unsupported regex flag: {flag}")
    return value


def parse_pattern_entry(entry: Any) -> DenyEntry:
    """A plain string, or {pattern, type: string|regex, flags}."""
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict) and "pattern" in entry:
        if entry.get("type", "string") == "regex":
            return re.compile(entry["pattern"], parse_regex_flags(entry.get("flags")))
        return str(entry["pattern"])
    raise ValueError(f"invalid deny-list entry of type {type(entry).__name__}")


class _Scope:
    """String set plus regex list for one scope key."""

    __slots__ = ("strings", "regexes", "entries")

    def __init__(self):
        self.strings: Set[str] = set()
        self.regexes: List[Pattern] = []
        self.entries: List[DenyEntry] = []

    def add(self, entry: DenyEntry):
        self.entries.append(entry)
        if isinstance(entry, str):
            self.strings.add(entry.strip().lower())
        else:
            self.regexes.append(entry)

    def matches(self, lowered: str, raw: str) -> bool:
        if lowered in self.strings:
            return True
        return any(regex.search(raw) for regex in self.regexes)


class DenyList:
    """
    Instance-based deny-list.

    Built once and shared read-only by the recognizers and the
    deny-list filter pass.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self._global = _Scope()
        self._by_entity_type: Dict[str, _Scope] = {}
        self._by_language: Dict[str, _Scope] = {}
        if config is None:
            self._load_defaults()
        else:
            self._load(config)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _load_defaults(self):
        for header in sorted(TABLE_HEADERS_FR | TABLE_HEADERS_DE | TABLE_HEADERS_EN | DATE_HEADERS):
            self._global.add(header)
        for regex in PERSON_NAME_PATTERNS:
            self.add_pattern(regex, ENTITY_TYPE_SCOPE, "PERSON_NAME")

    def _load(self, config: Dict[str, Any]):
        for entry in config.get("global", []):
            self._add_entry(entry, GLOBAL_SCOPE, None)
        by_type = config.get("by_entity_type", config.get("byEntityType", {})) or {}
        for entity_type, entries in by_type.items():
            for entry in entries or []:
                self._add_entry(entry, ENTITY_TYPE_SCOPE, entity_type)
        by_language = config.get("by_language", config.get("byLanguage", {})) or {}
        for language, entries in by_language.items():
            for entry in entries or []:
                self._add_entry(entry, LANGUAGE_SCOPE, language)

    def _add_entry(self, entry: Any, scope: str, key: Optional[str]):
        try:
            parsed = parse_pattern_entry(entry)
        except (ValueError, re.error) as e:
            logger.warning(f"Skipping invalid deny-list entry in {scope}/{key}: {e.__class__.__name__}")
            return
        self.add_pattern(parsed, scope, key)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DenyList":
        """Build from {version, global, by_entity_type, by_language}."""
        return cls(config)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DenyList":
        """Load a JSON or YAML deny-list file."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"deny-list file {path.name} must contain a mapping")
        return cls(data)

    # ------------------------------------------------------------------
    # Mutation (setup time only)
    # ------------------------------------------------------------------

    def add_pattern(
        self,
        pattern: Union[str, Pattern],
        scope: str = GLOBAL_SCOPE,
        key: Optional[str] = None,
        is_regex: bool = False,
        flags: int = 0,
    ):
        """
        Add a pattern to a scope.

        Args:
            pattern: String or compiled regex
            scope: "global", "entity_type" or "language"
            key: Entity type or language for the scoped lists
            is_regex: Compile a string pattern as a regex
            flags: re flags used with is_regex
        """
        if is_regex and isinstance(pattern, str):
            pattern = re.compile(pattern, flags)

        if scope == GLOBAL_SCOPE:
            self._global.add(pattern)
        elif scope == ENTITY_TYPE_SCOPE and key:
            self._by_entity_type.setdefault(key, _Scope()).add(pattern)
        elif scope == LANGUAGE_SCOPE and key:
            self._by_language.setdefault(key, _Scope()).add(pattern)
        else:
            raise ValueError(f"invalid deny-list scope: {scope}/{key}")

    def reset(self):
        """Restore the shipped defaults."""
        self.clear()
        self._load_defaults()

    def clear(self):
        self._global = _Scope()
        self._by_entity_type = {}
        self._by_language = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def is_denied(self, text: str, entity_type: str, language: Optional[str] = None) -> bool:
        """
        Check global, then entity-type, then language patterns.

        Args:
            text: Matched text
            entity_type: Detected entity type
            language: Document language, if known

        Returns:
            True if the text is a known false positive for the type/language
        """
        lowered = text.strip().lower()

        if self._global.matches(lowered, text):
            return True

        scope = self._by_entity_type.get(entity_type)
        if scope is not None and scope.matches(lowered, text):
            return True

        if language:
            scope = self._by_language.get(language)
            if scope is not None and scope.matches(lowered, text):
                return True

        return False

    def get_patterns(self, entity_type: Optional[str] = None, language: Optional[str] = None) -> List[DenyEntry]:
        """Global patterns plus those of the given type and language."""
        patterns = list(self._global.entries)
        if entity_type and entity_type in self._by_entity_type:
            patterns.extend(self._by_entity_type[entity_type].entries)
        if language and language in self._by_language:
            patterns.extend(self._by_language[language].entries)
        return patterns

    def get_stats(self) -> Dict[str, int]:
        return {
            "global": len(self._global.entries),
            "entity_types": sum(len(s.entries) for s in self._by_entity_type.values()),
            "languages": sum(len(s.entries) for s in self._by_language.values()),
        }
