"""
Address component detection.

Finds the building blocks of postal addresses (street names, house
numbers, postal codes, cities, countries) so the linker can assemble them
into whole addresses. Swiss layouts ("Bahnhofstrasse 10, 8001 Zürich") and
the neighbouring EU layouts are supported.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from veil_engine.data.swiss_postal import POSTAL_CODES, SwissPostalDatabase, get_postal_database
from veil_engine.detectors.validators import validate_swiss_address

logger = logging.getLogger(__name__)


STREET_NAME = "STREET_NAME"
STREET_NUMBER = "STREET_NUMBER"
POSTAL_CODE = "POSTAL_CODE"
CITY = "CITY"
COUNTRY = "COUNTRY"

COMPONENT_TYPES = (STREET_NAME, STREET_NUMBER, POSTAL_CODE, CITY, COUNTRY)

# Equal spans keep the earlier type ("1000" after a street is a postal code, not a house number)
_TYPE_RANK = {STREET_NAME: 0, POSTAL_CODE: 1, CITY: 2, COUNTRY: 3, STREET_NUMBER: 4}

MAX_NUMBER_DISTANCE = 50

_UPPER = "A-ZÄÖÜÉÈÀÂÊÎÔÛÇ"
_LOWER = "a-zäöüéèàâêîôûçëïß"
_CAP = rf"[{_UPPER}][{_LOWER}]+(?:['-][{_UPPER}]?[{_LOWER}]+)*"

# Suffix forms: "Bahnhofstrasse", "Kirchweg", "Baker Street"
STREET_SUFFIXES = (
    "strasse", "straße", "str.", "weg", "gasse", "platz", "allee", "ring", "damm", "matt", "rain",
)
STREET_SUFFIX_WORDS = ("Street", "Road", "Lane", "Drive", "Avenue", "Way", "Court", "Square")

# Prefix forms: "Rue de Lausanne", "Via Nassa", "Chemin des Roses"
STREET_PREFIXES = (
    "Rue", "Avenue", "Av.", "Boulevard", "Bd", "Chemin", "Ch.", "Place", "Route", "Rte",
    "Allée", "Impasse", "Passage", "Quai", "Promenade", "Sentier",
    "Via", "Viale", "Piazza", "Corso", "Vicolo", "Largo",
)
_PARTICLES = r"(?:(?:de\s+la|de\s+l'|de|du|des|della|del|dei|d')\s*)"

_STREET_COMPOUND = re.compile(
    rf"\b[{_UPPER}][{_LOWER}]+(?:-[{_UPPER}]?[{_LOWER}]+)*"
    rf"(?:{'|'.join(re.escape(s) for s in STREET_SUFFIXES)})(?![{_LOWER}])"
)
_STREET_WORD_SUFFIX = re.compile(
    rf"\b{_CAP}(?:\s+{_CAP})?\s+(?:{'|'.join(STREET_SUFFIX_WORDS)})\b"
)
_STREET_PREFIX = re.compile(
    rf"(?<![\w.])(?:{'|'.join(re.escape(p) for p in STREET_PREFIXES)})\s+{_PARTICLES}?{_CAP}"
    rf"(?:\s+{_PARTICLES}?{_CAP})*"
)

_HOUSE_NUMBER = re.compile(r"\b\d{1,4}[a-zA-Z]?(?:\s*-\s*\d{1,4}[a-zA-Z]?)?\b")

_SWISS_POSTAL = re.compile(r"\b(?:CH[-\s]?)?([1-9]\d{3})\b")
_EU_POSTAL = re.compile(r"\b(?:(?:D|F|I|DE|FR|IT)-)?(\d{5})\b")
_AUSTRIAN_POSTAL = re.compile(r"\bA-(\d{4})\b")

_CITY_AFTER_POSTAL = re.compile(rf"[ \t]+({_CAP}(?: (?:sur|am|an|im|bei|près|en) {_CAP})?)")

COUNTRY_NAMES: Dict[str, Tuple[str, ...]] = {
    "CH": ("Switzerland", "Suisse", "Schweiz", "Svizzera"),
    "DE": ("Germany", "Allemagne", "Deutschland", "Germania"),
    "FR": ("France", "Frankreich", "Francia"),
    "IT": ("Italy", "Italie", "Italien", "Italia"),
    "AT": ("Austria", "Autriche", "Österreich"),
    "LI": ("Liechtenstein",),
    "BE": ("Belgium", "Belgique", "Belgien", "Belgio"),
    "NL": ("Netherlands", "Pays-Bas", "Niederlande", "Paesi Bassi"),
    "LU": ("Luxembourg", "Luxemburg", "Lussemburgo"),
}

_COUNTRY_NAME = re.compile(
    r"\b(?:" + "|".join(
        re.escape(name) for names in COUNTRY_NAMES.values() for name in sorted(names, key=len, reverse=True)
    ) + r")\b",
    re.IGNORECASE,
)
# Two-letter codes only as a trailing address line or after a comma
_COUNTRY_CODE = re.compile(r"(?:^|,[ \t]*)(" + "|".join(COUNTRY_NAMES) + r")(?=[ \t]*(?:$|[,.\n]))", re.MULTILINE)


def _known_city_names() -> List[str]:
    names = set()
    for city, _canton, aliases in POSTAL_CODES.values():
        names.add(city)
        names.update(aliases)
    return sorted(names, key=len, reverse=True)


_KNOWN_CITY = re.compile(r"(?<!\w)(?:" + "|".join(re.escape(n) for n in _known_city_names()) + r")(?!\w)")


@dataclass(frozen=True)
class AddressComponent:
    component_type: str
    text: str
    start: int
    end: int
    # known_city / after_postal / table / range / eu / ...
    detail: Optional[str] = None

    def contains(self, other: "AddressComponent") -> bool:
        return self.start <= other.start and other.end <= self.end and self != other


class AddressComponentDetector:
    """Detects address components in text."""

    def __init__(self, postal_db: Optional[SwissPostalDatabase] = None):
        self.postal_db = postal_db or get_postal_database()

    def detect(self, text: str) -> List[AddressComponent]:
        """
        Find every address component.

        Components contained in a larger component are dropped, so
        "Lausanne" inside "Rue de Lausanne" is part of the street only.
        """
        streets = self.find_street_names(text)
        postals = self.find_postal_codes(text)
        components = streets + postals
        components += self.find_street_numbers(text, streets)
        components += self.find_cities(text, postals)
        components += self.find_countries(text)
        kept = _drop_contained(components)
        logger.debug(f"Address components: {len(kept)} kept of {len(components)} found")
        return kept

    # ------------------------------------------------------------------
    # Individual component finders
    # ------------------------------------------------------------------

    def find_street_names(self, text: str) -> List[AddressComponent]:
        found = []
        for pattern in (_STREET_PREFIX, _STREET_COMPOUND, _STREET_WORD_SUFFIX):
            for match in pattern.finditer(text):
                value = match.group(0).rstrip()
                if len(value) < 5:
                    continue
                found.append(AddressComponent(STREET_NAME, value, match.start(), match.start() + len(value)))
        return found

    def find_street_numbers(self, text: str, streets: List[AddressComponent]) -> List[AddressComponent]:
        if not streets:
            return []
        found = []
        for match in _HOUSE_NUMBER.finditer(text):
            position = match.start()
            near = any(
                min(abs(position - s.end), abs(match.end() - s.start)) <= MAX_NUMBER_DISTANCE
                for s in streets
            )
            if near:
                found.append(AddressComponent(STREET_NUMBER, match.group(0), position, match.end()))
        return found

    def find_postal_codes(self, text: str) -> List[AddressComponent]:
        found = []
        for match in _SWISS_POSTAL.finditer(text):
            detail = self._swiss_postal_detail(text, match)
            if detail is not None:
                found.append(AddressComponent(POSTAL_CODE, match.group(0), match.start(), match.end(), detail))
        for pattern in (_EU_POSTAL, _AUSTRIAN_POSTAL):
            for match in pattern.finditer(text):
                # Bare five-digit numbers are amounts or references unless a city follows
                if _CITY_AFTER_POSTAL.match(text, match.end()) is None:
                    continue
                found.append(AddressComponent(POSTAL_CODE, match.group(0), match.start(), match.end(), "eu"))
        return found

    def _swiss_postal_detail(self, text: str, match) -> Optional[str]:
        code = match.group(1)
        city_match = _CITY_AFTER_POSTAL.match(text, match.end())
        if self.postal_db.is_known(code):
            detail = "table"
        elif self.postal_db.validate(code):
            detail = "range"
        else:
            return None
        # Year-like codes need a plausible city right after them
        if 1900 <= int(code) <= 2099:
            if city_match is None:
                return None
            span = text[match.start():city_match.end(1)]
            if not validate_swiss_address(span, text).is_valid:
                return None
        elif detail == "range" and city_match is None:
            return None
        return detail

    def find_cities(self, text: str, postals: List[AddressComponent]) -> List[AddressComponent]:
        found = []
        for match in _KNOWN_CITY.finditer(text):
            found.append(AddressComponent(CITY, match.group(0), match.start(), match.end(), "known_city"))
        for postal in postals:
            match = _CITY_AFTER_POSTAL.match(text, postal.end)
            if match is None:
                continue
            city = match.group(1)
            detail = "known_city" if self.postal_db.is_known_city(city) else "after_postal"
            found.append(AddressComponent(CITY, city, match.start(1), match.end(1), detail))
        return found

    def find_countries(self, text: str) -> List[AddressComponent]:
        found = []
        for match in _COUNTRY_NAME.finditer(text):
            found.append(AddressComponent(COUNTRY, match.group(0), match.start(), match.end(), "name"))
        for match in _COUNTRY_CODE.finditer(text):
            found.append(AddressComponent(COUNTRY, match.group(1), match.start(1), match.end(1), "code"))
        return found


def _drop_contained(components: List[AddressComponent]) -> List[AddressComponent]:
    """Keep the widest component wherever spans nest; exact duplicates collapse."""
    ordered = sorted(
        components,
        key=lambda c: (-(c.end - c.start), _TYPE_RANK[c.component_type], c.start),
    )
    kept: List[AddressComponent] = []
    for component in ordered:
        if any(k.start <= component.start and component.end <= k.end for k in kept):
            continue
        # Partial overlaps keep the wider component already kept
        if any(k.start < component.end and component.start < k.end for k in kept):
            continue
        kept.append(component)
    return sorted(kept, key=lambda c: (c.start, c.end))
