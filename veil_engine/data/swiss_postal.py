#!/usr/bin/env python3
"""
Swiss Postal Code Database for Veil Engine

Embedded code -> city/canton table used to judge whether a 4-digit number is
a plausible Swiss postal code (PLZ/NPA) rather than just a number in range.

Coverage: cantonal capitals, major cities and agglomerations, plus the
Valais/Neuchatel codes that collide with years (1900-2099).

Usage:
    from veil_engine.data.swiss_postal import get_postal_database
    db = get_postal_database()
    db.lookup("1000")          # {"city": "Lausanne", "canton": "VD", ...}
    db.is_known_city("Genf")   # True
"""

import re
import unicodedata
from typing import Dict, List, Optional, Set, Tuple


# ============================================================================
# Cantons
# ============================================================================

CANTON_NAMES: Dict[str, str] = {
    "AG": "Aargau", "AI": "Appenzell Innerrhoden", "AR": "Appenzell Ausserrhoden",
    "BE": "Bern", "BL": "Basel-Landschaft", "BS": "Basel-Stadt",
    "FR": "Fribourg", "GE": "Genève", "GL": "Glarus", "GR": "Graubünden",
    "JU": "Jura", "LU": "Luzern", "NE": "Neuchâtel", "NW": "Nidwalden",
    "OW": "Obwalden", "SG": "St. Gallen", "SH": "Schaffhausen", "SO": "Solothurn",
    "SZ": "Schwyz", "TG": "Thurgau", "TI": "Ticino", "UR": "Uri",
    "VD": "Vaud", "VS": "Valais", "ZG": "Zug", "ZH": "Zürich",
}

# Leading-range -> cantons (coarse regional allocation of the postal system)
SWISS_POSTAL_RANGES: List[Tuple[int, int, Tuple[str, ...]]] = [
    (1000, 1299, ("VD", "GE")),
    (1300, 1499, ("VD",)),
    (1500, 1799, ("FR", "VD")),
    (1800, 1999, ("VD", "VS")),
    (2000, 2499, ("NE", "BE")),
    (2500, 2999, ("BE", "JU")),
    (3000, 3899, ("BE",)),
    (3900, 3999, ("VS",)),
    (4000, 4499, ("BS", "BL", "SO")),
    (4500, 4999, ("SO", "BE")),
    (5000, 5999, ("AG", "SO")),
    (6000, 6499, ("LU", "ZG", "SZ", "UR", "NW", "OW")),
    (6500, 6999, ("TI",)),
    (7000, 7999, ("GR",)),
    (8000, 8999, ("ZH", "SH", "TG", "GL", "SZ")),
    (9000, 9999, ("SG", "AR", "AI", "TG", "SH")),
]

# Highest code assigned to a Swiss locality (97xx+ is Liechtenstein / unassigned)
MIN_SWISS_POSTAL = 1000
MAX_SWISS_POSTAL = 9699


# ============================================================================
# Postal codes: code -> (city, canton, aliases)
# ============================================================================

POSTAL_CODES: Dict[str, Tuple[str, str, Tuple[str, ...]]] = {
    # Vaud / Genève
    "1000": ("Lausanne", "VD", ()),
    "1003": ("Lausanne", "VD", ()),
    "1004": ("Lausanne", "VD", ()),
    "1005": ("Lausanne", "VD", ()),
    "1006": ("Lausanne", "VD", ()),
    "1007": ("Lausanne", "VD", ()),
    "1010": ("Lausanne", "VD", ()),
    "1012": ("Lausanne", "VD", ()),
    "1018": ("Lausanne", "VD", ()),
    "1020": ("Renens", "VD", ()),
    "1110": ("Morges", "VD", ()),
    "1196": ("Gland", "VD", ()),
    "1201": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1202": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1203": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1204": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1205": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1206": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1207": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1208": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1209": ("Genève", "GE", ("Geneva", "Genf", "Ginevra")),
    "1212": ("Grand-Lancy", "GE", ()),
    "1213": ("Petit-Lancy", "GE", ()),
    "1217": ("Meyrin", "GE", ()),
    "1225": ("Chêne-Bourg", "GE", ()),
    "1227": ("Carouge", "GE", ()),
    "1260": ("Nyon", "VD", ()),
    "1400": ("Yverdon-les-Bains", "VD", ("Yverdon",)),
    "1530": ("Payerne", "VD", ()),
    # Fribourg
    "1630": ("Bulle", "FR", ()),
    "1700": ("Fribourg", "FR", ("Freiburg",)),
    "1762": ("Givisiez", "FR", ()),
    # Riviera / Valais (1900-1999 overlaps with years)
    "1800": ("Vevey", "VD", ()),
    "1820": ("Montreux", "VD", ()),
    "1870": ("Monthey", "VS", ()),
    "1890": ("Saint-Maurice", "VS", ("St-Maurice",)),
    "1907": ("Saxon", "VS", ()),
    "1908": ("Riddes", "VS", ()),
    "1912": ("Leytron", "VS", ()),
    "1913": ("Saillon", "VS", ()),
    "1920": ("Martigny", "VS", ()),
    "1926": ("Fully", "VS", ()),
    "1950": ("Sion", "VS", ("Sitten",)),
    "1951": ("Sion", "VS", ("Sitten",)),
    "1955": ("Chamoson", "VS", ()),
    "1957": ("Ardon", "VS", ()),
    "1963": ("Vétroz", "VS", ()),
    "1964": ("Conthey", "VS", ()),
    "1965": ("Savièse", "VS", ()),
    # Neuchâtel / Jura (2000-2099 overlaps with years)
    "2000": ("Neuchâtel", "NE", ("Neuenburg",)),
    "2001": ("Neuchâtel", "NE", ("Neuenburg",)),
    "2002": ("Neuchâtel", "NE", ("Neuenburg",)),
    "2006": ("Neuchâtel", "NE", ("Neuenburg",)),
    "2012": ("Auvernier", "NE", ()),
    "2013": ("Colombier", "NE", ()),
    "2016": ("Cortaillod", "NE", ()),
    "2017": ("Boudry", "NE", ()),
    "2022": ("Bevaix", "NE", ()),
    "2024": ("Saint-Aubin", "NE", ()),
    "2034": ("Peseux", "NE", ()),
    "2053": ("Cernier", "NE", ()),
    "2105": ("Travers", "NE", ()),
    "2108": ("Couvet", "NE", ()),
    "2114": ("Fleurier", "NE", ()),
    "2300": ("La Chaux-de-Fonds", "NE", ()),
    "2400": ("Le Locle", "NE", ()),
    "2500": ("Biel/Bienne", "BE", ("Biel", "Bienne")),
    "2502": ("Biel/Bienne", "BE", ("Biel", "Bienne")),
    "2800": ("Delémont", "JU", ("Delsberg",)),
    "2900": ("Porrentruy", "JU", ()),
    # Bern
    "3000": ("Bern", "BE", ("Berne", "Berna")),
    "3003": ("Bern", "BE", ("Berne", "Berna")),
    "3005": ("Bern", "BE", ("Berne", "Berna")),
    "3006": ("Bern", "BE", ("Berne", "Berna")),
    "3007": ("Bern", "BE", ("Berne", "Berna")),
    "3008": ("Bern", "BE", ("Berne", "Berna")),
    "3011": ("Bern", "BE", ("Berne", "Berna")),
    "3012": ("Bern", "BE", ("Berne", "Berna")),
    "3013": ("Bern", "BE", ("Berne", "Berna")),
    "3014": ("Bern", "BE", ("Berne", "Berna")),
    "3018": ("Bern", "BE", ("Berne", "Berna")),
    "3084": ("Wabern", "BE", ()),
    "3097": ("Liebefeld", "BE", ()),
    "3400": ("Burgdorf", "BE", ()),
    "3600": ("Thun", "BE", ("Thoune",)),
    "3700": ("Spiez", "BE", ()),
    "3800": ("Interlaken", "BE", ()),
    "3900": ("Brig", "VS", ("Brigue",)),
    "3904": ("Naters", "VS", ()),
    "3906": ("Saas-Fee", "VS", ()),
    "3920": ("Zermatt", "VS", ()),
    "3930": ("Visp", "VS", ("Viège",)),
    "3960": ("Sierre", "VS", ("Siders",)),
    # Basel / Solothurn / Aargau
    "4001": ("Basel", "BS", ("Bâle", "Basilea")),
    "4051": ("Basel", "BS", ("Bâle", "Basilea")),
    "4052": ("Basel", "BS", ("Bâle", "Basilea")),
    "4053": ("Basel", "BS", ("Bâle", "Basilea")),
    "4054": ("Basel", "BS", ("Bâle", "Basilea")),
    "4055": ("Basel", "BS", ("Bâle", "Basilea")),
    "4056": ("Basel", "BS", ("Bâle", "Basilea")),
    "4057": ("Basel", "BS", ("Bâle", "Basilea")),
    "4058": ("Basel", "BS", ("Bâle", "Basilea")),
    "4102": ("Binningen", "BL", ()),
    "4123": ("Allschwil", "BL", ()),
    "4132": ("Muttenz", "BL", ()),
    "4410": ("Liestal", "BL", ()),
    "4500": ("Solothurn", "SO", ("Soleure",)),
    "4600": ("Olten", "SO", ()),
    "5000": ("Aarau", "AG", ()),
    "5200": ("Brugg", "AG", ()),
    "5400": ("Baden", "AG", ()),
    "5430": ("Wettingen", "AG", ()),
    # Central Switzerland / Ticino
    "6003": ("Luzern", "LU", ("Lucerne", "Lucerna")),
    "6004": ("Luzern", "LU", ("Lucerne", "Lucerna")),
    "6005": ("Luzern", "LU", ("Lucerne", "Lucerna")),
    "6006": ("Luzern", "LU", ("Lucerne", "Lucerna")),
    "6300": ("Zug", "ZG", ("Zoug",)),
    "6330": ("Cham", "ZG", ()),
    "6340": ("Baar", "ZG", ()),
    "6410": ("Goldau", "SZ", ()),
    "6430": ("Schwyz", "SZ", ()),
    "6460": ("Altdorf", "UR", ()),
    "6500": ("Bellinzona", "TI", ()),
    "6600": ("Locarno", "TI", ()),
    "6850": ("Mendrisio", "TI", ()),
    "6900": ("Lugano", "TI", ()),
    "6901": ("Lugano", "TI", ()),
    # Graubünden
    "7000": ("Chur", "GR", ("Coire", "Coira")),
    "7270": ("Davos Platz", "GR", ("Davos",)),
    "7500": ("St. Moritz", "GR", ("Saint-Moritz",)),
    # Zürich / East
    "8001": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8002": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8003": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8004": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8005": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8006": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8008": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8032": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8037": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8045": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8048": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8050": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8057": ("Zürich", "ZH", ("Zurich", "Zurigo")),
    "8152": ("Glattbrugg", "ZH", ()),
    "8200": ("Schaffhausen", "SH", ("Schaffhouse",)),
    "8302": ("Kloten", "ZH", ()),
    "8400": ("Winterthur", "ZH", ()),
    "8401": ("Winterthur", "ZH", ()),
    "8500": ("Frauenfeld", "TG", ()),
    "8600": ("Dübendorf", "ZH", ()),
    "8700": ("Küsnacht", "ZH", ()),
    "8750": ("Glarus", "GL", ("Glaris",)),
    "8800": ("Thalwil", "ZH", ()),
    "8810": ("Horgen", "ZH", ()),
    "9000": ("St. Gallen", "SG", ("Saint-Gall", "San Gallo", "St Gallen")),
    "9001": ("St. Gallen", "SG", ("Saint-Gall", "San Gallo", "St Gallen")),
    "9008": ("St. Gallen", "SG", ("Saint-Gall", "San Gallo", "St Gallen")),
    "9050": ("Appenzell", "AI", ()),
    "9100": ("Herisau", "AR", ()),
    "9200": ("Gossau", "SG", ()),
    "9400": ("Rorschach", "SG", ()),
    "9500": ("Wil", "SG", ()),
}


def normalize_city(city: str) -> str:
    """Lowercase, strip accents and collapse whitespace for city comparison."""
    decomposed = unicodedata.normalize("NFD", city.strip().lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped)


def clean_postal_code(code: str) -> str:
    """Strip a CH-/CH prefix and surrounding whitespace."""
    return re.sub(r"^CH[-\s]?", "", code.strip(), flags=re.IGNORECASE)


def is_swiss_postal_format(code: str) -> bool:
    """Four digits inside the assigned Swiss range."""
    cleaned = clean_postal_code(code)
    return (
        len(cleaned) == 4
        and cleaned.isdigit()
        and MIN_SWISS_POSTAL <= int(cleaned) <= MAX_SWISS_POSTAL
    )


class SwissPostalDatabase:
    """
    Lookup and plausibility checks for Swiss postal codes.

    Read-only after construction; one instance is shared across pipeline runs.
    """

    def __init__(self, postal_codes: Optional[Dict[str, Tuple[str, str, Tuple[str, ...]]]] = None):
        self._codes = dict(postal_codes if postal_codes is not None else POSTAL_CODES)
        self._city_index: Dict[str, List[str]] = {}
        for code, (city, _canton, aliases) in self._codes.items():
            for name in (city,) + tuple(aliases):
                self._city_index.setdefault(normalize_city(name), []).append(code)

    def __len__(self) -> int:
        return len(self._codes)

    def validate(self, code: str) -> bool:
        """Known in the table, or at least a well-formed Swiss code."""
        cleaned = clean_postal_code(code)
        return cleaned in self._codes or is_swiss_postal_format(cleaned)

    def is_known(self, code: str) -> bool:
        return clean_postal_code(code) in self._codes

    def lookup(self, code: str) -> Optional[Dict[str, object]]:
        """
        Look up postal code details.

        Returns:
            Dict with city, canton, canton_name, aliases; None if unknown
        """
        entry = self._codes.get(clean_postal_code(code))
        if entry is None:
            return None
        city, canton, aliases = entry
        return {
            "city": city,
            "canton": canton,
            "canton_name": CANTON_NAMES.get(canton, canton),
            "aliases": list(aliases),
        }

    def find_by_city(self, city: str) -> List[str]:
        return list(self._city_index.get(normalize_city(city), []))

    def is_known_city(self, city: str) -> bool:
        return normalize_city(city) in self._city_index

    def city_matches_code(self, code: str, city: str) -> bool:
        """True when the city (or an alias) is registered under the code."""
        return clean_postal_code(code) in self._city_index.get(normalize_city(city), [])

    def cantons_for_code(self, code: str) -> Tuple[str, ...]:
        """Known canton, or the cantons of the code's regional range."""
        entry = self._codes.get(clean_postal_code(code))
        if entry is not None:
            return (entry[1],)
        cleaned = clean_postal_code(code)
        if not cleaned.isdigit():
            return ()
        value = int(cleaned)
        for low, high, cantons in SWISS_POSTAL_RANGES:
            if low <= value <= high:
                return cantons
        return ()

    def known_cities(self) -> Set[str]:
        return set(self._city_index)


# Global instance for convenience
_postal_db: Optional[SwissPostalDatabase] = None


def get_postal_database() -> SwissPostalDatabase:
    """Get the shared postal database instance."""
    global _postal_db
    if _postal_db is None:
        _postal_db = SwissPostalDatabase()
    return _postal_db
