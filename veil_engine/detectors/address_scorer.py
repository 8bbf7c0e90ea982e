"""
Address confidence scoring.

Combines completeness, layout, postal-code and city plausibility, country
presence and document position into a final confidence. Addresses below
the review threshold are flagged, never dropped.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from veil_engine.data.swiss_postal import SwissPostalDatabase, get_postal_database
from veil_engine.detection_config import AUTO_ANONYMIZE_THRESHOLD, REVIEW_THRESHOLD
from veil_engine.detectors.address_components import POSTAL_CODE
from veil_engine.detectors.address_linker import ALTERNATIVE, EU, PARTIAL, SWISS, GroupedAddress

# Factor weights (maximum contribution of each factor)
COMPLETENESS_PER_TYPE = 0.2
COMPLETENESS_MAX = 1.0
PATTERN_WEIGHT = 0.3
POSTAL_WEIGHT = 0.2
CITY_WEIGHT = 0.1
COUNTRY_WEIGHT = 0.1
POSITION_WEIGHT = 0.05

PATTERN_SCORES = {SWISS: 1.0, EU: 1.0, ALTERNATIVE: 0.8, PARTIAL: 0.5}


@dataclass
class ScoringFactor:
    name: str
    score: float
    max_score: float
    matched: bool
    description: str = ""

    def to_dict(self):
        return {
            "name": self.name,
            "score": round(self.score, 4),
            "max_score": self.max_score,
            "matched": self.matched,
            "description": self.description,
        }


@dataclass
class ScoredAddress:
    address: GroupedAddress
    final_confidence: float
    scoring_factors: List[ScoringFactor] = field(default_factory=list)
    flagged_for_review: bool = False
    auto_anonymize: bool = False

    @property
    def components(self):
        return self.address.components

    @property
    def pattern_matched(self) -> str:
        return self.address.pattern_matched


class AddressScorer:
    def __init__(
        self,
        review_threshold: float = REVIEW_THRESHOLD,
        auto_anonymize_threshold: float = AUTO_ANONYMIZE_THRESHOLD,
        postal_db: Optional[SwissPostalDatabase] = None,
    ):
        self.review_threshold = review_threshold
        self.auto_anonymize_threshold = auto_anonymize_threshold
        self.postal_db = postal_db or get_postal_database()

    def score(self, address: GroupedAddress, position_zone: Optional[str] = None) -> ScoredAddress:
        """
        Score a grouped address.

        Args:
            address: Linked address
            position_zone: "header", "body" or "footer" when known

        Returns:
            ScoredAddress; final confidence is the factor sum over the max sum
        """
        factors = [
            self._completeness(address),
            self._pattern(address),
            self._postal(address),
            self._city(address),
            self._country(address),
            self._position(position_zone),
        ]
        total = sum(f.score for f in factors)
        maximum = sum(f.max_score for f in factors)
        final = min(total / maximum, 1.0) if maximum else 0.0
        return ScoredAddress(
            address=address,
            final_confidence=final,
            scoring_factors=factors,
            flagged_for_review=final < self.review_threshold,
            auto_anonymize=final >= self.auto_anonymize_threshold,
        )

    def score_all(self, addresses: List[GroupedAddress], position_zones: Optional[List[str]] = None) -> List[ScoredAddress]:
        zones = position_zones or [None] * len(addresses)
        return [self.score(a, z) for a, z in zip(addresses, zones)]

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def _completeness(self, address: GroupedAddress) -> ScoringFactor:
        types = address.component_types
        score = min(len(types) * COMPLETENESS_PER_TYPE, COMPLETENESS_MAX)
        return ScoringFactor(
            "completeness", score, COMPLETENESS_MAX, len(types) >= 4,
            f"{len(types)} unique component types",
        )

    def _pattern(self, address: GroupedAddress) -> ScoringFactor:
        fraction = PATTERN_SCORES.get(address.pattern_matched, 0.0)
        return ScoringFactor(
            "pattern", PATTERN_WEIGHT * fraction, PATTERN_WEIGHT,
            address.pattern_matched in (SWISS, EU, ALTERNATIVE),
            f"pattern {address.pattern_matched}",
        )

    def _postal(self, address: GroupedAddress) -> ScoringFactor:
        postal = address.components.get("postal")
        if not postal:
            return ScoringFactor("postal", 0.0, POSTAL_WEIGHT, False, "no postal code")
        digits = re.sub(r"\D", "", postal)
        if len(digits) == 4 and self.postal_db.is_known(digits):
            return ScoringFactor("postal", POSTAL_WEIGHT, POSTAL_WEIGHT, True, "known Swiss postal code")
        if len(digits) == 5:
            return ScoringFactor("postal", POSTAL_WEIGHT * 0.8, POSTAL_WEIGHT, True, "EU postal code format")
        if len(digits) == 4 and 1000 <= int(digits) <= 9999:
            return ScoringFactor("postal", POSTAL_WEIGHT * 0.7, POSTAL_WEIGHT, True, "four-digit postal code")
        return ScoringFactor("postal", POSTAL_WEIGHT * 0.3, POSTAL_WEIGHT, False, "unverified postal code")

    def _city(self, address: GroupedAddress) -> ScoringFactor:
        city = address.components.get("city")
        if not city:
            return ScoringFactor("city", 0.0, CITY_WEIGHT, False, "no city")
        if self.postal_db.is_known_city(city):
            return ScoringFactor("city", CITY_WEIGHT, CITY_WEIGHT, True, "known Swiss city")
        if address.component_of(POSTAL_CODE) is not None:
            return ScoringFactor("city", CITY_WEIGHT * 0.5, CITY_WEIGHT, False, "city after postal code")
        return ScoringFactor("city", CITY_WEIGHT * 0.3, CITY_WEIGHT, False, "unverified city")

    def _country(self, address: GroupedAddress) -> ScoringFactor:
        if address.components.get("country"):
            return ScoringFactor("country", COUNTRY_WEIGHT, COUNTRY_WEIGHT, True, "country present")
        return ScoringFactor("country", 0.0, COUNTRY_WEIGHT, False, "no country")

    def _position(self, zone: Optional[str]) -> ScoringFactor:
        if zone in ("header", "footer"):
            return ScoringFactor("position", POSITION_WEIGHT, POSITION_WEIGHT, True, f"{zone} zone")
        return ScoringFactor("position", 0.0, POSITION_WEIGHT, False, "body")
