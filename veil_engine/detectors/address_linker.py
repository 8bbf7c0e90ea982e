"""
Address component linking.

Walks components left to right and links neighbours into one address when
they are close enough and follow a plausible order (street -> number ->
postal code -> city -> country). Each linked group is tagged with the
layout it matches.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from veil_engine.detectors.address_components import (
    CITY,
    COUNTRY,
    POSTAL_CODE,
    STREET_NAME,
    STREET_NUMBER,
    AddressComponent,
)

logger = logging.getLogger(__name__)

PROXIMITY_THRESHOLD = 50
NEWLINE_THRESHOLD = 100
MIN_COMPONENTS = 2
MAX_COMPONENTS = 6

# Address layouts
SWISS = "SWISS"              # Street Nr, PLZ City
EU = "EU"                    # Street Nr, PLZ City, Country
ALTERNATIVE = "ALTERNATIVE"  # PLZ City, Street Nr
PARTIAL = "PARTIAL"
NONE = "NONE"

VALID_TRANSITIONS: Dict[str, tuple] = {
    STREET_NAME: (STREET_NUMBER, POSTAL_CODE, CITY),
    STREET_NUMBER: (POSTAL_CODE, CITY, STREET_NAME),
    POSTAL_CODE: (CITY, COUNTRY, STREET_NAME),
    CITY: (COUNTRY, POSTAL_CODE),
    COUNTRY: (),
}

_BREAKDOWN_KEYS = {
    STREET_NAME: "street",
    STREET_NUMBER: "number",
    POSTAL_CODE: "postal",
    CITY: "city",
    COUNTRY: "country",
}


@dataclass
class GroupedAddress:
    """Linked components forming one address; the span is their union."""

    components: Dict[str, Optional[str]]
    component_entities: List[AddressComponent]
    pattern_matched: str
    start: int
    end: int
    text: str
    confidence: float = 0.0

    @property
    def component_types(self) -> List[str]:
        seen = []
        for component in self.component_entities:
            if component.component_type not in seen:
                seen.append(component.component_type)
        return seen

    def component_of(self, component_type: str) -> Optional[AddressComponent]:
        for component in self.component_entities:
            if component.component_type == component_type:
                return component
        return None


def detect_pattern(components: List[AddressComponent]) -> str:
    """Classify the layout of a component group."""
    types = {c.component_type for c in components}
    has_street = STREET_NAME in types
    has_number = STREET_NUMBER in types
    has_postal = POSTAL_CODE in types
    has_city = CITY in types
    has_country = COUNTRY in types

    ordered = sorted(components, key=lambda c: c.start)
    positions = [c.component_type for c in ordered]

    if has_street and has_postal and has_city:
        street_index = positions.index(STREET_NAME)
        postal_index = positions.index(POSTAL_CODE)
        if has_country:
            return EU
        if street_index < postal_index:
            return SWISS
        return ALTERNATIVE

    if (has_street or has_number) and (has_postal or has_city):
        return PARTIAL
    if has_postal and has_city:
        return PARTIAL
    return NONE


def linker_confidence(pattern: str, components: List[AddressComponent]) -> float:
    """Base confidence from the layout plus small completeness bonuses."""
    base = {SWISS: 0.85, EU: 0.85, ALTERNATIVE: 0.75, PARTIAL: 0.5}.get(pattern, 0.3)
    extra = len(components) - MIN_COMPONENTS
    if extra > 0:
        base += extra * 0.02
    types = {c.component_type for c in components}
    if STREET_NAME in types and STREET_NUMBER in types:
        base += 0.05
    if POSTAL_CODE in types and CITY in types:
        base += 0.05
    return min(base, 1.0)


class AddressLinker:
    def __init__(
        self,
        proximity_threshold: int = PROXIMITY_THRESHOLD,
        newline_threshold: int = NEWLINE_THRESHOLD,
        min_components: int = MIN_COMPONENTS,
        max_components: int = MAX_COMPONENTS,
    ):
        self.proximity_threshold = proximity_threshold
        self.newline_threshold = newline_threshold
        self.min_components = min_components
        self.max_components = max_components

    def _threshold(self, text: str, start: int, end: int) -> int:
        between = text[start:end]
        if "\n" in between or "\r" in between:
            return self.newline_threshold
        return self.proximity_threshold

    def is_valid_addition(self, group: List[AddressComponent], candidate: AddressComponent) -> bool:
        existing = {c.component_type for c in group}
        if candidate.component_type in existing and candidate.component_type != STREET_NAME:
            return False
        last = group[-1].component_type
        return candidate.component_type in VALID_TRANSITIONS.get(last, ())

    def link(self, components: List[AddressComponent], text: str) -> List[GroupedAddress]:
        """
        Link components into addresses.

        Args:
            components: Detected components (any order)
            text: Text the component offsets refer to

        Returns:
            GroupedAddress per group with a recognised layout
        """
        ordered = sorted(components, key=lambda c: (c.start, c.end))
        used = set()
        addresses: List[GroupedAddress] = []

        for i, seed in enumerate(ordered):
            if i in used:
                continue
            group = [seed]
            members = [i]

            for j in range(i + 1, len(ordered)):
                if len(group) >= self.max_components:
                    break
                if j in used:
                    continue
                candidate = ordered[j]
                last = group[-1]
                distance = candidate.start - last.end
                if distance < 0:
                    continue
                if distance > self._threshold(text, last.end, candidate.start):
                    break
                if self.is_valid_addition(group, candidate):
                    group.append(candidate)
                    members.append(j)

            if len(group) < self.min_components:
                continue
            address = self._build(group, text)
            if address is None:
                continue
            used.update(members)
            addresses.append(address)

        logger.debug(f"Linked {len(addresses)} addresses from {len(components)} components")
        return addresses

    def _build(self, group: List[AddressComponent], text: str) -> Optional[GroupedAddress]:
        pattern = detect_pattern(group)
        if pattern == NONE:
            return None
        start = min(c.start for c in group)
        end = max(c.end for c in group)
        breakdown: Dict[str, Optional[str]] = {key: None for key in _BREAKDOWN_KEYS.values()}
        for component in group:
            key = _BREAKDOWN_KEYS[component.component_type]
            if breakdown[key] is None:
                breakdown[key] = component.text
        return GroupedAddress(
            components=breakdown,
            component_entities=list(group),
            pattern_matched=pattern,
            start=start,
            end=end,
            text=text[start:end],
            confidence=linker_confidence(pattern, group),
        )
