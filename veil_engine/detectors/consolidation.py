"""
Final consolidation of detected entities.

Three steps, in order:

1. RULE and ML detections of the same type over the same span collapse into
   one ``BOTH`` entity.
2. Grouped addresses absorb every entity inside them, plus address
   fragments that only partially overlap them.
3. Remaining overlaps are resolved (higher confidence, then BOTH, then the
   longer span, then position and type), leaving a non-overlapping list.

Finally entities with the same normalized text and type share a
``logical_id`` so "Herr Müller" and "Müller" are pseudonymized together.
"""

import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from veil_engine.types import BOTH, ML, RULE, Entity

logger = logging.getLogger(__name__)

# Types treated as pieces of an address
ADDRESS_FRAGMENT_TYPES = frozenset({
    "ADDRESS",
    "SWISS_ADDRESS",
    "EU_ADDRESS",
    "LOCATION",
    "SWISS_POSTAL_CODE",
    "STREET_NAME",
    "STREET_NUMBER",
    "POSTAL_CODE",
    "CITY",
    "COUNTRY",
})

TITLE_VARIATIONS = {
    "mr": ("mr", "mr.", "herr", "m.", "monsieur", "mister"),
    "mrs": ("mrs", "mrs.", "frau", "mme", "mme.", "madame"),
    "ms": ("ms", "ms.", "fräulein", "mlle", "mademoiselle"),
    "dr": ("dr", "dr.", "doktor", "docteur"),
    "prof": ("prof", "prof.", "professor", "professeur"),
}

_LEADING_TITLE = re.compile(
    r"^(?:" + "|".join(
        re.escape(t) for titles in TITLE_VARIATIONS.values() for t in sorted(titles, key=len, reverse=True)
    ) + r")(?:\s+|(?<=\.))"
)
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

_LINK_TYPE_ALIASES = {"SWISS_ADDRESS": "ADDRESS", "EU_ADDRESS": "ADDRESS", "PERSON": "PERSON_NAME"}


@dataclass
class ConsolidationResult:
    entities: List[Entity]
    metadata: Dict[str, Any] = field(default_factory=dict)


def normalize_for_linking(text: str) -> str:
    """Lowercase, drop leading titles (Herr, Mme, Dr.) and punctuation."""
    normalized = _WHITESPACE.sub(" ", text.lower()).strip()
    while True:
        stripped = _LEADING_TITLE.sub("", normalized, count=1).strip()
        if stripped == normalized or not stripped:
            break
        normalized = stripped
    normalized = _PUNCTUATION.sub(" ", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def winner_key(entity: Entity) -> Tuple:
    """
    Sort key: the best entity of an overlapping set sorts first.

    Confidence decides, then BOTH over a single source, then the longer
    span. Recognizer priority and specificity only break what remains
    tied; ML and manual entities count as priority 0.
    """
    metadata = entity.metadata
    return (
        -entity.confidence,
        0 if entity.source == BOTH else 1,
        -entity.length,
        -metadata.get("recognizer_priority", 0),
        -metadata.get("recognizer_specificity", 0),
        entity.start,
        entity.entity_type,
    )


def _is_grouped_address(entity: Entity) -> bool:
    return bool(entity.metadata.get("is_grouped_address"))


class Consolidator:
    def __init__(
        self,
        enable_overlap_resolution: bool = True,
        enable_address_consolidation: bool = True,
        enable_entity_linking: bool = True,
    ):
        self.enable_overlap_resolution = enable_overlap_resolution
        self.enable_address_consolidation = enable_address_consolidation
        self.enable_entity_linking = enable_entity_linking

    def consolidate(self, entities: Sequence[Entity], text: Optional[str] = None) -> ConsolidationResult:
        """
        Consolidate entities into a non-overlapping list sorted by start.

        Args:
            entities: Entities from every earlier pass
            text: Document text (unused by the default strategy, kept for
                callers that re-slice)

        Returns:
            ConsolidationResult with the entities and run statistics
        """
        started = time.perf_counter()
        original_count = len(entities)

        result = merge_duplicates(entities)
        addresses_consolidated = 0
        overlaps_resolved = 0
        entities_linked = 0

        if self.enable_address_consolidation:
            result, addresses_consolidated = absorb_into_addresses(result)
        if self.enable_overlap_resolution:
            before = len(result)
            result = resolve_overlaps(result)
            overlaps_resolved = before - len(result)

        result.sort(key=lambda e: (e.start, e.end, e.entity_type))

        if self.enable_entity_linking:
            result, entities_linked = link_entities(result)

        metadata = {
            "overlaps_resolved": overlaps_resolved,
            "addresses_consolidated": addresses_consolidated,
            "entities_linked": entities_linked,
            "original_entity_count": original_count,
            "duration_ms": (time.perf_counter() - started) * 1000,
        }
        logger.debug(
            f"Consolidated {original_count} -> {len(result)} entities "
            f"(overlaps={overlaps_resolved}, addresses={addresses_consolidated}, linked={entities_linked})"
        )
        return ConsolidationResult(entities=result, metadata=metadata)


def merge_duplicates(entities: Sequence[Entity]) -> List[Entity]:
    """Same type and span from RULE and ML becomes one BOTH entity at the max confidence."""
    by_span: Dict[Tuple[str, int, int], Entity] = {}
    order: List[Tuple[str, int, int]] = []
    for entity in entities:
        key = (entity.entity_type, entity.start, entity.end)
        existing = by_span.get(key)
        if existing is None:
            by_span[key] = entity
            order.append(key)
            continue
        sources = {existing.source, entity.source}
        if sources == {RULE, ML} or (BOTH in sources and sources <= {RULE, ML, BOTH}):
            best = existing if existing.confidence >= entity.confidence else entity
            by_span[key] = replace(
                best,
                source=BOTH,
                confidence=max(existing.confidence, entity.confidence),
                metadata={**existing.metadata, **entity.metadata, **best.metadata, "merged_sources": [RULE, ML]},
            )
        elif _is_grouped_address(existing):
            continue
        elif _is_grouped_address(entity) or winner_key(entity) < winner_key(existing):
            by_span[key] = entity
    return [by_span[key] for key in order]


def absorb_into_addresses(entities: Sequence[Entity]) -> Tuple[List[Entity], int]:
    """
    Drop everything a grouped address covers.

    Entities inside an address span are removed regardless of type;
    address fragments that only partially overlap are removed too.

    Returns:
        (remaining entities, number of addresses that absorbed something)
    """
    addresses = [e for e in entities if _is_grouped_address(e)]
    if not addresses:
        return list(entities), 0

    absorbed_by: Dict[int, int] = {}
    kept = []
    for entity in entities:
        if _is_grouped_address(entity):
            kept.append(entity)
            continue
        owner = None
        for index, address in enumerate(addresses):
            if address.contains(entity):
                owner = index
                break
            if entity.entity_type in ADDRESS_FRAGMENT_TYPES and address.overlaps(entity):
                owner = index
                break
        if owner is None:
            kept.append(entity)
        else:
            absorbed_by[owner] = absorbed_by.get(owner, 0) + 1
    return kept, len(absorbed_by)


def resolve_overlaps(entities: Sequence[Entity]) -> List[Entity]:
    """
    Keep the best entity of every overlapping set.

    Grouped addresses rank ahead of everything they overlap.
    """
    ranked = sorted(entities, key=lambda e: (0 if _is_grouped_address(e) else 1, winner_key(e)))
    accepted: List[Entity] = []
    for entity in ranked:
        if any(entity.overlaps(other) for other in accepted):
            continue
        accepted.append(entity)
    return accepted


def link_entities(entities: Sequence[Entity]) -> Tuple[List[Entity], int]:
    """
    Give entities with the same normalized text and type a shared logical_id.

    Returns:
        (entities, number of linked groups)
    """
    groups: Dict[Tuple[str, str], List[int]] = {}
    for index, entity in enumerate(entities):
        normalized = normalize_for_linking(entity.text)
        if not normalized:
            continue
        base_type = _LINK_TYPE_ALIASES.get(entity.entity_type, entity.entity_type)
        groups.setdefault((base_type, normalized), []).append(index)

    result = list(entities)
    counters: Dict[str, int] = {}
    linked = 0
    for (base_type, _normalized), members in groups.items():
        if len(members) < 2:
            continue
        counters[base_type] = counters.get(base_type, 0) + 1
        logical_id = f"{base_type}_{counters[base_type]}"
        for index in members:
            result[index] = result[index].with_metadata(logical_id=logical_id)
        linked += 1
    return result, linked
