"""
Session-scoped anonymization with reversible placeholders.

A session belongs to one document. Within it the same original text always
maps to the same placeholder ("John Doe" -> "PER_1"); a new session starts
numbering from scratch. Grouped addresses are replaced first, by position,
with a single "[ADDRESS_N]" placeholder each; remaining entities are then
replaced by exact text unless they fall inside an address already replaced.

The MappingRecord produced alongside the anonymized text is the audit trail
and the key for rehydrate().
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from veil_engine.detection_config import AUTO_ANONYMIZE_THRESHOLD, MAPPING_VERSION, REVIEW_THRESHOLD
from veil_engine.types import AnonymizedRange, Entity

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIXES = {
    "PERSON_NAME": "PER",
    "PERSON": "PER",
    "PER": "PER",
    "ORGANIZATION": "ORG",
    "LOCATION": "LOC",
}

ADDRESS_TYPE = "ADDRESS"


def placeholder_prefix(entity_type: str) -> str:
    return PLACEHOLDER_PREFIXES.get(entity_type, entity_type)


# ---------------------------------------------------------------------------
# Mapping record
# ---------------------------------------------------------------------------

class _Record(BaseModel):
    # Unknown keys from newer record versions are ignored
    model_config = ConfigDict(extra="ignore")


class MappedEntity(_Record):
    placeholder: str
    type: str
    original_text: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: str
    flagged_for_review: bool = False
    auto_anonymize: bool = False


class AddressComponents(_Record):
    street: Optional[str] = None
    number: Optional[str] = None
    postal: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class MappedAddress(_Record):
    placeholder: str
    type: str = ADDRESS_TYPE
    original_text: str
    start: Optional[int] = None
    end: Optional[int] = None
    components: AddressComponents = Field(default_factory=AddressComponents)
    confidence: float = Field(ge=0.0, le=1.0)
    pattern_matched: Optional[str] = None
    scoring_factors: List[Dict[str, Any]] = Field(default_factory=list)
    flagged_for_review: bool = False
    auto_anonymize: bool = False


class MappingRecord(_Record):
    version: str = MAPPING_VERSION
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    document_id: Optional[str] = None
    document_type: Optional[str] = None
    detection_methods: List[str] = Field(default_factory=list)
    entities: List[MappedEntity] = Field(default_factory=list)
    addresses: List[MappedAddress] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    def to_json(self, indent: Optional[int] = 2) -> str:
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingRecord":
        return cls.model_validate(data)

    def placeholders(self) -> Dict[str, str]:
        """placeholder -> original text, for entities and addresses."""
        table = {e.placeholder: e.original_text for e in self.entities}
        table.update({a.placeholder: a.original_text for a in self.addresses})
        return table


@dataclass
class AnonymizationResult:
    text: str
    mapping: MappingRecord
    # Detection run that produced the entities, when anonymize_document ran it
    detection: Any = None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

def _is_grouped_address(entity: Entity) -> bool:
    return bool(entity.metadata.get("is_grouped_address"))


def _placeholder_pattern(placeholders: Sequence[str]) -> Optional["re.Pattern"]:
    if not placeholders:
        return None
    ordered = sorted(placeholders, key=len, reverse=True)
    return re.compile(r"(?<!\w)(?:" + "|".join(re.escape(p) for p in ordered) + r")(?!\w)")


class AnonymizationSession:
    """
    Per-document pseudonym state.

    Never share a session between documents; create one per document (or
    use anonymize_document, which does).
    """

    def __init__(self, document_id: Optional[str] = None):
        self.document_id = document_id
        self.pseudonym_counters: Dict[str, int] = {}
        self.pseudonym_mapping: Dict[str, str] = {}
        self.address_mappings: List[MappedAddress] = []
        self.anonymized_ranges: List[AnonymizedRange] = []
        self._entities: Dict[str, MappedEntity] = {}

    def _next(self, prefix: str) -> int:
        self.pseudonym_counters[prefix] = self.pseudonym_counters.get(prefix, 0) + 1
        return self.pseudonym_counters[prefix]

    def get_or_create_pseudonym(self, text: str, entity_type: str) -> str:
        """Stable placeholder for text within this session ("PER_1", "IBAN_2", ...)."""
        existing = self.pseudonym_mapping.get(text)
        if existing is not None:
            return existing
        prefix = placeholder_prefix(entity_type)
        placeholder = f"{prefix}_{self._next(prefix)}"
        self.pseudonym_mapping[text] = placeholder
        return placeholder

    def register_grouped_address(self, entity: Entity) -> str:
        """Record a grouped address and its range; returns "[ADDRESS_N]"."""
        placeholder = f"[{ADDRESS_TYPE}_{self._next(ADDRESS_TYPE)}]"
        metadata = entity.metadata
        components = metadata.get("components") or {}
        self.address_mappings.append(MappedAddress(
            placeholder=placeholder,
            type=ADDRESS_TYPE,
            original_text=entity.text,
            start=entity.start,
            end=entity.end,
            components=AddressComponents(**{k: components.get(k) for k in AddressComponents.model_fields}),
            confidence=entity.confidence,
            pattern_matched=metadata.get("pattern_matched"),
            scoring_factors=list(metadata.get("scoring_factors") or []),
            flagged_for_review=bool(metadata.get("flagged_for_review", entity.confidence < REVIEW_THRESHOLD)),
            auto_anonymize=bool(metadata.get("auto_anonymize", entity.confidence >= AUTO_ANONYMIZE_THRESHOLD)),
        ))
        self.mark_range_anonymized(entity.start, entity.end, placeholder)
        self.pseudonym_mapping.setdefault(entity.text, placeholder)
        return placeholder

    def is_range_anonymized(self, start: int, end: int) -> bool:
        return any(r.intersects(start, end) for r in self.anonymized_ranges)

    def mark_range_anonymized(self, start: int, end: int, placeholder: str = ""):
        self.anonymized_ranges.append(AnonymizedRange(start, end, placeholder))

    def anonymize(
        self,
        text: str,
        entities: Sequence[Entity],
        document_type: Optional[str] = None,
        detection_methods: Optional[Sequence[str]] = None,
    ) -> AnonymizationResult:
        """
        Replace entities in text with placeholders.

        Args:
            text: Original text the entity offsets refer to
            entities: Detected (and/or manual) entities
            document_type: Recorded in the mapping
            detection_methods: Passes that produced the entities, recorded in the mapping

        Returns:
            AnonymizationResult with the anonymized text and its MappingRecord
        """
        # Ranges refer to this call's text; placeholders carry over
        self.anonymized_ranges = []
        addresses = []
        for address in sorted((e for e in entities if _is_grouped_address(e)), key=lambda e: e.start):
            if self.is_range_anonymized(address.start, address.end):
                continue
            addresses.append((address, self.register_grouped_address(address)))
        # Right to left so earlier offsets stay valid
        for address, placeholder in reversed(addresses):
            text = text[:address.start] + placeholder + text[address.end:]
            logger.debug(f"Address {address.start}-{address.end} replaced by {placeholder}")

        replacements: Dict[str, str] = {}
        for entity in entities:
            if _is_grouped_address(entity) or not entity.text.strip():
                continue
            if self.is_range_anonymized(entity.start, entity.end):
                logger.debug(f"Skipping {entity.entity_type} inside an anonymized address")
                continue
            placeholder = self.get_or_create_pseudonym(entity.text, entity.entity_type)
            replacements[entity.text] = placeholder
            self._record_entity(entity, placeholder)

        if replacements:
            ordered = sorted(replacements, key=len, reverse=True)
            pattern = re.compile("|".join(re.escape(original) for original in ordered))
            text = pattern.sub(lambda m: replacements[m.group(0)], text)

        mapping = MappingRecord(
            document_id=self.document_id,
            document_type=document_type,
            detection_methods=list(detection_methods or []),
            entities=list(self._entities.values()),
            addresses=list(self.address_mappings),
        )
        logger.info(
            f"Anonymized {len(replacements)} distinct values and {len(addresses)} addresses"
        )
        return AnonymizationResult(text=text, mapping=mapping)

    def _record_entity(self, entity: Entity, placeholder: str):
        existing = self._entities.get(placeholder)
        if existing is not None and existing.confidence >= entity.confidence:
            return
        self._entities[placeholder] = MappedEntity(
            placeholder=placeholder,
            type=entity.entity_type,
            original_text=entity.text,
            confidence=entity.confidence,
            source=entity.source,
            flagged_for_review=bool(entity.metadata.get("flagged_for_review", entity.confidence < REVIEW_THRESHOLD)),
            auto_anonymize=entity.confidence >= AUTO_ANONYMIZE_THRESHOLD,
        )

    def rehydrate(self, text: str) -> str:
        """Put the original values back in place of this session's placeholders."""
        reverse = {placeholder: original for original, placeholder in self.pseudonym_mapping.items()}
        for address in self.address_mappings:
            reverse[address.placeholder] = address.original_text
        pattern = _placeholder_pattern(list(reverse))
        if pattern is None:
            return text
        return pattern.sub(lambda m: reverse[m.group(0)], text)

    def get_mapping(self) -> Dict[str, str]:
        """original text -> placeholder."""
        return dict(self.pseudonym_mapping)

    def get_extended_mapping(self) -> Dict[str, Any]:
        return {
            "entities": dict(self.pseudonym_mapping),
            "addresses": [a.model_dump() for a in self.address_mappings],
        }

    @property
    def entity_count(self) -> int:
        return len(self.pseudonym_mapping)


def rehydrate(text: str, mapping: MappingRecord) -> str:
    """Reverse placeholders using a stored MappingRecord (no live session needed)."""
    table = mapping.placeholders()
    pattern = _placeholder_pattern(list(table))
    if pattern is None:
        return text
    return pattern.sub(lambda m: table[m.group(0)], text)


async def anonymize_document(text: str, pipeline=None, options=None) -> AnonymizationResult:
    """
    Detect and anonymize one document with a fresh session.

    Args:
        text: Document text
        pipeline: DetectionPipeline (a default one is built when omitted)
        options: DetectionOptions for the detection run

    Returns:
        AnonymizationResult; if detection rejected the input, the text is
        returned unchanged with an empty mapping and the detection result
        attached
    """
    if pipeline is None:
        from veil_engine.detectors.pipeline import DetectionPipeline

        pipeline = DetectionPipeline()

    detection = await pipeline.detect(text, options)
    document_id = options.document_id if options is not None else None
    session = AnonymizationSession(document_id=document_id)
    if not detection.ok:
        return AnonymizationResult(
            text=text if isinstance(text, str) else "",
            mapping=MappingRecord(document_id=document_id),
            detection=detection,
        )
    result = session.anonymize(
        text,
        detection.entities,
        document_type=detection.document_type,
        detection_methods=detection.applied_passes,
    )
    result.detection = detection
    return result
