"""Tests for session pseudonymization, mapping records and rehydration."""

import json

import pytest

from veil_engine.anonymizers.session import (
    AnonymizationSession,
    MappingRecord,
    anonymize_document,
    placeholder_prefix,
    rehydrate,
)
from veil_engine.detection_config import MAPPING_VERSION
from veil_engine.detectors.pipeline import DetectionOptions
from veil_engine.types import ML, Entity

LAUSANNE = "Rue de Lausanne 12, 1000 Lausanne"


def _entity(text, full_text, entity_type, confidence=0.9, occurrence=0, **kwargs):
    start = -1
    for _ in range(occurrence + 1):
        start = full_text.index(text, start + 1)
    return Entity(text, entity_type, start, start + len(text), confidence, **kwargs)


def _address(full_text, confidence=0.83):
    start = full_text.index(LAUSANNE)
    return Entity(
        LAUSANNE, "ADDRESS", start, start + len(LAUSANNE), confidence,
        metadata={
            "is_grouped_address": True,
            "pattern_matched": "SWISS",
            "components": {"street": "Rue de Lausanne", "number": "12", "postal": "1000", "city": "Lausanne"},
            "scoring_factors": [{"name": "pattern", "score": 0.3}],
            "auto_anonymize": True,
            "flagged_for_review": False,
        },
    )


# ── Placeholders ─────────────────────────────────────────────────────

@pytest.mark.parametrize("entity_type, prefix", [
    ("PERSON_NAME", "PER"),
    ("PERSON", "PER"),
    ("ORGANIZATION", "ORG"),
    ("LOCATION", "LOC"),
    ("IBAN", "IBAN"),
    ("SWISS_AVS", "SWISS_AVS"),
])
def test_placeholder_prefix(entity_type, prefix):
    assert placeholder_prefix(entity_type) == prefix


def test_sessions_number_independently():
    text = "John Doe called."
    entity = _entity("John Doe", text, "PERSON_NAME")
    first = AnonymizationSession().anonymize(text, [entity])
    second = AnonymizationSession().anonymize(text, [entity])
    assert first.text == "PER_1 called."
    assert second.text == "PER_1 called."


def test_same_text_same_placeholder():
    text = "John Doe met Jane Roe, then John Doe left."
    entities = [
        _entity("John Doe", text, "PERSON_NAME"),
        _entity("Jane Roe", text, "PERSON_NAME"),
        _entity("John Doe", text, "PERSON_NAME", occurrence=1),
    ]
    session = AnonymizationSession()
    result = session.anonymize(text, entities)
    assert result.text == "PER_1 met PER_2, then PER_1 left."
    assert session.get_mapping() == {"John Doe": "PER_1", "Jane Roe": "PER_2"}
    assert len(result.mapping.entities) == 2


def test_counters_are_per_prefix():
    session = AnonymizationSession()
    assert session.get_or_create_pseudonym("Anna Keller", "PERSON_NAME") == "PER_1"
    assert session.get_or_create_pseudonym("UBS", "ORGANIZATION") == "ORG_1"
    assert session.get_or_create_pseudonym("CH93 0076 2011 6238 5295 7", "IBAN") == "IBAN_1"
    assert session.get_or_create_pseudonym("Hans Muster", "PERSON") == "PER_2"
    assert session.get_or_create_pseudonym("Anna Keller", "PERSON_NAME") == "PER_1"
    assert session.pseudonym_counters == {"PER": 2, "ORG": 1, "IBAN": 1}
    assert session.entity_count == 4


def test_longest_text_replaced_first():
    text = "Hans Muster und Frau Muster"
    entities = [
        _entity("Muster", text, "PERSON_NAME", occurrence=1),
        _entity("Hans Muster", text, "PERSON_NAME"),
    ]
    result = AnonymizationSession().anonymize(text, entities)
    assert result.text == "PER_2 und Frau PER_1"


def test_blank_entities_are_ignored():
    text = "a   b"
    result = AnonymizationSession().anonymize(text, [Entity("   ", "PERSON_NAME", 1, 4, 0.9)])
    assert result.text == text
    assert result.mapping.entities == []


# ── Addresses ────────────────────────────────────────────────────────

def test_grouped_address_single_placeholder():
    text = f"Herr Hans Muster, {LAUSANNE}"
    entities = [
        _entity("Hans Muster", text, "PERSON_NAME"),
        _address(text),
        _entity("Lausanne", text, "LOCATION", source=ML, occurrence=1),
    ]
    session = AnonymizationSession(document_id="letter.txt")
    result = session.anonymize(text, entities, document_type="LETTER")
    assert result.text == "Herr PER_1, [ADDRESS_1]"

    mapping = result.mapping
    assert mapping.document_id == "letter.txt"
    assert mapping.document_type == "LETTER"
    assert [e.placeholder for e in mapping.entities] == ["PER_1"]
    address = mapping.addresses[0]
    assert address.placeholder == "[ADDRESS_1]"
    assert address.original_text == LAUSANNE
    assert address.components.postal == "1000"
    assert address.components.country is None
    assert address.pattern_matched == "SWISS"
    assert address.auto_anonymize
    assert session.is_range_anonymized(address.start + 1, address.start + 2)


def test_multiple_addresses_numbered_by_position():
    text = f"{LAUSANNE} / {LAUSANNE}"
    second_start = text.rindex(LAUSANNE)
    first = _address(text)
    second = first.with_span(second_start, second_start + len(LAUSANNE), LAUSANNE)
    session = AnonymizationSession()
    result = session.anonymize(text, [first, second])
    assert result.text == "[ADDRESS_1] / [ADDRESS_2]"
    assert [a.start for a in result.mapping.addresses] == [0, second_start]


def test_address_ranges_reset_between_calls():
    session = AnonymizationSession()
    session.anonymize(LAUSANNE, [_address(LAUSANNE)])
    text = "Anna Keller ruft an."
    result = session.anonymize(text, [_entity("Anna Keller", text, "PERSON_NAME")])
    assert result.text == "PER_1 ruft an."
    assert not session.is_range_anonymized(0, 11)


def test_placeholders_carry_over_between_calls():
    session = AnonymizationSession()
    first = "Anna Keller, Bern"
    second = "Gruss, Anna Keller"
    session.anonymize(first, [_entity("Anna Keller", first, "PERSON_NAME")])
    result = session.anonymize(second, [_entity("Anna Keller", second, "PERSON_NAME")])
    assert result.text == "Gruss, PER_1"
    assert session.pseudonym_counters == {"PER": 1}


def test_extended_mapping():
    text = f"Anna Keller, {LAUSANNE}"
    session = AnonymizationSession()
    session.anonymize(text, [_entity("Anna Keller", text, "PERSON_NAME"), _address(text)])
    extended = session.get_extended_mapping()
    assert extended["entities"]["Anna Keller"] == "PER_1"
    assert extended["addresses"][0]["placeholder"] == "[ADDRESS_1]"
    assert extended["addresses"][0]["components"]["city"] == "Lausanne"


# ── Mapping records ──────────────────────────────────────────────────

def test_mapping_entity_fields():
    text = "Anna Keller und Hans Muster"
    entities = [
        _entity("Anna Keller", text, "PERSON_NAME", confidence=0.95),
        _entity("Hans Muster", text, "PERSON_NAME", confidence=0.5, source=ML),
    ]
    mapping = AnonymizationSession().anonymize(text, entities).mapping
    first, second = mapping.entities
    assert (first.placeholder, first.type, first.original_text) == ("PER_1", "PERSON_NAME", "Anna Keller")
    assert first.auto_anonymize and not first.flagged_for_review
    assert second.source == ML
    assert second.flagged_for_review and not second.auto_anonymize
    assert mapping.version == MAPPING_VERSION
    assert mapping.detection_methods == []


def test_mapping_keeps_highest_confidence():
    text = "Anna Keller, Anna Keller"
    entities = [
        _entity("Anna Keller", text, "PERSON_NAME", confidence=0.6),
        _entity("Anna Keller", text, "PERSON_NAME", confidence=0.9, occurrence=1),
    ]
    mapping = AnonymizationSession().anonymize(text, entities).mapping
    assert len(mapping.entities) == 1
    assert mapping.entities[0].confidence == 0.9


def test_mapping_record_json_round_trip_ignores_unknown_keys():
    text = f"Anna Keller, {LAUSANNE}"
    record = AnonymizationSession("doc").anonymize(
        text, [_entity("Anna Keller", text, "PERSON_NAME"), _address(text)]
    ).mapping
    data = json.loads(record.to_json())
    data["reviewer"] = "someone"
    data["entities"][0]["note"] = "checked"
    restored = MappingRecord.from_dict(data)
    assert restored == record
    assert restored.placeholders() == {"PER_1": "Anna Keller", "[ADDRESS_1]": LAUSANNE}


# ── Rehydration ──────────────────────────────────────────────────────

def test_session_rehydrate():
    text = f"Herr Hans Muster, {LAUSANNE}. Hans Muster dankt."
    entities = [
        _entity("Hans Muster", text, "PERSON_NAME"),
        _entity("Hans Muster", text, "PERSON_NAME", occurrence=1),
        _address(text),
    ]
    session = AnonymizationSession()
    result = session.anonymize(text, entities)
    assert "Hans Muster" not in result.text
    assert session.rehydrate(result.text) == text


def test_rehydrate_from_stored_mapping():
    text = "IBAN CH93 0076 2011 6238 5295 7, Anna Keller"
    entities = [
        _entity("CH93 0076 2011 6238 5295 7", text, "IBAN"),
        _entity("Anna Keller", text, "PERSON_NAME"),
    ]
    result = AnonymizationSession().anonymize(text, entities)
    assert result.text == "IBAN IBAN_1, PER_1"
    stored = MappingRecord.from_dict(json.loads(result.mapping.to_json()))
    assert rehydrate(result.text, stored) == text


def test_rehydrate_does_not_touch_longer_placeholders():
    session = AnonymizationSession()
    for i in range(10):
        session.get_or_create_pseudonym(f"Person {i}", "PERSON_NAME")
    assert session.rehydrate("PER_10 und PER_1") == "Person 9 und Person 0"


def test_rehydrate_with_empty_mapping():
    assert rehydrate("PER_1", MappingRecord()) == "PER_1"
    assert AnonymizationSession().rehydrate("PER_1") == "PER_1"


# ── anonymize_document ───────────────────────────────────────────────

async def test_anonymize_document(pipeline):
    text = f"Adresse: {LAUSANNE}"
    result = await anonymize_document(text, pipeline=pipeline)
    assert result.text == "Adresse: [ADDRESS_1]"
    address = result.mapping.addresses[0]
    assert address.components.street == "Rue de Lausanne"
    assert address.components.city == "Lausanne"
    assert result.detection.ok
    assert rehydrate(result.text, result.mapping) == text


async def test_anonymize_document_records_applied_passes(pipeline):
    result = await anonymize_document(f"Adresse: {LAUSANNE}", pipeline=pipeline)
    methods = result.mapping.detection_methods
    assert methods == result.detection.applied_passes
    assert methods[0] == "Normalize"
    assert "DenyListFilter" in methods
    assert "ContextScoring" in methods
    assert methods[-1] == "Consolidation"


async def test_anonymize_document_omits_skipped_passes(pipeline):
    options = DetectionOptions(enhancements_enabled=False)
    result = await anonymize_document(f"Adresse: {LAUSANNE}", pipeline=pipeline, options=options)
    methods = result.mapping.detection_methods
    assert "DenyListFilter" not in methods
    assert "ContextScoring" not in methods
    assert "Normalize" in methods and "Consolidation" in methods


async def test_anonymize_document_sessions_are_fresh(pipeline):
    first = await anonymize_document(LAUSANNE, pipeline=pipeline)
    second = await anonymize_document(LAUSANNE, pipeline=pipeline)
    assert first.text == second.text == "[ADDRESS_1]"


@pytest.mark.parametrize("text, expected", [(None, ""), ("", ""), ("  ", "  ")])
async def test_anonymize_document_rejected_input(pipeline, text, expected):
    result = await anonymize_document(text, pipeline=pipeline)
    assert result.text == expected
    assert result.mapping.entities == []
    assert result.mapping.addresses == []
    assert result.detection.error is not None
