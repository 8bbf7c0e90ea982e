"""Tests for duplicate merging, address absorption, overlap resolution and linking."""

import pytest

from veil_engine.detectors.consolidation import (
    Consolidator,
    absorb_into_addresses,
    link_entities,
    merge_duplicates,
    normalize_for_linking,
    resolve_overlaps,
)
from veil_engine.types import BOTH, ML, RULE, Entity

ADDRESS_TEXT = "Rue de Lausanne 12, 1000 Lausanne"


def _address():
    return Entity(
        ADDRESS_TEXT, "ADDRESS", 0, len(ADDRESS_TEXT), 0.83,
        metadata={"is_grouped_address": True, "pattern_matched": "SWISS"},
    )


# ── Duplicates ───────────────────────────────────────────────────────

def test_rule_and_ml_merge_into_both():
    rule = Entity("Hans Müller", "PERSON_NAME", 0, 11, 0.7, source=RULE, recognizer="PersonTitle")
    ml = Entity("Hans Müller", "PERSON_NAME", 0, 11, 0.9, source=ML, metadata={"ml_label": "PER"})
    merged = merge_duplicates([rule, ml])
    assert len(merged) == 1
    assert merged[0].source == BOTH
    assert merged[0].confidence == pytest.approx(0.9)
    assert merged[0].metadata["ml_label"] == "PER"
    assert merged[0].metadata["merged_sources"] == [RULE, ML]


def test_same_span_different_type_is_not_merged():
    a = Entity("Bern", "LOCATION", 0, 4, 0.7, source=ML)
    b = Entity("Bern", "PERSON_NAME", 0, 4, 0.6, source=RULE)
    assert len(merge_duplicates([a, b])) == 2


def test_same_source_duplicates_keep_best():
    low = Entity("x@y.ch", "EMAIL", 0, 6, 0.5)
    high = Entity("x@y.ch", "EMAIL", 0, 6, 0.9)
    merged = merge_duplicates([low, high])
    assert len(merged) == 1
    assert merged[0].confidence == 0.9
    assert merged[0].source == RULE


# ── Address absorption ───────────────────────────────────────────────

def test_address_absorbs_contained_entities():
    postal_city = Entity("1000 Lausanne", "SWISS_ADDRESS", 20, 33, 0.75)
    person = Entity("Hans", "PERSON_NAME", 40, 44, 0.8)
    kept, absorbed = absorb_into_addresses([_address(), postal_city, person])
    assert absorbed == 1
    assert [e.entity_type for e in kept] == ["ADDRESS", "PERSON_NAME"]


def test_address_absorbs_partially_overlapping_fragments():
    location = Entity("Lausanne, Suisse", "LOCATION", 25, 41, 0.6, source=ML)
    kept, _ = absorb_into_addresses([_address(), location])
    assert kept == [_address()]


def test_partially_overlapping_non_fragment_survives_absorption():
    person = Entity("Lausanne Meier", "PERSON_NAME", 25, 39, 0.6)
    kept, absorbed = absorb_into_addresses([_address(), person])
    assert absorbed == 0
    assert len(kept) == 2


def test_no_addresses_is_a_no_op():
    entities = [Entity("Hans", "PERSON_NAME", 0, 4, 0.8)]
    assert absorb_into_addresses(entities) == (entities, 0)


# ── Overlaps ─────────────────────────────────────────────────────────

def test_higher_confidence_wins():
    a = Entity("079 123 45 67", "PHONE_NUMBER", 0, 13, 0.9)
    b = Entity("123 45 67", "SWISS_AVS", 4, 13, 0.6)
    assert resolve_overlaps([b, a]) == [a]


def test_both_source_wins_a_tie():
    rule = Entity("Meier", "PERSON_NAME", 0, 5, 0.8, source=RULE)
    both = Entity("Meier AG", "ORGANIZATION", 0, 8, 0.8, source=BOTH)
    assert resolve_overlaps([rule, both]) == [both]


def test_longer_span_wins_a_tie():
    short = Entity("Meier", "PERSON_NAME", 5, 10, 0.8)
    long = Entity("Anna Meier", "PERSON_NAME", 0, 10, 0.8)
    assert resolve_overlaps([short, long]) == [long]


def test_recognizer_priority_breaks_remaining_tie():
    text = "CHE-123.456.789"
    generic = Entity(text[:11], "VAT_NUMBER", 0, 11, 0.8, recognizer="EUVat",
                     metadata={"recognizer_priority": 40, "recognizer_specificity": 1})
    swiss = Entity(text[4:], "VAT_NUMBER", 4, 15, 0.8, recognizer="SwissVat",
                   metadata={"recognizer_priority": 80, "recognizer_specificity": 3})
    assert resolve_overlaps([generic, swiss]) == [swiss]
    assert resolve_overlaps([swiss, generic]) == [swiss]


def test_specificity_breaks_tie_on_equal_priority():
    regional = Entity("12345678", "NATIONAL_ID", 0, 8, 0.7,
                      metadata={"recognizer_priority": 50, "recognizer_specificity": 2})
    national = Entity("34567890", "NATIONAL_ID", 2, 10, 0.7,
                      metadata={"recognizer_priority": 50, "recognizer_specificity": 3})
    assert resolve_overlaps([regional, national]) == [national]


def test_confidence_outranks_priority():
    low = Entity("Meier", "PERSON_NAME", 0, 5, 0.6, metadata={"recognizer_priority": 100})
    high = Entity("eier AG", "PERSON_NAME", 2, 9, 0.9)
    assert resolve_overlaps([low, high]) == [high]


def test_grouped_address_outranks_stronger_overlap():
    iban = Entity("12, 1000", "IBAN", 16, 24, 0.99)
    assert resolve_overlaps([iban, _address()]) == [_address()]


def test_non_overlapping_entities_all_kept():
    a = Entity("Hans", "PERSON_NAME", 0, 4, 0.8)
    b = Entity("Bern", "LOCATION", 10, 14, 0.5)
    assert len(resolve_overlaps([a, b])) == 2


# ── Linking ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("text, expected", [
    ("Herr Müller", "müller"),
    ("Dr. Meier", "meier"),
    ("Mme  Dupont", "dupont"),
    ("Müller", "müller"),
    ("O'Brien", "o brien"),
])
def test_normalize_for_linking(text, expected):
    assert normalize_for_linking(text) == expected


def test_title_variants_share_logical_id():
    entities = [
        Entity("Herr Müller", "PERSON_NAME", 0, 11, 0.8),
        Entity("Müller", "PERSON", 40, 46, 0.7, source=ML),
        Entity("Anna Keller", "PERSON_NAME", 60, 71, 0.8),
    ]
    linked, groups = link_entities(entities)
    assert groups == 1
    assert linked[0].metadata["logical_id"] == "PERSON_NAME_1"
    assert linked[1].metadata["logical_id"] == "PERSON_NAME_1"
    assert "logical_id" not in linked[2].metadata


# ── Consolidator ─────────────────────────────────────────────────────

def test_consolidate_end_to_end():
    entities = [
        _address(),
        Entity("1000 Lausanne", "SWISS_ADDRESS", 20, 33, 0.75),
        Entity("Hans Müller", "PERSON_NAME", 40, 51, 0.7, source=RULE),
        Entity("Hans Müller", "PERSON_NAME", 40, 51, 0.9, source=ML),
        Entity("Müller", "PERSON_NAME", 45, 51, 0.6),
    ]
    result = Consolidator().consolidate(entities)
    assert [(e.entity_type, e.start, e.source) for e in result.entities] == [
        ("ADDRESS", 0, RULE),
        ("PERSON_NAME", 40, BOTH),
    ]
    assert result.metadata["addresses_consolidated"] == 1
    assert result.metadata["overlaps_resolved"] == 1
    assert result.metadata["original_entity_count"] == 5
    assert result.metadata["duration_ms"] >= 0


def test_consolidate_output_never_overlaps():
    entities = [
        Entity("abc", "A", 0, 3, 0.5),
        Entity("bcd", "B", 1, 4, 0.6),
        Entity("cde", "C", 2, 5, 0.4),
        Entity("fg", "D", 6, 8, 0.9),
    ]
    result = Consolidator().consolidate(entities).entities
    for i, first in enumerate(result):
        for second in result[i + 1:]:
            assert not first.overlaps(second)
    assert [e.start for e in result] == sorted(e.start for e in result)
