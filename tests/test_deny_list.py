"""Tests for deny-list scopes, matching rules and loading."""

import json
import re

import pytest

from veil_engine.data.deny_list import (
    ENTITY_TYPE_SCOPE,
    GLOBAL_SCOPE,
    LANGUAGE_SCOPE,
    DenyList,
    parse_pattern_entry,
)


# ── Defaults ─────────────────────────────────────────────────────────

def test_default_headers_are_global():
    deny_list = DenyList()
    assert deny_list.is_denied("Montant", "PERSON_NAME", "fr")
    assert deny_list.is_denied("Montant", "ORGANIZATION")
    assert deny_list.is_denied("betrag", "LOCATION", "de")


def test_default_person_name_shapes():
    deny_list = DenyList()
    assert deny_list.is_denied("UBS", "PERSON_NAME")
    assert deny_list.is_denied("Rue du Midi", "PERSON_NAME")
    assert not deny_list.is_denied("UBS", "ORGANIZATION")
    assert not deny_list.is_denied("Anna Keller", "PERSON_NAME")


# ── Scopes ───────────────────────────────────────────────────────────

def test_entity_type_entry_only_applies_to_its_type():
    deny_list = DenyList({"by_entity_type": {"PERSON_NAME": ["Helvetia"]}})
    assert deny_list.is_denied("Helvetia", "PERSON_NAME")
    assert not deny_list.is_denied("Helvetia", "ORGANIZATION")


def test_language_entry_only_applies_to_its_language():
    deny_list = DenyList({"by_language": {"de": ["Herr"]}})
    assert deny_list.is_denied("Herr", "PERSON_NAME", "de")
    assert not deny_list.is_denied("Herr", "PERSON_NAME", "fr")
    assert not deny_list.is_denied("Herr", "PERSON_NAME")


def test_global_entry_applies_everywhere():
    deny_list = DenyList({"global": ["Muster"]})
    for entity_type in ("PERSON_NAME", "ORGANIZATION", "LOCATION"):
        assert deny_list.is_denied("Muster", entity_type, "en")


def test_camel_case_scope_keys():
    deny_list = DenyList({"byEntityType": {"LOCATION": ["Nord"]}, "byLanguage": {"fr": ["Madame"]}})
    assert deny_list.is_denied("Nord", "LOCATION")
    assert deny_list.is_denied("Madame", "PERSON_NAME", "fr")


# ── Matching ─────────────────────────────────────────────────────────

def test_string_entries_trim_and_ignore_case():
    deny_list = DenyList({"global": ["Montant"]})
    assert deny_list.is_denied(" Montant ", "PERSON_NAME")
    assert deny_list.is_denied("MONTANT", "PERSON_NAME")


def test_regex_entries_test_untrimmed_text():
    deny_list = DenyList({"global": [{"pattern": "^Montant$", "type": "regex"}]})
    assert deny_list.is_denied("Montant", "PERSON_NAME")
    assert not deny_list.is_denied(" Montant ", "PERSON_NAME")


def test_regex_flags():
    deny_list = DenyList({"global": [{"pattern": "^total$", "type": "regex", "flags": "i"}]})
    assert deny_list.is_denied("TOTAL", "PERSON_NAME")


def test_invalid_entries_are_skipped():
    deny_list = DenyList({"global": ["Total", {"pattern": "(", "type": "regex"}, 42]})
    assert deny_list.get_stats()["global"] == 1
    assert deny_list.is_denied("Total", "PERSON_NAME")


def test_parse_pattern_entry_rejects_unknown_flag():
    with pytest.raises(ValueError):
        parse_pattern_entry({"pattern": "x", "type": "regex", "flags": "q"})


# ── Mutation ─────────────────────────────────────────────────────────

def test_add_pattern_then_reset_restores_defaults():
    deny_list = DenyList()
    defaults = deny_list.get_stats()
    deny_list.add_pattern("Anna Keller", ENTITY_TYPE_SCOPE, "PERSON_NAME")
    deny_list.add_pattern(r"^Frau\b", LANGUAGE_SCOPE, "de", is_regex=True)
    assert deny_list.is_denied("anna keller", "PERSON_NAME")
    assert deny_list.is_denied("Frau Meier", "PERSON_NAME", "de")

    deny_list.reset()
    assert deny_list.get_stats() == defaults
    assert not deny_list.is_denied("Anna Keller", "PERSON_NAME")
    assert not deny_list.is_denied("Frau Meier", "PERSON_NAME", "de")


def test_add_pattern_rejects_scope_without_key():
    with pytest.raises(ValueError):
        DenyList({}).add_pattern("x", ENTITY_TYPE_SCOPE)


def test_get_patterns_combines_scopes():
    deny_list = DenyList({})
    deny_list.add_pattern("a", GLOBAL_SCOPE)
    deny_list.add_pattern(re.compile("b"), ENTITY_TYPE_SCOPE, "IBAN")
    deny_list.add_pattern("c", LANGUAGE_SCOPE, "fr")
    assert len(deny_list.get_patterns("IBAN", "fr")) == 3
    assert deny_list.get_patterns("EMAIL", "de") == ["a"]


# ── Files ────────────────────────────────────────────────────────────

def test_from_yaml_file(tmp_path):
    path = tmp_path / "deny.yaml"
    path.write_text(
        "version: '1.0'\n"
        "global:\n"
        "  - Montant\n"
        "by_entity_type:\n"
        "  PERSON_NAME:\n"
        "    - pattern: '^Dr$'\n"
        "      type: regex\n",
        encoding="utf-8",
    )
    deny_list = DenyList.from_file(path)
    assert deny_list.is_denied("Montant", "IBAN")
    assert deny_list.is_denied("Dr", "PERSON_NAME")
    assert not deny_list.is_denied("Dr", "ORGANIZATION")


def test_from_json_file(tmp_path):
    path = tmp_path / "deny.json"
    path.write_text(json.dumps({"by_language": {"fr": ["Monsieur"]}}), encoding="utf-8")
    deny_list = DenyList.from_file(str(path))
    assert deny_list.is_denied("Monsieur", "PERSON_NAME", "fr")
    assert not deny_list.is_denied("Monsieur", "PERSON_NAME", "en")


def test_from_file_requires_mapping(tmp_path):
    path = tmp_path / "deny.yaml"
    path.write_text("- Montant\n", encoding="utf-8")
    with pytest.raises(ValueError):
        DenyList.from_file(path)
