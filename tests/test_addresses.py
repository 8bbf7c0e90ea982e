"""Tests for address component detection, linking and scoring."""

import pytest

from veil_engine.detection_config import AUTO_ANONYMIZE_THRESHOLD
from veil_engine.detectors.address_components import (
    CITY,
    COUNTRY,
    POSTAL_CODE,
    STREET_NAME,
    STREET_NUMBER,
    AddressComponent,
    AddressComponentDetector,
)
from veil_engine.detectors.address_linker import EU, NONE, PARTIAL, SWISS, AddressLinker, detect_pattern
from veil_engine.detectors.address_scorer import AddressScorer

LAUSANNE = "Rue de Lausanne 12, 1000 Lausanne"
BERLIN = "Hauptstraße 5, 10115 Berlin, Germany"


@pytest.fixture(scope="module")
def detector():
    return AddressComponentDetector()


def _by_type(components):
    return {c.component_type: (c.text, c.start, c.end) for c in components}


# ── Components ───────────────────────────────────────────────────────

def test_swiss_components(detector):
    found = _by_type(detector.detect(LAUSANNE))
    assert found[STREET_NAME] == ("Rue de Lausanne", 0, 15)
    assert found[STREET_NUMBER] == ("12", 16, 18)
    assert found[POSTAL_CODE] == ("1000", 20, 24)
    assert found[CITY] == ("Lausanne", 25, 33)
    assert COUNTRY not in found


def test_city_inside_street_name_is_not_a_city(detector):
    cities = [c for c in detector.detect(LAUSANNE) if c.component_type == CITY]
    assert [c.start for c in cities] == [25]


def test_postal_code_from_table(detector):
    postal = [c for c in detector.detect(LAUSANNE) if c.component_type == POSTAL_CODE][0]
    assert postal.detail == "table"


def test_year_is_not_a_postal_code(detector):
    assert detector.find_postal_codes("Im Jahr 1984 wurde das Haus gebaut") == []


def test_bare_five_digit_number_is_not_a_postal_code(detector):
    assert detector.find_postal_codes("Betrag 10115 gebucht") == []


def test_eu_components(detector):
    found = _by_type(detector.detect(BERLIN))
    assert found[STREET_NAME][0] == "Hauptstraße"
    assert found[STREET_NUMBER][0] == "5"
    assert found[POSTAL_CODE][0] == "10115"
    assert found[CITY][0] == "Berlin"
    assert found[COUNTRY][0] == "Germany"


def test_no_components_without_address(detector):
    assert detector.detect("Vielen Dank für Ihre Nachricht.") == []


# ── Linking ──────────────────────────────────────────────────────────

def test_link_swiss_address(detector):
    addresses = AddressLinker().link(detector.detect(LAUSANNE), LAUSANNE)
    assert len(addresses) == 1
    address = addresses[0]
    assert address.pattern_matched == SWISS
    assert (address.start, address.end) == (0, len(LAUSANNE))
    assert address.text == LAUSANNE
    assert address.components == {
        "street": "Rue de Lausanne",
        "number": "12",
        "postal": "1000",
        "city": "Lausanne",
        "country": None,
    }


def test_link_eu_address(detector):
    addresses = AddressLinker().link(detector.detect(BERLIN), BERLIN)
    assert len(addresses) == 1
    assert addresses[0].pattern_matched == EU
    assert addresses[0].components["country"] == "Germany"


def test_distant_components_are_not_linked():
    text = "Rue de Lausanne" + " " * 80 + "Lausanne"
    components = [
        AddressComponent(STREET_NAME, "Rue de Lausanne", 0, 15),
        AddressComponent(CITY, "Lausanne", 95, 103),
    ]
    assert AddressLinker().link(components, text) == []


def test_newline_allows_wider_gap():
    text = "Bahnhofstrasse 10\n" + " " * 60 + "8001 Zürich"
    components = AddressComponentDetector().detect(text)
    addresses = AddressLinker().link(components, text)
    assert len(addresses) == 1
    assert addresses[0].pattern_matched == SWISS


def test_detect_pattern():
    street = AddressComponent(STREET_NAME, "Kirchweg", 0, 8)
    number = AddressComponent(STREET_NUMBER, "3", 9, 10)
    city = AddressComponent(CITY, "Bern", 12, 16)
    assert detect_pattern([street, number, city]) == PARTIAL
    assert detect_pattern([street, number]) == NONE


# ── Scoring ──────────────────────────────────────────────────────────

def test_score_swiss_address_in_header(detector):
    address = AddressLinker().link(detector.detect(LAUSANNE), LAUSANNE)[0]
    scored = AddressScorer().score(address, "header")
    assert scored.final_confidence == pytest.approx(1.45 / 1.75)
    assert scored.final_confidence >= AUTO_ANONYMIZE_THRESHOLD
    assert scored.auto_anonymize
    assert not scored.flagged_for_review
    names = [f.name for f in scored.scoring_factors]
    assert names == ["completeness", "pattern", "postal", "city", "country", "position"]


def test_score_without_position(detector):
    address = AddressLinker().link(detector.detect(LAUSANNE), LAUSANNE)[0]
    scored = AddressScorer().score(address)
    assert scored.final_confidence == pytest.approx(1.4 / 1.75)


def test_partial_address_is_flagged():
    text = "Kirchweg 3, Bern"
    components = [
        AddressComponent(STREET_NAME, "Kirchweg", 0, 8),
        AddressComponent(STREET_NUMBER, "3", 9, 10),
        AddressComponent(CITY, "Bern", 12, 16, "known_city"),
    ]
    address = AddressLinker().link(components, text)[0]
    scored = AddressScorer().score(address)
    assert scored.pattern_matched == PARTIAL
    assert scored.flagged_for_review
    assert not scored.auto_anonymize
