"""Tests for the checksum algorithms, per-type validators and ValidatorRegistry."""

import pytest

from veil_engine.detectors.validators import (
    ConfidenceLevel,
    ValidatorRegistry,
    create_default_validator_registry,
    ean13_check_digit,
    generate_avs,
    iban_checksum_valid,
    swiss_uid_check_digit,
    validate_date,
    validate_email,
    validate_iban,
    validate_phone,
    validate_street_address,
    validate_swiss_address,
    validate_swiss_avs,
    validate_swiss_postal_code,
    validate_vat,
)
from veil_engine.types import RegistryFrozenError

VALID_IBANS = [
    "CH9300762011623852957",
    "CH93 0076 2011 6238 5295 7",
    "DE89370400440532013000",
    "FR1420041010050500013M02606",
    "GB29NWBK60161331926819",
]


# ── IBAN ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("iban", VALID_IBANS)
def test_valid_iban(iban):
    result = validate_iban(iban)
    assert result.is_valid
    assert result.confidence == ConfidenceLevel.CHECKSUM_VALID


def test_any_single_digit_mutation_fails_iban():
    iban = "CH9300762011623852957"
    for position in range(2, len(iban)):
        if not iban[position].isdigit():
            continue
        for digit in "0123456789":
            if digit == iban[position]:
                continue
            mutated = iban[:position] + digit + iban[position + 1:]
            assert not validate_iban(mutated).is_valid, mutated


def test_invalid_iban_reports_checksum_failed():
    result = validate_iban("CH93 0076 2011 6238 5295 8")
    assert not result.is_valid
    assert result.reason == "checksum failed"
    assert result.confidence == ConfidenceLevel.INVALID_FORMAT


def test_iban_wrong_country_length():
    result = validate_iban("CH930076201162385295")
    assert not result.is_valid
    assert "length" in result.reason


def test_iban_too_short_and_too_long():
    assert validate_iban("CH93").reason == "too short"
    assert validate_iban("CH93" + "0" * 40).reason == "too long"


def test_long_spaced_iban_is_measured_without_spaces():
    spaced = "MT84 MALT 0110 0001 2345 MTLC AST0 01S"
    assert len(spaced) > 34
    result = validate_iban(spaced)
    assert result.is_valid
    assert result.metadata["country"] == "MT"


def test_padded_iban_is_measured_without_spaces():
    padded = "  CH93  0076  2011  6238  5295  7  "
    assert len(padded) > 34
    assert validate_iban(padded).is_valid


def test_iban_checksum_helper():
    assert iban_checksum_valid("DE89370400440532013000")
    assert not iban_checksum_valid("DE89370400440532013001")


# ── Swiss AVS ────────────────────────────────────────────────────────

def test_generated_avs_validates():
    avs = generate_avs("123456789")
    assert avs.startswith("756.")
    result = validate_swiss_avs(avs)
    assert result.is_valid
    assert result.metadata["formatted"] == avs


def test_avs_bad_check_digit():
    avs = generate_avs("123456789")
    last = int(avs[-1])
    broken = avs[:-1] + str((last + 1) % 10)
    result = validate_swiss_avs(broken)
    assert not result.is_valid
    assert result.reason == "checksum failed"


def test_avs_requires_756_prefix():
    assert validate_swiss_avs("757.1234.5678.97").reason == "missing 756 prefix"


def test_avs_length():
    assert not validate_swiss_avs("756.1234.5678").is_valid


def test_generate_avs_rejects_bad_body():
    with pytest.raises(ValueError):
        generate_avs("12345")


def test_ean13_check_digit():
    # Well-known EAN-13: 4006381333931
    assert ean13_check_digit("400638133393") == 1


# ── VAT ──────────────────────────────────────────────────────────────

def _swiss_uid(body: str) -> str:
    check = swiss_uid_check_digit(body)
    assert check is not None
    digits = body + str(check)
    return f"CHE-{digits[:3]}.{digits[3:6]}.{digits[6:]}"


def test_swiss_vat_valid():
    body = next(
        f"{n:08d}" for n in range(10000000, 10000100) if swiss_uid_check_digit(f"{n:08d}") is not None
    )
    result = validate_vat(_swiss_uid(body) + " MWST")
    assert result.is_valid
    assert result.metadata["country"] == "CH"


def test_swiss_vat_checksum_failure():
    body = next(
        f"{n:08d}" for n in range(10000000, 10000100) if swiss_uid_check_digit(f"{n:08d}") is not None
    )
    uid = _swiss_uid(body)
    broken = uid[:-1] + str((int(uid[-1]) + 1) % 10)
    result = validate_vat(broken)
    assert not result.is_valid
    assert result.reason == "checksum failed"


def test_eu_vat_format():
    assert validate_vat("DE123456789").is_valid
    assert not validate_vat("XX123").is_valid


# ── Date / email / phone ────────────────────────────────────────────

@pytest.mark.parametrize("text", ["15.03.1985", "1/12/2020", "3 mars 2021", "12. Januar 1999", "4 July 1976"])
def test_valid_dates(text):
    assert validate_date(text).is_valid


@pytest.mark.parametrize("text", ["31.02.2020", "12.13.2020", "01.01.1800"])
def test_invalid_dates(text):
    assert not validate_date(text).is_valid


def test_date_iso_metadata():
    assert validate_date("15.03.1985").metadata["iso"] == "1985-03-15"


def test_email_validation():
    assert validate_email("hans.muster@example.ch").is_valid
    assert not validate_email("hans..muster@example.ch").is_valid
    assert not validate_email("not-an-email").is_valid


def test_swiss_mobile_phone():
    result = validate_phone("+41 79 123 45 67")
    assert result.is_valid
    assert result.confidence == ConfidenceLevel.FORMAT_VALID
    assert result.metadata["country"] == "CH"


def test_phone_national_format():
    assert validate_phone("044 668 18 00").is_valid


def test_phone_length_rejected():
    assert not validate_phone("12345").is_valid


# ── Postal codes and addresses ──────────────────────────────────────

def test_known_postal_code():
    result = validate_swiss_postal_code("8001")
    assert result.is_valid
    assert result.confidence == ConfidenceLevel.KNOWN_VALID
    assert result.metadata["city"] == "Zürich"


def test_postal_outside_range():
    assert not validate_swiss_postal_code("9999").is_valid


def test_swiss_address_plain():
    assert validate_swiss_address("1000 Lausanne").is_valid


def test_swiss_address_year_followed_by_month():
    result = validate_swiss_address("2021 Mars", "depuis 2021 Mars")
    assert not result.is_valid


def test_swiss_address_year_range_known_city():
    assert validate_swiss_address("1950 Sion").is_valid


def test_street_address():
    assert validate_street_address("Bahnhofstrasse 10").confidence == ConfidenceLevel.STANDARD
    assert validate_street_address("Bahnhofstrasse").confidence == ConfidenceLevel.WEAK
    assert not validate_street_address("Hello 12").is_valid


# ── Registry ─────────────────────────────────────────────────────────

def test_registry_returns_none_without_validator():
    registry = create_default_validator_registry()
    assert registry.validate("PERSON_NAME", "Hans") is None


def test_registry_dispatch_reports_checksum():
    registry = create_default_validator_registry()
    result = registry.validate("IBAN", "CH93 0076 2011 6238 5295 8")
    assert result.reason == "checksum failed"


def test_registry_priority_replacement():
    registry = ValidatorRegistry()
    first = lambda text, context="": None  # noqa: E731
    second = lambda text, context="": None  # noqa: E731
    registry.register("X", first, priority=1)
    registry.register("X", second, priority=1)
    assert registry.get("X") is first
    registry.register("X", second, priority=2)
    assert registry.get("X") is second


def test_frozen_registry_rejects_registration():
    registry = create_default_validator_registry()
    with pytest.raises(RegistryFrozenError):
        registry.register("IBAN", validate_iban, priority=10)


def test_confidence_levels_are_ordered():
    values = ConfidenceLevel.values()
    assert values == sorted(values, reverse=True)
