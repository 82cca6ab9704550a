import pytest

from groupwarden.identity.jid import candidate_identifiers, is_valid_phone, normalize_phone, parse_identifier
from groupwarden.utils.helpers import extract_number_from_name, parse_phone_numbers, validate_group_name


def test_parse_phone_numbers_keeps_order_and_reports_bad_lines() -> None:
    numbers, errors = parse_phone_numbers("+62 812-3456-7890\n\n  6289876543210  \n12345\n---\n")

    assert numbers == ["6281234567890", "6289876543210"]
    assert errors == ["invalid phone number: '12345'"]


def test_validate_group_name_trims_and_bounds() -> None:
    assert validate_group_name("  Kelas 7  ") == "Kelas 7"
    with pytest.raises(ValueError):
        validate_group_name("   ")
    with pytest.raises(ValueError):
        validate_group_name("x" * 101)
    assert validate_group_name("x" * 100) == "x" * 100


def test_extract_number_from_name() -> None:
    assert extract_number_from_name("Kelas 12") == 12
    assert extract_number_from_name("Angkatan 2019 Kelas 3") == 3
    assert extract_number_from_name("7A Matematika") == 7
    assert extract_number_from_name("Umum") == 0


def test_phone_normalization_and_bounds() -> None:
    assert normalize_phone("+62 (812) 3456-7890") == "6281234567890"
    assert is_valid_phone("0812345678")
    assert not is_valid_phone("081234567")
    assert not is_valid_phone("1234567890123456")


def test_parse_identifier_splits_device_and_server() -> None:
    parsed = parse_identifier("6281234567890:12@S.WhatsApp.net")

    assert parsed.user == "6281234567890"
    assert parsed.device == "12"
    assert parsed.kind == "phone"
    assert parsed.base == "6281234567890@s.whatsapp.net"


def test_candidate_identifiers_include_national_forms() -> None:
    candidates = candidate_identifiers("6281234567890", country_code="62")

    assert candidates[:2] == ["6281234567890@s.whatsapp.net", "6281234567890@lid"]
    assert "6281234567890:0@s.whatsapp.net" in candidates
    assert "081234567890@s.whatsapp.net" in candidates
    assert len(candidates) == len(set(candidates))
