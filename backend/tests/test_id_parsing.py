"""Tests for country-specific identity document parsing."""
import pytest

from inspection.id_parsing import format_date, format_name, parse_id_document


def test_mexican_credential_with_curp():
    text = "INSTITUTO NACIONAL ELECTORAL\nNOMBRE\nGARCIA LOPEZ MARIA\nCURP GALM850315MDFRPR09\n15/03/85\n01/01/2030"
    data = parse_id_document(text, "MX", current_year=2025)

    assert data.full_name == "Garcia Lopez Maria"
    assert data.id_number == "GALM850315MDFRPR09"
    assert data.gender == "F"
    assert data.birth_date == "1985-03-15"
    assert data.expiry_date == "2030-01-01"
    assert data.nationality == "Mexicana"


def test_mexican_voter_key_when_no_curp():
    text = "CLAVE DE ELECTOR GRLPMR85031509M800\nJUAN PEREZ SOTO"
    data = parse_id_document(text, "mx", current_year=2025)
    assert data.id_number == "GRLPMR85031509M800"
    assert data.full_name == "Juan Perez Soto"


def test_costa_rican_cedula():
    text = "1-0234-0567\nANA MORA VARGAS\n02/05/1990"
    data = parse_id_document(text, "CR", current_year=2025)
    assert data.id_number == "1-0234-0567"
    assert data.full_name == "Ana Mora Vargas"
    assert data.birth_date == "1990-05-02"


def test_panamanian_cedula_keeps_dates_as_printed():
    text = "REPUBLICA DE PANAMA\nTRIBUNAL ELECTORAL\nCARLOS ALBERTO RUIZ\n8-123-4567\n08-OCT-1956\n01-02-2027"
    data = parse_id_document(text, "PA")

    assert data.id_number == "8-123-4567"
    assert data.full_name == "Carlos Alberto Ruiz"
    assert data.birth_date == "08-OCT-1956"
    assert data.expiry_date == "01-02-2027"
    assert data.nationality == "Panameña"


def test_generic_parser_prefers_country_id_format():
    text = "DOCUMENTO\nLUIS FERNANDO DIAZ\n0801-1990-12345 TEL 22334455"
    data = parse_id_document(text, "HN", current_year=2025)
    assert data.id_number == "0801-1990-12345"
    assert data.nationality == "Hondureña"


def test_no_name_or_id_returns_none():
    assert parse_id_document("hello\nworld", "MX") is None


@pytest.mark.parametrize(
    "value, expected",
    [
        ("15/03/85", "1985-03-15"),
        ("1/2/30", "2030-02-01"),
        ("1/2/36", "1936-02-01"),
        ("03.07.2001", "2001-07-03"),
        ("2001", "2001"),
    ],
)
def test_format_date_century_pivot(value, expected):
    assert format_date(value, current_year=2025) == expected


def test_format_name_title_cases_words():
    assert format_name("MARIA JOSE") == "Maria Jose"


def test_panamanian_en_dashes_become_plain_dashes():
    data = parse_id_document("CARLOS RUIZ\n8–123–4567", "PA")
    assert data.id_number == "8-123-4567"
