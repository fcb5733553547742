"""
Country-aware parsing of OCR text from identity documents.

Each parser receives the full recognised text and returns whatever fields it
could find. `parse_id_document` keeps a result only when it has at least a
name or an id number.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable

from inspection.countries import get_country
from inspection.models import ExtractedIdData

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}")
UPPER_NAME_LINE_RE = re.compile(r"^[A-ZÁÉÍÓÚÑ\s]{5,50}$")

MX_CURP_RE = re.compile(r"[A-Z]{4}\d{6}[HM][A-Z]{5}[A-Z0-9]\d")
MX_VOTER_KEY_RE = re.compile(r"[A-Z]{6}\d{8}[A-Z]\d{3}")
MX_NAME_KEYWORDS = ("NOMBRE", "APELLIDO")

CR_ID_RE = re.compile(r"\d-\d{4}-\d{4}")

PA_ID_RES = (
    re.compile(r"\b(\d{1,2})-(\d{2,4})-(\d{3,6})\b"),
    re.compile(r"\b(\d{1,2})[-–](\d{3,4})[-–](\d{3,5})\b"),
    re.compile(r"\b(\d+)[-–](\d+)[-–](\d+)\b"),
)
PA_CAPS_NAME_RE = re.compile(r"\b([A-ZÁÉÍÓÚÑ]{2,}(?:\s+[A-ZÁÉÍÓÚÑ]{2,}){1,4})\b")
PA_MIXED_NAME_RE = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3})\b")
PA_NAME_LINE_RE = re.compile(r"^[A-Za-záéíóúñÁÉÍÓÚÑ\s]{8,50}$")
PA_DATE_RES = (
    re.compile(r"\d{1,2}[-/][A-Z]{3}[-/]\d{4}", re.IGNORECASE),  # 08-OCT-1956
    re.compile(r"\d{1,2}[-/]\d{1,2}[-/]\d{4}"),  # 01-02-2027
)
# Printed labels and institutional words on Panamanian cédulas
PA_SKIP_WORDS = frozenset({
    "REPUBLICA", "REPÚBLICA", "PANAMA", "PANAMÁ", "TRIBUNAL", "ELECTORAL",
    "NOMBRE", "FECHA", "LUGAR", "NACIMIENTO", "MUESTRA", "EXPIRA", "SEXO",
    "TIPO", "SANGRE", "TERNAL", "ECTORAL", "PATRIA", "HACEMOS", "TODOS",
    "USUAL", "CEDULA", "CÉDULA", "IDENTIDAD", "MOCKUP", "NACIONALIDAD",
    "PANAMEÑA", "PANAMENA", "EMISION", "EMISIÓN", "VENCIMIENTO", "FOTO",
    "DE", "LA", "EL", "LOS", "LAS", "DEL", "AL", "EN", "CON", "POR", "PARA",
})

GENERIC_ID_RES = (
    re.compile(r"\d{1,2}-\d{4}-\d{4,6}"),
    re.compile(r"\d{6,12}"),
    re.compile(r"[A-Z]{2,3}\d{6,10}"),
)


def format_name(name: str) -> str:
    """MARIA  LOPEZ -> Maria  Lopez (spacing is kept)."""
    return " ".join(word[:1].upper() + word[1:] for word in name.lower().split(" "))


def format_date(value: str, current_year: int | None = None) -> str:
    """
    Normalise DD/MM/YY[YY] to YYYY-MM-DD. Two-digit years more than ten years
    ahead of today are read as 19xx. Anything else is returned unchanged.
    """
    parts = re.split(r"[/\-.]", value)
    if len(parts) != 3:
        return value
    day, month, year = parts
    if len(year) == 2:
        current_year = current_year or datetime.now(timezone.utc).year
        century = "19" if int(year) > (current_year % 100) + 10 else "20"
        year = century + year
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def _dates(data: dict, dates: list[str], current_year: int | None) -> None:
    if dates:
        data["birth_date"] = format_date(dates[0], current_year)
    if len(dates) >= 2:
        data["expiry_date"] = format_date(dates[-1], current_year)


def parse_mexican_id(text: str, lines: list[str], dates: list[str], current_year: int | None = None) -> dict:
    data: dict = {}

    curp = MX_CURP_RE.search(text)
    if curp:
        data["id_number"] = curp.group(0)
        data["gender"] = "M" if curp.group(0)[10] == "H" else "F"

    voter_key = MX_VOTER_KEY_RE.search(text)
    if voter_key and "id_number" not in data:
        data["id_number"] = voter_key.group(0)

    # Name lines follow a NOMBRE / APELLIDO label
    names = []
    for i, line in enumerate(lines):
        if any(keyword in line.upper() for keyword in MX_NAME_KEYWORDS) and i + 1 < len(lines):
            following = lines[i + 1]
            if re.fullmatch(r"[A-ZÁÉÍÓÚÑ\s]+", following):
                names.append(format_name(following))
    if names:
        data["full_name"] = " ".join(names)
    else:
        for line in lines:
            if UPPER_NAME_LINE_RE.match(line) and "INSTITUTO" not in line and "MEXICO" not in line:
                data["full_name"] = format_name(line)
                break

    _dates(data, dates, current_year)
    data["nationality"] = "Mexicana"
    return data


def parse_costa_rican_id(text: str, lines: list[str], dates: list[str], current_year: int | None = None) -> dict:
    data: dict = {}

    match = CR_ID_RE.search(text)
    if match:
        data["id_number"] = match.group(0)

    for line in lines:
        if UPPER_NAME_LINE_RE.match(line):
            data["full_name"] = format_name(line)
            break

    _dates(data, dates, current_year)
    data["nationality"] = "Costarricense"
    return data


def _has_skip_word(value: str) -> bool:
    return any(word in PA_SKIP_WORDS for word in value.upper().split())


def parse_panamanian_id(text: str, lines: list[str], dates: list[str], current_year: int | None = None) -> dict:
    data: dict = {}

    for pattern in PA_ID_RES:
        match = pattern.search(text)
        if match:
            # En dashes from OCR are rewritten as plain dashes
            data["id_number"] = "-".join(match.groups())
            break

    for match in PA_CAPS_NAME_RE.findall(text):
        words = match.split()
        if 2 <= len(words) <= 4 and not _has_skip_word(match) and 5 <= len(match) <= 40:
            data["full_name"] = format_name(match)
            break

    if "full_name" not in data:
        for match in PA_MIXED_NAME_RE.findall(text):
            if 2 <= len(match.split()) <= 4 and not _has_skip_word(match):
                data["full_name"] = match
                break

    if "full_name" not in data:
        for line in lines:
            if _has_skip_word(line) or not PA_NAME_LINE_RE.match(line):
                continue
            words = [w for w in line.split() if len(w) > 1]
            if 2 <= len(words) <= 5:
                data["full_name"] = format_name(line)
                break

    # Panamanian dates are kept as printed
    found: list[str] = []
    for pattern in PA_DATE_RES:
        found.extend(pattern.findall(text))
    if found:
        data["birth_date"] = found[0]
    if len(found) >= 2:
        data["expiry_date"] = found[-1]

    data["nationality"] = "Panameña"
    return data


def _unanchored(pattern: re.Pattern[str]) -> re.Pattern[str]:
    return re.compile(pattern.pattern.lstrip("^").rstrip("$"))


def parse_generic_id(
    text: str,
    lines: list[str],
    dates: list[str],
    current_year: int | None = None,
    country: str | None = None,
) -> dict:
    data: dict = {}

    info = get_country(country)
    patterns = ((_unanchored(info.id_pattern),) if info else ()) + GENERIC_ID_RES
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            data["id_number"] = match.group(0)
            break

    for line in lines:
        if UPPER_NAME_LINE_RE.match(line) and len(line.split(" ")) >= 2:
            data["full_name"] = format_name(line)
            break

    _dates(data, dates, current_year)
    if info and info.nationality:
        data["nationality"] = info.nationality
    return data


PARSERS: dict[str, Callable[..., dict]] = {
    "MX": parse_mexican_id,
    "CR": parse_costa_rican_id,
    "PA": parse_panamanian_id,
}


def parse_id_document(text: str, country: str | None, current_year: int | None = None) -> ExtractedIdData | None:
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    dates = DATE_RE.findall(text)
    code = (country or "").upper()

    parser = PARSERS.get(code)
    if parser is not None:
        data = parser(text, lines, dates, current_year)
    else:
        data = parse_generic_id(text, lines, dates, current_year, country=code)

    if not (data.get("full_name") or data.get("id_number")):
        logger.debug("No identity fields found in %d lines of OCR text", len(lines))
        return None

    return ExtractedIdData(
        full_name=data.get("full_name", ""),
        id_number=data.get("id_number", ""),
        birth_date=data.get("birth_date", ""),
        expiry_date=data.get("expiry_date", ""),
        nationality=data.get("nationality"),
        gender=data.get("gender"),
    )
