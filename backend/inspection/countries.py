"""
Per-country identity document and licence plate formats.

Plate search patterns are tried in order against free OCR text, so they are
unanchored. `plate_pattern` is the anchored form used to check typed input.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Country:
    code: str
    name: str
    flag: str
    id_document_name: str
    id_pattern: re.Pattern[str]
    plate_pattern: re.Pattern[str]
    plate_search_patterns: tuple[re.Pattern[str], ...] = field(default_factory=tuple)
    nationality: str | None = None


def _search(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


COUNTRIES: dict[str, Country] = {
    c.code: c
    for c in (
        Country(
            code="MX",
            name="México",
            flag="🇲🇽",
            id_document_name="INE/IFE",
            id_pattern=re.compile(r"^[A-Z]{6}[0-9]{8}[A-Z][0-9]{3}$"),
            plate_pattern=re.compile(r"^[A-Z]{3}-?[0-9]{3,4}-?[A-Z]?$"),
            plate_search_patterns=_search(
                r"[A-Z]{3}[- ]?\d{3,4}(?:-?[A-Z](?![A-Z]))?",  # ABC-123-A
                r"\d{3}[-\s]?[A-Z]{3}",
            ),
            nationality="Mexicana",
        ),
        Country(
            code="CR",
            name="Costa Rica",
            flag="🇨🇷",
            id_document_name="Cédula de Identidad",
            id_pattern=re.compile(r"^[0-9]-[0-9]{4}-[0-9]{4}$"),
            plate_pattern=re.compile(r"^[A-Z]{3}-?[0-9]{3}$"),
            plate_search_patterns=_search(
                r"[A-Z]{3}[-\s]?\d{3}",  # ABC-123
                r"[A-Z]{2}[-\s]?\d{4}",  # special vehicles
            ),
            nationality="Costarricense",
        ),
        Country(
            code="PA",
            name="Panamá",
            flag="🇵🇦",
            id_document_name="Cédula de Identidad",
            id_pattern=re.compile(r"^[0-9]{1,2}-[0-9]{1,4}-[0-9]{1,6}$"),
            plate_pattern=re.compile(r"^[A-Z]{2,3}-?[0-9]{4}$"),
            plate_search_patterns=_search(
                r"[A-Z]{2,3}[-\s]?\d{4}",  # AB-1234 / ABC-1234
                r"\d{4}[-\s]?[A-Z]{2,3}",
            ),
            nationality="Panameña",
        ),
        Country(
            code="CO",
            name="Colombia",
            flag="🇨🇴",
            id_document_name="Cédula de Ciudadanía",
            id_pattern=re.compile(r"^[0-9]{6,10}$"),
            plate_pattern=re.compile(r"^[A-Z]{3}-?[0-9]{3}$"),
            plate_search_patterns=_search(
                r"[A-Z]{3}[-\s]?\d{3}",
                r"[A-Z]{3}[-\s]?\d{2}[A-Z]",  # motorcycles
            ),
            nationality="Colombiana",
        ),
        Country(
            code="GT",
            name="Guatemala",
            flag="🇬🇹",
            id_document_name="DPI",
            id_pattern=re.compile(r"^[0-9]{4}-?[0-9]{5}-?[0-9]{4}$"),
            plate_pattern=re.compile(r"^[A-Z]-?[0-9]{3}[A-Z]{3}$"),
            plate_search_patterns=_search(
                r"[A-Z][-\s]?\d{3}[-\s]?[A-Z]{3}",
                r"[CMOP][-\s]?\d{3}[-\s]?[A-Z]{3}",
            ),
            nationality="Guatemalteca",
        ),
        Country(
            code="SV",
            name="El Salvador",
            flag="🇸🇻",
            id_document_name="DUI",
            id_pattern=re.compile(r"^[0-9]{8}-[0-9]$"),
            plate_pattern=re.compile(r"^[A-Z]-?[0-9]{3}-?[0-9]{3}$"),
            plate_search_patterns=_search(r"[A-Z][-\s]?\d{3}[-\s]?\d{3}"),
            nationality="Salvadoreña",
        ),
        Country(
            code="HN",
            name="Honduras",
            flag="🇭🇳",
            id_document_name="Tarjeta de Identidad",
            id_pattern=re.compile(r"^[0-9]{4}-[0-9]{4}-[0-9]{5}$"),
            plate_pattern=re.compile(r"^[A-Z]{3}-?[0-9]{4}$"),
            plate_search_patterns=_search(r"[A-Z]{3}[-\s]?\d{4}"),
            nationality="Hondureña",
        ),
        Country(
            code="NI",
            name="Nicaragua",
            flag="🇳🇮",
            id_document_name="Cédula de Identidad",
            id_pattern=re.compile(r"^[0-9]{3}-[0-9]{6}-[0-9]{4}[A-Z]$"),
            plate_pattern=re.compile(r"^[A-Z]{2}-?[0-9]{5}$"),
            plate_search_patterns=_search(r"[A-Z]{2}[-\s]?\d{5}"),
            nationality="Nicaragüense",
        ),
    )
}

DEFAULT_PLATE_SEARCH_PATTERNS = _search(
    r"[A-Z0-9]{5,8}",
    r"[A-Z]{2,3}[-\s]?\d{3,4}",
)


def get_country(code: str | None) -> Country | None:
    if not code:
        return None
    return COUNTRIES.get(code.upper())


def plate_search_patterns(code: str | None) -> tuple[re.Pattern[str], ...]:
    """Ordered plate patterns for OCR text, falling back to the generic set."""
    country = get_country(code)
    if country is None or not country.plate_search_patterns:
        return DEFAULT_PLATE_SEARCH_PATTERNS
    return country.plate_search_patterns


def is_valid_plate(plate: str, code: str | None) -> bool:
    """Check a typed plate against the country format. Unknown countries accept anything non-empty."""
    cleaned = plate.strip().upper().replace(" ", "-")
    if not cleaned:
        return False
    country = get_country(code)
    if country is None:
        return True
    return bool(country.plate_pattern.match(cleaned))
