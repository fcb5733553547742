"""
Validation utilities for identifiers and free-text input.
"""
from __future__ import annotations

import re

# VIN checksum weights (position-based)
VIN_WEIGHTS = [8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2]
VIN_VALUES = {
    '0': 0, '1': 1, '2': 2, '3': 3, '4': 4, '5': 5, '6': 6, '7': 7, '8': 8, '9': 9,
    'A': 1, 'B': 2, 'C': 3, 'D': 4, 'E': 5, 'F': 6, 'G': 7, 'H': 8,
    'J': 1, 'K': 2, 'L': 3, 'M': 4, 'N': 5, 'P': 7, 'R': 9,
    'S': 2, 'T': 3, 'U': 4, 'V': 5, 'W': 6, 'X': 7, 'Y': 8, 'Z': 9
}

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")

MAX_TEXT_LENGTH = 10000


def is_vin_format(vin: str) -> bool:
    """17 characters from the VIN alphabet (no I, O or Q)."""
    return bool(VIN_RE.match(vin.upper()))


def validate_vin_checksum(vin: str) -> bool:
    """Validate VIN checksum digit (9th character). Returns True if checksum is valid."""
    if len(vin) != 17:
        return False

    vin_upper = vin.upper()

    total = 0
    for i, char in enumerate(vin_upper):
        if i == 8:  # Skip checksum digit position
            continue
        if char not in VIN_VALUES:
            return False
        total += VIN_VALUES[char] * VIN_WEIGHTS[i]

    check_digit = total % 11
    expected = 'X' if check_digit == 10 else str(check_digit)
    return vin_upper[8] == expected


def sanitize_text(text: str | None, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    """
    Remove null bytes and control characters (except newlines and tabs) from
    user-entered text and cap its length.
    """
    if text is None:
        return None
    sanitized = "".join(char for char in text if ord(char) >= 32 or char in "\n\t")
    return sanitized[:max_length]
