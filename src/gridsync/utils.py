"""
Utility functions for gridsync.

Provides A1 coordinate conversion and the value normalization shared by
ingestion and the diff engine.
"""

from __future__ import annotations

import re
from typing import Any

from gridsync.exceptions import InvalidAddressError

_CELL_PATTERN = re.compile(r"^([A-Za-z]+)([0-9]+)$")


def encode_column(index: int) -> str:
    """Convert a zero-based column index to A1 notation letter(s).

    Examples:
        0 -> A, 1 -> B, 25 -> Z, 26 -> AA, 27 -> AB, 702 -> AAA
    """
    if index < 0:
        raise InvalidAddressError(str(index), "column index must be non-negative")
    result = ""
    while True:
        result = chr(ord("A") + (index % 26)) + result
        index = index // 26 - 1
        if index < 0:
            break
    return result


def decode_column(letters: str) -> int:
    """Convert A1 notation letter(s) to a zero-based column index.

    Examples:
        A -> 0, B -> 1, Z -> 25, AA -> 26, AB -> 27, AAA -> 702
    """
    if not letters:
        raise InvalidAddressError(letters, "empty column label")
    result = 0
    for char in letters.upper():
        if not "A" <= char <= "Z":
            raise InvalidAddressError(letters, f"unexpected character {char!r}")
        result = result * 26 + (ord(char) - ord("A") + 1)
    return result - 1


def encode_cell(row: int, col: int) -> str:
    """Convert zero-based row and column indices to A1 notation.

    Examples:
        (0, 0) -> A1, (0, 1) -> B1, (9, 2) -> C10
    """
    if row < 0:
        raise InvalidAddressError(str(row), "row index must be non-negative")
    return f"{encode_column(col)}{row + 1}"


def decode_cell(address: str) -> tuple[int, int]:
    """Convert A1 notation to zero-based (row, col).

    Examples:
        A1 -> (0, 0), B1 -> (0, 1), C10 -> (9, 2)
    """
    match = _CELL_PATTERN.match(address)
    if not match:
        raise InvalidAddressError(address, "expected letters followed by digits")
    col_letters, row_str = match.groups()
    row_number = int(row_str)
    if row_number < 1:
        raise InvalidAddressError(address, "row numbers start at 1")
    return row_number - 1, decode_column(col_letters)


def format_number(value: float | int) -> float | int:
    """Return integral floats as ``int`` so 450.0 displays as 450."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def display_value(value: Any) -> str:
    """String form of a cell value, as a user would see or type it.

    This is the representation the diff engine compares, so a number and
    its text rendering are considered equal.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(format_number(value))
    return str(value)
