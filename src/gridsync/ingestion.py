"""Parse downloaded document bodies into SpreadsheetDocuments.

Parsing is pure: callers pass bytes or text they already fetched.
"""

from __future__ import annotations

import csv
import io
import zipfile
from collections import Counter
from datetime import date, datetime, time
from pathlib import PurePosixPath
from typing import Any

from openpyxl import load_workbook
from openpyxl.cell import Cell as XlCell
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from gridsync.exceptions import ParseError
from gridsync.model import (
    CSV_SHEET_NAME,
    Cell,
    CellKind,
    Grid,
    SpreadsheetDocument,
)
from gridsync.utils import format_number

DELIMITER_CANDIDATES = (",", "\t", "|", ";")

DELIMITED_EXTENSIONS = {".csv", ".tsv", ".txt"}
WORKBOOK_EXTENSIONS = {".xlsx", ".xlsm", ".xltx", ".xltm"}


def parse_workbook(data: bytes) -> SpreadsheetDocument:
    """Decode an xlsx workbook into one grid per sheet, in workbook order.

    Raises:
        ParseError: If the bytes are not a readable workbook
    """
    try:
        # Load twice: once to capture formulas, once for cached computed values
        workbook = load_workbook(io.BytesIO(data), data_only=False)
        computed_wb = load_workbook(io.BytesIO(data), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ParseError(f"not a readable workbook ({e})") from e

    sheet_names = list(workbook.sheetnames)
    sheets = {
        name: _read_sheet(workbook[name], computed_wb[name]) for name in sheet_names
    }
    return SpreadsheetDocument(sheet_names=sheet_names, sheets=sheets)


def _read_sheet(sheet: Worksheet, computed_sheet: Worksheet) -> Grid:
    # A fresh sheet reports max_row == max_column == 1 with an empty A1
    if sheet.max_row == 1 and sheet.max_column == 1 and sheet["A1"].value is None:
        return []

    grid: Grid = []
    row_iter = sheet.iter_rows()
    computed_iter = computed_sheet.iter_rows(values_only=True)
    for row_cells, computed_values in zip(row_iter, computed_iter, strict=False):
        grid.append(
            [
                _build_cell(cell, computed)
                for cell, computed in zip(row_cells, computed_values, strict=False)
            ]
        )
    return grid


def _build_cell(cell: XlCell, computed_value: Any) -> Cell:
    """Create a Cell, preferring the displayed form of the value."""
    if cell.data_type == "f":
        formula = str(getattr(cell.value, "text", cell.value))
        if not formula.startswith("="):
            formula = f"={formula}"
        return Cell(
            value=_display(computed_value), kind=CellKind.FORMULA, formula=formula
        )

    value = cell.value
    if value is None:
        return Cell()
    if getattr(cell, "is_date", False) or isinstance(value, (datetime, date, time)):
        return Cell(value=_display(value), kind=CellKind.DATE)
    if isinstance(value, bool):
        return Cell(value=_display(value), kind=CellKind.TEXT)
    if isinstance(value, (int, float)):
        percent = _format_percent(value, cell.number_format)
        if percent is not None:
            return Cell(value=percent, kind=CellKind.NUMBER)
        return Cell(value=format_number(value), kind=CellKind.NUMBER)
    return Cell(value=str(value), kind=CellKind.TEXT)


def _format_percent(value: int | float, number_format: str | None) -> str | None:
    """Render a value the way a ``0%``/``0.00%`` number format shows it.

    Returns None for any other number format.
    """
    section = (number_format or "").split(";", 1)[0].strip()
    if not section.endswith("%"):
        return None
    digits = section[:-1]
    decimals = len(digits.split(".", 1)[1]) if "." in digits else 0
    return f"{value * 100:.{decimals}f}%"


def _display(value: Any) -> str | int | float | None:
    """Render a raw workbook value the way a spreadsheet would show it."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def detect_delimiter(text: str) -> str:
    """Pick the delimiter giving the most consistent multi-column rows.

    Each candidate is scored by how many non-blank rows share its most
    common column count; candidates that never split a row score zero.
    Ties go to the earlier candidate, and ``,`` is the fallback.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return ","

    best = ","
    best_score = (0, 0)
    for delimiter in DELIMITER_CANDIDATES:
        counts = Counter(len(row) for row in _split(lines, delimiter))
        columns, matching_rows = counts.most_common(1)[0]
        score = (matching_rows if columns > 1 else 0, columns)
        if score > best_score:
            best, best_score = delimiter, score
    return best


def parse_delimited(text: str) -> SpreadsheetDocument:
    """Split delimited text into a single-sheet flat document of text cells.

    Raises:
        ParseError: If the text is malformed beyond what the csv reader accepts
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    delimiter = detect_delimiter(text)
    try:
        rows = list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))
    except csv.Error as e:
        raise ParseError(f"malformed delimited text ({e})") from e

    # Trailing blank lines carry no cells
    while rows and not any(rows[-1]):
        rows.pop()

    grid: Grid = [[Cell(value=value, kind=CellKind.TEXT) for value in row] for row in rows]
    return SpreadsheetDocument(
        sheet_names=[CSV_SHEET_NAME],
        sheets={CSV_SHEET_NAME: grid},
        flat=True,
    )


def parse_document(
    data: bytes,
    *,
    mime_type: str | None = None,
    file_name: str | None = None,
) -> SpreadsheetDocument:
    """Parse a document body, choosing the parser from MIME type or file name.

    Raises:
        ParseError: If the type is unsupported or the body is unreadable
    """
    if is_delimited(mime_type, file_name):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError(f"text is not valid UTF-8 ({e})", source=file_name) from e
        return parse_delimited(text)

    if is_workbook(mime_type, file_name):
        try:
            return parse_workbook(data)
        except ParseError as e:
            raise ParseError(e.reason, source=file_name) from e

    raise ParseError(
        f"unsupported document type {mime_type or 'unknown'}", source=file_name
    )


def is_delimited(mime_type: str | None, file_name: str | None) -> bool:
    if mime_type and mime_type.split(";")[0].strip() in {
        "text/csv",
        "text/tab-separated-values",
        "text/plain",
    }:
        return True
    return _extension(file_name) in DELIMITED_EXTENSIONS


def is_workbook(mime_type: str | None, file_name: str | None) -> bool:
    if mime_type and any(
        marker in mime_type for marker in ("spreadsheet", "excel", "sheet")
    ):
        return True
    return _extension(file_name) in WORKBOOK_EXTENSIONS


def _extension(file_name: str | None) -> str:
    if not file_name:
        return ""
    return PurePosixPath(file_name.split("?", 1)[0]).suffix.lower()


def _split(lines: list[str], delimiter: str) -> list[list[str]]:
    try:
        return list(csv.reader(lines, delimiter=delimiter))
    except csv.Error:
        return [line.split(delimiter) for line in lines]
