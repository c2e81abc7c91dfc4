"""Data types shared by the resolver, ingestion and diff engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

CellValue = str | int | float | None

# Sheet name used for flat (CSV) documents
CSV_SHEET_NAME = "Sheet1"

StorageReference = str


class CellKind(str, Enum):
    """Declared type of a cell."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    FORMULA = "formula"


@dataclass
class Cell:
    """A single cell of a grid.

    For formula cells ``value`` holds the last computed display value and
    ``formula`` the source expression.
    """

    value: CellValue = None
    kind: CellKind = CellKind.TEXT
    formula: str | None = None

    def __post_init__(self) -> None:
        if self.kind is CellKind.FORMULA and not self.formula:
            raise ValueError("Formula cells must carry their formula")


Row = list[Cell]
Grid = list[Row]


@dataclass
class SpreadsheetDocument:
    """An ordered collection of named grids.

    A CSV document is a single-sheet document with ``flat=True``.
    """

    sheet_names: list[str] = field(default_factory=list)
    sheets: dict[str, Grid] = field(default_factory=dict)
    flat: bool = False

    def __post_init__(self) -> None:
        if len(set(self.sheet_names)) != len(self.sheet_names):
            raise ValueError("Sheet names must be unique")
        for name in self.sheet_names:
            self.sheets.setdefault(name, [])

    @classmethod
    def from_values(
        cls, sheets: dict[str, list[list[CellValue]]]
    ) -> SpreadsheetDocument:
        """Build a workbook document from plain values, one text cell each."""
        return cls(
            sheet_names=list(sheets),
            sheets={name: _grid_from_values(rows) for name, rows in sheets.items()},
        )

    @classmethod
    def from_csv_rows(cls, rows: list[list[CellValue]]) -> SpreadsheetDocument:
        """Build a flat document from plain values."""
        return cls(
            sheet_names=[CSV_SHEET_NAME],
            sheets={CSV_SHEET_NAME: _grid_from_values(rows)},
            flat=True,
        )

    def grid(self, sheet_name: str) -> Grid:
        """Return the grid for a sheet, or an empty grid if it doesn't exist."""
        return self.sheets.get(sheet_name, [])

    def values(self, sheet_name: str | None = None) -> list[list[CellValue]]:
        """Return the plain values of a sheet (the first sheet by default)."""
        if sheet_name is None:
            if not self.sheet_names:
                return []
            sheet_name = self.sheet_names[0]
        return [[cell.value for cell in row] for row in self.grid(sheet_name)]

    def copy(self) -> SpreadsheetDocument:
        """Deep copy, so an edit buffer never aliases its baseline."""
        return SpreadsheetDocument(
            sheet_names=list(self.sheet_names),
            sheets={
                name: [
                    [Cell(cell.value, cell.kind, cell.formula) for cell in row]
                    for row in grid
                ]
                for name, grid in self.sheets.items()
            },
            flat=self.flat,
        )


def _grid_from_values(rows: list[list[CellValue]]) -> Grid:
    return [[Cell(value) for value in row] for row in rows]


@dataclass(frozen=True)
class SheetCellEdit:
    """An edit to one workbook cell, addressed in A1 notation."""

    sheet: str
    cell: str
    value: CellValue

    def to_dict(self) -> dict[str, Any]:
        return {"sheet": self.sheet, "cell": self.cell, "value": self.value}


@dataclass(frozen=True)
class GridCellEdit:
    """An edit to one cell of a flat CSV grid."""

    row: int
    column: int
    value: CellValue

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "column": self.column, "value": self.value}


CellEdit = SheetCellEdit | GridCellEdit


@dataclass(frozen=True)
class SignedURL:
    """A download URL plus its estimated expiry (Unix timestamp)."""

    url: str
    expires_at: float | None = None

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class URLCacheEntry:
    """A cached signed URL for one storage reference."""

    storage_ref: StorageReference
    url: str
    cached_at: float


@dataclass(frozen=True)
class RefreshedURL:
    """Response of the download-URL endpoint."""

    url: str
    should_cache: bool | None = None
    storage_ref: StorageReference | None = None


AttemptType = Literal["cached", "original", "refresh-request", "refreshed-url"]


@dataclass(frozen=True)
class Attempt:
    """One step of a resolution, kept for diagnostics."""

    type: AttemptType
    success: bool
    status: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type, "success": self.success}
        if self.status is not None:
            result["status"] = self.status
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class Resolution:
    """A resolved URL together with how it was obtained."""

    signed_url: SignedURL
    source: AttemptType
    storage_ref: StorageReference | None
    attempts: tuple[Attempt, ...]
