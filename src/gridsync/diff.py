"""Core diff engine for gridsync.

Compares an edited SpreadsheetDocument against its baseline and produces
the cell edits needed to bring the backend copy up to date.

Rules:
- Only sheets present in the edited document are visited, in its order.
- Cells are visited row-major over the union of both grids' extents.
- An edit is emitted when the edited cell has a value (not None) whose
  display string differs from the baseline's. Missing baseline cells
  read as empty, so 450 and "450" compare equal and "" matches a hole.
- Cells removed from the edited grid produce nothing: deletions are not
  expressible as edits.
"""

from __future__ import annotations

from typing import Any

from gridsync.model import (
    Cell,
    CellEdit,
    CellValue,
    Grid,
    GridCellEdit,
    SheetCellEdit,
    SpreadsheetDocument,
)
from gridsync.utils import decode_cell, display_value, encode_cell


def diff(baseline: SpreadsheetDocument, edited: SpreadsheetDocument) -> list[CellEdit]:
    """Return the ordered cell edits turning ``baseline`` into ``edited``.

    Flat (CSV) documents yield GridCellEdit, workbooks yield SheetCellEdit.
    """
    edits: list[CellEdit] = []
    for sheet_name in edited.sheet_names:
        for row, col, value in diff_grid(
            baseline.grid(sheet_name), edited.grid(sheet_name)
        ):
            if edited.flat:
                edits.append(GridCellEdit(row=row, column=col, value=value))
            else:
                edits.append(
                    SheetCellEdit(sheet=sheet_name, cell=encode_cell(row, col), value=value)
                )
    return edits


def diff_grid(base: Grid, edited: Grid) -> list[tuple[int, int, CellValue]]:
    """Compare two grids and return ``(row, col, new_value)`` for changed cells."""
    changes: list[tuple[int, int, CellValue]] = []
    for row in range(max(len(edited), len(base))):
        base_row = base[row] if row < len(base) else []
        edited_row = edited[row] if row < len(edited) else []
        for col in range(max(len(edited_row), len(base_row))):
            new_value = edited_row[col].value if col < len(edited_row) else None
            if new_value is None:
                continue
            old_value = base_row[col].value if col < len(base_row) else None
            if display_value(new_value) != display_value(old_value):
                changes.append((row, col, new_value))
    return changes


def apply_edits(
    document: SpreadsheetDocument, edits: list[CellEdit]
) -> SpreadsheetDocument:
    """Return a copy of ``document`` with every edit applied.

    Rows and columns are padded with empty cells as needed. Workbook edits
    for a sheet that doesn't exist yet create it.
    """
    result = document.copy()
    for edit in edits:
        if isinstance(edit, GridCellEdit):
            sheet_name = result.sheet_names[0] if result.sheet_names else None
            if sheet_name is None:
                raise ValueError("Cannot apply a grid edit to a document without sheets")
            row, col = edit.row, edit.column
        else:
            sheet_name = edit.sheet
            row, col = decode_cell(edit.cell)
            if sheet_name not in result.sheets:
                result.sheet_names.append(sheet_name)
                result.sheets[sheet_name] = []
        _set_value(result.sheets[sheet_name], row, col, edit.value)
    return result


def _set_value(grid: Grid, row: int, col: int, value: CellValue) -> None:
    while len(grid) <= row:
        grid.append([])
    cells = grid[row]
    while len(cells) <= col:
        cells.append(Cell())
    # The user typed a value; the cell no longer carries a formula
    cells[col] = Cell(value=value)


def edits_to_payload(edits: list[CellEdit]) -> list[dict[str, Any]]:
    """Serialize edits to their wire form."""
    return [edit.to_dict() for edit in edits]
