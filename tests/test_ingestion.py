"""Tests for workbook and delimited text ingestion."""

from __future__ import annotations

import io
from collections.abc import Callable
from datetime import datetime

import pytest
from openpyxl import Workbook

from gridsync.exceptions import ParseError
from gridsync.ingestion import (
    detect_delimiter,
    parse_delimited,
    parse_document,
    parse_workbook,
)
from gridsync.model import CSV_SHEET_NAME, CellKind

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MakeXlsx = Callable[[dict[str, list[list[object]]]], bytes]


class TestParseWorkbook:
    def test_sheet_order_is_preserved(self, make_xlsx: MakeXlsx) -> None:
        data = make_xlsx({"Summary": [["a"]], "Data": [["b"]], "Notes": [["c"]]})

        document = parse_workbook(data)

        assert document.sheet_names == ["Summary", "Data", "Notes"]
        assert not document.flat

    def test_values_and_kinds(self, make_xlsx: MakeXlsx) -> None:
        data = make_xlsx({"Sheet1": [["Item", "Cost"], ["Rent", 1200], ["Coffee", 3.5]]})

        document = parse_workbook(data)

        assert document.values("Sheet1") == [["Item", "Cost"], ["Rent", 1200], ["Coffee", 3.5]]
        grid = document.grid("Sheet1")
        assert grid[0][0].kind is CellKind.TEXT
        assert grid[1][1].kind is CellKind.NUMBER
        assert grid[2][1].kind is CellKind.NUMBER

    def test_integral_floats_become_ints(self, make_xlsx: MakeXlsx) -> None:
        document = parse_workbook(make_xlsx({"S": [[450.0]]}))

        value = document.grid("S")[0][0].value
        assert value == 450
        assert isinstance(value, int)

    def test_dates_render_as_iso(self, make_xlsx: MakeXlsx) -> None:
        data = make_xlsx(
            {"S": [[datetime(2024, 1, 15), datetime(2024, 1, 15, 9, 30)]]}
        )

        row = parse_workbook(data).grid("S")[0]

        assert row[0].kind is CellKind.DATE
        assert row[0].value == "2024-01-15"
        assert row[1].value == "2024-01-15 09:30:00"

    def test_booleans_render_as_text(self, make_xlsx: MakeXlsx) -> None:
        row = parse_workbook(make_xlsx({"S": [[True, False]]})).grid("S")[0]

        assert [cell.value for cell in row] == ["TRUE", "FALSE"]
        assert row[0].kind is CellKind.TEXT

    def test_formula_keeps_source(self, make_xlsx: MakeXlsx) -> None:
        data = make_xlsx({"S": [[1, 2, "=SUM(A1:B1)"]]})

        cell = parse_workbook(data).grid("S")[0][2]

        assert cell.kind is CellKind.FORMULA
        assert cell.formula == "=SUM(A1:B1)"
        # openpyxl never computes formulas, so there is no cached value
        assert cell.value is None

    def test_empty_sheet(self, make_xlsx: MakeXlsx) -> None:
        document = parse_workbook(make_xlsx({"Empty": [], "Full": [["x"]]}))

        assert document.grid("Empty") == []
        assert document.values("Full") == [["x"]]

    def test_short_rows_are_padded_with_empty_cells(self, make_xlsx: MakeXlsx) -> None:
        document = parse_workbook(make_xlsx({"S": [["a"], ["b", "c"]]}))

        assert document.values("S") == [["a", None], ["b", "c"]]

    def test_percent_formats_render_as_displayed(self) -> None:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Rates"
        sheet["A1"] = 0.5
        sheet["A1"].number_format = "0.00%"
        sheet["B1"] = 0.25
        sheet["B1"].number_format = "0%"
        sheet["C1"] = 0.5
        buffer = io.BytesIO()
        workbook.save(buffer)

        row = parse_workbook(buffer.getvalue()).grid("Rates")[0]

        assert [cell.value for cell in row] == ["50.00%", "25%", 0.5]
        assert all(cell.kind is CellKind.NUMBER for cell in row)

    @pytest.mark.parametrize("data", [b"", b"not a workbook", b"PK\x03\x04garbage"])
    def test_unreadable_bytes(self, data: bytes) -> None:
        with pytest.raises(ParseError, match="not a readable workbook"):
            parse_workbook(data)


class TestDetectDelimiter:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("a,b,c\n1,2,3\n", ","),
            ("a\tb\tc\n1\t2\t3\n", "\t"),
            ("a|b\n1|2\n", "|"),
            ("a;b;c\n1;2;3\n", ";"),
            ("single\ncolumn\n", ","),
            ("", ","),
        ],
    )
    def test_detection(self, text: str, expected: str) -> None:
        assert detect_delimiter(text) == expected

    def test_quoted_commas_do_not_confuse_tabs(self) -> None:
        text = 'name\tnote\n"Smith, J"\t"a, b, c"\n'

        assert detect_delimiter(text) == "\t"

    def test_consistency_beats_column_count(self) -> None:
        # Semicolons split every row into two; commas appear in only one row
        text = "a;b\n1,5;2\nx;y\n"

        assert detect_delimiter(text) == ";"


class TestParseDelimited:
    def test_flat_single_sheet(self) -> None:
        document = parse_delimited("Name,Age\nAlice,30\nBob,25\n")

        assert document.flat
        assert document.sheet_names == [CSV_SHEET_NAME]
        assert document.values() == [["Name", "Age"], ["Alice", "30"], ["Bob", "25"]]

    def test_values_stay_text(self) -> None:
        grid = parse_delimited("1,2.5\n").grid(CSV_SHEET_NAME)

        assert [cell.value for cell in grid[0]] == ["1", "2.5"]
        assert all(cell.kind is CellKind.TEXT for cell in grid[0])

    def test_quoting(self) -> None:
        document = parse_delimited('name,note\n"Smith, J","said ""hi"""\n')

        assert document.values()[1] == ["Smith, J", 'said "hi"']

    def test_multiline_quoted_field(self) -> None:
        document = parse_delimited('a,b\n"line one\nline two",x\n')

        assert document.values()[1] == ["line one\nline two", "x"]

    def test_tab_separated(self) -> None:
        assert parse_delimited("a\tb\n1\t2").values() == [["a", "b"], ["1", "2"]]

    def test_byte_order_mark_is_stripped(self) -> None:
        assert parse_delimited("\ufeffa,b\n").values() == [["a", "b"]]

    def test_trailing_blank_lines_dropped(self) -> None:
        assert parse_delimited("a,b\n\n\n").values() == [["a", "b"]]

    def test_empty_text(self) -> None:
        document = parse_delimited("")

        assert document.grid(CSV_SHEET_NAME) == []

    def test_ragged_rows_are_kept(self) -> None:
        assert parse_delimited("a,b,c\n1\n").values() == [["a", "b", "c"], ["1"]]


class TestParseDocument:
    def test_csv_by_mime_type(self) -> None:
        document = parse_document(b"a,b\n1,2\n", mime_type="text/csv")

        assert document.flat
        assert document.values() == [["a", "b"], ["1", "2"]]

    def test_csv_mime_with_charset(self) -> None:
        document = parse_document(b"a,b\n", mime_type="text/csv; charset=utf-8")

        assert document.flat

    def test_csv_by_extension(self) -> None:
        document = parse_document(b"a\tb\n", file_name="export.tsv")

        assert document.values() == [["a", "b"]]

    def test_utf8_bom_bytes(self) -> None:
        document = parse_document("\ufeffé,b\n".encode(), file_name="x.csv")

        assert document.values() == [["é", "b"]]

    def test_workbook_by_mime_type(self, make_xlsx: MakeXlsx) -> None:
        document = parse_document(make_xlsx({"S": [["x"]]}), mime_type=XLSX_MIME)

        assert not document.flat
        assert document.sheet_names == ["S"]

    def test_workbook_by_extension_with_query(self, make_xlsx: MakeXlsx) -> None:
        document = parse_document(
            make_xlsx({"S": [["x"]]}), file_name="budget.xlsx?sig=abc"
        )

        assert document.values("S") == [["x"]]

    def test_unreadable_workbook_names_source(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_document(b"nope", file_name="budget.xlsx")

        assert exc_info.value.source == "budget.xlsx"
        assert "budget.xlsx" in str(exc_info.value)

    def test_invalid_utf8(self) -> None:
        with pytest.raises(ParseError, match="UTF-8"):
            parse_document(b"\xff\xfe\xfa", mime_type="text/csv")

    def test_unsupported_type(self) -> None:
        with pytest.raises(ParseError, match="unsupported document type application/pdf"):
            parse_document(b"%PDF", mime_type="application/pdf", file_name="a.pdf")
