from __future__ import annotations

from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import Workbook

from backoffice.errors import SheetReadError, UnsupportedFileTypeError
from backoffice.ingest.sheets import check_extension, read_first_sheet, rows_from_values
from backoffice.ingest.statement_parser import parse_statement_file


def _workbook_bytes(*rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(list(row))
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_check_extension():
    assert check_extension("Statement.XLSX") == ".xlsx"
    assert check_extension("old.xls") == ".xls"
    with pytest.raises(UnsupportedFileTypeError) as exc:
        check_extension("statement.csv")
    assert "Invalid file type" in str(exc.value)


def test_blank_and_repeated_labels_get_distinct_keys():
    rows = rows_from_values(
        [
            ["Date", None, "Amount", "Amount", " "],
            ["1/2/2024", "x", 1, 2, "y"],
        ]
    )
    assert rows == [
        {"Date": "1/2/2024", "__EMPTY": "x", "Amount": 1, "Amount_1": 2, "__EMPTY_1": "y"}
    ]


def test_empty_cells_and_rows_are_dropped():
    rows = rows_from_values(
        [
            ["A", "B"],
            [None, "  "],
            ["kept", None],
            ["wide", "row", "extra"],
        ]
    )
    assert rows == [{"A": "kept"}, {"A": "wide", "B": "row", "__EMPTY": "extra"}]
    assert rows_from_values([]) == []


def test_read_first_sheet_formats_datetimes():
    data = _workbook_bytes(
        ["Date", "Description", "Amount"],
        [datetime(2024, 3, 4), "Coffee", 4.5],
    )
    assert read_first_sheet(data) == [{"Date": "3/4/2024", "Description": "Coffee", "Amount": 4.5}]


def test_read_first_sheet_rejects_garbage():
    with pytest.raises(SheetReadError):
        read_first_sheet(b"this is not a workbook")


def test_parse_statement_file_end_to_end():
    data = _workbook_bytes(
        ["Date", "Description", "Amount", "Reference"],
        [datetime(2024, 1, 2), "Coffee Shop", 12.34, "REF1"],
        ["1/3/2024", "Refund", "-5.00", "REF2"],
    )

    txs = parse_statement_file(data, filename="activity.xlsx")

    assert [(t.date, t.description, t.amount, t.reference) for t in txs] == [
        ("2024-01-02", "Coffee Shop", 12.34, "REF1"),
        ("2024-01-03", "Refund", -5.0, "REF2"),
    ]


def test_parse_statement_file_checks_extension_first():
    with pytest.raises(UnsupportedFileTypeError):
        parse_statement_file(b"", filename="activity.pdf")
