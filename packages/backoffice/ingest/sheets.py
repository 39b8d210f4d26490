"""Read the first worksheet of an uploaded workbook into keyed rows.

The first spreadsheet row supplies the column labels. Blank labels become
``__EMPTY``, ``__EMPTY_1``, ... and repeated labels get ``_1``, ``_2``
suffixes so every cell keeps a distinct key. Empty cells are left out of
each row mapping and rows without any value are dropped; the statement
parser works out where the real header is on its own.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, time
from io import BytesIO
from pathlib import PurePath
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import SheetReadError, UnsupportedFileTypeError
from ..logging_setup import get_logger
from ..models import RawSheetRow

SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm", ".xls")

logger = get_logger("backoffice.ingest.sheets")


def check_extension(filename: str) -> str:
    """Return the lowercased extension or raise ``UnsupportedFileTypeError``."""

    ext = PurePath(filename).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileTypeError(
            "Invalid file type. Please upload an Excel file (.xlsx or .xls)"
        )
    return ext


def _cell_value(value: object) -> str | int | float | None:
    if value is None:
        return None
    # Statement dates arrive as datetimes; hand them on in the M/D/YYYY
    # shape the date normalizer understands.
    if isinstance(value, datetime):
        return f"{value.month}/{value.day}/{value.year}"
    if isinstance(value, date):
        return f"{value.month}/{value.day}/{value.year}"
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, (int, float)):
        return value
    text = str(value)
    return text if text.strip() else None


def _column_labels(header: Sequence[object]) -> list[str]:
    labels: list[str] = []
    seen: dict[str, int] = {}
    for raw in header:
        base = str(raw).strip() if raw is not None and str(raw).strip() else "__EMPTY"
        count = seen.get(base, 0)
        seen[base] = count + 1
        labels.append(base if count == 0 else f"{base}_{count}")
    return labels


def _unused_label(labels: list[str]) -> str:
    # Cells past the header row's width get fresh blank-label keys.
    label, n = "__EMPTY", 0
    while label in labels:
        n += 1
        label = f"__EMPTY_{n}"
    return label


def rows_from_values(values: Iterable[Sequence[object]]) -> list[RawSheetRow]:
    """Key raw cell tuples by the labels taken from the first tuple."""

    it = iter(values)
    try:
        header = list(next(it))
    except StopIteration:
        return []
    labels = _column_labels(header)
    rows: list[RawSheetRow] = []
    for raw_row in it:
        row: dict[str, str | int | float | None] = {}
        for idx, raw in enumerate(raw_row):
            value = _cell_value(raw)
            if value is None:
                continue
            while idx >= len(labels):
                labels.append(_unused_label(labels))
            row[labels[idx]] = value
        if row:
            rows.append(row)
    return rows


def read_first_sheet(data: bytes) -> list[RawSheetRow]:
    """Open workbook bytes and return the active sheet's rows.

    Raises ``SheetReadError`` when the bytes are not a readable workbook.
    """

    try:
        workbook = load_workbook(BytesIO(data), data_only=True, read_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError) as exc:
        raise SheetReadError(str(exc) or exc.__class__.__name__) from exc
    try:
        sheet = workbook.active
        if sheet is None:
            raise SheetReadError("workbook has no worksheets")
        rows = rows_from_values(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()
    logger.debug("Read %d non-empty rows from worksheet", len(rows))
    return rows


__all__ = [
    "SUPPORTED_EXTENSIONS",
    "check_extension",
    "read_first_sheet",
    "rows_from_values",
]
