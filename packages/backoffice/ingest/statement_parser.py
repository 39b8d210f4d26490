"""Card-statement worksheet -> :class:`NormalizedTransaction` rows.

Card-issuer exports move the header row around (preambles, summary blocks)
and phrase column titles differently from one export to the next. Parsing
therefore runs in two ordered stages, each an explicit tuple of named
strategies tried until one answers:

``HEADER_STRATEGIES``
    Locate the header row. Strategies 1 and 2 are checked together on each
    row so the earliest matching row wins; 3 runs only when neither matched:

    1. ``literal_date_token`` - a row with a cell equal to ``"date"``, or one
       cell mentioning "date" and another mentioning "amount".
    2. ``serialized_date_and_reference`` - a row whose serialized text
       mentions "date" (or a ``/20`` year) and "reference"/"description".
    3. ``row_before_first_date_cell`` - the row just above the first cell
       that looks like ``M/D/YYYY`` (clamped to the first row).

``LAYOUT_STRATEGIES``
    Turn rows into transactions:

    1. ``standard`` - map header titles to fields with ``COLUMN_ALIASES``.
    2. ``transaction_details_header`` - for exports carrying a
       "Transaction Details" column: find a ``Date`` title cell anywhere and
       read the columns next to it.
    3. ``transaction_details_scan`` - same exports, no title cell: read each
       row on its own from a date-looking cell plus its longest text cell.

The two fallback layouts synthesize ``amex-{rowIndex}`` references since
those exports have no reference column. A worksheet where nothing matches
yields an empty list rather than an error.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..config import StatementConfig, default_ingest_config
from ..logging_setup import get_logger
from ..models import NormalizedTransaction, RawSheetRow
from ..normalizers import format_date, is_numeric_amount, parse_amount
from .sheets import check_extension, read_first_sheet

logger = get_logger("backoffice.ingest.statement_parser")

# Header substrings accepted for each field, matched case-insensitively on
# word boundaries (so "state" does not hit "Appears On Your Statement As").
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("date", "transaction date", "date of transaction"),
    "description": ("description", "merchant name", "appears on your statement as"),
    "amount": ("amount", "charge amount"),
    "reference": ("reference", "reference #", "ref #", "transaction id"),
    "category": ("category", "spend category"),
    "card_member": ("card member", "card #", "account #"),
    "city": ("city", "city/state", "merchant city"),
    "state": ("state", "merchant state"),
    "zip": ("zip", "zip code", "postal code"),
    "country": ("country",),
    "extended_details": ("extended details",),
    "address": ("address",),
}

TRANSACTION_DETAILS_MARKER = "Transaction Details"

_DATE_CELL_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")
_LAST_FIVE_RE = re.compile(r"\d{5}$")
_MASKED_CARD_RE = re.compile(r"X+[-\s]?X+[-\s]?\d{5}")
_CURRENCY_CELL_RE = re.compile(r"^\(?[-+]?\$?\s*-?[\d,]*\.?\d+\)?$")


def _alias_regex(alias: str) -> re.Pattern[str]:
    return re.compile(r"(?<![a-z0-9])" + re.escape(alias) + r"(?![a-z0-9])")


_ALIAS_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    field: tuple(_alias_regex(a) for a in aliases) for field, aliases in COLUMN_ALIASES.items()
}


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Whole-number cells (references, zip codes) should not gain ".0".
        return str(int(value))
    return str(value).strip()


def _opt_text(value: Any) -> str | None:
    text = _cell_text(value)
    return text or None


def _lower_values(row: RawSheetRow) -> list[str]:
    return [_cell_text(v).lower() for v in row.values() if _cell_text(v)]


def _looks_like_date(value: Any) -> bool:
    return bool(_DATE_CELL_RE.search(_cell_text(value)))


def _looks_like_currency(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return True
    text = _cell_text(value)
    return bool(text) and bool(_CURRENCY_CELL_RE.match(text)) and parse_amount(text) != 0


# ---------------------------------------------------------------------------
# Header detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeaderStrategy:
    """A header-row test applied one row at a time.

    Strategies sharing a ``sweep`` are tried together on each row, top to
    bottom, so the earliest row any of them accepts wins. A later sweep only
    runs when an earlier one found nothing. ``rows_above`` places the header
    that many rows above the accepted row (clamped to the first row).
    """

    name: str
    matches: Callable[[RawSheetRow], bool]
    sweep: int = 0
    rows_above: int = 0


def _is_literal_date_header(row: RawSheetRow) -> bool:
    values = _lower_values(row)
    if "date" in values:
        return True
    return any("date" in v for v in values) and any("amount" in v for v in values)


def _mentions_date_and_reference(row: RawSheetRow) -> bool:
    text = json.dumps(dict(row), default=str, ensure_ascii=False).lower()
    return ("date" in text or "/20" in text) and ("reference" in text or "description" in text)


def _has_date_cell(row: RawSheetRow) -> bool:
    return any(_looks_like_date(v) for v in row.values())


HEADER_STRATEGIES: tuple[HeaderStrategy, ...] = (
    HeaderStrategy("literal_date_token", _is_literal_date_header),
    HeaderStrategy("serialized_date_and_reference", _mentions_date_and_reference),
    HeaderStrategy("row_before_first_date_cell", _has_date_cell, sweep=1, rows_above=1),
)


def detect_header_row(rows: Sequence[RawSheetRow]) -> tuple[int, str] | None:
    """Return ``(row_index, strategy_name)`` of the header row, or ``None``."""

    for sweep in sorted({s.sweep for s in HEADER_STRATEGIES}):
        strategies = [s for s in HEADER_STRATEGIES if s.sweep == sweep]
        for i, row in enumerate(rows):
            for strategy in strategies:
                if strategy.matches(row):
                    return max(0, i - strategy.rows_above), strategy.name
    return None


def _labels_row(rows: Sequence[RawSheetRow]) -> RawSheetRow:
    labels: dict[str, str] = {}
    for row in rows:
        for key in row:
            labels.setdefault(key, key)
    return labels


def map_columns(header: RawSheetRow) -> dict[str, str]:
    """Map semantic fields to column keys; first matching column wins.

    Both the header cell text and the column key are considered. ``state``
    never reuses the column already claimed by ``city`` so a combined
    "City/State" column is not reported twice.
    """

    mapping: dict[str, str] = {}
    for key, value in header.items():
        candidates = (_cell_text(value).lower(), str(key).lower())
        for field, patterns in _ALIAS_PATTERNS.items():
            if field in mapping:
                continue
            if field == "state" and mapping.get("city") == key:
                continue
            if any(p.search(text) for p in patterns for text in candidates):
                mapping[field] = key
    return mapping


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def extract_card_number(
    row: RawSheetRow,
    card_member_key: str | None,
    overrides: Mapping[str, str],
) -> str | None:
    """Last five card digits from the card-member cell or any masked number."""

    def _override(text: str) -> str | None:
        upper = text.upper()
        for holder, digits in overrides.items():
            if holder in upper:
                return digits
        return None

    if card_member_key is not None:
        member = _cell_text(row.get(card_member_key))
        if member:
            m = _LAST_FIVE_RE.search(member)
            if m:
                return m.group(0)
            found = _override(member)
            if found:
                return found

    for value in row.values():
        text = _cell_text(value)
        if not text:
            continue
        if _MASKED_CARD_RE.search(text):
            m = _LAST_FIVE_RE.search(text)
            if m:
                return m.group(0)
        found = _override(text)
        if found:
            return found
    return None


def extract_city_state(row: RawSheetRow, mapping: Mapping[str, str]) -> str | None:
    city = _cell_text(row.get(mapping["city"])) if "city" in mapping else ""
    if not city:
        return None
    state = _cell_text(row.get(mapping["state"])) if "state" in mapping else ""
    return f"{city}, {state}" if state else city


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _SheetContext:
    rows: Sequence[RawSheetRow]
    # Rows with the header prepended when the reader consumed it as labels.
    detection_rows: Sequence[RawSheetRow]
    header_index: int
    config: StatementConfig


@dataclass(frozen=True, slots=True)
class LayoutStrategy:
    name: str
    parse: Callable[[_SheetContext], list[NormalizedTransaction] | None]


def _standard_layout(ctx: _SheetContext) -> list[NormalizedTransaction] | None:
    header = ctx.detection_rows[ctx.header_index]
    mapping = map_columns(header)
    logger.debug("Column mapping: %s", mapping)
    if "date" not in mapping or "description" not in mapping:
        return None

    def col(row: RawSheetRow, field: str) -> str | None:
        return _opt_text(row.get(mapping[field])) if field in mapping else None

    out: list[NormalizedTransaction] = []
    for row in ctx.detection_rows[ctx.header_index + 1 :]:
        raw_date = row.get(mapping["date"])
        raw_desc = row.get(mapping["description"])
        if not _cell_text(raw_date) and not _cell_text(raw_desc):
            continue
        raw_amount = row.get(mapping["amount"]) if "amount" in mapping else None
        date = format_date(raw_date)
        description = _cell_text(raw_desc)
        if not date or not description or not is_numeric_amount(raw_amount):
            logger.debug(
                "Skipping row: date=%r description=%r amount=%r", date, description, raw_amount
            )
            continue
        out.append(
            NormalizedTransaction(
                date=date,
                description=description,
                amount=parse_amount(raw_amount),
                category=col(row, "category"),
                card_number=extract_card_number(
                    row, mapping.get("card_member"), ctx.config.card_holder_overrides
                ),
                reference=col(row, "reference"),
                extended_details=col(row, "extended_details"),
                address=col(row, "address"),
                city_state=extract_city_state(row, mapping),
                zip_code=col(row, "zip"),
                country=col(row, "country"),
            )
        )
    return out


def _has_transaction_details_column(rows: Sequence[RawSheetRow]) -> bool:
    return any(TRANSACTION_DETAILS_MARKER in str(key) for row in rows for key in row)


def _find_date_title(rows: Sequence[RawSheetRow]) -> tuple[int, str, str | None, str | None] | None:
    for i, row in enumerate(rows):
        for key, value in row.items():
            if _cell_text(value).lower() != "date":
                continue
            desc_col: str | None = None
            amount_col: str | None = None
            for other_key, other_value in row.items():
                other = _cell_text(other_value).lower()
                if "description" in other:
                    desc_col = other_key
                elif "amount" in other:
                    amount_col = other_key
            return i, key, desc_col, amount_col
    return None


def _transaction_details_header(ctx: _SheetContext) -> list[NormalizedTransaction] | None:
    if not _has_transaction_details_column(ctx.rows):
        return None
    found = _find_date_title(ctx.rows)
    if found is None:
        return None
    start, date_col, desc_col, amount_col = found
    logger.debug(
        "Transaction-details layout: header row %d date=%s description=%s amount=%s",
        start,
        date_col,
        desc_col,
        amount_col,
    )

    out: list[NormalizedTransaction] = []
    for i in range(start + 1, len(ctx.rows)):
        row = ctx.rows[i]
        date_value = _cell_text(row.get(date_col))
        if not date_value:
            date_value = next(
                (_cell_text(v) for v in row.values() if _looks_like_date(v)),
                "",
            )
        if not date_value:
            continue

        amount = 0.0
        if amount_col is not None and _cell_text(row.get(amount_col)):
            amount = parse_amount(row.get(amount_col))
        else:
            for key, value in row.items():
                if key == date_col or _looks_like_date(value):
                    continue
                if _looks_like_currency(value):
                    amount = parse_amount(value)
                    break

        description = _cell_text(row.get(desc_col)) if desc_col is not None else ""
        if not description:
            for key, value in row.items():
                if key in (date_col, amount_col) or _looks_like_date(value):
                    continue
                if _looks_like_currency(value):
                    continue
                text = _cell_text(value)
                if text:
                    description = text
                    break

        date = format_date(date_value)
        if date and description:
            out.append(
                NormalizedTransaction(
                    date=date,
                    description=description,
                    amount=amount,
                    reference=f"amex-{i}",
                    reference_is_synthetic=True,
                )
            )
    return out


def _transaction_details_scan(ctx: _SheetContext) -> list[NormalizedTransaction] | None:
    if not _has_transaction_details_column(ctx.rows):
        return None
    out: list[NormalizedTransaction] = []
    for i, row in enumerate(ctx.rows):
        date_value = ""
        description = ""
        amount = 0.0
        for value in row.values():
            text = _cell_text(value)
            if not text:
                continue
            if _looks_like_date(value):
                date_value = text
            elif _looks_like_currency(value):
                amount = parse_amount(value)
            elif len(text) > len(description):
                description = text
        if date_value and description:
            out.append(
                NormalizedTransaction(
                    date=format_date(date_value),
                    description=description,
                    amount=amount,
                    reference=f"amex-{i}",
                    reference_is_synthetic=True,
                )
            )
    return out


LAYOUT_STRATEGIES: tuple[LayoutStrategy, ...] = (
    LayoutStrategy("standard", _standard_layout),
    LayoutStrategy("transaction_details_header", _transaction_details_header),
    LayoutStrategy("transaction_details_scan", _transaction_details_scan),
)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_statement_rows(
    rows: Sequence[RawSheetRow],
    *,
    config: StatementConfig | None = None,
) -> list[NormalizedTransaction]:
    """Parse worksheet rows into normalized transactions.

    Parameters
    ----------
    rows:
        The worksheet as keyed rows (see :mod:`backoffice.ingest.sheets`).
    config:
        Statement settings (cardholder overrides). Defaults to the packaged
        ingest config.

    Returns an empty list when no header row or usable layout is found.
    """

    cfg = config if config is not None else default_ingest_config().statement
    rows = [r for r in rows if r]
    if not rows:
        return []

    detection_rows: Sequence[RawSheetRow] = rows
    labels = _labels_row(rows)
    if _is_literal_date_header(labels):
        # The reader already used the header row as column labels.
        detection_rows = [labels, *rows]

    detected = detect_header_row(detection_rows)
    if detected is None:
        logger.info("No header row found in %d rows", len(rows))
        return []
    header_index, header_strategy = detected
    logger.debug("Header row %d found by %s", header_index, header_strategy)

    ctx = _SheetContext(
        rows=rows, detection_rows=detection_rows, header_index=header_index, config=cfg
    )
    for layout in LAYOUT_STRATEGIES:
        result = layout.parse(ctx)
        if result is not None:
            logger.info("Parsed %d transactions using the %s layout", len(result), layout.name)
            return result
    logger.info("Could not map date/description columns; no transactions parsed")
    return []


def parse_statement_file(
    data: bytes,
    *,
    filename: str,
    config: StatementConfig | None = None,
) -> list[NormalizedTransaction]:
    """Check the upload's extension, read its first sheet and parse it.

    Raises ``UnsupportedFileTypeError`` for a non-spreadsheet filename and
    ``SheetReadError`` for unreadable bytes.
    """

    check_extension(filename)
    return parse_statement_rows(read_first_sheet(data), config=config)


__all__ = [
    "COLUMN_ALIASES",
    "HEADER_STRATEGIES",
    "LAYOUT_STRATEGIES",
    "HeaderStrategy",
    "LayoutStrategy",
    "detect_header_row",
    "extract_card_number",
    "extract_city_state",
    "map_columns",
    "parse_statement_file",
    "parse_statement_rows",
]
