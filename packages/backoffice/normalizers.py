"""Amount and date normalization for untrusted spreadsheet and email cells.

Every function here is total: any input (string, number, ``None``, or some
other object a spreadsheet reader hands back) produces a defined value and
nothing raises. The statement parser and the email extractor lean on that to
keep one malformed cell from aborting a whole import.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

# Longest leading float literal, e.g. "12.5" in "12.5 USD" or "-.75" in "-.75x".
_FLOAT_PREFIX_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def _is_number(value: Any) -> bool:
    # bool is an int subclass but a True/False cell is not an amount.
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _leading_float(text: str) -> float | None:
    m = _FLOAT_PREFIX_RE.match(text)
    if not m:
        return None
    try:
        number = float(m.group(1))
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _coerce_amount(value: Any) -> float | None:
    if _is_number(value):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        return _leading_float(value.replace("$", "").replace(",", ""))
    return None


def parse_amount(value: Any) -> float:
    """Return ``value`` as a finite float, defaulting to ``0``.

    Numbers pass through. Strings lose ``$`` and ``,`` and the leading numeric
    literal is parsed (``"$1,234.56"`` -> ``1234.56``). ``None``, empty or
    unparseable input and non-finite numbers all yield ``0``.
    """

    number = _coerce_amount(value)
    return 0.0 if number is None else number


def is_numeric_amount(value: Any) -> bool:
    """``True`` when :func:`parse_amount` read a real number from ``value``."""

    return _coerce_amount(value) is not None


def format_date(value: Any) -> str:
    """Rewrite ``M/D/YYYY`` to ``YYYY-MM-DD``; pass other input through.

    ``None`` and blank strings yield ``""``. ``date``/``datetime`` objects are
    rendered in ISO form; anything else is returned as its string form.
    """

    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value)
    if not text.strip():
        return ""
    m = _US_DATE_RE.match(text.strip())
    if not m:
        return text
    month, day, year = m.groups()
    return f"{year}-{int(month):02d}-{int(day):02d}"


def round_money(value: Any) -> float:
    """Round half-up to cents; non-finite or non-numeric input yields ``0``."""

    if not _is_number(value):
        return 0.0
    number = float(value)
    if not math.isfinite(number):
        return 0.0
    try:
        quantized = Decimal(repr(number)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return 0.0
    return float(quantized)


__all__ = [
    "format_date",
    "is_numeric_amount",
    "parse_amount",
    "round_money",
]
