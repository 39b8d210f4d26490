"""CSV export of parsed statement transactions.

The layout is consumed byte-for-byte by the bookkeeping import, so it is
written by hand rather than through :mod:`csv` (whose quoting rules differ):

- header ``Date,Description,Amount,Category,Card Number,Reference,``
  ``Extended Details,Address,City/State,Zip Code,Country``;
- free-text columns are always double-quoted with inner quotes doubled;
- date, amount, card number, reference, zip code and country are bare;
- rows are joined with ``\\n`` and there is no trailing newline.
"""

from __future__ import annotations

from collections.abc import Iterable

from ..models import NormalizedTransaction

CSV_HEADER = (
    "Date,Description,Amount,Category,Card Number,Reference,"
    "Extended Details,Address,City/State,Zip Code,Country"
)


def _quoted(value: str | None) -> str:
    return '"' + (value or "").replace('"', '""') + '"'


def _bare(value: str | None) -> str:
    return value or ""


def _amount(value: float) -> str:
    # Integral amounts print without a trailing ".0"; the sign is kept.
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def transaction_to_csv_row(tx: NormalizedTransaction) -> str:
    return ",".join(
        [
            _bare(tx.date),
            _quoted(tx.description),
            _amount(tx.amount),
            _quoted(tx.category),
            _bare(tx.card_number),
            _bare(tx.reference),
            _quoted(tx.extended_details),
            _quoted(tx.address),
            _quoted(tx.city_state),
            _bare(tx.zip_code),
            _bare(tx.country),
        ]
    )


def transactions_to_csv(transactions: Iterable[NormalizedTransaction]) -> str:
    """Render transactions in the export layout described in the module docstring."""

    return "\n".join([CSV_HEADER, *(transaction_to_csv_row(tx) for tx in transactions)])


__all__ = ["CSV_HEADER", "transaction_to_csv_row", "transactions_to_csv"]
