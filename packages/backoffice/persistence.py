# ruff: noqa: I001
"""Persistence of transactions in ``bo_transactions``.

Two writers share the table:

- statement imports (:func:`upsert_statement_transactions`), idempotent on
  ``(source, reference)`` or, when the issuer gave no reference, on a
  SHA-256 fingerprint of the canonical fields;
- stock-affecting sales/expenses entered with product line items
  (:func:`create_transaction` and friends), which the inventory ledger reads
  when a transaction is edited or reversed.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.inventory import BoTransaction
from .logging_setup import get_logger
from .models import LineItem, NormalizedTransaction, TransactionType

logger = get_logger("backoffice.persistence")


def _to_decimal_2(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    try:
        d = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _to_date(raw: Any) -> date | None:
    if isinstance(raw, date):
        return raw
    s = str(raw or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _norm_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def _identity_reference(tx: NormalizedTransaction) -> str | None:
    # Row-index references restart at 0 in every file.
    if tx.reference_is_synthetic:
        return None
    return _norm_str(tx.reference)


def compute_fingerprint(*, source: str, tx: NormalizedTransaction) -> str:
    """Stable SHA-256 over source, reference, amount (2dp), date and description.

    Synthetic references are left out, so the same charge hashes the same
    wherever it sits in the workbook.
    """

    amt = _to_decimal_2(tx.amount)
    payload = {
        "source": (source or "").strip().lower(),
        "reference": _identity_reference(tx),
        "amount": f"{amt:.2f}" if amt is not None else None,
        "date": tx.date or None,
        "description": _norm_str(tx.description),
        "card": _norm_str(tx.card_number),
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class ImportSummary:
    inserted: int
    updated: int

    @property
    def total(self) -> int:
        return self.inserted + self.updated


def _find_statement_row(
    session: Session, *, source: str, reference: str | None, fingerprint: str
) -> BoTransaction | None:
    if reference is not None:
        return session.scalars(
            select(BoTransaction).where(
                BoTransaction.source == source, BoTransaction.reference == reference
            )
        ).first()
    return session.scalars(
        select(BoTransaction).where(BoTransaction.fingerprint_sha256 == fingerprint)
    ).first()


def upsert_statement_transactions(
    session: Session,
    *,
    source: str,
    transactions: Iterable[NormalizedTransaction],
    transaction_type: TransactionType = "expense",
) -> ImportSummary:
    """Insert or refresh parsed statement rows.

    Idempotency rules:
    - with an issuer ``reference``, the row is keyed on ``(source, reference)``;
    - otherwise, including synthetic ``amex-{row}`` references, on
      ``fingerprint_sha256``.
    Line items already attached to a stored row are left untouched.
    """

    inserted = updated = 0
    now = datetime.now(UTC)
    for tx in transactions:
        reference = _identity_reference(tx)
        fingerprint = compute_fingerprint(source=source, tx=tx)
        row = _find_statement_row(
            session, source=source, reference=reference, fingerprint=fingerprint
        )
        if row is None:
            row = BoTransaction(
                type=transaction_type,
                source=source,
                reference=reference,
                fingerprint_sha256=None if reference is not None else fingerprint,
                products=[],
            )
            session.add(row)
            inserted += 1
        else:
            updated += 1
        row.date = _to_date(tx.date)
        row.description = tx.description
        row.amount = _to_decimal_2(tx.amount)
        row.card_number = tx.card_number
        row.category = tx.category
        row.raw_record = tx.to_json()
        row.updated_at = now
    session.flush()
    logger.info(
        "Statement import source=%s inserted=%d updated=%d", source, inserted, updated
    )
    return ImportSummary(inserted=inserted, updated=updated)


def find_imported_references(
    session: Session, references: Iterable[str], *, source: str | None = None
) -> set[str]:
    """Subset of ``references`` already stored (optionally for one source)."""

    wanted = {r.strip() for r in references if r and r.strip()}
    if not wanted:
        return set()
    stmt = select(BoTransaction.reference).where(BoTransaction.reference.in_(sorted(wanted)))
    if source is not None:
        stmt = stmt.where(BoTransaction.source == source)
    return {ref for ref in session.scalars(stmt) if ref is not None}


def create_transaction(
    session: Session,
    *,
    transaction_type: TransactionType,
    source: str,
    products: Sequence[LineItem],
    reference: str | None = None,
    tx_date: date | str | None = None,
    description: str | None = None,
    amount: float | None = None,
    supplier: str | None = None,
    supplier_order_number: str | None = None,
) -> BoTransaction:
    row = BoTransaction(
        type=transaction_type,
        source=source,
        reference=_norm_str(reference),
        date=_to_date(tx_date),
        description=description,
        amount=_to_decimal_2(amount),
        supplier=supplier,
        supplier_order_number=supplier_order_number,
        products=[p.to_json() for p in products],
    )
    session.add(row)
    session.flush()
    return row


def get_transaction(session: Session, transaction_id: int | str) -> BoTransaction | None:
    try:
        key = int(transaction_id)
    except (TypeError, ValueError):
        return None
    return session.get(BoTransaction, key)


def transaction_line_items(row: BoTransaction) -> list[LineItem]:
    return [LineItem.from_json(p) for p in row.products or []]


def update_transaction_products(
    session: Session, row: BoTransaction, products: Sequence[LineItem]
) -> BoTransaction:
    row.products = [p.to_json() for p in products]
    row.updated_at = datetime.now(UTC)
    session.flush()
    return row


def delete_transaction(session: Session, row: BoTransaction) -> None:
    session.delete(row)
    session.flush()


__all__ = [
    "ImportSummary",
    "compute_fingerprint",
    "create_transaction",
    "delete_transaction",
    "find_imported_references",
    "get_transaction",
    "transaction_line_items",
    "update_transaction_products",
    "upsert_statement_transactions",
]
