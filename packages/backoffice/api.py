"""Orchestration entry points for a host application.

Each function ties the lower-level modules together the way an HTTP handler
or job would call them. Database-backed functions take an open ``Session``
and leave commit/rollback to the caller (see ``db.client.Database``).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from db.models.inventory import BoTransaction
from sqlalchemy.orm import Session

from .catalog import CostHistoryItem, CostHistoryOutcome, record_cost_history_batch
from .config import IngestConfig, default_ingest_config
from .errors import SheetReadError, TransactionNotFoundError, UnsupportedFileTypeError
from .ingest.statement_parser import parse_statement_file
from .ledger import (
    apply_new_purchase,
    apply_new_sale,
    apply_purchase_update,
    apply_sale_update,
    reverse_transaction,
)
from .logging_setup import get_logger
from .mail.invoices import lookup_invoice_for_notification
from .mail.sources import EmailSource
from .matching import match_line_items
from .models import InventoryUpdateResult, LineItem, MappingType
from .persistence import create_transaction, delete_transaction, get_transaction

logger = get_logger("backoffice.api")

PARSE_FAILED = "Failed to parse Excel file"
NO_TRANSACTIONS = "No transactions found in the file"
PARSE_OK = "Excel file parsed successfully"


# ---------------------------------------------------------------------------
# Statement upload
# ---------------------------------------------------------------------------


def parse_statement_upload(
    filename: str,
    data: bytes,
    *,
    config: IngestConfig | None = None,
) -> tuple[int, dict[str, Any]]:
    """Parse an uploaded statement workbook into ``(status, payload)``.

    - unsupported extension: ``400`` with ``{"message"}``
    - unreadable workbook: ``500`` with ``{"message", "error"}``
    - nothing parsed: ``200`` with an empty list and an explanatory message
    - otherwise ``200`` with ``{"transactions", "message"}``
    """

    cfg = config if config is not None else default_ingest_config()
    try:
        transactions = parse_statement_file(data, filename=filename, config=cfg.statement)
    except UnsupportedFileTypeError as exc:
        return 400, {"message": str(exc)}
    except SheetReadError as exc:
        logger.warning("Could not read workbook %s: %s", filename, exc)
        return 500, {"message": PARSE_FAILED, "error": str(exc)}

    if not transactions:
        return 200, {"transactions": [], "message": NO_TRANSACTIONS}
    return 200, {
        "transactions": [tx.to_json() for tx in transactions],
        "message": PARSE_OK,
    }


# ---------------------------------------------------------------------------
# Supplier invoices
# ---------------------------------------------------------------------------


def fetch_supplier_invoice(
    session: Session,
    source: EmailSource,
    *,
    notification_id: str,
    skip: int = 0,
    amount: float | None = None,
    config: IngestConfig | None = None,
) -> dict[str, Any]:
    """Locate, parse and match the invoice behind a purchase notification.

    The payload is the invoice lookup JSON; when line items were parsed,
    ``parsedData.products`` carries the matched items (with ``productId``,
    ``matchedName`` and ``lastKnownPrice``) and ``unmatched`` lists the names
    no catalog product was found for.
    """

    lookup = lookup_invoice_for_notification(
        session, source, notification_id=notification_id, skip=skip, amount=amount
    )
    payload = lookup.to_json()
    if lookup.parsed is None or not lookup.parsed.line_items:
        return payload

    result = match_line_items(
        session,
        lookup.parsed.line_items,
        config=config,
        mapping_type=MappingType.EMAIL_PRODUCT,
    )
    payload["parsedData"]["products"] = [item.to_json() for item in result.matched]
    payload["unmatched"] = result.unmatched_names
    return payload


# ---------------------------------------------------------------------------
# Stock-affecting transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SavedTransaction:
    transaction: BoTransaction
    inventory: list[InventoryUpdateResult]
    cost_history: list[CostHistoryOutcome] = field(default_factory=list)


def create_sale(
    session: Session,
    products: Sequence[LineItem],
    *,
    source: str = "manual",
    reference: str | None = None,
    tx_date: date | str | None = None,
    amount: float | None = None,
    description: str | None = None,
) -> SavedTransaction:
    tx = create_transaction(
        session,
        transaction_type="sale",
        source=source,
        products=products,
        reference=reference,
        tx_date=tx_date,
        amount=amount,
        description=description,
    )
    results = apply_new_sale(session, products, transaction_id=tx.id, source=source)
    return SavedTransaction(transaction=tx, inventory=results)


def create_expense(
    session: Session,
    products: Sequence[LineItem],
    *,
    source: str = "manual",
    supplier: str | None = None,
    supplier_order_number: str | None = None,
    reference: str | None = None,
    tx_date: date | str | None = None,
    amount: float | None = None,
    description: str | None = None,
    fail_fast: bool = True,
) -> SavedTransaction:
    """Store a purchase, add its quantities to stock and log unit costs.

    Cost history is keyed by ``supplier_order_number`` when given, else by
    the new transaction id. ``fail_fast`` is passed to
    :func:`~backoffice.catalog.record_cost_history_batch`.
    """

    tx = create_transaction(
        session,
        transaction_type="expense",
        source=source,
        products=products,
        reference=reference,
        tx_date=tx_date,
        amount=amount,
        description=description,
        supplier=supplier,
        supplier_order_number=supplier_order_number,
    )
    results = apply_new_purchase(session, products, transaction_id=tx.id, source=source)

    invoice_id = supplier_order_number or str(tx.id)
    items = [
        CostHistoryItem(
            product_id=p.product_id,
            invoice_id=invoice_id,
            quantity=p.quantity,
            unit_price=p.unit_price,
            total_price=p.total_price or None,
            date=tx.date,
            source=source,
        )
        for p in products
        if p.product_id is not None and p.quantity > 0 and p.unit_price > 0
    ]
    outcomes = record_cost_history_batch(session, items, fail_fast=fail_fast)
    return SavedTransaction(transaction=tx, inventory=results, cost_history=outcomes)


def update_line_items(
    session: Session, transaction_id: int | str, products: Sequence[LineItem]
) -> list[InventoryUpdateResult]:
    """Replace a stored transaction's line items and reconcile stock."""

    tx = get_transaction(session, transaction_id)
    if tx is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    if tx.type == "expense":
        return apply_purchase_update(session, tx.id, products)
    return apply_sale_update(session, tx.id, products)


def delete_with_inventory(
    session: Session, transaction_id: int | str
) -> list[InventoryUpdateResult]:
    """Reverse a transaction's stock effect, then delete it."""

    tx = get_transaction(session, transaction_id)
    if tx is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    results = reverse_transaction(session, tx.id)
    delete_transaction(session, tx)
    return results


__all__ = [
    "NO_TRANSACTIONS",
    "PARSE_FAILED",
    "PARSE_OK",
    "SavedTransaction",
    "create_expense",
    "create_sale",
    "delete_with_inventory",
    "fetch_supplier_invoice",
    "parse_statement_upload",
    "update_line_items",
]
