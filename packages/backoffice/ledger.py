"""Inventory ledger: idempotent stock mutations with an append-only audit log.

Every stock write made on behalf of a transaction is paired with a row in
``bo_inventory_changes`` keyed on ``(transaction_id, product_id,
change_type)``. The key is checked *before* the stock write, so replaying a
save (a retried request, a re-run sync) reports ``changeRecorded=False`` and
leaves stock untouched.

Sign conventions
----------------
- sale:        stock ``max(0, old - qty)``, record ``-qty`` / ``sale``
- purchase:    stock ``old + qty``,         record ``+qty`` / ``purchase``
- restoration: the inverse of the original, record with the applied sign

Deltas on a product that proxies another are mirrored down the proxy chain
(see :mod:`backoffice.catalog`).

Edits diff the stored line items against the new ones: added items go through
the new-transaction path, quantity changes move stock by the difference, and
removed items are put back. Edits do not append records for quantity
differences; the ledger is an audit aid, and current stock on the product row
remains authoritative.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from db.models.inventory import BoInventoryChange, BoProduct, BoTransaction
from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from .catalog import apply_stock_delta_with_proxies, get_product
from .errors import ProductNotFoundError, TransactionNotFoundError
from .logging_setup import get_logger
from .models import (
    ChangeType,
    InventoryUpdateResult,
    LineItem,
    ReconciliationResult,
    TransactionType,
)
from .persistence import get_transaction, transaction_line_items, update_transaction_products

logger = get_logger("backoffice.ledger")

MANUAL_ADJUSTMENT_SOURCE = "manual-adjustment"
PRODUCT_NOT_FOUND = "Product not found"


# ---------------------------------------------------------------------------
# Ledger store
# ---------------------------------------------------------------------------


def record_exists(
    session: Session,
    transaction_id: str | int,
    product_id: int,
    change_type: ChangeType,
) -> bool:
    stmt = select(
        exists().where(
            BoInventoryChange.transaction_id == str(transaction_id),
            BoInventoryChange.product_id == product_id,
            BoInventoryChange.change_type == change_type,
        )
    )
    return bool(session.scalar(stmt))


def append_record(
    session: Session,
    *,
    transaction_id: str | int,
    product_id: int,
    quantity_change: int,
    change_type: ChangeType,
    product_name: str,
    transaction_type: TransactionType,
    source: str,
    notes: str | None = None,
) -> BoInventoryChange:
    row = BoInventoryChange(
        transaction_id=str(transaction_id),
        product_id=product_id,
        quantity_change=int(quantity_change),
        change_type=change_type,
        product_name=product_name,
        transaction_type=transaction_type,
        source=source,
        notes=notes,
        timestamp=datetime.now(UTC),
    )
    session.add(row)
    session.flush()
    return row


def changes_for_product(session: Session, product_id: int) -> list[BoInventoryChange]:
    stmt = (
        select(BoInventoryChange)
        .where(BoInventoryChange.product_id == product_id)
        .order_by(BoInventoryChange.timestamp, BoInventoryChange.id)
    )
    return list(session.scalars(stmt))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_valid(item: LineItem) -> bool:
    return bool(item.name and item.name.strip()) and item.product_id is not None and item.quantity > 0


def _valid_items(items: Iterable[LineItem], *, label: str) -> list[LineItem]:
    items = list(items)
    valid = [i for i in items if _is_valid(i)]
    if len(valid) != len(items):
        logger.warning(
            "%s: ignored %d invalid line items (missing name, product id or quantity)",
            label,
            len(items) - len(valid),
        )
    return valid


def _failure(item: LineItem, quantity_change: int, error: str) -> InventoryUpdateResult:
    return InventoryUpdateResult(
        product_id=item.product_id,
        product_name=item.name,
        old_stock=0,
        new_stock=0,
        quantity_change=quantity_change,
        success=False,
        error=error,
    )


def _load_transaction(session: Session, transaction_id: str | int) -> BoTransaction:
    row = get_transaction(session, transaction_id)
    if row is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    return row


# ---------------------------------------------------------------------------
# New transactions
# ---------------------------------------------------------------------------


def _apply_new(
    session: Session,
    products: Iterable[LineItem],
    *,
    transaction_id: str | int | None,
    sign: int,
    change_type: ChangeType,
    transaction_type: TransactionType,
    source: str,
) -> list[InventoryUpdateResult]:
    results: list[InventoryUpdateResult] = []
    for item in _valid_items(products, label=f"new {change_type}"):
        if item.product_id is None:
            continue
        if transaction_id is not None and record_exists(
            session, transaction_id, item.product_id, change_type
        ):
            logger.info(
                "Skipping %s of %s for transaction %s: already recorded",
                change_type,
                item.name,
                transaction_id,
            )
            results.append(
                InventoryUpdateResult(
                    product_id=item.product_id,
                    product_name=item.name,
                    old_stock=0,
                    new_stock=0,
                    quantity_change=0,
                    success=True,
                    change_recorded=False,
                )
            )
            continue

        product = get_product(session, item.product_id)
        if product is None:
            results.append(_failure(item, item.quantity, PRODUCT_NOT_FOUND))
            continue

        delta = sign * item.quantity
        change = apply_stock_delta_with_proxies(session, product, delta)
        recorded = False
        if transaction_id is not None:
            append_record(
                session,
                transaction_id=transaction_id,
                product_id=product.id,
                quantity_change=delta,
                change_type=change_type,
                product_name=item.name,
                transaction_type=transaction_type,
                source=source,
            )
            recorded = True
        logger.info(
            "Stock %s (%s): %s -> %s (%+d)",
            item.name,
            product.id,
            change.old_stock,
            change.new_stock,
            delta,
        )
        results.append(
            InventoryUpdateResult(
                product_id=product.id,
                product_name=item.name,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                quantity_change=delta,
                success=True,
                change_recorded=recorded,
            )
        )
    return results


def apply_new_sale(
    session: Session,
    products: Iterable[LineItem],
    *,
    transaction_id: str | int | None = None,
    transaction_type: TransactionType = "sale",
    source: str = "manual",
) -> list[InventoryUpdateResult]:
    """Take sold quantities out of stock, at most once per transaction.

    Without a ``transaction_id`` stock is still adjusted but nothing is
    recorded, so the call is not replay-safe.
    """

    return _apply_new(
        session,
        products,
        transaction_id=transaction_id,
        sign=-1,
        change_type="sale",
        transaction_type=transaction_type,
        source=source,
    )


def apply_new_purchase(
    session: Session,
    products: Iterable[LineItem],
    *,
    transaction_id: str | int | None = None,
    source: str = "manual",
) -> list[InventoryUpdateResult]:
    """Add received quantities to stock, at most once per transaction."""

    return _apply_new(
        session,
        products,
        transaction_id=transaction_id,
        sign=1,
        change_type="purchase",
        transaction_type="expense",
        source=source,
    )


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


def _apply_update(
    session: Session,
    transaction_id: str | int,
    new_products: Sequence[LineItem],
    *,
    sign: int,
) -> list[InventoryUpdateResult]:
    tx = _load_transaction(session, transaction_id)
    kind = "sale" if sign < 0 else "purchase"
    valid = _valid_items(new_products, label=f"{kind} update")

    existing: dict[int, LineItem] = {}
    for item in transaction_line_items(tx):
        if item.product_id is not None:
            existing[item.product_id] = item
    incoming = {item.product_id for item in valid}

    results: list[InventoryUpdateResult] = []
    for item in valid:
        if item.product_id is None:
            continue
        before = existing.get(item.product_id)
        if before is None:
            if sign < 0:
                results.extend(
                    apply_new_sale(
                        session,
                        [item],
                        transaction_id=tx.id,
                        transaction_type="sale",
                        source="manual",
                    )
                )
            else:
                results.extend(
                    apply_new_purchase(session, [item], transaction_id=tx.id, source="manual")
                )
            continue

        delta = sign * (item.quantity - before.quantity)
        if delta == 0:
            results.append(
                InventoryUpdateResult(
                    product_id=item.product_id,
                    product_name=item.name,
                    old_stock=0,
                    new_stock=0,
                    quantity_change=0,
                    success=True,
                )
            )
            continue

        product = get_product(session, item.product_id)
        if product is None:
            results.append(_failure(item, delta, PRODUCT_NOT_FOUND))
            continue
        change = apply_stock_delta_with_proxies(session, product, delta)
        results.append(
            InventoryUpdateResult(
                product_id=product.id,
                product_name=item.name,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                quantity_change=delta,
                success=True,
            )
        )

    for product_id, before in existing.items():
        if product_id in incoming:
            continue
        # Dropped from the transaction: undo its effect.
        delta = -sign * before.quantity
        product = get_product(session, product_id)
        if product is None:
            results.append(_failure(before, delta, PRODUCT_NOT_FOUND))
            continue
        change = apply_stock_delta_with_proxies(session, product, delta)
        results.append(
            InventoryUpdateResult(
                product_id=product_id,
                product_name=before.name,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                quantity_change=delta,
                success=True,
            )
        )

    # Persist the new line items so replaying the same edit diffs to zero.
    update_transaction_products(session, tx, new_products)
    return results


def apply_sale_update(
    session: Session, transaction_id: str | int, new_products: Sequence[LineItem]
) -> list[InventoryUpdateResult]:
    """Reconcile stock for an edited sale and store its new line items."""

    return _apply_update(session, transaction_id, new_products, sign=-1)


def apply_purchase_update(
    session: Session, transaction_id: str | int, new_products: Sequence[LineItem]
) -> list[InventoryUpdateResult]:
    """Reconcile stock for an edited expense and store its new line items."""

    return _apply_update(session, transaction_id, new_products, sign=1)


# ---------------------------------------------------------------------------
# Reversal
# ---------------------------------------------------------------------------


def reverse_transaction(
    session: Session, transaction_id: str | int
) -> list[InventoryUpdateResult]:
    """Undo a stored transaction's stock effect ahead of deleting it.

    Sales put their quantities back, expenses take theirs out. Each product
    gets one ``restoration`` record, so reversing twice is a no-op. A missing
    transaction, or one of another type, yields no results.
    """

    tx = get_transaction(session, transaction_id)
    if tx is None or tx.type not in ("sale", "expense"):
        return []
    sign = 1 if tx.type == "sale" else -1

    results: list[InventoryUpdateResult] = []
    for item in transaction_line_items(tx):
        if item.product_id is None or item.quantity <= 0:
            continue
        name = item.name or "Unknown"
        delta = sign * item.quantity
        if record_exists(session, tx.id, item.product_id, "restoration"):
            results.append(
                InventoryUpdateResult(
                    product_id=item.product_id,
                    product_name=name,
                    old_stock=0,
                    new_stock=0,
                    quantity_change=0,
                    success=True,
                    change_recorded=False,
                )
            )
            continue
        product = get_product(session, item.product_id)
        if product is None:
            results.append(_failure(item, delta, PRODUCT_NOT_FOUND))
            continue
        change = apply_stock_delta_with_proxies(session, product, delta)
        append_record(
            session,
            transaction_id=tx.id,
            product_id=product.id,
            quantity_change=delta,
            change_type="restoration",
            product_name=name,
            transaction_type=tx.type,
            source=tx.source,
            notes="transaction deleted",
        )
        results.append(
            InventoryUpdateResult(
                product_id=product.id,
                product_name=name,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                quantity_change=delta,
                success=True,
                change_recorded=True,
            )
        )
    logger.info("Reversed transaction %s (%d line items)", tx.id, len(results))
    return results


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def record_manual_adjustment(
    session: Session,
    product_id: int,
    adjustment: int,
    reason: str,
    user_id: str | None = None,
) -> BoInventoryChange:
    """Append an ``adjustment`` record under a fresh transaction id.

    Only the ledger changes; use :func:`set_stock_to_calculated` to bring the
    product's stock in line afterwards.
    """

    product = get_product(session, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    notes = f"{reason} (by user {user_id})" if user_id else reason
    return append_record(
        session,
        transaction_id=f"adjustment-{uuid.uuid4().hex}",
        product_id=product.id,
        quantity_change=adjustment,
        change_type="adjustment",
        product_name=product.name,
        # The column requires a transaction type; adjustments borrow "sale".
        transaction_type="sale",
        source=MANUAL_ADJUSTMENT_SOURCE,
        notes=notes,
    )


def _reconcile_product(session: Session, product: BoProduct) -> ReconciliationResult:
    purchases = sales = adjustments = 0
    changes = changes_for_product(session, product.id)
    for change in changes:
        qty = int(change.quantity_change)
        if change.change_type == "adjustment":
            adjustments += qty
        elif qty > 0:
            purchases += qty
        else:
            sales += -qty
    calculated = float(purchases - sales + adjustments)
    current = float(product.stock or 0)
    return ReconciliationResult(
        product_id=product.id,
        product_name=product.name,
        current_stock=current,
        calculated_stock=calculated,
        total_purchases=purchases,
        total_sales=sales,
        total_adjustments=adjustments,
        difference=calculated - current,
        change_count=len(changes),
    )


def calculate_from_history(session: Session, product_id: int) -> ReconciliationResult | None:
    """Stock implied by the ledger for one product, or ``None`` if unknown."""

    product = get_product(session, product_id)
    if product is None:
        return None
    return _reconcile_product(session, product)


def reconcile_all(
    session: Session, *, supplier: str | None = None
) -> list[ReconciliationResult]:
    stmt = select(BoProduct).order_by(BoProduct.id)
    if supplier is not None:
        stmt = stmt.where(BoProduct.supplier == supplier)
    return [_reconcile_product(session, p) for p in session.scalars(stmt)]


def set_stock_to_calculated(
    session: Session, product_id: int, calculated_stock: float
) -> bool:
    """Overwrite stock with ``max(0, calculated_stock)``; ``False`` if unchanged."""

    product = get_product(session, product_id)
    if product is None:
        return False
    target = max(0.0, float(calculated_stock))
    if float(product.stock or 0) == target:
        return False
    product.stock = target
    product.updated_at = datetime.now(UTC)
    session.flush()
    return True


__all__ = [
    "MANUAL_ADJUSTMENT_SOURCE",
    "append_record",
    "apply_new_purchase",
    "apply_new_sale",
    "apply_purchase_update",
    "apply_sale_update",
    "calculate_from_history",
    "changes_for_product",
    "reconcile_all",
    "record_exists",
    "record_manual_adjustment",
    "reverse_transaction",
    "set_stock_to_calculated",
]
