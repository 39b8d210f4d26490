"""Catalog access: product search, stock writes, proxies and cost history.

Products may be linked by *proxy*: a product with ``proxy_of`` set mirrors
its stock and cost changes onto the referenced product, scaled by
``proxy_ratio``. A stock delta ``d`` on the proxy moves the target by
``d / proxy_ratio``; a purchase price ``p`` on the proxy sets the target's
last purchase price to ``p * proxy_ratio``. Links may chain. Writes refuse
to create a cycle, and traversal stops at a revisited product or after
``MAX_PROXY_DEPTH`` hops.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime

from db.models.inventory import BoCostHistory, BoProduct
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .errors import ProductNotFoundError, ProxyCycleError
from .logging_setup import get_logger
from .normalizers import round_money

logger = get_logger("backoffice.catalog")

MAX_PROXY_DEPTH = 8


@dataclass(frozen=True, slots=True)
class StockChange:
    product_id: int
    old_stock: float
    new_stock: float


@dataclass(frozen=True, slots=True)
class ProxyHop:
    product: BoProduct
    # Multiply a stock delta on the origin by this to get the delta here.
    stock_factor: float
    # Multiply a unit price on the origin by this to get the price here.
    price_factor: float


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def search_products(session: Session, query: str, *, limit: int = 20) -> list[BoProduct]:
    """Case-insensitive substring search over product name and SKU."""

    q = (query or "").strip().lower()
    if not q:
        return []
    stmt = (
        select(BoProduct)
        .where(
            or_(
                func.lower(BoProduct.name).contains(q, autoescape=True),
                func.lower(func.coalesce(BoProduct.sku, "")).contains(q, autoescape=True),
            )
        )
        .order_by(BoProduct.id)
        .limit(limit)
    )
    return list(session.scalars(stmt))


def get_product(session: Session, product_id: int) -> BoProduct | None:
    return session.get(BoProduct, product_id)


# ---------------------------------------------------------------------------
# Proxies
# ---------------------------------------------------------------------------


def iter_proxy_chain(session: Session, product: BoProduct) -> Iterator[ProxyHop]:
    """Yield the products ``product`` proxies onto, nearest first."""

    visited = {product.id}
    stock_factor = 1.0
    price_factor = 1.0
    current = product
    for _ in range(MAX_PROXY_DEPTH):
        if current.proxy_of is None or not current.proxy_ratio:
            return
        ratio = float(current.proxy_ratio)
        target = session.get(BoProduct, current.proxy_of)
        if target is None:
            logger.warning(
                "Product %s proxies missing product %s", current.id, current.proxy_of
            )
            return
        if target.id in visited:
            logger.warning("Proxy cycle detected at product %s; stopping propagation", target.id)
            return
        visited.add(target.id)
        stock_factor /= ratio
        price_factor *= ratio
        yield ProxyHop(product=target, stock_factor=stock_factor, price_factor=price_factor)
        current = target
    logger.warning("Proxy chain from product %s exceeds %d hops", product.id, MAX_PROXY_DEPTH)


def set_proxy(
    session: Session,
    product_id: int,
    target_id: int | None,
    ratio: float | None = None,
) -> BoProduct:
    """Link ``product_id`` to ``target_id`` (or unlink with ``None``).

    Raises ``ProxyCycleError`` when the link would close a loop,
    ``ProductNotFoundError`` for an unknown id and ``ValueError`` for a
    non-positive ratio.
    """

    product = session.get(BoProduct, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    if target_id is None:
        product.proxy_of = None
        product.proxy_ratio = None
        session.flush()
        return product
    if ratio is None or ratio <= 0:
        raise ValueError("proxy_ratio must be greater than 0")
    target = session.get(BoProduct, target_id)
    if target is None:
        raise ProductNotFoundError(f"Proxy target {target_id} not found")

    seen = {product.id}
    node: BoProduct | None = target
    while node is not None:
        if node.id in seen:
            raise ProxyCycleError(
                f"Linking product {product_id} to {target_id} would create a proxy cycle"
            )
        seen.add(node.id)
        node = session.get(BoProduct, node.proxy_of) if node.proxy_of is not None else None

    product.proxy_of = target.id
    product.proxy_ratio = float(ratio)
    product.updated_at = datetime.now(UTC)
    session.flush()
    return product


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


def apply_stock_delta(
    session: Session, product: BoProduct, delta: float, *, floor_at_zero: bool = True
) -> StockChange:
    """Add ``delta`` to one product's stock (no proxy propagation)."""

    old = float(product.stock or 0)
    new = old + delta
    if floor_at_zero and new < 0:
        new = 0.0
    product.stock = new
    product.updated_at = datetime.now(UTC)
    session.flush()
    return StockChange(product_id=product.id, old_stock=old, new_stock=new)


def apply_stock_delta_with_proxies(
    session: Session, product: BoProduct, delta: float
) -> StockChange:
    """Apply ``delta`` to ``product`` and its proxy chain; return the primary change."""

    change = apply_stock_delta(session, product, delta)
    for hop in iter_proxy_chain(session, product):
        scaled = delta * hop.stock_factor
        mirrored = apply_stock_delta(session, hop.product, scaled)
        logger.debug(
            "Proxy stock %s: %s -> %s (delta %s from product %s)",
            hop.product.id,
            mirrored.old_stock,
            mirrored.new_stock,
            scaled,
            product.id,
        )
    return change


# ---------------------------------------------------------------------------
# Cost history
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CostHistoryItem:
    product_id: int
    invoice_id: str
    quantity: float
    unit_price: float
    total_price: float | None = None
    date: date | None = None
    source: str = "manual"
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class CostHistoryOutcome:
    product_id: int
    invoice_id: str
    success: bool
    error: str | None = None


def _recompute_totals(session: Session, product: BoProduct) -> None:
    spent, purchased = session.execute(
        select(
            func.coalesce(func.sum(BoCostHistory.total_price), 0),
            func.coalesce(func.sum(BoCostHistory.quantity), 0),
        ).where(BoCostHistory.product_id == product.id)
    ).one()
    product.total_spent = round_money(float(spent))
    product.total_purchased = float(purchased)
    product.average_cost = round_money(float(spent) / float(purchased)) if purchased else 0.0


def record_cost_history(session: Session, item: CostHistoryItem) -> BoProduct:
    """Upsert the entry for ``(product, invoice)`` and refresh cost figures.

    Re-recording the same invoice replaces the earlier entry, so repeated
    saves of one transaction never double count.
    """

    product = session.get(BoProduct, item.product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {item.product_id} not found")
    total = item.total_price if item.total_price is not None else item.unit_price * item.quantity

    entry = session.scalars(
        select(BoCostHistory).where(
            BoCostHistory.product_id == product.id,
            BoCostHistory.invoice_id == item.invoice_id,
        )
    ).first()
    if entry is None:
        entry = BoCostHistory(product_id=product.id, invoice_id=item.invoice_id)
        session.add(entry)
    entry.date = item.date
    entry.quantity = float(item.quantity)
    entry.unit_price = round_money(item.unit_price)
    entry.total_price = round_money(total)
    entry.source = item.source
    entry.notes = item.notes
    session.flush()

    _recompute_totals(session, product)
    product.last_purchase_price = round_money(item.unit_price)
    product.updated_at = datetime.now(UTC)
    for hop in iter_proxy_chain(session, product):
        hop.product.last_purchase_price = round_money(item.unit_price * hop.price_factor)
        hop.product.updated_at = datetime.now(UTC)
    session.flush()
    return product


def record_cost_history_batch(
    session: Session,
    items: Iterable[CostHistoryItem],
    *,
    fail_fast: bool = True,
) -> list[CostHistoryOutcome]:
    """Record several entries.

    With ``fail_fast`` the first failure propagates and the remaining items
    are not attempted. Otherwise each item runs in its own savepoint and
    failures are reported per item.
    """

    outcomes: list[CostHistoryOutcome] = []
    for item in items:
        if fail_fast:
            record_cost_history(session, item)
            outcomes.append(CostHistoryOutcome(item.product_id, item.invoice_id, True))
            continue
        try:
            with session.begin_nested():
                record_cost_history(session, item)
        except Exception as exc:
            logger.warning(
                "Cost history for product %s invoice %s failed: %s",
                item.product_id,
                item.invoice_id,
                exc,
            )
            outcomes.append(
                CostHistoryOutcome(item.product_id, item.invoice_id, False, error=str(exc))
            )
        else:
            outcomes.append(CostHistoryOutcome(item.product_id, item.invoice_id, True))
    return outcomes


__all__ = [
    "MAX_PROXY_DEPTH",
    "CostHistoryItem",
    "CostHistoryOutcome",
    "ProxyHop",
    "StockChange",
    "apply_stock_delta",
    "apply_stock_delta_with_proxies",
    "get_product",
    "iter_proxy_chain",
    "record_cost_history",
    "record_cost_history_batch",
    "search_products",
    "set_proxy",
]
