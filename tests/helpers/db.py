"""DB helpers for tests: bootstrap a temporary SQLite DB and seed catalog rows."""

from __future__ import annotations

from pathlib import Path

from db import Base
from db.client import Database
from db.models.inventory import BoProduct, BoSupplier
from sqlalchemy.orm import Session


def bootstrap_sqlite_db(db_file: Path) -> Database:
    """Create a SQLite database file with every ``bo_*`` table.

    A file-backed database lets several connections from the pool share
    state (in-memory SQLite is per-connection).
    """

    db_file.parent.mkdir(parents=True, exist_ok=True)
    database = Database(f"sqlite+pysqlite:///{db_file}")
    Base.metadata.create_all(bind=database.engine)
    return database


def add_product(
    session: Session,
    name: str,
    *,
    stock: float = 0,
    supplier: str | None = "Viva Raw",
    sku: str | None = None,
    last_purchase_price: float = 0,
    proxy_of: int | None = None,
    proxy_ratio: float | None = None,
) -> BoProduct:
    product = BoProduct(
        name=name,
        sku=sku,
        supplier=supplier,
        stock=stock,
        last_purchase_price=last_purchase_price,
        average_cost=0,
        total_spent=0,
        total_purchased=0,
        proxy_of=proxy_of,
        proxy_ratio=proxy_ratio,
    )
    session.add(product)
    session.flush()
    return product


def add_supplier(
    session: Session,
    name: str,
    *,
    aliases: list[str] | None = None,
    invoice_email: str | None = None,
    invoice_subject_pattern: str | None = None,
    extraction_rule: dict | None = None,
    price_correction: dict | None = None,
) -> BoSupplier:
    supplier = BoSupplier(
        name=name,
        aliases=list(aliases or []),
        invoice_email=invoice_email,
        invoice_subject_pattern=invoice_subject_pattern,
        extraction_rule=extraction_rule,
        price_correction=price_correction,
    )
    session.add(supplier)
    session.flush()
    return supplier
