from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT identity on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: bo_suppliers
# ---------------------------


class BoSupplier(Base):
    __tablename__ = "bo_suppliers"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    # Alternate spellings seen in purchase notifications (matched case-insensitively).
    aliases: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    invoice_email: Mapped[str | None] = mapped_column(String, nullable=True)
    invoice_subject_pattern: Mapped[str | None] = mapped_column(String, nullable=True)
    sku_prefix: Mapped[str | None] = mapped_column(String, nullable=True)
    # Serialized ``SupplierExtractionRule`` / ``PriceCorrection`` (camelCase JSON).
    extraction_rule: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    price_correction: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Catalog: bo_products
# ---------------------------


class BoProduct(Base):
    __tablename__ = "bo_products"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[str | None] = mapped_column(String, nullable=True)
    supplier: Mapped[str | None] = mapped_column(String, nullable=True)
    stock: Mapped[float] = mapped_column(
        Numeric(18, 3, asdecimal=False), nullable=False, server_default=text("0")
    )
    last_purchase_price: Mapped[float] = mapped_column(
        Numeric(18, 2, asdecimal=False), nullable=False, server_default=text("0")
    )
    average_cost: Mapped[float] = mapped_column(
        Numeric(18, 2, asdecimal=False), nullable=False, server_default=text("0")
    )
    total_spent: Mapped[float] = mapped_column(
        Numeric(18, 2, asdecimal=False), nullable=False, server_default=text("0")
    )
    total_purchased: Mapped[float] = mapped_column(
        Numeric(18, 3, asdecimal=False), nullable=False, server_default=text("0")
    )
    # Proportional link: stock/cost changes on this row are mirrored onto
    # ``proxy_of`` scaled by ``proxy_ratio``. Chains must stay acyclic; the
    # catalog service rejects links that would close a loop.
    proxy_of: Mapped[int | None] = mapped_column(
        ID_TYPE, ForeignKey("bo_products.id", ondelete="SET NULL"), nullable=True
    )
    proxy_ratio: Mapped[float | None] = mapped_column(
        Numeric(18, 6, asdecimal=False), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("proxy_ratio IS NULL OR proxy_ratio > 0", name="ck_bo_products_proxy_ratio"),
        CheckConstraint("proxy_of IS NULL OR proxy_of <> id", name="ck_bo_products_no_self_proxy"),
    )


class BoCostHistory(Base):
    __tablename__ = "bo_cost_history"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("bo_products.id", ondelete="CASCADE"), nullable=False
    )
    invoice_id: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date | None] = mapped_column(Date, nullable=True)
    quantity: Mapped[float] = mapped_column(Numeric(18, 3, asdecimal=False), nullable=False)
    unit_price: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False)
    total_price: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'manual'"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("product_id", "invoice_id", name="uq_bo_cost_history_product_invoice"),
    )


# ---------------------------
# Core: bo_transactions
# ---------------------------


class BoTransaction(Base):
    __tablename__ = "bo_transactions"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    reference: Mapped[str | None] = mapped_column(String, nullable=True)
    # Only statement imports without a reference rely on the fingerprint.
    fingerprint_sha256: Mapped[str | None] = mapped_column(CHAR(64), nullable=True, unique=True)
    date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    supplier: Mapped[str | None] = mapped_column(String, nullable=True)
    supplier_order_number: Mapped[str | None] = mapped_column(String, nullable=True)
    card_number: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    raw_record: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # Line items as ``{"productId", "name", "quantity", "unitPrice", "totalPrice"}``.
    products: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("source", "reference", name="uq_bo_transactions_source_reference"),
        CheckConstraint("type in ('sale','expense','training')", name="ck_bo_transactions_type"),
        # Ids are never reused; ledger rows outlive their transaction.
        {"sqlite_autoincrement": True},
    )


# ---------------------------
# Ledger: bo_inventory_changes
# ---------------------------


class BoInventoryChange(Base):
    __tablename__ = "bo_inventory_changes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    # String so manual adjustments and external order ids share the key space.
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("bo_products.id", ondelete="CASCADE"), nullable=False
    )
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(String, nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "transaction_id",
            "product_id",
            "change_type",
            name="uq_bo_inventory_changes_tx_product_type",
        ),
        CheckConstraint(
            "change_type in ('sale','purchase','adjustment','restoration')",
            name="ck_bo_inventory_changes_change_type",
        ),
        CheckConstraint(
            "transaction_type in ('sale','expense','training')",
            name="ck_bo_inventory_changes_transaction_type",
        ),
    )


# ---------------------------
# Learned lookups: bo_smart_mappings
# ---------------------------


class BoSmartMapping(Base):
    __tablename__ = "bo_smart_mappings"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    mapping_type: Mapped[str] = mapped_column(String, nullable=False)
    # Lowercased and trimmed; natural key together with ``mapping_type``.
    source: Mapped[str] = mapped_column(Text, nullable=False)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("80"))
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    score: Mapped[float] = mapped_column(
        Numeric(6, 2, asdecimal=False), nullable=False, server_default=text("80")
    )
    # ``metadata`` is reserved on declarative classes.
    mapping_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    last_used: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("mapping_type", "source", name="uq_bo_smart_mappings_type_source"),
        CheckConstraint(
            "mapping_type in ('product_names','email_supplier','email_product')",
            name="ck_bo_smart_mappings_type",
        ),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_bo_smart_mappings_confidence"
        ),
        CheckConstraint("usage_count >= 0", name="ck_bo_smart_mappings_usage_count"),
    )


__all__ = [
    "Base",
    "ID_TYPE",
    "BoCostHistory",
    "BoInventoryChange",
    "BoProduct",
    "BoSmartMapping",
    "BoSupplier",
    "BoTransaction",
]
