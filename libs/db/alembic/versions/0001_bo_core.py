# ruff: noqa: I001
"""Back-office core tables: suppliers, catalog, transactions, ledger, mappings.

Revision ID: 0001_bo_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_bo_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    # bo_suppliers
    op.create_table(
        "bo_suppliers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("aliases", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("invoice_email", sa.String(), nullable=True),
        sa.Column("invoice_subject_pattern", sa.String(), nullable=True),
        sa.Column("sku_prefix", sa.String(), nullable=True),
        sa.Column("extraction_rule", sa.JSON(), nullable=True),
        sa.Column("price_correction", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_bo_suppliers_invoice_email",
        "bo_suppliers",
        [sa.text("lower(invoice_email)")],
    )

    # bo_products
    op.create_table(
        "bo_products",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("sku", sa.String(), nullable=True),
        sa.Column("supplier", sa.String(), nullable=True),
        sa.Column("stock", sa.Numeric(18, 3), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "last_purchase_price", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("average_cost", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_spent", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "total_purchased", sa.Numeric(18, 3), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "proxy_of",
            sa.BigInteger(),
            sa.ForeignKey("bo_products.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("proxy_ratio", sa.Numeric(18, 6), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "proxy_ratio IS NULL OR proxy_ratio > 0", name="ck_bo_products_proxy_ratio"
        ),
        sa.CheckConstraint(
            "proxy_of IS NULL OR proxy_of <> id", name="ck_bo_products_no_self_proxy"
        ),
    )
    op.create_index("ix_bo_products_lower_name", "bo_products", [sa.text("lower(name)")])

    # bo_cost_history
    op.create_table(
        "bo_cost_history",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "product_id",
            sa.BigInteger(),
            sa.ForeignKey("bo_products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("invoice_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 3), nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("source", sa.String(), nullable=False, server_default=sa.text("'manual'")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint(
            "product_id", "invoice_id", name="uq_bo_cost_history_product_invoice"
        ),
    )

    # bo_transactions
    op.create_table(
        "bo_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("fingerprint_sha256", sa.CHAR(64), nullable=True, unique=True),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("supplier", sa.String(), nullable=True),
        sa.Column("supplier_order_number", sa.String(), nullable=True),
        sa.Column("card_number", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("raw_record", sa.JSON(), nullable=True),
        sa.Column("products", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        *_timestamps(),
        sa.UniqueConstraint("source", "reference", name="uq_bo_transactions_source_reference"),
        sa.CheckConstraint(
            "type in ('sale','expense','training')", name="ck_bo_transactions_type"
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bo_transactions_date", "bo_transactions", ["date"])

    # bo_inventory_changes
    op.create_table(
        "bo_inventory_changes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column(
            "product_id",
            sa.BigInteger(),
            sa.ForeignKey("bo_products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("change_type", sa.String(), nullable=False),
        sa.Column("product_name", sa.Text(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint(
            "transaction_id",
            "product_id",
            "change_type",
            name="uq_bo_inventory_changes_tx_product_type",
        ),
        sa.CheckConstraint(
            "change_type in ('sale','purchase','adjustment','restoration')",
            name="ck_bo_inventory_changes_change_type",
        ),
        sa.CheckConstraint(
            "transaction_type in ('sale','expense','training')",
            name="ck_bo_inventory_changes_transaction_type",
        ),
    )
    op.create_index(
        "ix_bo_inventory_changes_product_ts",
        "bo_inventory_changes",
        ["product_id", "timestamp"],
    )

    # bo_smart_mappings
    op.create_table(
        "bo_smart_mappings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("mapping_type", sa.String(), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("target", sa.Text(), nullable=False),
        sa.Column("target_id", sa.String(), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=False, server_default=sa.text("80")),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("score", sa.Numeric(6, 2), nullable=False, server_default=sa.text("80")),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("last_used", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("mapping_type", "source", name="uq_bo_smart_mappings_type_source"),
        sa.CheckConstraint(
            "mapping_type in ('product_names','email_supplier','email_product')",
            name="ck_bo_smart_mappings_type",
        ),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_bo_smart_mappings_confidence"
        ),
        sa.CheckConstraint("usage_count >= 0", name="ck_bo_smart_mappings_usage_count"),
    )
    op.create_index(
        "ix_bo_smart_mappings_type_score",
        "bo_smart_mappings",
        ["mapping_type", sa.text("score DESC"), sa.text("usage_count DESC")],
    )


def downgrade() -> None:
    op.drop_index("ix_bo_smart_mappings_type_score", table_name="bo_smart_mappings")
    op.drop_table("bo_smart_mappings")
    op.drop_index("ix_bo_inventory_changes_product_ts", table_name="bo_inventory_changes")
    op.drop_table("bo_inventory_changes")
    op.drop_index("ix_bo_transactions_date", table_name="bo_transactions")
    op.drop_table("bo_transactions")
    op.drop_table("bo_cost_history")
    op.drop_index("ix_bo_products_lower_name", table_name="bo_products")
    op.drop_table("bo_products")
    op.drop_index("ix_bo_suppliers_invoice_email", table_name="bo_suppliers")
    op.drop_table("bo_suppliers")
