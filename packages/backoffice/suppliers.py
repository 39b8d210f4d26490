"""Supplier directory backed by ``bo_suppliers``.

Suppliers are looked up two ways: by the merchant name printed on a card
purchase notification (the canonical name or any alias, case-insensitive) and
by the address their invoices come from. Each supplier carries the rule used
to read its invoices and the price correction for its email template.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from db.models.inventory import BoSupplier
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import PriceCorrection, SupplierExtractionRule

logger = get_logger("backoffice.suppliers")


class SupplierSeed(BaseModel):
    """One supplier entry of a seed file (camelCase keys accepted)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)
    invoice_email: str | None = Field(default=None, alias="invoiceEmail")
    invoice_subject_pattern: str | None = Field(default=None, alias="invoiceSubjectPattern")
    sku_prefix: str | None = Field(default=None, alias="skuPrefix")
    extraction_rule: SupplierExtractionRule | None = Field(default=None, alias="emailParsing")
    price_correction: PriceCorrection | None = Field(default=None, alias="priceCorrection")

    @field_validator("invoice_subject_pattern")
    @classmethod
    def _pattern_compiles(cls, v: str | None) -> str | None:
        if v:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"invalid invoice subject pattern {v!r}: {exc}") from exc
        return v


def _norm(name: str) -> str:
    return " ".join(name.split()).lower()


def find_by_name_or_alias(session: Session, name: str) -> BoSupplier | None:
    """Case-insensitive lookup on the canonical name, then on aliases."""

    key = _norm(name or "")
    if not key:
        return None
    row = session.scalars(
        select(BoSupplier).where(func.lower(BoSupplier.name) == key).limit(1)
    ).first()
    if row is not None:
        return row
    # Aliases live in a JSON list; the directory is small enough to scan.
    for supplier in session.scalars(select(BoSupplier).order_by(BoSupplier.id)):
        if any(_norm(a) == key for a in supplier.aliases or []):
            return supplier
    return None


def find_by_invoice_email(session: Session, email: str) -> BoSupplier | None:
    key = (email or "").strip().lower()
    if not key:
        return None
    return session.scalars(
        select(BoSupplier).where(func.lower(BoSupplier.invoice_email) == key).limit(1)
    ).first()


def extraction_rule_for(supplier: BoSupplier) -> SupplierExtractionRule | None:
    if not supplier.extraction_rule:
        return None
    return SupplierExtractionRule.model_validate(supplier.extraction_rule)


def price_correction_for(supplier: BoSupplier) -> PriceCorrection:
    if not supplier.price_correction:
        return PriceCorrection()
    return PriceCorrection.model_validate(supplier.price_correction)


def upsert_supplier(session: Session, seed: SupplierSeed) -> BoSupplier:
    """Insert or update the supplier named ``seed.name`` (case-insensitive)."""

    row = session.scalars(
        select(BoSupplier).where(func.lower(BoSupplier.name) == _norm(seed.name)).limit(1)
    ).first()
    if row is None:
        row = BoSupplier(name=seed.name.strip())
        session.add(row)
    row.aliases = [a.strip() for a in seed.aliases if a.strip()]
    row.invoice_email = seed.invoice_email
    row.invoice_subject_pattern = seed.invoice_subject_pattern
    row.sku_prefix = seed.sku_prefix
    row.extraction_rule = (
        seed.extraction_rule.model_dump(by_alias=True, exclude_none=True)
        if seed.extraction_rule
        else None
    )
    row.price_correction = (
        seed.price_correction.model_dump(by_alias=True) if seed.price_correction else None
    )
    row.updated_at = datetime.now(UTC)
    session.flush()
    return row


def _load_json(path: Path) -> list[dict[str, Any]]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("Supplier seed JSON must be a list of supplier objects")
    return data


def seed_suppliers(session: Session, entries: Iterable[dict[str, Any]]) -> int:
    count = 0
    for entry in entries:
        upsert_supplier(session, SupplierSeed.model_validate(entry))
        count += 1
    logger.info("Seeded %d suppliers", count)
    return count


def seed_suppliers_from_json(session: Session, path: Path) -> int:
    return seed_suppliers(session, _load_json(path))


__all__ = [
    "SupplierSeed",
    "extraction_rule_for",
    "find_by_invoice_email",
    "find_by_name_or_alias",
    "price_correction_for",
    "seed_suppliers",
    "seed_suppliers_from_json",
    "upsert_supplier",
]
