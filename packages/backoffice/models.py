"""Data models shared across the ingestion pipeline.

Immutable records produced by the parsers and the ledger are frozen
``dataclass`` instances with a ``to_json()`` that emits the camelCase shape the
rest of the application consumes. Configuration that arrives from outside
(supplier extraction rules, price corrections) is validated with pydantic.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ExtractionRuleError

# A worksheet row keyed by column label, as produced by the sheet reader.
type RawSheetRow = Mapping[str, str | int | float | None]

type TransactionType = Literal["sale", "expense", "training"]
type ChangeType = Literal["sale", "purchase", "adjustment", "restoration"]


class MappingType(StrEnum):
    PRODUCT_NAMES = "product_names"
    EMAIL_SUPPLIER = "email_supplier"
    EMAIL_PRODUCT = "email_product"


# ---------------------------------------------------------------------------
# Statement transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """One card-statement row in canonical form.

    ``amount`` is negative for credits. ``card_number`` holds the last five
    digits of the card when they could be recovered. ``reference`` is the
    issuer's reference (or a synthetic ``amex-{row}`` one) and drives
    already-imported lookups. Synthetic references are flagged by
    ``reference_is_synthetic``: they only number rows within one file and are
    never used as an import identity.
    """

    date: str
    description: str
    amount: float
    category: str | None = None
    card_number: str | None = None
    reference: str | None = None
    extended_details: str | None = None
    address: str | None = None
    city_state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    reference_is_synthetic: bool = False

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
        }
        optional = {
            "category": self.category,
            "cardNumber": self.card_number,
            "reference": self.reference,
            "extendedDetails": self.extended_details,
            "address": self.address,
            "cityState": self.city_state,
            "zipCode": self.zip_code,
            "country": self.country,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        return out


# ---------------------------------------------------------------------------
# Supplier extraction rules
# ---------------------------------------------------------------------------

# JavaScript-style flag letters found in stored rules. ``g``/``u``/``y`` have
# no ``re`` equivalent that matters for a single search and are ignored.
_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_IGNORED_FLAGS = frozenset("guy")
_JS_NAMED_GROUP_RE = re.compile(r"\(\?<(?![=!])")


class Pattern(BaseModel):
    """A stored regex: source text, flag letters, and the group to read."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    pattern: str
    flags: str = ""
    group_index: int | None = Field(default=None, alias="groupIndex", ge=0)

    @field_validator("flags")
    @classmethod
    def _known_flags(cls, v: str) -> str:
        unknown = set(v) - set(_FLAG_BITS) - _IGNORED_FLAGS
        if unknown:
            raise ValueError(f"unsupported regex flags: {''.join(sorted(unknown))}")
        return v

    def compile(self) -> re.Pattern[str]:
        bits = 0
        for letter in self.flags:
            bits |= _FLAG_BITS.get(letter, 0)
        # Stored rules use the ``(?<name>...)`` group spelling.
        source = _JS_NAMED_GROUP_RE.sub("(?P<", self.pattern)
        try:
            return re.compile(source, bits)
        except re.error as exc:
            raise ExtractionRuleError(f"invalid pattern {self.pattern!r}: {exc}") from exc

    def extract(self, text: str, *, default_group: int = 1) -> str | None:
        """Return the configured group of the first match, stripped, or ``None``."""

        m = self.compile().search(text)
        if m is None:
            return None
        group = self.group_index if self.group_index is not None else default_group
        try:
            value = m.group(group)
        except IndexError:
            return None
        if value is None:
            return None
        value = value.strip()
        return value or None


# Structural selector for the price cell inside a product block.
DEFAULT_PRICE_SELECTOR = ".kl-table-subblock:last-of-type div span"


class ProductsRule(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    container_selector: str = Field(alias="containerSelector", min_length=1)
    name_selector: str = Field(alias="nameSelector", min_length=1)
    quantity_pattern: Pattern | None = Field(default=None, alias="quantityPattern")
    price_selector: str = Field(default=DEFAULT_PRICE_SELECTOR, alias="priceSelector")


class SupplierExtractionRule(BaseModel):
    """Per-supplier recipe for reading an invoice email."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    order_number: Pattern | None = Field(default=None, alias="orderNumber")
    total: Pattern | None = None
    subtotal: Pattern | None = None
    shipping: Pattern | None = None
    tax: Pattern | None = None
    discount: Pattern | None = None
    products: ProductsRule | None = None

    def summary_patterns(self) -> dict[str, Pattern]:
        fields = {
            "total": self.total,
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "tax": self.tax,
            "discount": self.discount,
        }
        return {k: v for k, v in fields.items() if v is not None}


class PriceCorrection(BaseModel):
    """Supplier-specific fix-ups applied to prices scraped from an email.

    The identity correction (the default) leaves items untouched. Some
    supplier templates show half quantities, quote prices per two-unit
    increment, and omit a standing discount; those quirks are expressed here
    rather than in the extractor.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    discount_rate: float = Field(default=0.0, ge=0.0, lt=1.0, alias="discountRate")
    quantity_multiplier: int = Field(default=1, ge=1, alias="quantityMultiplier")
    price_divisor: float = Field(default=1.0, gt=0.0, alias="priceDivisor")

    @classmethod
    def half_quantity_template(cls) -> PriceCorrection:
        """20% standing discount, doubled quantities, prices per 2 units."""

        return cls(discount_rate=0.2, quantity_multiplier=2, price_divisor=2.0)


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParsedLineItem:
    raw_name: str
    quantity: int
    unit_price: float
    total_price: float

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.raw_name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
        }


@dataclass(frozen=True, slots=True)
class ParsedInvoice:
    order_number: str | None
    line_items: tuple[ParsedLineItem, ...]
    total_amount: float
    # Optional amounts read by the rule's total/subtotal/shipping/tax/discount patterns.
    summary: Mapping[str, float] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "orderNumber": self.order_number,
            "products": [item.to_json() for item in self.line_items],
            "totalAmount": self.total_amount,
        }


@dataclass(frozen=True, slots=True)
class MatchedLineItem:
    raw_name: str
    quantity: int
    unit_price: float
    total_price: float
    product_id: int
    matched_name: str
    last_known_price: float

    @classmethod
    def from_parsed(
        cls,
        item: ParsedLineItem,
        *,
        product_id: int,
        matched_name: str,
        last_known_price: float,
    ) -> MatchedLineItem:
        return cls(
            raw_name=item.raw_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
            product_id=product_id,
            matched_name=matched_name,
            last_known_price=last_known_price,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.raw_name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
            "productId": self.product_id,
            "matchedName": self.matched_name,
            "lastKnownPrice": self.last_known_price,
        }


@dataclass(frozen=True, slots=True)
class LineItem:
    """A product line on a stored transaction, as the ledger consumes it."""

    product_id: int | None
    name: str
    quantity: int
    unit_price: float = 0.0
    total_price: float = 0.0

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> LineItem:
        raw_id = data.get("productId")
        try:
            product_id = int(raw_id) if raw_id not in (None, "") else None
        except (TypeError, ValueError):
            product_id = None
        try:
            quantity = int(data.get("quantity") or 0)
        except (TypeError, ValueError):
            quantity = 0
        return cls(
            product_id=product_id,
            name=str(data.get("name") or "").strip(),
            quantity=quantity,
            unit_price=float(data.get("unitPrice") or 0),
            total_price=float(data.get("totalPrice") or 0),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "productId": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
        }


# ---------------------------------------------------------------------------
# Ledger results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InventoryUpdateResult:
    product_id: int | None
    product_name: str
    old_stock: float
    new_stock: float
    quantity_change: int
    success: bool
    error: str | None = None
    change_recorded: bool | None = None

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "productId": self.product_id,
            "productName": self.product_name,
            "oldStock": self.old_stock,
            "newStock": self.new_stock,
            "quantityChange": self.quantity_change,
            "success": self.success,
        }
        if self.error is not None:
            out["error"] = self.error
        if self.change_recorded is not None:
            out["changeRecorded"] = self.change_recorded
        return out


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """Stock implied by the ledger versus the stock stored on the product."""

    product_id: int
    product_name: str
    current_stock: float
    calculated_stock: float
    total_purchases: int
    total_sales: int
    total_adjustments: int
    difference: float
    change_count: int


__all__ = [
    "DEFAULT_PRICE_SELECTOR",
    "ChangeType",
    "InventoryUpdateResult",
    "LineItem",
    "MappingType",
    "MatchedLineItem",
    "NormalizedTransaction",
    "ParsedInvoice",
    "ParsedLineItem",
    "Pattern",
    "PriceCorrection",
    "ProductsRule",
    "RawSheetRow",
    "ReconciliationResult",
    "SupplierExtractionRule",
    "TransactionType",
]
