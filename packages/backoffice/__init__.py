"""Public interface for the ``backoffice`` package.

This module exposes the package's entry points and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .api import fetch_supplier_invoice, parse_statement_upload
from .errors import (
    BackofficeError,
    ExtractionRuleError,
    ProductNotFoundError,
    ProxyCycleError,
    SheetReadError,
    TransactionNotFoundError,
    UnsupportedFileTypeError,
)
from .models import (
    InventoryUpdateResult,
    LineItem,
    MappingType,
    MatchedLineItem,
    NormalizedTransaction,
    ParsedInvoice,
    ParsedLineItem,
    PriceCorrection,
    ReconciliationResult,
    SupplierExtractionRule,
)

__all__ = [
    # Entry points
    "fetch_supplier_invoice",
    "parse_statement_upload",
    # Models / types
    "InventoryUpdateResult",
    "LineItem",
    "MappingType",
    "MatchedLineItem",
    "NormalizedTransaction",
    "ParsedInvoice",
    "ParsedLineItem",
    "PriceCorrection",
    "ReconciliationResult",
    "SupplierExtractionRule",
    # Errors
    "BackofficeError",
    "ExtractionRuleError",
    "ProductNotFoundError",
    "ProxyCycleError",
    "SheetReadError",
    "TransactionNotFoundError",
    "UnsupportedFileTypeError",
]
