"""Exception types raised by ``backoffice``.

Expected outcomes on messy real-world input (no header row, unknown supplier,
no matching invoice) are reported as result fields, not exceptions. These
types cover hard failures the caller has to handle.
"""

from __future__ import annotations


class BackofficeError(Exception):
    """Base class for errors raised by this package."""


class UnsupportedFileTypeError(BackofficeError, ValueError):
    """Raised when an upload's extension is not a supported spreadsheet type."""


class SheetReadError(BackofficeError):
    """Raised when workbook bytes cannot be opened or read."""


class ExtractionRuleError(BackofficeError, ValueError):
    """Raised when a supplier extraction rule carries an invalid regex or selector."""


class ProxyCycleError(BackofficeError, ValueError):
    """Raised when linking products by proxy would create a cycle."""


class ProductNotFoundError(BackofficeError, LookupError):
    """Raised when an operation names a product id that does not exist."""


class TransactionNotFoundError(BackofficeError, LookupError):
    """Raised when an edit targets a transaction that is not stored."""


__all__ = [
    "BackofficeError",
    "ExtractionRuleError",
    "ProductNotFoundError",
    "ProxyCycleError",
    "SheetReadError",
    "TransactionNotFoundError",
    "UnsupportedFileTypeError",
]
