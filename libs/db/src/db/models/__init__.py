"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the back-office inventory models used by ``backoffice``.
"""

from .inventory import (
    Base,
    BoCostHistory,
    BoInventoryChange,
    BoProduct,
    BoSmartMapping,
    BoSupplier,
    BoTransaction,
)

__all__ = [
    "Base",
    "BoCostHistory",
    "BoInventoryChange",
    "BoProduct",
    "BoSmartMapping",
    "BoSupplier",
    "BoTransaction",
]
