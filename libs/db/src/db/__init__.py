"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.inventory`` (re-exported for convenience)
- The explicitly constructed ``Database`` client in ``db.client``
"""

from __future__ import annotations

from .client import Database
from .models.inventory import (
    Base,
    BoCostHistory,
    BoInventoryChange,
    BoProduct,
    BoSmartMapping,
    BoSupplier,
    BoTransaction,
)

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "Database",
    "metadata",
    "BoCostHistory",
    "BoInventoryChange",
    "BoProduct",
    "BoSmartMapping",
    "BoSupplier",
    "BoTransaction",
]
