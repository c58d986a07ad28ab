"""db: shared database library (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata`` for schema creation
- ORM models in ``db.models.ledger`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.ledger import (
    Base,
    CategoryMapping,
    LedgerCategory,
    LedgerFile,
    LedgerRawTransaction,
    LedgerTransaction,
    VendorMapping,
)

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "LedgerFile",
    "LedgerCategory",
    "LedgerRawTransaction",
    "LedgerTransaction",
    "VendorMapping",
    "CategoryMapping",
]
