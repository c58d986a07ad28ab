"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``statement_ledger``.
"""

from .ledger import (
    GLOBAL_SCOPE,
    Base,
    CategoryMapping,
    LedgerCategory,
    LedgerFile,
    LedgerRawTransaction,
    LedgerTransaction,
    VendorMapping,
)

__all__ = [
    "Base",
    "GLOBAL_SCOPE",
    "LedgerFile",
    "LedgerCategory",
    "LedgerRawTransaction",
    "LedgerTransaction",
    "VendorMapping",
    "CategoryMapping",
]
