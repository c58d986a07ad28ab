"""Exception taxonomy shared across the ledger pipeline.

Components raise these at their boundaries so callers never need to know which
transport (SQLAlchemy, OpenAI, a document parser) failed underneath:

- ``FingerprintError``: a record lacks a field the fingerprint depends on.
- ``DuplicateFingerprintError``: a store refused an insert because the
  ``(user_id, fingerprint)`` pair already exists. Expected; callers count it.
- ``StoreError``: any other storage failure.
- ``MappingConflictError``: a concurrent writer created the same mapping scope.
- ``ClassifierError`` / ``ParserError``: collaborator failures carrying a
  machine-readable ``code``.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors raised by ``statement_ledger``."""


class FingerprintError(LedgerError, ValueError):
    pass


class StoreError(LedgerError):
    pass


class DuplicateFingerprintError(StoreError):
    def __init__(self, fingerprint: str) -> None:
        super().__init__(f"fingerprint already stored: {fingerprint[:12]}")
        self.fingerprint = fingerprint


class MappingConflictError(StoreError):
    pass


class CollaboratorError(LedgerError):
    """A failure reported by an external collaborator, with a stable code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class ClassifierError(CollaboratorError):
    pass


class ParserError(CollaboratorError):
    pass


__all__ = [
    "LedgerError",
    "FingerprintError",
    "StoreError",
    "DuplicateFingerprintError",
    "MappingConflictError",
    "CollaboratorError",
    "ClassifierError",
    "ParserError",
]
