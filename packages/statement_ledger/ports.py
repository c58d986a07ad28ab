"""Storage ports consumed by the pipeline.

Components receive one of these at construction instead of a live database
handle. ``statement_ledger.persistence`` implements them with SQLAlchemy;
tests use in-memory fakes.

Errors: implementations raise ``DuplicateFingerprintError`` for a
``(user_id, fingerprint)`` collision, ``MappingConflictError`` when a mapping
scope already exists on insert, and ``StoreError`` for anything else.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .models import (
    CanonicalTransaction,
    CategoryRecord,
    FileStats,
    MappingDraft,
    MappingRecord,
    ParsedStatement,
    RawTransaction,
)


class MappingStore(Protocol):
    def find(self, key: str) -> list[MappingRecord]:
        """All records for ``key`` across scopes, highest confidence first."""
        ...

    def get_scoped(self, key: str, user_id: str | None) -> MappingRecord | None:
        """The record for ``key`` owned by ``user_id`` (``None`` = global)."""
        ...

    def insert(self, draft: MappingDraft) -> MappingRecord: ...

    def replace(self, current: MappingRecord, draft: MappingDraft) -> MappingRecord | None:
        """Overwrite ``current`` if it is unchanged since read; else ``None``."""
        ...

    def list_visible(self, user_id: str | None) -> list[MappingRecord]:
        """Global records plus those owned by ``user_id``."""
        ...


class LedgerStore(Protocol):
    def create_file(self, user_id: str, filename: str) -> int: ...

    def fetch_raw_transactions(self, file_id: int, user_id: str) -> list[RawTransaction]: ...

    def insert_raw_transaction(self, row: RawTransaction) -> int: ...

    def insert_transaction(self, row: CanonicalTransaction) -> int: ...

    def link_transfer_pair(self, first_id: int, second_id: int) -> None:
        """Flag both rows as internal transfers pointing at each other."""
        ...

    def list_transactions(
        self, user_id: str, ids: Sequence[int] | None = None
    ) -> list[CanonicalTransaction]: ...

    def list_unlinked_transactions(self, user_id: str) -> list[CanonicalTransaction]: ...

    def update_file_stats(self, file_id: int, user_id: str, stats: FileStats) -> None: ...

    def set_file_status(self, file_id: int, user_id: str, status: str) -> None: ...

    def set_transaction_category(
        self,
        transaction_id: int,
        user_id: str,
        *,
        category_id: int,
        confidence: float,
        source: str,
    ) -> None: ...

    def set_vendor_name(self, transaction_id: int, user_id: str, vendor_name: str) -> None: ...


class CategorySource(Protocol):
    def load_system_categories(self) -> list[CategoryRecord]: ...


class StatementParser(Protocol):
    def parse(self, document: bytes | str) -> ParsedStatement:
        """Extract transactions; failures raise ``ParserError``."""
        ...


__all__ = ["MappingStore", "LedgerStore", "CategorySource", "StatementParser"]
