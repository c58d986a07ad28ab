"""In-memory implementations of the storage ports.

They honor the same contracts as the SQLAlchemy stores: a
``(user_id, fingerprint)`` collision raises ``DuplicateFingerprintError``,
mapping inserts into an occupied scope raise ``MappingConflictError`` and
``replace`` is compare-and-set on ``(id, revision)``. A single lock guards
each store so they can be shared across the worker threads of a batch.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable, Sequence

from statement_ledger.categories import SYSTEM_CATEGORIES
from statement_ledger.errors import (
    DuplicateFingerprintError,
    MappingConflictError,
    StoreError,
)
from statement_ledger.models import (
    CanonicalTransaction,
    CategoryRecord,
    FileStats,
    MappingDraft,
    MappingRecord,
    RawTransaction,
)


class FakeMappingStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[int, MappingRecord] = {}
        self._next_id = 1
        # Called with the current record just before a CAS is applied.
        self.before_replace: Callable[[MappingRecord], None] | None = None
        # Every insert and replace fails with a StoreError while set.
        self.fail_writes = False

    @property
    def records(self) -> list[MappingRecord]:
        with self._lock:
            return list(self._rows.values())

    def find(self, key: str) -> list[MappingRecord]:
        with self._lock:
            rows = [r for r in self._rows.values() if r.key == key]
        return sorted(rows, key=lambda r: r.confidence, reverse=True)

    def get_scoped(self, key: str, user_id: str | None) -> MappingRecord | None:
        with self._lock:
            for r in self._rows.values():
                if r.key == key and r.user_id == user_id:
                    return r
        return None

    def insert(self, draft: MappingDraft) -> MappingRecord:
        if self.fail_writes:
            raise StoreError("mapping store unavailable")
        with self._lock:
            for r in self._rows.values():
                if r.key == draft.key and r.user_id == draft.user_id:
                    raise MappingConflictError(f"scope taken: {draft.key}")
            rec = MappingRecord(
                id=self._next_id,
                key=draft.key,
                resolved_value=draft.resolved_value,
                resolved_label=draft.resolved_label,
                confidence=draft.confidence,
                source=draft.source,
                user_id=draft.user_id,
                revision=0,
            )
            self._rows[rec.id] = rec  # type: ignore[index]
            self._next_id += 1
            return rec

    def replace(self, current: MappingRecord, draft: MappingDraft) -> MappingRecord | None:
        if self.fail_writes:
            raise StoreError("mapping store unavailable")
        if self.before_replace is not None:
            self.before_replace(current)
        with self._lock:
            live = self._rows.get(current.id)  # type: ignore[arg-type]
            if live is None or live.revision != current.revision:
                return None
            rec = dataclasses.replace(
                live,
                resolved_value=draft.resolved_value,
                resolved_label=draft.resolved_label,
                confidence=draft.confidence,
                source=draft.source,
                revision=live.revision + 1,
            )
            self._rows[rec.id] = rec  # type: ignore[index]
            return rec

    def list_visible(self, user_id: str | None) -> list[MappingRecord]:
        with self._lock:
            return [
                r for r in self._rows.values() if r.user_id is None or r.user_id == user_id
            ]

    # Test-only helper: overwrite a row behind the cache's back.
    def bump(self, record_id: int, **changes) -> None:
        with self._lock:
            live = self._rows[record_id]
            self._rows[record_id] = dataclasses.replace(
                live, revision=live.revision + 1, **changes
            )


class FakeLedgerStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.files: dict[int, dict] = {}
        self.raw: dict[int, RawTransaction] = {}
        self.transactions: dict[int, CanonicalTransaction] = {}
        self.categories_applied: list[tuple[int, int, str]] = []
        self._ids = {"file": 0, "raw": 0, "tx": 0}
        # Fingerprints whose canonical insert should fail with a StoreError.
        self.fail_inserts_for: set[str] = set()
        self.fail_fetch = False
        self.fail_stats = False

    def _next(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    def create_file(self, user_id: str, filename: str) -> int:
        with self._lock:
            file_id = self._next("file")
            self.files[file_id] = {
                "user_id": user_id,
                "filename": filename,
                "status": "pending",
                "stats": None,
            }
            return file_id

    def set_file_status(self, file_id: int, user_id: str, status: str) -> None:
        with self._lock:
            self.files[file_id]["status"] = status

    def update_file_stats(self, file_id: int, user_id: str, stats: FileStats) -> None:
        with self._lock:
            if self.fail_stats:
                raise StoreError("stats unavailable")
            f = self.files.get(file_id)
            if f is None or f["user_id"] != user_id:
                raise StoreError(f"statement file not found: {file_id}")
            f["stats"] = stats
            f["status"] = stats.status

    def fetch_raw_transactions(self, file_id: int, user_id: str) -> list[RawTransaction]:
        if self.fail_fetch:
            raise StoreError("connection refused")
        with self._lock:
            return [
                r
                for r in sorted(self.raw.values(), key=lambda r: r.id or 0)
                if r.file_id == file_id and r.user_id == user_id
            ]

    def insert_raw_transaction(self, row: RawTransaction) -> int:
        with self._lock:
            for r in self.raw.values():
                if r.user_id == row.user_id and r.fingerprint == row.fingerprint:
                    raise DuplicateFingerprintError(row.fingerprint)
            new_id = self._next("raw")
            self.raw[new_id] = dataclasses.replace(row, id=new_id)
            return new_id

    def insert_transaction(self, row: CanonicalTransaction) -> int:
        with self._lock:
            if row.fingerprint in self.fail_inserts_for:
                raise StoreError("disk full")
            for t in self.transactions.values():
                if t.user_id == row.user_id and t.fingerprint == row.fingerprint:
                    raise DuplicateFingerprintError(row.fingerprint)
            new_id = self._next("tx")
            self.transactions[new_id] = dataclasses.replace(row, id=new_id)
            return new_id

    def link_transfer_pair(self, first_id: int, second_id: int) -> None:
        with self._lock:
            for this_id, other_id in ((first_id, second_id), (second_id, first_id)):
                self.transactions[this_id] = dataclasses.replace(
                    self.transactions[this_id],
                    is_internal_transfer=True,
                    related_transaction_id=other_id,
                )

    def list_transactions(
        self, user_id: str, ids: Sequence[int] | None = None
    ) -> list[CanonicalTransaction]:
        with self._lock:
            rows = [t for t in self.transactions.values() if t.user_id == user_id]
        if ids is not None:
            wanted = set(ids)
            rows = [t for t in rows if t.id in wanted]
        return sorted(rows, key=lambda t: (t.date, t.id or 0))

    def list_unlinked_transactions(self, user_id: str) -> list[CanonicalTransaction]:
        return [
            t
            for t in self.list_transactions(user_id)
            if t.related_transaction_id is None and not t.is_internal_transfer
        ]

    def set_transaction_category(
        self,
        transaction_id: int,
        user_id: str,
        *,
        category_id: int,
        confidence: float,
        source: str,
    ) -> None:
        with self._lock:
            tx = self.transactions.get(transaction_id)
            if tx is None or tx.user_id != user_id:
                raise StoreError(f"transaction not found: {transaction_id}")
            self.transactions[transaction_id] = dataclasses.replace(
                tx, category_id=category_id, category_confidence=round(confidence, 2)
            )
            self.categories_applied.append((transaction_id, category_id, source))

    def set_vendor_name(self, transaction_id: int, user_id: str, vendor_name: str) -> None:
        with self._lock:
            tx = self.transactions.get(transaction_id)
            if tx is None or tx.user_id != user_id:
                raise StoreError(f"transaction not found: {transaction_id}")
            self.transactions[transaction_id] = dataclasses.replace(tx, vendor_name=vendor_name)


class FakeCategorySource:
    """System categories with ids 1..N in ``SYSTEM_CATEGORIES`` order."""

    def __init__(self, names: Sequence[str] = SYSTEM_CATEGORIES) -> None:
        self.names = list(names)
        self.loads = 0

    def load_system_categories(self) -> list[CategoryRecord]:
        self.loads += 1
        return [CategoryRecord(id=i, name=n) for i, n in enumerate(self.names, start=1)]


def category_ids() -> dict[str, int]:
    return {n: i for i, n in enumerate(SYSTEM_CATEGORIES, start=1)}
