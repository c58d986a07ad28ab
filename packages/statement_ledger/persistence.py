"""SQLAlchemy implementations of the storage ports.

Each method opens its own session through ``db.client.session_scope`` so the
stores are safe to share across the worker threads of a batch. Low-level
errors are translated here:

- ``IntegrityError`` on the ``(user_id, fingerprint)`` constraint ->
  ``DuplicateFingerprintError``;
- ``IntegrityError`` on a mapping ``(key, scope)`` -> ``MappingConflictError``;
- any other ``SQLAlchemyError`` -> ``StoreError``.

``init_db(database_url)`` creates the schema and seeds the system categories.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import TypeVar

from db import Base
from db.client import get_engine, session_scope
from db.models.ledger import (
    GLOBAL_SCOPE,
    CategoryMapping,
    LedgerCategory,
    LedgerFile,
    LedgerRawTransaction,
    LedgerTransaction,
    VendorMapping,
)
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .categories import seed_system_categories
from .errors import DuplicateFingerprintError, MappingConflictError, StoreError
from .logging_setup import get_logger
from .models import (
    CanonicalTransaction,
    CategoryRecord,
    FileStats,
    MappingDraft,
    MappingRecord,
    RawTransaction,
)

R = TypeVar("R")

type MappingModel = type[VendorMapping] | type[CategoryMapping]

_logger = get_logger("statement_ledger.persistence")


def _as_float(v: Decimal | float | None) -> float | None:
    return None if v is None else float(v)


# ---------------------------
# Schema bootstrap
# ---------------------------


def init_db(database_url: str | None = None) -> int:
    """Create all tables (if missing) and seed system categories.

    Returns the number of categories added. Safe to run repeatedly.
    """

    engine = get_engine(database_url=database_url)
    Base.metadata.create_all(bind=engine)
    with session_scope(database_url=database_url) as session:
        added = seed_system_categories(session)
    _logger.info("persistence:init_db categories_added=%d", added)
    return added


# ---------------------------
# Ledger store
# ---------------------------


def _raw_from_row(row: LedgerRawTransaction) -> RawTransaction:
    return RawTransaction(
        id=row.id,
        file_id=row.file_id,
        user_id=row.user_id,
        date=row.date,
        description=row.description,
        amount=Decimal(row.amount),
        type=row.type,  # type: ignore[arg-type]
        fingerprint=row.fingerprint,
        reference_number=row.reference_number,
        raw_text=row.raw_text or "",
        original_currency=row.original_currency,
        original_amount=row.original_amount,
        parsing_confidence=_as_float(row.parsing_confidence),
    )


def _canonical_from_row(row: LedgerTransaction) -> CanonicalTransaction:
    return CanonicalTransaction(
        id=row.id,
        user_id=row.user_id,
        file_id=row.file_id,
        raw_transaction_id=row.raw_transaction_id,
        fingerprint=row.fingerprint,
        date=row.transaction_date,
        description=row.description,
        reference_number=row.reference_number,
        amount=Decimal(row.amount),
        type=row.type,  # type: ignore[arg-type]
        original_currency=row.original_currency,
        original_amount=row.original_amount,
        vendor_name=row.vendor_name,
        vendor_name_original=row.vendor_name_original,
        category_id=row.category_id,
        category_confidence=_as_float(row.category_confidence),
        notes=row.notes,
        is_internal_transfer=bool(row.is_internal_transfer),
        related_transaction_id=row.related_transaction_id,
        is_duplicate=bool(row.is_duplicate),
        duplicate_of_id=row.duplicate_of_id,
    )


class SqlLedgerStore:
    """``LedgerStore`` over the ``statement_files``/``raw_transactions``/
    ``transactions`` tables."""

    def __init__(self, database_url: str | None = None) -> None:
        self._url = database_url

    @contextmanager
    def _session(self, op: str) -> Iterator[Session]:
        try:
            with session_scope(database_url=self._url) as session:
                yield session
        except SQLAlchemyError as e:
            _logger.warning("persistence:%s_failed error=%s", op, type(e).__name__)
            raise StoreError(f"{op} failed: {e}") from e

    def _insert_unique(
        self,
        op: str,
        build: Callable[[], LedgerRawTransaction | LedgerTransaction],
        exists: Callable[[Session], bool],
        fingerprint: str,
    ) -> int:
        try:
            with session_scope(database_url=self._url) as session:
                row = build()
                session.add(row)
                session.flush()
                return int(row.id)
        except IntegrityError as e:
            # Only the fingerprint constraint is an expected duplicate.
            with self._session(f"{op}_recheck") as session:
                duplicate = exists(session)
            if duplicate:
                raise DuplicateFingerprintError(fingerprint) from e
            raise StoreError(f"{op} failed: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StoreError(f"{op} failed: {e}") from e

    # ---- Files -------------------------------------------------------------

    def create_file(self, user_id: str, filename: str) -> int:
        with self._session("create_file") as session:
            row = LedgerFile(user_id=user_id, filename=filename, status="pending")
            session.add(row)
            session.flush()
            return int(row.id)

    def set_file_status(self, file_id: int, user_id: str, status: str) -> None:
        with self._session("set_file_status") as session:
            session.execute(
                update(LedgerFile)
                .where(LedgerFile.id == file_id, LedgerFile.user_id == user_id)
                .values(status=status)
            )

    def update_file_stats(self, file_id: int, user_id: str, stats: FileStats) -> None:
        with self._session("update_file_stats") as session:
            result = session.execute(
                update(LedgerFile)
                .where(LedgerFile.id == file_id, LedgerFile.user_id == user_id)
                .values(
                    total_transactions=stats.total_transactions,
                    total_income=stats.total_income,
                    total_expenses=stats.total_expenses,
                    status=stats.status,
                    processed_at=stats.processed_at or datetime.now(UTC),
                )
            )
            if result.rowcount == 0:
                raise StoreError(f"statement file not found: {file_id}")

    # ---- Raw transactions --------------------------------------------------

    def fetch_raw_transactions(self, file_id: int, user_id: str) -> list[RawTransaction]:
        with self._session("fetch_raw_transactions") as session:
            rows = session.execute(
                select(LedgerRawTransaction)
                .where(
                    LedgerRawTransaction.file_id == file_id,
                    LedgerRawTransaction.user_id == user_id,
                )
                .order_by(LedgerRawTransaction.id)
            ).scalars()
            return [_raw_from_row(r) for r in rows]

    def insert_raw_transaction(self, row: RawTransaction) -> int:
        def _build() -> LedgerRawTransaction:
            return LedgerRawTransaction(
                file_id=row.file_id,
                user_id=row.user_id,
                date=row.date,
                description=row.description,
                reference_number=row.reference_number,
                raw_text=row.raw_text,
                amount=row.amount,
                type=row.type,
                original_currency=row.original_currency,
                original_amount=row.original_amount,
                fingerprint=row.fingerprint,
                parsing_confidence=row.parsing_confidence,
            )

        def _exists(session: Session) -> bool:
            return (
                session.execute(
                    select(LedgerRawTransaction.id).where(
                        LedgerRawTransaction.user_id == row.user_id,
                        LedgerRawTransaction.fingerprint == row.fingerprint,
                    )
                ).first()
                is not None
            )

        return self._insert_unique("insert_raw_transaction", _build, _exists, row.fingerprint)

    # ---- Canonical transactions -------------------------------------------

    def insert_transaction(self, row: CanonicalTransaction) -> int:
        def _build() -> LedgerTransaction:
            return LedgerTransaction(
                user_id=row.user_id,
                file_id=row.file_id,
                raw_transaction_id=row.raw_transaction_id,
                fingerprint=row.fingerprint,
                transaction_date=row.date,
                description=row.description,
                reference_number=row.reference_number,
                amount=row.amount,
                type=row.type,
                original_currency=row.original_currency,
                original_amount=row.original_amount,
                vendor_name=row.vendor_name,
                vendor_name_original=row.vendor_name_original,
                category_id=row.category_id,
                category_confidence=row.category_confidence,
                notes=row.notes,
                is_internal_transfer=row.is_internal_transfer,
                related_transaction_id=row.related_transaction_id,
                is_duplicate=row.is_duplicate,
                duplicate_of_id=row.duplicate_of_id,
            )

        def _exists(session: Session) -> bool:
            return (
                session.execute(
                    select(LedgerTransaction.id).where(
                        LedgerTransaction.user_id == row.user_id,
                        LedgerTransaction.fingerprint == row.fingerprint,
                    )
                ).first()
                is not None
            )

        return self._insert_unique("insert_transaction", _build, _exists, row.fingerprint)

    def link_transfer_pair(self, first_id: int, second_id: int) -> None:
        with self._session("link_transfer_pair") as session:
            for this_id, other_id in ((first_id, second_id), (second_id, first_id)):
                session.execute(
                    update(LedgerTransaction)
                    .where(LedgerTransaction.id == this_id)
                    .values(is_internal_transfer=True, related_transaction_id=other_id)
                )

    def list_transactions(
        self, user_id: str, ids: Sequence[int] | None = None
    ) -> list[CanonicalTransaction]:
        with self._session("list_transactions") as session:
            stmt = select(LedgerTransaction).where(LedgerTransaction.user_id == user_id)
            if ids is not None:
                stmt = stmt.where(LedgerTransaction.id.in_(list(ids)))
            stmt = stmt.order_by(LedgerTransaction.transaction_date, LedgerTransaction.id)
            return [_canonical_from_row(r) for r in session.execute(stmt).scalars()]

    def list_unlinked_transactions(self, user_id: str) -> list[CanonicalTransaction]:
        with self._session("list_unlinked_transactions") as session:
            stmt = (
                select(LedgerTransaction)
                .where(
                    LedgerTransaction.user_id == user_id,
                    LedgerTransaction.related_transaction_id.is_(None),
                    LedgerTransaction.is_internal_transfer.is_(False),
                )
                .order_by(LedgerTransaction.transaction_date, LedgerTransaction.id)
            )
            return [_canonical_from_row(r) for r in session.execute(stmt).scalars()]

    def set_transaction_category(
        self,
        transaction_id: int,
        user_id: str,
        *,
        category_id: int,
        confidence: float,
        source: str,
    ) -> None:
        with self._session("set_transaction_category") as session:
            result = session.execute(
                update(LedgerTransaction)
                .where(
                    LedgerTransaction.id == transaction_id,
                    LedgerTransaction.user_id == user_id,
                )
                .values(
                    category_id=category_id,
                    category_confidence=round(confidence, 2),
                    category_source=source,
                )
            )
            if result.rowcount == 0:
                raise StoreError(f"transaction not found: {transaction_id}")

    def set_vendor_name(self, transaction_id: int, user_id: str, vendor_name: str) -> None:
        with self._session("set_vendor_name") as session:
            result = session.execute(
                update(LedgerTransaction)
                .where(
                    LedgerTransaction.id == transaction_id,
                    LedgerTransaction.user_id == user_id,
                )
                .values(vendor_name=vendor_name)
            )
            if result.rowcount == 0:
                raise StoreError(f"transaction not found: {transaction_id}")


# ---------------------------
# Mapping store
# ---------------------------


def _scope(user_id: str | None) -> str:
    return user_id if user_id is not None else GLOBAL_SCOPE


class SqlMappingStore:
    """``MappingStore`` over ``vendor_mappings`` or ``category_mappings``.

    ``replace`` is compare-and-set on ``(id, revision)``: the UPDATE matches
    only while the row still carries the revision the caller read.
    """

    def __init__(self, model: MappingModel, database_url: str | None = None) -> None:
        self._model = model
        self._url = database_url

    def _record(self, row: VendorMapping | CategoryMapping) -> MappingRecord:
        return MappingRecord(
            id=row.id,
            key=row.key,
            resolved_value=row.resolved_value,
            resolved_label=row.resolved_label,
            user_id=row.user_id,
            confidence=float(row.confidence),
            source=row.source,  # type: ignore[arg-type]
            revision=row.revision,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _run(self, op: str, fn: Callable[[Session], R]) -> R:
        try:
            with session_scope(database_url=self._url) as session:
                return fn(session)
        except SQLAlchemyError as e:
            _logger.warning(
                "persistence:%s_failed table=%s error=%s",
                op,
                self._model.__tablename__,
                type(e).__name__,
            )
            raise StoreError(f"{op} failed: {e}") from e

    def find(self, key: str) -> list[MappingRecord]:
        m = self._model

        def _q(session: Session) -> list[MappingRecord]:
            rows = session.execute(
                select(m).where(m.key == key).order_by(m.confidence.desc(), m.id)
            ).scalars()
            return [self._record(r) for r in rows]

        return self._run("find", _q)

    def get_scoped(self, key: str, user_id: str | None) -> MappingRecord | None:
        m = self._model

        def _q(session: Session) -> MappingRecord | None:
            row = session.execute(
                select(m).where(m.key == key, m.scope == _scope(user_id))
            ).scalar_one_or_none()
            return None if row is None else self._record(row)

        return self._run("get_scoped", _q)

    def insert(self, draft: MappingDraft) -> MappingRecord:
        def _q(session: Session) -> MappingRecord:
            row = self._model(
                key=draft.key,
                resolved_value=draft.resolved_value,
                resolved_label=draft.resolved_label,
                user_id=draft.user_id,
                scope=_scope(draft.user_id),
                confidence=round(draft.confidence, 2),
                source=draft.source,
                revision=0,
            )
            session.add(row)
            session.flush()
            session.refresh(row)
            return self._record(row)

        try:
            with session_scope(database_url=self._url) as session:
                return _q(session)
        except IntegrityError as e:
            raise MappingConflictError(
                f"mapping scope already exists: {self._model.__tablename__}"
            ) from e
        except SQLAlchemyError as e:
            raise StoreError(f"insert failed: {e}") from e

    def replace(self, current: MappingRecord, draft: MappingDraft) -> MappingRecord | None:
        m = self._model

        def _q(session: Session) -> MappingRecord | None:
            result = session.execute(
                update(m)
                .where(m.id == current.id, m.revision == current.revision)
                .values(
                    resolved_value=draft.resolved_value,
                    resolved_label=draft.resolved_label,
                    confidence=round(draft.confidence, 2),
                    source=draft.source,
                    revision=m.revision + 1,
                    updated_at=func.now(),
                )
            )
            if result.rowcount == 0:
                return None
            row = session.get(m, current.id, populate_existing=True)
            return None if row is None else self._record(row)

        return self._run("replace", _q)

    def list_visible(self, user_id: str | None) -> list[MappingRecord]:
        m = self._model

        def _q(session: Session) -> list[MappingRecord]:
            stmt = select(m)
            if user_id is None:
                stmt = stmt.where(m.user_id.is_(None))
            else:
                stmt = stmt.where(or_(m.user_id.is_(None), m.user_id == user_id))
            return [self._record(r) for r in session.execute(stmt).scalars()]

        return self._run("list_visible", _q)


def vendor_mapping_store(database_url: str | None = None) -> SqlMappingStore:
    return SqlMappingStore(VendorMapping, database_url)


def category_mapping_store(database_url: str | None = None) -> SqlMappingStore:
    return SqlMappingStore(CategoryMapping, database_url)


# ---------------------------
# Category source
# ---------------------------


class SqlCategorySource:
    def __init__(self, database_url: str | None = None) -> None:
        self._url = database_url

    def load_system_categories(self) -> list[CategoryRecord]:
        try:
            with session_scope(database_url=self._url) as session:
                rows = session.execute(
                    select(LedgerCategory)
                    .where(LedgerCategory.is_system.is_(True))
                    .order_by(LedgerCategory.name)
                ).scalars()
                return [
                    CategoryRecord(
                        id=r.id, name=r.name, is_system=True, parent_id=r.parent_id
                    )
                    for r in rows
                ]
        except SQLAlchemyError as e:
            raise StoreError(f"load_system_categories failed: {e}") from e


__all__ = [
    "init_db",
    "SqlLedgerStore",
    "SqlMappingStore",
    "SqlCategorySource",
    "vendor_mapping_store",
    "category_mapping_store",
]
