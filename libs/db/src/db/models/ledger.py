from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT on Postgres; INTEGER on SQLite so the rowid autoincrement applies.
_ID = BigInteger().with_variant(Integer, "sqlite")

GLOBAL_SCOPE = "__global__"


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: statement_files
# ---------------------------


class LedgerFile(Base):
    __tablename__ = "statement_files"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending", server_default=text("'pending'")
    )
    total_transactions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_income: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    total_expenses: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('pending','processing','completed','failed')",
            name="ck_statement_files_status",
        ),
    )


# ---------------------------
# Reference: categories
# ---------------------------


class LedgerCategory(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Single-level parent reference; system categories are all top-level.
    parent_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    is_system: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    # NULL for system categories; owner for user-created ones.
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Core: raw_transactions
# ---------------------------


class LedgerRawTransaction(Base):
    __tablename__ = "raw_transactions"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(
        _ID, ForeignKey("statement_files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(6), nullable=False)
    original_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    original_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    parsing_confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_raw_tx_user_fingerprint"),
        CheckConstraint("type in ('DEBIT','CREDIT')", name="ck_raw_tx_type"),
        CheckConstraint(
            (
                "parsing_confidence IS NULL OR "
                "(parsing_confidence >= 0 AND parsing_confidence <= 1)"
            ),
            name="ck_raw_tx_parsing_confidence",
        ),
    )


# ---------------------------
# Core: transactions (canonical ledger)
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    file_id: Mapped[int] = mapped_column(
        _ID, ForeignKey("statement_files.id", ondelete="CASCADE"), nullable=False
    )
    raw_transaction_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("raw_transactions.id", ondelete="SET NULL"), nullable=True
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(6), nullable=False)
    original_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    original_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    # Resolved label shown in the ledger; the raw descriptor is never overwritten.
    vendor_name: Mapped[str] = mapped_column(Text, nullable=False)
    vendor_name_original: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    category_confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    category_source: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_internal_transfer: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    # Self references: the paired transfer leg and the row this one repeats.
    related_transaction_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    is_duplicate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    duplicate_of_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_tx_user_fingerprint"),
        CheckConstraint("type in ('DEBIT','CREDIT')", name="ck_tx_type"),
        CheckConstraint(
            "category_source IS NULL OR category_source in ('user','pattern','llm')",
            name="ck_tx_category_source",
        ),
        CheckConstraint(
            (
                "category_confidence IS NULL OR "
                "(category_confidence >= 0 AND category_confidence <= 1)"
            ),
            name="ck_tx_category_confidence",
        ),
        Index("ix_tx_user_unlinked", "user_id", "related_transaction_id"),
    )


# ---------------------------
# Learned mappings (vendor text -> brand, vendor name -> category)
# ---------------------------


class _MappingColumns:
    """Columns shared by both mapping tables.

    ``scope`` mirrors ``user_id`` with a non-null sentinel for global rows so a
    plain unique constraint can enforce one row per ``(key, scope)``; NULLs
    are distinct in SQL unique indexes.
    """

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    resolved_value: Mapped[str] = mapped_column(Text, nullable=False)
    resolved_label: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    scope: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False)
    # Bumped on every in-place update; writers compare it before replacing.
    revision: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


def _mapping_table_args(prefix: str) -> tuple:
    return (
        UniqueConstraint("key", "scope", name=f"uq_{prefix}_key_scope"),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name=f"ck_{prefix}_confidence"
        ),
        CheckConstraint("source in ('user','pattern','llm')", name=f"ck_{prefix}_source"),
    )


class VendorMapping(_MappingColumns, Base):
    __tablename__ = "vendor_mappings"
    __table_args__ = _mapping_table_args("vendor_mappings")


class CategoryMapping(_MappingColumns, Base):
    __tablename__ = "category_mappings"
    __table_args__ = _mapping_table_args("category_mappings")


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
