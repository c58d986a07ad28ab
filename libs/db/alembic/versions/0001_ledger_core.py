# ruff: noqa: I001
"""Ledger core tables, learned mappings and seed categories.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# INTEGER on SQLite so rowid autoincrement applies.
_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

# Mirrors statement_ledger.categories.SYSTEM_CATEGORIES
SYSTEM_CATEGORIES = (
    "Food & Dining",
    "Transportation",
    "Shopping",
    "Entertainment",
    "Bills & Utilities",
    "Healthcare",
    "Education",
    "Personal Care",
    "Travel",
    "Investments",
    "Insurance",
    "Rent",
    "Other",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def _mapping_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("resolved_value", sa.Text(), nullable=False),
        sa.Column("resolved_label", sa.Text(), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("scope", sa.String(), nullable=False),
        sa.Column("confidence", sa.Numeric(3, 2), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("key", "scope", name=f"uq_{name}_key_scope"),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name=f"ck_{name}_confidence"),
        sa.CheckConstraint("source in ('user','pattern','llm')", name=f"ck_{name}_source"),
    )
    op.create_index(f"ix_{name}_key", name, ["key"], unique=False)


def upgrade() -> None:
    # statement_files
    op.create_table(
        "statement_files",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("filename", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("total_transactions", sa.Integer(), nullable=True),
        sa.Column("total_income", sa.Numeric(18, 2), nullable=True),
        sa.Column("total_expenses", sa.Numeric(18, 2), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status in ('pending','processing','completed','failed')",
            name="ck_statement_files_status",
        ),
    )
    op.create_index("ix_statement_files_user_id", "statement_files", ["user_id"], unique=False)

    # categories
    op.create_table(
        "categories",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column(
            "parent_id",
            _ID,
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("user_id", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.bulk_insert(
        sa.table(
            "categories",
            sa.column("name", sa.String()),
            sa.column("is_system", sa.Boolean()),
        ),
        [{"name": name, "is_system": True} for name in SYSTEM_CATEGORIES],
    )

    # raw_transactions
    op.create_table(
        "raw_transactions",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column(
            "file_id",
            _ID,
            sa.ForeignKey("statement_files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference_number", sa.String(), nullable=True),
        sa.Column("raw_text", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("type", sa.String(6), nullable=False),
        sa.Column("original_currency", sa.String(3), nullable=True),
        sa.Column("original_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("parsing_confidence", sa.Numeric(3, 2), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "fingerprint", name="uq_raw_tx_user_fingerprint"),
        sa.CheckConstraint("type in ('DEBIT','CREDIT')", name="ck_raw_tx_type"),
        sa.CheckConstraint(
            (
                "parsing_confidence IS NULL OR "
                "(parsing_confidence >= 0 AND parsing_confidence <= 1)"
            ),
            name="ck_raw_tx_parsing_confidence",
        ),
    )
    op.create_index("ix_raw_transactions_file_id", "raw_transactions", ["file_id"], unique=False)

    # transactions (canonical ledger)
    op.create_table(
        "transactions",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column(
            "file_id",
            _ID,
            sa.ForeignKey("statement_files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "raw_transaction_id",
            _ID,
            sa.ForeignKey("raw_transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference_number", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("type", sa.String(6), nullable=False),
        sa.Column("original_currency", sa.String(3), nullable=True),
        sa.Column("original_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("vendor_name", sa.Text(), nullable=False),
        sa.Column("vendor_name_original", sa.Text(), nullable=False),
        sa.Column(
            "category_id",
            _ID,
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("category_confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column("category_source", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "is_internal_transfer", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "related_transaction_id",
            _ID,
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_duplicate", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "duplicate_of_id",
            _ID,
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("user_id", "fingerprint", name="uq_tx_user_fingerprint"),
        sa.CheckConstraint("type in ('DEBIT','CREDIT')", name="ck_tx_type"),
        sa.CheckConstraint(
            "category_source IS NULL OR category_source in ('user','pattern','llm')",
            name="ck_tx_category_source",
        ),
        sa.CheckConstraint(
            (
                "category_confidence IS NULL OR "
                "(category_confidence >= 0 AND category_confidence <= 1)"
            ),
            name="ck_tx_category_confidence",
        ),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"], unique=False)
    op.create_index(
        "ix_tx_user_unlinked", "transactions", ["user_id", "related_transaction_id"], unique=False
    )

    # learned mappings
    _mapping_table("vendor_mappings")
    _mapping_table("category_mappings")


def downgrade() -> None:
    for name in ("category_mappings", "vendor_mappings"):
        op.drop_index(f"ix_{name}_key", table_name=name)
        op.drop_table(name)
    op.drop_index("ix_tx_user_unlinked", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_raw_transactions_file_id", table_name="raw_transactions")
    op.drop_table("raw_transactions")
    op.drop_table("categories")
    op.drop_index("ix_statement_files_user_id", table_name="statement_files")
    op.drop_table("statement_files")
