"""Category domain helpers and service operations.

Exports
-------
- ``SYSTEM_CATEGORIES``: the seeded, shared category names.
- ``CategoryCatalog``: explicit cache of the system categories handed to the
  category resolver; reload with ``invalidate()``/``reload()``.
- ``normalize_name(...)`` / ``validate_name(...)``: name checks shared with
  user-facing category creation.
- ``seed_system_categories(session)`` and ``create_category(session, ...)``
  against the ``categories`` table.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import TypedDict

from db.models.ledger import LedgerCategory
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import CategoryRecord
from .ports import CategorySource

SYSTEM_CATEGORIES: tuple[str, ...] = (
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

_logger = get_logger("statement_ledger.categories")


# ---------------------------
# System category catalog
# ---------------------------


class CategoryCatalog:
    """Loaded-once view of the system categories.

    The first read loads from ``source``; later reads reuse the snapshot until
    :meth:`invalidate` drops it or :meth:`reload` refreshes it eagerly.
    """

    def __init__(self, source: CategorySource) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._by_name: dict[str, CategoryRecord] | None = None
        self._by_id: dict[int, CategoryRecord] = {}

    def _snapshot(self) -> dict[str, CategoryRecord]:
        with self._lock:
            if self._by_name is None:
                return self._load_locked()
            return self._by_name

    def _load_locked(self) -> dict[str, CategoryRecord]:
        records = self._source.load_system_categories()
        by_name = {r.name.casefold(): r for r in records}
        self._by_name = by_name
        self._by_id = {r.id: r for r in records}
        _logger.debug("categories:catalog_loaded count=%d", len(records))
        return by_name

    def categories(self) -> list[CategoryRecord]:
        return sorted(self._snapshot().values(), key=lambda r: r.name)

    def names(self) -> list[str]:
        return [r.name for r in self.categories()]

    def by_name(self, name: str) -> CategoryRecord | None:
        return self._snapshot().get(normalize_name(name).casefold())

    def by_id(self, category_id: int | str) -> CategoryRecord | None:
        self._snapshot()
        try:
            return self._by_id.get(int(category_id))
        except (TypeError, ValueError):
            return None

    def invalidate(self) -> None:
        with self._lock:
            self._by_name = None
            self._by_id = {}

    def reload(self) -> None:
        with self._lock:
            self._load_locked()


# ---------------------------
# Name normalization/validation
# ---------------------------

_ALLOWED_RE = re.compile(r"^[A-Za-z0-9 &\-/]+$")


def normalize_name(name: str) -> str:
    """Trim and collapse internal whitespace; case is preserved."""

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, max_len: int = 64) -> NameValidation:
    """Names are 1..64 characters of letters, digits, spaces and ``& - /``."""

    n = normalize_name(name)
    if not n:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    if not _ALLOWED_RE.match(n):
        return NameValidation(False, "Only letters, numbers, spaces, and & - / are allowed")
    return NameValidation(True, None)


# ---------------------------
# Database operations
# ---------------------------


class CategoryDict(TypedDict):
    id: int
    name: str
    parent_id: int | None
    is_system: bool
    user_id: str | None


class CreateCategoryResult(TypedDict):
    category: CategoryDict
    created: bool


def _row_to_dict(row: LedgerCategory) -> CategoryDict:
    return {
        "id": row.id,
        "name": row.name,
        "parent_id": row.parent_id,
        "is_system": bool(row.is_system),
        "user_id": row.user_id,
    }


def seed_system_categories(session: Session) -> int:
    """Insert any missing system categories; returns how many were added."""

    existing = {
        n.casefold()
        for n in session.execute(
            select(LedgerCategory.name).where(LedgerCategory.is_system.is_(True))
        ).scalars()
    }
    added = 0
    for name in SYSTEM_CATEGORIES:
        if name.casefold() in existing:
            continue
        session.add(LedgerCategory(name=name, is_system=True, user_id=None))
        added += 1
    session.flush()
    return added


def create_category(
    session: Session,
    *,
    user_id: str,
    name: str,
    parent_id: int | None = None,
) -> CreateCategoryResult:
    """Create a user category unless one with the same name is already visible.

    Visible means a system category or one the user owns; the comparison is
    case-insensitive. The existing row is returned with ``created=False``.
    ``parent_id``, when given, must reference a top-level visible category.

    Raises ``ValueError`` for invalid names or parents.
    """

    name_n = normalize_name(name)
    v = validate_name(name_n)
    if not v.ok:
        raise ValueError(f"Invalid category name: {v.reason}")

    visible = (LedgerCategory.is_system.is_(True)) | (LedgerCategory.user_id == user_id)

    if parent_id is not None:
        parent = session.execute(
            select(LedgerCategory).where(LedgerCategory.id == parent_id, visible)
        ).scalar_one_or_none()
        if parent is None:
            raise ValueError(f"Parent category not found: {parent_id!r}")
        if parent.parent_id is not None:
            raise ValueError("Parent must be a top-level category (cannot be a child)")

    def _existing() -> LedgerCategory | None:
        return (
            session.execute(
                select(LedgerCategory).where(
                    func.lower(LedgerCategory.name) == name_n.lower(), visible
                )
            )
            .scalars()
            .first()
        )

    found = _existing()
    if found is not None:
        return {"category": _row_to_dict(found), "created": False}

    row = LedgerCategory(name=name_n, parent_id=parent_id, is_system=False, user_id=user_id)
    try:
        session.add(row)
        session.flush()
    except IntegrityError:
        session.rollback()
        found = _existing()
        if found is None:
            raise
        return {"category": _row_to_dict(found), "created": False}

    _logger.info("categories:created user=%s id=%s", user_id, row.id)
    return {"category": _row_to_dict(row), "created": True}


__all__ = [
    "SYSTEM_CATEGORIES",
    "CategoryCatalog",
    "NameValidation",
    "normalize_name",
    "validate_name",
    "seed_system_categories",
    "create_category",
]
