"""Data models for ``statement_ledger``.

Two families live here:

- Pydantic models validating what crosses in from collaborators (the
  Statement Parser's records).
- Frozen dataclasses for the pipeline's own values: fingerprinted records,
  stored rows, mapping records and resolution results.

Amounts are ``Decimal`` quantized to two places and always positive; the
direction lives in ``type`` (``DEBIT`` leaves the account, ``CREDIT`` enters).
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

type TransactionType = Literal["DEBIT", "CREDIT"]
type MappingSource = Literal["user", "pattern", "llm"]

TWO_PLACES = Decimal("0.01")


def to_amount(raw: Any) -> Decimal:
    """Parse ``raw`` into a 2dp ``Decimal``; raises ``ValueError`` when not numeric."""

    if isinstance(raw, float):
        raw = repr(raw)
    try:
        value = Decimal(str(raw).replace(",", "").strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"not a decimal amount: {raw!r}") from e
    if not value.is_finite():
        raise ValueError(f"not a finite amount: {raw!r}")
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def clamp_confidence(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(high, float(value)))


# ---------------------------------------------------------------------------
# Statement Parser input
# ---------------------------------------------------------------------------


class StatementTransaction(BaseModel):
    """One line of a parsed statement as delivered by the Statement Parser."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    date: dt.date
    description: str = Field(min_length=1)
    reference_number: str | None = None
    raw_text: str = ""
    amount: Decimal
    type: Literal["DEBIT", "CREDIT"]
    original_currency: str | None = None
    original_amount: Decimal | None = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, v: str) -> str:
        s = " ".join(v.split())
        if not s:
            raise ValueError("description must be non-empty")
        return s

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, v: Any) -> Decimal:
        amt = to_amount(v)
        if amt < 0:
            raise ValueError("amount must be positive; direction is carried by type")
        return amt

    @field_validator("original_amount", mode="before")
    @classmethod
    def _parse_original_amount(cls, v: Any) -> Decimal | None:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return to_amount(v)


class ParsedStatement(BaseModel):
    """Parser output for one document.

    ``parsing_confidence`` arrives on a 0..100 scale and is normalized to 0..1
    with :meth:`normalized_confidence` before storage.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    transactions: list[StatementTransaction]
    parsing_confidence: float = Field(default=100.0, ge=0, le=100)

    def normalized_confidence(self) -> float:
        return round(self.parsing_confidence / 100.0, 2)


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FingerprintedTransaction:
    user_id: str
    date: date
    description: str
    amount: Decimal
    type: TransactionType
    fingerprint: str
    reference_number: str | None = None
    raw_text: str = ""
    original_currency: str | None = None
    original_amount: Decimal | None = None


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """A row of ``raw_transactions``; ``id`` is ``None`` before insert."""

    file_id: int
    user_id: str
    date: date
    description: str
    amount: Decimal
    type: TransactionType
    fingerprint: str
    reference_number: str | None = None
    raw_text: str = ""
    original_currency: str | None = None
    original_amount: Decimal | None = None
    parsing_confidence: float | None = None
    id: int | None = None


@dataclass(frozen=True, slots=True)
class CanonicalTransaction:
    """A canonical ledger row; ``id`` is ``None`` before insert."""

    user_id: str
    file_id: int
    fingerprint: str
    date: date
    description: str
    amount: Decimal
    type: TransactionType
    vendor_name: str
    vendor_name_original: str
    raw_transaction_id: int | None = None
    reference_number: str | None = None
    original_currency: str | None = None
    original_amount: Decimal | None = None
    category_id: int | None = None
    category_confidence: float | None = None
    notes: str | None = None
    is_internal_transfer: bool = False
    related_transaction_id: int | None = None
    is_duplicate: bool = False
    duplicate_of_id: int | None = None
    id: int | None = None


@dataclass(frozen=True, slots=True)
class FileStats:
    total_transactions: int
    total_income: Decimal
    total_expenses: Decimal
    status: str = "completed"
    processed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class CategoryRecord:
    id: int
    name: str
    is_system: bool = True
    parent_id: int | None = None


# ---------------------------------------------------------------------------
# Mapping cache
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MappingRecord:
    key: str
    resolved_value: str
    confidence: float
    source: MappingSource
    resolved_label: str | None = None
    user_id: str | None = None
    id: int | None = None
    revision: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_global(self) -> bool:
        return self.user_id is None


@dataclass(frozen=True, slots=True)
class MappingDraft:
    key: str
    resolved_value: str
    confidence: float
    source: MappingSource
    resolved_label: str | None = None
    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class MappingStats:
    total: int
    user: int
    global_: int
    high_confidence: int

    @property
    def cache_effectiveness(self) -> float:
        return self.high_confidence / self.total if self.total else 0.0


# ---------------------------------------------------------------------------
# Resolution results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VendorResolution:
    original_text: str
    resolved_name: str
    confidence: float
    source: MappingSource
    tier: str
    reasoning: str = ""
    sources: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")


@dataclass(frozen=True, slots=True)
class CategoryResolution:
    category_id: int
    category_name: str
    confidence: float
    source: MappingSource
    tier: str
    reasoning: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")


__all__ = [
    "TransactionType",
    "MappingSource",
    "to_amount",
    "clamp_confidence",
    "StatementTransaction",
    "ParsedStatement",
    "FingerprintedTransaction",
    "RawTransaction",
    "CanonicalTransaction",
    "FileStats",
    "CategoryRecord",
    "MappingRecord",
    "MappingDraft",
    "MappingStats",
    "VendorResolution",
    "CategoryResolution",
]
