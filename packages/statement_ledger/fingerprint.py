"""Content-addressable transaction fingerprints.

Public API
----------
- ``normalize_description(text)``: the description canonicalization that is
  part of the fingerprint contract.
- ``compute_fingerprint(...)``: SHA-256 over ``(user_id, date, amount, type,
  normalized description)``.
- ``fingerprint_transactions(records, user_id=...)``: fingerprint a parsed
  batch, preserving order.

Two records describe "the same transaction" exactly when their fingerprints
are equal, regardless of which upload they came from. A fingerprint is never
computed from partial data: missing fields raise ``FingerprintError``.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .errors import FingerprintError
from .models import FingerprintedTransaction, StatementTransaction, to_amount

_DIRECTION_PREFIX_RE = re.compile(r"^(dr|cr|debit|credit)\s+", re.IGNORECASE)
_DIRECTION_SUFFIX_RE = re.compile(r"\s+(dr|cr|debit|credit)$", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")

_TYPES = frozenset({"DEBIT", "CREDIT"})


def normalize_description(text: str) -> str:
    """Lowercase, drop a leading/trailing Dr/Cr marker, strip punctuation noise.

    ``"  DR  Amazon.in  "`` and ``"amazon in"`` normalize identically.
    """

    s = text.lower().strip()
    s = _DIRECTION_PREFIX_RE.sub("", s)
    s = _DIRECTION_SUFFIX_RE.sub("", s)
    s = _NON_WORD_RE.sub(" ", s)
    return _WS_RE.sub(" ", s).strip()


def _require_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            return date.fromisoformat(raw.strip())
        except ValueError as e:
            raise FingerprintError(f"date is not ISO formatted: {raw!r}") from e
    raise FingerprintError("date is required")


def _require_amount(raw: Any) -> Decimal:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise FingerprintError("amount is required")
    try:
        return to_amount(raw)
    except ValueError as e:
        raise FingerprintError(str(e)) from e


def compute_fingerprint(
    *,
    user_id: str,
    date: Any,
    amount: Any,
    type: str,
    description: str,
) -> str:
    """Return the hex SHA-256 fingerprint of one transaction.

    Parameters
    ----------
    user_id:
        Owner of the transaction; fingerprints never collide across users.
    date:
        ``date``/``datetime`` or ISO ``YYYY-MM-DD`` string.
    amount:
        Anything :func:`statement_ledger.models.to_amount` accepts; hashed at
        two decimal places so ``"500"`` and ``"500.00"`` agree.
    type:
        ``DEBIT`` or ``CREDIT`` (case-insensitive).
    description:
        Raw description; normalized with :func:`normalize_description`.

    Raises
    ------
    FingerprintError
        When any field is missing or blank, or normalizes to nothing.
    """

    if not user_id or not str(user_id).strip():
        raise FingerprintError("user_id is required")
    tx_type = (type or "").strip().upper()
    if tx_type not in _TYPES:
        raise FingerprintError(f"type must be DEBIT or CREDIT, got {type!r}")
    if description is None:
        raise FingerprintError("description is required")
    norm_desc = normalize_description(str(description))
    if not norm_desc:
        raise FingerprintError("description is empty after normalization")

    payload = {
        "user": str(user_id).strip(),
        "date": _require_date(date).isoformat(),
        "amount": f"{_require_amount(amount):.2f}",
        "type": tx_type,
        "description": norm_desc,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def fingerprint_transactions(
    records: Iterable[StatementTransaction], *, user_id: str
) -> list[FingerprintedTransaction]:
    out: list[FingerprintedTransaction] = []
    for rec in records:
        fp = compute_fingerprint(
            user_id=user_id,
            date=rec.date,
            amount=rec.amount,
            type=rec.type,
            description=rec.description,
        )
        out.append(
            FingerprintedTransaction(
                user_id=user_id,
                date=rec.date,
                description=rec.description,
                amount=rec.amount,
                type=rec.type,
                fingerprint=fp,
                reference_number=rec.reference_number,
                raw_text=rec.raw_text,
                original_currency=rec.original_currency,
                original_amount=rec.original_amount,
            )
        )
    return out


__all__ = ["normalize_description", "compute_fingerprint", "fingerprint_transactions"]
