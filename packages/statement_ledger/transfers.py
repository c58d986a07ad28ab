"""Internal transfer pairing.

An internal transfer is money moving between two accounts owned by the same
user: a DEBIT on one statement and a CREDIT of the same amount on another
(or the same) statement a few days apart. Both legs are flagged and point at
each other so income/expense totals can skip them.

Public API
----------
- ``TransferPolicy``: window size and keyword vocabulary.
- ``is_within_days(a, b, days)``
- ``could_be_internal_transfer(description_a, description_b, keywords=...)``
- ``link_internal_transfers(legs, policy)``

This is a heuristic. Matching amounts near in time with transfer-like wording
are treated as a pair; nothing proves the accounts share an owner.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

DEFAULT_TRANSFER_KEYWORDS: tuple[str, ...] = (
    "transfer",
    "own account",
    "payment",
    "credit card",
    "cc payment",
    "autopay",
    "billpay",
    "bill payment",
    "account transfer",
    "internal transfer",
)


@dataclass(frozen=True, slots=True)
class TransferPolicy:
    window_days: int = 3
    keywords: tuple[str, ...] = DEFAULT_TRANSFER_KEYWORDS


DEFAULT_POLICY = TransferPolicy()


@dataclass(frozen=True, slots=True)
class TransferLeg:
    """Linker input. ``key`` is whatever identifies the row to the caller
    (a database id, or a batch position before insert)."""

    key: Hashable
    user_id: str
    date: date
    amount: Decimal
    type: str
    description: str


@dataclass(frozen=True, slots=True)
class LinkedLeg:
    leg: TransferLeg
    is_internal_transfer: bool = False
    related_key: Hashable | None = None


@dataclass(frozen=True, slots=True)
class TransferLinking:
    legs: list[LinkedLeg]
    # (debit key, credit key) in the order the debits were visited.
    pairs: list[tuple[Hashable, Hashable]]


def is_within_days(a: date, b: date, days: int) -> bool:
    """True when ``a`` and ``b`` are at most ``days`` calendar days apart."""

    return abs((b - a).days) <= days


def could_be_internal_transfer(
    description_a: str,
    description_b: str,
    keywords: Sequence[str] = DEFAULT_TRANSFER_KEYWORDS,
) -> bool:
    """True when either description mentions transfer vocabulary."""

    a = (description_a or "").lower()
    b = (description_b or "").lower()
    return any(kw in a or kw in b for kw in keywords)


def _is_candidate(debit: TransferLeg, credit: TransferLeg, policy: TransferPolicy) -> bool:
    return (
        credit.user_id == debit.user_id
        and credit.amount == debit.amount
        and is_within_days(debit.date, credit.date, policy.window_days)
        and could_be_internal_transfer(debit.description, credit.description, policy.keywords)
    )


def link_internal_transfers(
    legs: Iterable[TransferLeg], policy: TransferPolicy = DEFAULT_POLICY
) -> TransferLinking:
    """Pair each DEBIT with at most one CREDIT, one-to-one.

    Debits are visited in input order. Among matching credits the nearest
    date wins; equal gaps go to the credit that appears first. A credit that
    has been paired leaves the pool. Callers pass only legs that are not yet
    linked, which makes repeated sweeps produce the same pairs.
    """

    items = list(legs)
    pool: list[int] = [i for i, leg in enumerate(items) if leg.type == "CREDIT"]
    partner: dict[int, int] = {}
    pairs: list[tuple[Hashable, Hashable]] = []

    for i, debit in enumerate(items):
        if debit.type != "DEBIT":
            continue
        best: int | None = None
        best_gap = 0
        for j in pool:
            credit = items[j]
            if not _is_candidate(debit, credit, policy):
                continue
            gap = abs((credit.date - debit.date).days)
            if best is None or gap < best_gap:
                best, best_gap = j, gap
        if best is None:
            continue
        pool.remove(best)
        partner[i] = best
        partner[best] = i
        pairs.append((debit.key, items[best].key))

    linked = [
        LinkedLeg(leg=leg, is_internal_transfer=True, related_key=items[partner[i]].key)
        if i in partner
        else LinkedLeg(leg=leg)
        for i, leg in enumerate(items)
    ]
    return TransferLinking(legs=linked, pairs=pairs)


__all__ = [
    "DEFAULT_TRANSFER_KEYWORDS",
    "DEFAULT_POLICY",
    "TransferPolicy",
    "TransferLeg",
    "LinkedLeg",
    "TransferLinking",
    "is_within_days",
    "could_be_internal_transfer",
    "link_internal_transfers",
]
