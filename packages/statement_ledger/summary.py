"""Ledger summaries: income/expense totals and a payment-method breakdown.

Internal transfers count toward ``total_transactions`` and the transfer
total but never toward income or expenses. Payment methods are guessed from
the resolved vendor name plus the original descriptor.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal

from .models import CanonicalTransaction

type PaymentMethod = Literal["upi", "card", "bank_transfer", "other"]

PAYMENT_METHODS: tuple[PaymentMethod, ...] = ("upi", "card", "bank_transfer", "other")

_UPI_HANDLES = ("ybl", "paytm", "phonepe", "okaxis", "ibl", "axl", "icici", "hdfc")
_UPI_RE = re.compile(
    r"^upi[-:*/]|\bupi[:*]|\b(paytm|phonepe|googlepay|gpay|yespay)\b"
    rf"|@({'|'.join(_UPI_HANDLES)})",
    re.IGNORECASE,
)
_BANK_TRANSFER_RE = re.compile(
    r"\b(neft|imps|rtgs|ach|ecs|nach|bank transfer|wire transfer)\b", re.IGNORECASE
)
_CARD_RE = re.compile(
    r"\b(razor\w*|payu|billdesk|ccavenue|cashfree|instamojo|pos|atm|withdrawal|cash"
    r"|amazon|flipkart|swiggy|zomato|myntra|ajio|bigbasket|blinkit|zepto|netflix"
    r"|spotify|uber|ola)\b",
    re.IGNORECASE,
)
_CARD_WORDS_RE = re.compile(r"\b(credit|debit) card\b", re.IGNORECASE)
# Gateway prefixes such as "RAZORPAY*" or long card-terminal references.
_CARD_DESCRIPTOR_RE = re.compile(r"^([A-Z]{4,}\*|POS\b|(?=[A-Z0-9*#]*[0-9*#])[A-Z0-9*#]{8,})")


def detect_payment_method(vendor_name: str, original_vendor_name: str = "") -> PaymentMethod:
    combined = f"{vendor_name} {original_vendor_name}"
    if _UPI_RE.search(vendor_name) or _UPI_RE.search(original_vendor_name):
        return "upi"
    if _BANK_TRANSFER_RE.search(combined):
        return "bank_transfer"
    if _CARD_RE.search(combined):
        return "card"
    if _CARD_WORDS_RE.search(combined) and "payment" not in combined.lower():
        return "card"
    if _CARD_DESCRIPTOR_RE.match(original_vendor_name.strip()):
        return "card"
    return "other"


@dataclass(slots=True)
class MethodTotals:
    count: int = 0
    amount: Decimal = Decimal("0.00")


@dataclass(slots=True)
class LedgerSummary:
    total_transactions: int = 0
    total_income: Decimal = Decimal("0.00")
    total_expenses: Decimal = Decimal("0.00")
    internal_transfers: Decimal = Decimal("0.00")
    payment_methods: dict[PaymentMethod, MethodTotals] = field(
        default_factory=lambda: {m: MethodTotals() for m in PAYMENT_METHODS}
    )

    @property
    def net_balance(self) -> Decimal:
        return self.total_income - self.total_expenses


def summarize_transactions(transactions: Iterable[CanonicalTransaction]) -> LedgerSummary:
    summary = LedgerSummary()
    for tx in transactions:
        summary.total_transactions += 1
        method = summary.payment_methods[
            detect_payment_method(tx.vendor_name, tx.vendor_name_original)
        ]
        method.count += 1
        method.amount += tx.amount
        if tx.is_internal_transfer:
            summary.internal_transfers += tx.amount
        elif tx.type == "CREDIT":
            summary.total_income += tx.amount
        else:
            summary.total_expenses += tx.amount
    return summary


__all__ = [
    "PAYMENT_METHODS",
    "PaymentMethod",
    "MethodTotals",
    "LedgerSummary",
    "detect_payment_method",
    "summarize_transactions",
]
