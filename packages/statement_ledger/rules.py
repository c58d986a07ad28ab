"""Ordered keyword/amount heuristics that guess a category.

Rules are data: each :class:`PatternRule` carries a predicate over
``(text, amount, type)``, the system category it votes for, a fixed
confidence and a short reasoning string. :func:`match_rules` returns the
first rule that fires, so list order is priority order.

Keywords match on word boundaries against the lowercased vendor name plus
the raw description, which keeps short tokens such as ``hp`` or ``lic`` from
firing inside unrelated words.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

type RulePredicate = Callable[[str, Decimal, str], bool]


@dataclass(frozen=True, slots=True)
class PatternRule:
    name: str
    predicate: RulePredicate
    category: str
    confidence: float
    reasoning: str


def _words(*words: str) -> re.Pattern[str]:
    alternation = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


def keywords(*words: str) -> RulePredicate:
    pattern = _words(*words)
    return lambda text, _amount, _type: pattern.search(text) is not None


def keywords_with_amount(
    *words: str,
    min_amount: Decimal | None = None,
    max_amount: Decimal | None = None,
    min_exclusive: bool = False,
    tx_type: str | None = None,
) -> RulePredicate:
    pattern = _words(*words)

    def _predicate(text: str, amount: Decimal, type_: str) -> bool:
        if tx_type is not None and type_ != tx_type:
            return False
        if min_amount is not None:
            if amount < min_amount or (min_exclusive and amount == min_amount):
                return False
        if max_amount is not None and amount > max_amount:
            return False
        return pattern.search(text) is not None

    return _predicate


DEFAULT_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        "fuel",
        keywords("petrol", "fuel", "diesel", "bp", "hp", "ioc", "bpcl", "hpcl", "indian oil"),
        "Transportation",
        0.95,
        "Fuel station keywords",
    ),
    PatternRule(
        "ride_hailing",
        keywords_with_amount(
            "uber", "ola", "rapido", "taxi", "cab", "auto",
            min_amount=Decimal("20"),
            max_amount=Decimal("1000"),
        ),
        "Transportation",
        0.9,
        "Ride-hailing vendor within a typical fare range",
    ),
    PatternRule(
        "healthcare",
        keywords(
            "hospital", "clinic", "pharmacy", "medical", "doctor", "diagnostic",
            "diagnostics", "lab", "apollo", "fortis", "medplus", "netmeds",
        ),
        "Healthcare",
        0.95,
        "Healthcare provider keywords",
    ),
    PatternRule(
        "food",
        keywords(
            "restaurant", "cafe", "hotel", "food", "pizza", "burger", "biryani",
            "kitchen", "dhaba",
        ),
        "Food & Dining",
        0.85,
        "Restaurant and food keywords",
    ),
    PatternRule(
        "bills",
        keywords(
            "electricity", "water", "gas", "internet", "broadband", "mobile", "recharge",
            "bill", "jio", "airtel", "vodafone", "bsnl",
        ),
        "Bills & Utilities",
        0.9,
        "Utility or telecom keywords",
    ),
    PatternRule(
        "education",
        keywords(
            "school", "college", "university", "education", "tuition", "fees", "course",
            "training",
        ),
        "Education",
        0.9,
        "Education keywords",
    ),
    PatternRule(
        "entertainment",
        keywords("movie", "cinema", "pvr", "inox", "netflix", "hotstar", "spotify", "game",
                 "bowling"),
        "Entertainment",
        0.85,
        "Entertainment keywords",
    ),
    PatternRule(
        "shopping",
        keywords_with_amount(
            "mall", "store", "mart", "bazaar", "market",
            min_amount=Decimal("500"),
            min_exclusive=True,
            tx_type="DEBIT",
        ),
        "Shopping",
        0.8,
        "Retail keywords on a larger purchase",
    ),
    PatternRule(
        "cash_and_transfers",
        keywords("atm", "withdrawal", "transfer", "neft", "imps", "rtgs"),
        "Other",
        0.7,
        "Cash withdrawal or bank transfer",
    ),
    PatternRule(
        "rent",
        keywords_with_amount(
            "rent", "lease", "landlord", "society", "maintenance", min_amount=Decimal("5000")
        ),
        "Rent",
        0.85,
        "Rent keywords on a large amount",
    ),
    PatternRule(
        "insurance",
        keywords(
            "insurance", "lic", "policy", "premium", "icici lombard", "hdfc ergo",
            "bajaj allianz",
        ),
        "Insurance",
        0.9,
        "Insurance keywords",
    ),
    PatternRule(
        "investments",
        keywords(
            "mutual fund", "sip", "stock", "trading", "zerodha", "groww", "upstox",
            "investment",
        ),
        "Investments",
        0.9,
        "Investment platform keywords",
    ),
)


def match_rules(
    rules: Sequence[PatternRule],
    text: str,
    amount: Decimal,
    type_: str,
    *,
    allowed: Iterable[str] | None = None,
) -> PatternRule | None:
    """Return the first rule that fires, skipping rules outside ``allowed``."""

    allowed_set = set(allowed) if allowed is not None else None
    for rule in rules:
        if allowed_set is not None and rule.category not in allowed_set:
            continue
        if rule.predicate(text, amount, type_):
            return rule
    return None


__all__ = [
    "PatternRule",
    "RulePredicate",
    "DEFAULT_RULES",
    "keywords",
    "keywords_with_amount",
    "match_rules",
]
