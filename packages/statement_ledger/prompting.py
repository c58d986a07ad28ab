"""Prompt construction for the two LLM tiers.

Prompts are plain text ending in the labeled answer format that
:mod:`statement_ledger.answers` parses. Transaction context is appended only
when known.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal


def _context_lines(
    *,
    amount: Decimal | None = None,
    date_: date | None = None,
    type_: str | None = None,
    description: str | None = None,
) -> list[str]:
    lines: list[str] = []
    if amount is not None:
        lines.append(f"- Amount: {amount}")
    if type_:
        lines.append(f"- Direction: {type_}")
    if date_ is not None:
        lines.append(f"- Date: {date_.isoformat()}")
    if description:
        lines.append(f"- Statement description: {description}")
    return lines


def build_vendor_prompt(
    text: str, *, amount: Decimal | None = None, date_: date | None = None
) -> str:
    """Ask for the consumer-facing brand behind a statement descriptor."""

    parts = [
        "You identify merchants from bank and card statement descriptors.",
        "Strip payment gateway and rail markers (UPI, NEFT, IMPS, RAZOR*, PAYU*, "
        "BILLDESK) and look up the underlying business. Prefer the brand customers "
        "know over the registered company name.",
        "",
        f'Descriptor: "{text}"',
    ]
    ctx = _context_lines(amount=amount, date_=date_)
    if ctx:
        parts += ["Context:", *ctx]
    parts += [
        "",
        "Answer in exactly this format:",
        "Business Name: <brand name>",
        "Confidence: <number between 0.0 and 1.0>",
        "Reasoning: <one sentence>",
    ]
    return "\n".join(parts)


def build_category_prompt(
    vendor_name: str,
    *,
    category_names: Sequence[str],
    amount: Decimal | None = None,
    type_: str | None = None,
    description: str | None = None,
) -> str:
    """Ask for one category drawn from ``category_names``."""

    parts = [
        "You categorize personal finance transactions.",
        "Choose exactly one category from the list. Do not invent categories; "
        'when unsure choose "Other".',
        "",
        f"Vendor: {vendor_name}",
        *_context_lines(amount=amount, type_=type_, description=description),
        "",
        "Categories:",
        *(f"- {name}" for name in category_names),
        "",
        "Answer in exactly this format:",
        "Category: <one category from the list>",
        "Confidence: <number between 0.0 and 1.0>",
        "Reasoning: <one sentence>",
    ]
    return "\n".join(parts)


__all__ = ["build_vendor_prompt", "build_category_prompt"]
