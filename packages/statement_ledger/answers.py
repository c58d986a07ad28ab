"""Parsing and validation of free-text LLM answers.

Both LLM tiers ask for a labeled answer block::

    Business Name: Swiggy            (vendor tier)
    Category: Food & Dining          (category tier)
    Confidence: 0.9
    Reasoning: ...

Anything missing, blank or outside the allow-list yields ``None`` (a tier
miss); nothing here raises on malformed model output. Confidence values are
clamped or defaulted, never trusted as-is.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from .models import clamp_confidence

VENDOR_DEFAULT_CONFIDENCE = 0.5
CATEGORY_DEFAULT_CONFIDENCE = 0.7
CATEGORY_CONFIDENCE_FLOOR = 0.5
CATEGORY_CONFIDENCE_CEILING = 0.9

_NUMBER_RE = re.compile(r"[-+]?\d*\.?\d+")
# Labels and values tolerate markdown emphasis, e.g. "**Category:** Rent".
_STRIP_CHARS = " \t*_`\"'[]"


def read_label(text: str, label: str) -> str | None:
    """Return the value after ``label:`` on its line, or ``None``."""

    pattern = re.compile(
        rf"{re.escape(label)}[*_]*[ \t]*:[ \t]*(?P<value>[^\n]*)", re.IGNORECASE
    )
    match = pattern.search(text or "")
    if match is None:
        return None
    value = match.group("value").strip(_STRIP_CHARS).rstrip(".").strip(_STRIP_CHARS)
    return value or None


def read_confidence(text: str) -> float | None:
    raw = read_label(text, "Confidence")
    if raw is None:
        return None
    match = _NUMBER_RE.search(raw)
    if match is None:
        return None
    value = float(match.group(0))
    if raw.rstrip().endswith("%"):
        value /= 100.0
    return value


# ---------------------------------------------------------------------------
# Vendor answers
# ---------------------------------------------------------------------------


class VendorAnswer(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    name: str
    confidence: float = VENDOR_DEFAULT_CONFIDENCE
    reasoning: str = ""

    @field_validator("name")
    @classmethod
    def _name_non_empty(cls, v: str) -> str:
        s = " ".join(v.split())
        if not s or s.lower() in {"unknown", "n/a", "none"}:
            raise ValueError("business name missing")
        return s

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return clamp_confidence(v)


def parse_vendor_answer(text: str) -> VendorAnswer | None:
    name = read_label(text, "Business Name")
    if name is None:
        return None
    confidence = read_confidence(text)
    try:
        return VendorAnswer(
            name=name,
            confidence=VENDOR_DEFAULT_CONFIDENCE if confidence is None else confidence,
            reasoning=read_label(text, "Reasoning") or "",
        )
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# Category answers
# ---------------------------------------------------------------------------


class CategoryAnswer(BaseModel):
    """Category answer validated against the known names.

    ``ValidationInfo.context`` carries ``allowed``: the catalog's names. The
    model's spelling is replaced with the canonical one on a case-insensitive
    match.
    """

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    category_name: str
    confidence: float = CATEGORY_DEFAULT_CONFIDENCE
    reasoning: str = ""

    @field_validator("category_name")
    @classmethod
    def _known_category(cls, v: str, info: ValidationInfo) -> str:
        allowed: Sequence[str] = (info.context or {}).get("allowed") or ()
        wanted = " ".join(v.split()).casefold()
        for name in allowed:
            if name.casefold() == wanted:
                return name
        raise ValueError(f"category not in allow-list: {v!r}")

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return clamp_confidence(v, CATEGORY_CONFIDENCE_FLOOR, CATEGORY_CONFIDENCE_CEILING)


def parse_category_answer(text: str, *, allowed: Sequence[str]) -> CategoryAnswer | None:
    name = read_label(text, "Category")
    if name is None:
        return None
    confidence = read_confidence(text)
    try:
        return CategoryAnswer.model_validate(
            {
                "category_name": name,
                "confidence": CATEGORY_DEFAULT_CONFIDENCE if confidence is None else confidence,
                "reasoning": read_label(text, "Reasoning") or "",
            },
            context={"allowed": list(allowed)},
        )
    except ValidationError:
        return None


__all__ = [
    "read_label",
    "read_confidence",
    "VendorAnswer",
    "CategoryAnswer",
    "parse_vendor_answer",
    "parse_category_answer",
]
