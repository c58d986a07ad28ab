"""Static directory of known merchants and their statement descriptors.

The directory is a CSV with columns ``Brand, Category, Subcategory,
Transaction_Descriptor, Registered_Company_Name``; ``Transaction_Descriptor``
holds comma-separated descriptor spellings. A descriptor may end in a
``*[LOCATION]`` or ``*[CITY]`` wildcard (``DMART*[LOCATION]`` matches
``DMART*PUNE``). A bundled default ships with the package.

Matching order for :meth:`VendorDirectory.find_vendor`
------------------------------------------------------
1. exact descriptor                                   confidence 0.98
2. descriptor as a whole-word prefix of the text      0.95
3. wildcard descriptor whose base equals the text's   0.93
4. token Jaccard similarity >= 0.7 (tokens > 2 chars) score, capped at
   0.9 for descriptors and 0.85 for registered company names
"""

from __future__ import annotations

import csv
import re
from collections.abc import Iterable
from dataclasses import dataclass
from importlib import resources
from pathlib import Path

from .logging_setup import get_logger

EXACT_CONFIDENCE = 0.98
PREFIX_CONFIDENCE = 0.95
PATTERN_CONFIDENCE = 0.93
FUZZY_THRESHOLD = 0.7
FUZZY_DESCRIPTOR_CAP = 0.9
FUZZY_COMPANY_CAP = 0.85

_WILDCARDS = ("[LOCATION]", "[CITY]")
_DROP_RE = re.compile(r"[^a-z0-9*\s]")
_WS_RE = re.compile(r"\s+")
_TOKEN_SPLIT_RE = re.compile(r"[\s*]+")

_logger = get_logger("statement_ledger.vendor_directory")

# Directory "category[:subcategory]" (lowercased) -> system category name.
DIRECTORY_CATEGORY_MAP: dict[str, str] = {
    "e-commerce": "Shopping",
    "e-commerce:fashion": "Shopping",
    "e-commerce:electronics": "Shopping",
    "e-commerce:furniture": "Shopping",
    "e-commerce:beauty": "Personal Care",
    "e-commerce:baby products": "Shopping",
    "food delivery": "Food & Dining",
    "food delivery:restaurant": "Food & Dining",
    "food delivery:major platform": "Food & Dining",
    "transportation": "Transportation",
    "transportation:ride-hailing": "Transportation",
    "transportation:bike taxi": "Transportation",
    "transportation:car rental": "Transportation",
    "transportation:bike sharing": "Transportation",
    "healthcare": "Healthcare",
    "healthcare:online pharmacy": "Healthcare",
    "healthcare:diagnostics": "Healthcare",
    "healthcare:telemedicine": "Healthcare",
    "healthcare:fitness": "Healthcare",
    "edtech": "Education",
    "edtech:k-12 education": "Education",
    "edtech:test prep": "Education",
    "edtech:professional courses": "Education",
    "fintech": "Bills & Utilities",
    "fintech:digital wallet": "Bills & Utilities",
    "fintech:payment gateway": "Bills & Utilities",
    "fintech:credit management": "Bills & Utilities",
    "retail": "Shopping",
    "retail:supermarket": "Shopping",
    "retail:hypermarket": "Shopping",
    "retail:electronics": "Shopping",
    "telecom": "Bills & Utilities",
    "telecom:mobile operator": "Bills & Utilities",
    "entertainment": "Entertainment",
    "streaming": "Entertainment",
    "gaming": "Entertainment",
    "travel": "Travel",
    "hospitality": "Travel",
    "airlines": "Travel",
}


def normalize_text(text: str) -> str:
    s = _DROP_RE.sub("", text.lower())
    return _WS_RE.sub(" ", s).strip()


def _tokens(text: str) -> frozenset[str]:
    return frozenset(t for t in _TOKEN_SPLIT_RE.split(text) if len(t) > 2)


def _jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


@dataclass(frozen=True, slots=True)
class VendorRecord:
    brand: str
    category: str
    subcategory: str
    descriptors: tuple[str, ...]
    registered_company_name: str


@dataclass(frozen=True, slots=True)
class VendorMatch:
    brand: str
    category: str
    subcategory: str
    confidence: float
    matched_descriptor: str
    method: str


class VendorDirectory:
    """In-memory descriptor index built once from directory records."""

    def __init__(self, records: Iterable[VendorRecord]) -> None:
        self._records: list[VendorRecord] = list(records)
        self._exact: dict[str, VendorRecord] = {}
        # (normalized descriptor, record), longest first so prefixes prefer specificity
        self._prefixes: list[tuple[str, VendorRecord]] = []
        self._patterns: list[tuple[str, str, VendorRecord]] = []
        self._fuzzy: list[tuple[frozenset[str], str, float, VendorRecord]] = []

        for rec in self._records:
            for desc in rec.descriptors:
                if any(w in desc.upper() for w in _WILDCARDS):
                    base = normalize_text(desc.split("*", 1)[0])
                    if base:
                        self._patterns.append((base, desc, rec))
                    continue
                norm = normalize_text(desc)
                if not norm:
                    continue
                self._exact.setdefault(norm, rec)
                self._prefixes.append((norm, rec))
                self._fuzzy.append((_tokens(norm), desc, FUZZY_DESCRIPTOR_CAP, rec))
            company = normalize_text(rec.registered_company_name)
            if company:
                self._fuzzy.append(
                    (_tokens(company), rec.registered_company_name, FUZZY_COMPANY_CAP, rec)
                )
        self._prefixes.sort(key=lambda p: len(p[0]), reverse=True)

    # ---- Construction ------------------------------------------------------

    @classmethod
    def from_csv(cls, path: Path) -> VendorDirectory:
        with path.open("r", encoding="utf-8", newline="") as f:
            directory = cls(_read_records(f))
        _logger.info(
            "vendor_directory:loaded path=%s vendors=%d", path.name, len(directory)
        )
        return directory

    @classmethod
    def bundled(cls) -> VendorDirectory:
        source = resources.files("statement_ledger").joinpath("data/vendor_directory.csv")
        with resources.as_file(source) as path:
            return cls.from_csv(path)

    def __len__(self) -> int:
        return len(self._records)

    # ---- Lookup ------------------------------------------------------------

    def find_vendor(self, text: str) -> VendorMatch | None:
        norm = normalize_text(text)
        if not norm:
            return None
        return (
            self._find_exact(norm)
            or self._find_prefix(norm)
            or self._find_pattern(norm)
            or self._find_fuzzy(norm)
        )

    def _find_exact(self, norm: str) -> VendorMatch | None:
        rec = self._exact.get(norm)
        if rec is None:
            return None
        return _match(rec, EXACT_CONFIDENCE, norm, "exact")

    def _find_prefix(self, norm: str) -> VendorMatch | None:
        for desc, rec in self._prefixes:
            if len(desc) < 3 or not norm.startswith(desc):
                continue
            nxt = norm[len(desc) : len(desc) + 1]
            if nxt and nxt.isalnum():
                continue
            return _match(rec, PREFIX_CONFIDENCE, desc, "prefix")
        return None

    def _find_pattern(self, norm: str) -> VendorMatch | None:
        if "*" not in norm:
            return None
        base = norm.split("*", 1)[0].strip()
        for pattern_base, desc, rec in self._patterns:
            if pattern_base == base:
                return _match(rec, PATTERN_CONFIDENCE, desc, "pattern")
        return None

    def _find_fuzzy(self, norm: str) -> VendorMatch | None:
        tokens = _tokens(norm)
        best: VendorMatch | None = None
        best_score = 0.0
        for cand_tokens, desc, cap, rec in self._fuzzy:
            score = _jaccard(tokens, cand_tokens)
            if score >= FUZZY_THRESHOLD and score > best_score:
                best_score = score
                best = _match(rec, min(cap, score), desc, "fuzzy")
        return best


def _match(rec: VendorRecord, confidence: float, descriptor: str, method: str) -> VendorMatch:
    return VendorMatch(
        brand=rec.brand,
        category=rec.category,
        subcategory=rec.subcategory,
        confidence=confidence,
        matched_descriptor=descriptor,
        method=method,
    )


def _read_records(lines: Iterable[str]) -> list[VendorRecord]:
    reader = csv.DictReader(lines)
    required = {"Brand", "Category", "Transaction_Descriptor"}
    missing = required - set(reader.fieldnames or ())
    if missing:
        raise ValueError(f"vendor directory is missing columns: {', '.join(sorted(missing))}")
    out: list[VendorRecord] = []
    for row in reader:
        brand = (row.get("Brand") or "").strip()
        if not brand:
            continue
        descriptors = tuple(
            d.strip() for d in (row.get("Transaction_Descriptor") or "").split(",") if d.strip()
        )
        out.append(
            VendorRecord(
                brand=brand,
                category=(row.get("Category") or "").strip(),
                subcategory=(row.get("Subcategory") or "").strip(),
                descriptors=descriptors,
                registered_company_name=(row.get("Registered_Company_Name") or "").strip(),
            )
        )
    return out


def system_category_for(match: VendorMatch) -> str | None:
    """Map a directory match to a system category name, if one is known."""

    category = match.category.strip().lower()
    if match.subcategory.strip():
        specific = DIRECTORY_CATEGORY_MAP.get(f"{category}:{match.subcategory.strip().lower()}")
        if specific is not None:
            return specific
    return DIRECTORY_CATEGORY_MAP.get(category)


__all__ = [
    "DIRECTORY_CATEGORY_MAP",
    "VendorDirectory",
    "VendorMatch",
    "VendorRecord",
    "normalize_text",
    "system_category_for",
]
