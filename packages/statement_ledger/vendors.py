"""Vendor name resolution: raw statement descriptor -> clean brand name.

Public API:
    - :class:`VendorResolver` (``resolve``, ``resolve_many``, ``learn``)
    - :func:`clean_vendor_text`

Tiers, first hit wins:

1. ``cache``: best stored mapping for the descriptor.
2. ``llm``: web-search grounded classification; a timeout, an error or an
   answer without a usable ``Business Name`` is a miss.
3. ``fallback``: mechanical cleanup of the descriptor at confidence 0.2.

Results of tiers 2 and 3 are written back to the cache in global scope so
the next lookup of the same descriptor stops at tier 1.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from .answers import parse_vendor_answer
from .cascade import Found, NotFound, Tier, run_cascade
from .errors import ClassifierError, StoreError
from .llm import LlmClassifier
from .logging_setup import get_logger
from .mapping_cache import LearnOutcome, MappingCache
from .models import VendorResolution
from .pmap import p_map_settled
from .prompting import build_vendor_prompt

CACHE_DEFAULT_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.2

_RAIL_PREFIX_RE = re.compile(r"^(UPI|NEFT|IMPS|RTGS)[:\-/\s]*", re.IGNORECASE)
_LONG_DIGITS_RE = re.compile(r"\d{4,}")
_GATEWAY_RE = re.compile(r"\b(RAZOR|PAYU|BILLDESK|CCAVENUE)\w*", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")

_logger = get_logger("statement_ledger.vendors")


def clean_vendor_text(text: str) -> str:
    """Strip payment-rail noise from a descriptor.

    ``"UPI-RAZORPAY*SWIGGY 99812345"`` becomes ``"SWIGGY"``. Falls back to the
    trimmed input when nothing is left.
    """

    s = _RAIL_PREFIX_RE.sub("", text.strip())
    s = s.replace("*", " ")
    s = _LONG_DIGITS_RE.sub(" ", s)
    s = _GATEWAY_RE.sub(" ", s)
    s = _WS_RE.sub(" ", s).strip(" -:/")
    return s or text.strip()


@dataclass(frozen=True, slots=True)
class VendorRequest:
    text: str
    amount: Decimal | None = None
    date: date | None = None


@dataclass(frozen=True, slots=True)
class VendorBatchStats:
    total: int = 0
    resolved: int = 0
    failed: int = 0
    cached: int = 0
    ai_resolved: int = 0


@dataclass(frozen=True, slots=True)
class VendorBatchResult:
    # One entry per request, in request order; ``None`` where resolution failed.
    results: list[VendorResolution | None] = field(default_factory=list)
    stats: VendorBatchStats = field(default_factory=VendorBatchStats)
    errors: list[str] = field(default_factory=list)


class VendorResolver:
    def __init__(self, cache: MappingCache, classifier: LlmClassifier | None = None) -> None:
        self._cache = cache
        self._classifier = classifier

    def resolve(
        self,
        text: str,
        *,
        user_id: str | None = None,
        amount: Decimal | None = None,
        date: date | None = None,
    ) -> VendorResolution:
        if not text or not text.strip():
            raise ValueError("vendor text must be non-empty")

        tiers: list[Tier[VendorResolution]] = [
            Tier("cache", lambda: self._from_cache(text, user_id)),
            Tier("llm", lambda: self._from_llm(text, amount, date)),
            Tier("fallback", lambda: self._from_cleanup(text)),
        ]
        hit = run_cascade(tiers, label="vendors")
        if hit is None:
            # The fallback tier never misses.
            raise RuntimeError("vendor cascade produced no result")
        result = hit.value
        if hit.tier != "cache":
            self._write_back(text, result)
        _logger.debug(
            "vendors:resolved tier=%s confidence=%.2f", result.tier, result.confidence
        )
        return result

    def resolve_many(
        self,
        requests: Sequence[VendorRequest | str],
        *,
        user_id: str | None = None,
        concurrency: int = 4,
    ) -> VendorBatchResult:
        """Resolve many descriptors with bounded concurrency.

        Each item is independent: one failure is reported in ``errors`` and
        leaves a ``None`` in its slot without affecting the others.
        """

        items = [r if isinstance(r, VendorRequest) else VendorRequest(text=r) for r in requests]
        outcomes = p_map_settled(
            items,
            lambda r: self.resolve(r.text, user_id=user_id, amount=r.amount, date=r.date),
            concurrency=concurrency,
        )

        results: list[VendorResolution | None] = []
        errors: list[str] = []
        cached = ai_resolved = 0
        for req, outcome in zip(items, outcomes):
            if not outcome.ok or outcome.value is None:
                results.append(None)
                errors.append(f"{req.text!r}: {outcome.error}")
                continue
            results.append(outcome.value)
            if outcome.value.tier == "cache":
                cached += 1
            elif outcome.value.tier == "llm":
                ai_resolved += 1

        stats = VendorBatchStats(
            total=len(items),
            resolved=len(items) - len(errors),
            failed=len(errors),
            cached=cached,
            ai_resolved=ai_resolved,
        )
        _logger.info(
            "vendors:batch_done total=%d resolved=%d failed=%d cached=%d ai=%d",
            stats.total,
            stats.resolved,
            stats.failed,
            stats.cached,
            stats.ai_resolved,
        )
        return VendorBatchResult(results=results, stats=stats, errors=errors)

    def learn(self, text: str, corrected_name: str, user_id: str) -> LearnOutcome | None:
        return self._cache.learn_from_user_correction(
            text, corrected_name, user_id, label=corrected_name
        )

    def _write_back(self, text: str, result: VendorResolution) -> None:
        try:
            self._cache.cache_mapping(
                text,
                result.resolved_name,
                result.confidence,
                result.source,
                label=result.resolved_name,
            )
        except StoreError as e:
            _logger.warning("vendors:cache_write_failed tier=%s error=%s", result.tier, e)

    # ---- Tiers -------------------------------------------------------------

    def _from_cache(self, text: str, user_id: str | None) -> Found[VendorResolution] | NotFound:
        rec = self._cache.get_best_mapping(text, user_id)
        if rec is None:
            return NotFound("no mapping")
        return Found(
            VendorResolution(
                original_text=text,
                resolved_name=rec.resolved_value,
                confidence=(
                    CACHE_DEFAULT_CONFIDENCE if rec.confidence is None else rec.confidence
                ),
                source=rec.source,
                tier="cache",
                reasoning="Previously resolved mapping",
            )
        )

    def _from_llm(
        self, text: str, amount: Decimal | None, date_: date | None
    ) -> Found[VendorResolution] | NotFound:
        if self._classifier is None:
            return NotFound("no classifier")
        prompt = build_vendor_prompt(text, amount=amount, date_=date_)
        try:
            reply = self._classifier.complete(prompt, web_search=True)
        except ClassifierError as e:
            _logger.info("vendors:llm_miss code=%s", e.code)
            return NotFound(e.code)
        answer = parse_vendor_answer(reply.text)
        if answer is None:
            return NotFound("unparseable answer")
        return Found(
            VendorResolution(
                original_text=text,
                resolved_name=answer.name,
                confidence=answer.confidence,
                source="llm",
                tier="llm",
                reasoning=answer.reasoning,
                sources=reply.sources,
            )
        )

    def _from_cleanup(self, text: str) -> Found[VendorResolution]:
        return Found(
            VendorResolution(
                original_text=text,
                resolved_name=clean_vendor_text(text),
                confidence=FALLBACK_CONFIDENCE,
                source="pattern",
                tier="fallback",
                reasoning="Cleaned descriptor text",
            )
        )


__all__ = [
    "VendorResolver",
    "VendorRequest",
    "VendorBatchStats",
    "VendorBatchResult",
    "clean_vendor_text",
]
