"""Category resolution for a resolved vendor name.

Public API:
    - :class:`CategoryResolver` (``resolve``, ``learn``)

Tiers, first hit wins:

1. ``cache``: best stored mapping for the vendor name (0.9 when the stored
   record carries no confidence).
2. ``directory``: static vendor directory match mapped to a system
   category, at 0.95.
3. ``rules``: first pattern rule that fires and names a known category.
4. ``llm``: model constrained to the catalog's names; its confidence is
   clamped to [0.5, 0.9] and an unknown name is a miss.

Every hit from tiers 2 to 4 is written back to the category cache in global
scope. ``resolve`` returns ``None`` only when every tier misses.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from .answers import parse_category_answer
from .cascade import Found, NotFound, Tier, run_cascade
from .categories import CategoryCatalog
from .errors import ClassifierError, StoreError
from .llm import LlmClassifier
from .logging_setup import get_logger
from .mapping_cache import LearnOutcome, MappingCache
from .models import CategoryResolution
from .prompting import build_category_prompt
from .rules import DEFAULT_RULES, PatternRule, match_rules
from .vendor_directory import VendorDirectory, system_category_for

CACHE_DEFAULT_CONFIDENCE = 0.9
DIRECTORY_CONFIDENCE = 0.95

_logger = get_logger("statement_ledger.categorize")


class CategoryResolver:
    def __init__(
        self,
        cache: MappingCache,
        catalog: CategoryCatalog,
        directory: VendorDirectory | None = None,
        rules: Sequence[PatternRule] = DEFAULT_RULES,
        classifier: LlmClassifier | None = None,
    ) -> None:
        self._cache = cache
        self._catalog = catalog
        self._directory = directory
        self._rules = tuple(rules)
        self._classifier = classifier

    @property
    def catalog(self) -> CategoryCatalog:
        return self._catalog

    def resolve(
        self,
        vendor_name: str,
        amount: Decimal,
        type_: str,
        *,
        user_id: str | None = None,
        description: str | None = None,
    ) -> CategoryResolution | None:
        if not vendor_name or not vendor_name.strip():
            raise ValueError("vendor_name must be non-empty")

        tiers: list[Tier[CategoryResolution]] = [
            Tier("cache", lambda: self._from_cache(vendor_name, user_id)),
            Tier("directory", lambda: self._from_directory(vendor_name, description)),
            Tier("rules", lambda: self._from_rules(vendor_name, amount, type_, description)),
            Tier("llm", lambda: self._from_llm(vendor_name, amount, type_, description)),
        ]
        hit = run_cascade(tiers, label="categorize")
        if hit is None:
            _logger.info("categorize:no_category")
            return None

        result = hit.value
        if hit.tier != "cache":
            self._write_back(vendor_name, result)
        return result

    def learn(self, vendor_name: str, category_id: int, user_id: str) -> LearnOutcome | None:
        """Record a user's category choice; raises ``ValueError`` for unknown ids."""

        record = self._catalog.by_id(category_id)
        if record is None:
            raise ValueError(f"unknown category id: {category_id!r}")
        return self._cache.learn_from_user_correction(
            vendor_name, str(record.id), user_id, label=record.name
        )

    def _write_back(self, vendor_name: str, result: CategoryResolution) -> None:
        try:
            self._cache.cache_mapping(
                vendor_name,
                str(result.category_id),
                result.confidence,
                result.source,
                label=result.category_name,
            )
        except StoreError as e:
            _logger.warning("categorize:cache_write_failed tier=%s error=%s", result.tier, e)

    # ---- Tiers -------------------------------------------------------------

    def _from_cache(
        self, vendor_name: str, user_id: str | None
    ) -> Found[CategoryResolution] | NotFound:
        rec = self._cache.get_best_mapping(vendor_name, user_id)
        if rec is None:
            return NotFound("no mapping")
        category = self._catalog.by_id(rec.resolved_value)
        if category is None:
            # Mapped to a category that no longer exists (or is user-owned).
            return NotFound("stale mapping")
        return Found(
            CategoryResolution(
                category_id=category.id,
                category_name=category.name,
                confidence=(
                    CACHE_DEFAULT_CONFIDENCE if rec.confidence is None else rec.confidence
                ),
                source=rec.source,
                tier="cache",
                reasoning="Previously categorized vendor",
            )
        )

    def _from_directory(
        self, vendor_name: str, description: str | None
    ) -> Found[CategoryResolution] | NotFound:
        if self._directory is None:
            return NotFound("no directory")
        match = self._directory.find_vendor(vendor_name)
        if match is None and description:
            match = self._directory.find_vendor(description)
        if match is None:
            return NotFound("not in directory")
        name = system_category_for(match)
        category = self._catalog.by_name(name) if name else None
        if category is None:
            return NotFound(f"unmapped directory category {match.category!r}")
        return Found(
            CategoryResolution(
                category_id=category.id,
                category_name=category.name,
                confidence=DIRECTORY_CONFIDENCE,
                source="pattern",
                tier="directory",
                reasoning=f"Known vendor {match.brand} ({match.method} match)",
            )
        )

    def _from_rules(
        self, vendor_name: str, amount: Decimal, type_: str, description: str | None
    ) -> Found[CategoryResolution] | NotFound:
        text = " ".join(p for p in (vendor_name, description) if p).lower()
        rule = match_rules(self._rules, text, amount, type_, allowed=self._catalog.names())
        if rule is None:
            return NotFound("no rule matched")
        category = self._catalog.by_name(rule.category)
        if category is None:
            return NotFound(f"rule category {rule.category!r} not in catalog")
        return Found(
            CategoryResolution(
                category_id=category.id,
                category_name=category.name,
                confidence=rule.confidence,
                source="pattern",
                tier="rules",
                reasoning=rule.reasoning,
            )
        )

    def _from_llm(
        self, vendor_name: str, amount: Decimal, type_: str, description: str | None
    ) -> Found[CategoryResolution] | NotFound:
        if self._classifier is None:
            return NotFound("no classifier")
        names = self._catalog.names()
        if not names:
            return NotFound("empty catalog")
        prompt = build_category_prompt(
            vendor_name,
            category_names=names,
            amount=amount,
            type_=type_,
            description=description,
        )
        try:
            reply = self._classifier.complete(prompt)
        except ClassifierError as e:
            _logger.info("categorize:llm_miss code=%s", e.code)
            return NotFound(e.code)
        answer = parse_category_answer(reply.text, allowed=names)
        category = self._catalog.by_name(answer.category_name) if answer else None
        if answer is None or category is None:
            return NotFound("answer outside catalog")
        return Found(
            CategoryResolution(
                category_id=category.id,
                category_name=category.name,
                confidence=answer.confidence,
                source="llm",
                tier="llm",
                reasoning=answer.reasoning,
            )
        )


__all__ = ["CategoryResolver", "CACHE_DEFAULT_CONFIDENCE", "DIRECTORY_CONFIDENCE"]
