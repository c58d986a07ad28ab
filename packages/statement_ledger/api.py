"""Public API for the ``statement_ledger`` package.

:class:`LedgerService` wires the stores, caches, resolvers and processor
together and is the surface used by the CLI (and by any web layer). Methods
that can fail for caller-visible reasons return a :class:`ServiceResult`
instead of raising; the ``error.code`` values are:

``MISSING_API_KEY``, ``PARSING_FAILED``, ``VENDOR_RESOLUTION_FAILED``,
``NO_CATEGORY_FOUND``, ``CATEGORIZATION_FAILED``, ``PROCESSING_FAILED`` and
``VALIDATION_ERROR``.

``process_file_transactions`` and ``detect_and_link_internal_transfers``
return their result objects directly: per-item problems already travel in
``errors``.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Generic, Literal, TypeVar

from pydantic import ValidationError

from .categories import CategoryCatalog
from .categorize import CategoryResolver
from .errors import FingerprintError, ParserError, StoreError
from .ingest import IngestResult, StatementIngestor
from .llm import LlmClassifier, OpenAIClassifier
from .logging_setup import get_logger
from .mapping_cache import (
    HIGH_CONFIDENCE,
    LearnOutcome,
    MappingCache,
    category_mapping_cache,
    vendor_mapping_cache,
)
from .models import (
    CanonicalTransaction,
    CategoryResolution,
    MappingStats,
    ParsedStatement,
    VendorResolution,
    to_amount,
)
from .persistence import (
    SqlCategorySource,
    SqlLedgerStore,
    category_mapping_store,
    vendor_mapping_store,
)
from .pmap import p_map_settled
from .ports import LedgerStore, StatementParser
from .processor import LinkResult, ProcessingResult, TransactionProcessor
from .settings import LedgerSettings
from .vendor_directory import VendorDirectory
from .vendors import VendorBatchResult, VendorRequest, VendorResolver

T = TypeVar("T")

MAX_CATEGORIZE_BATCH = 50
MAX_VENDOR_BATCH = 100
AUTO_APPLY_CONFIDENCE = HIGH_CONFIDENCE
# Resolved vendor names replace the ledger label only above this confidence.
VENDOR_APPLY_CONFIDENCE = 0.6

_logger = get_logger("statement_ledger.api")


# ---------------------------
# Result envelope
# ---------------------------


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    code: str
    message: str


@dataclass(frozen=True, slots=True)
class ServiceResult(Generic[T]):
    success: bool
    data: T | None = None
    error: ErrorInfo | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: T, **meta: Any) -> ServiceResult[T]:
        return cls(success=True, data=data, meta=meta)

    @classmethod
    def fail(cls, code: str, message: str) -> ServiceResult[T]:
        return cls(success=False, error=ErrorInfo(code=code, message=message))


# ---------------------------
# Operation payloads
# ---------------------------


@dataclass(frozen=True, slots=True)
class CategorySuggestion:
    transaction_id: int
    vendor_name: str
    current_category_id: int | None
    resolution: CategoryResolution | None
    applied: bool = False
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CategorizationBatch:
    suggestions: list[CategorySuggestion]
    applied: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class VendorSuggestion:
    transaction_id: int
    original_text: str
    current_vendor_name: str
    resolution: VendorResolution | None
    applied: bool = False
    error: str | None = None


@dataclass(frozen=True, slots=True)
class VendorApplyBatch:
    suggestions: list[VendorSuggestion]
    applied: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class StatementOutcome:
    file_id: int
    ingest: IngestResult
    processing: ProcessingResult
    linking: LinkResult


# ---------------------------
# Service
# ---------------------------


class LedgerService:
    """Facade over the pipeline.

    Build with :meth:`from_settings` for the SQL-backed stack, or pass the
    collaborators directly (tests use in-memory stores).
    """

    def __init__(
        self,
        *,
        store: LedgerStore,
        vendor_cache: MappingCache,
        category_cache: MappingCache,
        catalog: CategoryCatalog,
        directory: VendorDirectory | None = None,
        classifier: LlmClassifier | None = None,
        parser: StatementParser | None = None,
        settings: LedgerSettings | None = None,
    ) -> None:
        self._settings = settings or LedgerSettings()
        self._store = store
        self._vendor_cache = vendor_cache
        self._category_cache = category_cache
        self._catalog = catalog
        self._parser = parser
        self.vendors = VendorResolver(vendor_cache, classifier)
        self.categories = CategoryResolver(
            category_cache, catalog, directory=directory, classifier=classifier
        )
        self.processor = TransactionProcessor(
            store,
            policy=self._settings.transfer_policy,
            concurrency=self._settings.max_workers,
        )
        self.ingestor = StatementIngestor(
            store,
            policy=self._settings.transfer_policy,
            concurrency=self._settings.max_workers,
        )

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        *,
        parser: StatementParser | None = None,
        classifier: LlmClassifier | None = None,
    ) -> LedgerService:
        url = settings.database_url
        directory = (
            VendorDirectory.from_csv(settings.vendor_directory_path)
            if settings.vendor_directory_path is not None
            else VendorDirectory.bundled()
        )
        if classifier is None and os.getenv("OPENAI_API_KEY"):
            classifier = OpenAIClassifier(
                model=settings.llm_model, timeout_sec=settings.llm_timeout_sec
            )
        if classifier is None:
            _logger.info("api:llm_disabled reason=no_api_key")
        return cls(
            store=SqlLedgerStore(url),
            vendor_cache=vendor_mapping_cache(vendor_mapping_store(url)),
            category_cache=category_mapping_cache(category_mapping_store(url)),
            catalog=CategoryCatalog(SqlCategorySource(url)),
            directory=directory,
            classifier=classifier,
            parser=parser,
            settings=settings,
        )

    @property
    def catalog(self) -> CategoryCatalog:
        return self._catalog

    @property
    def store(self) -> LedgerStore:
        return self._store

    # ---- Processing --------------------------------------------------------

    def process_file_transactions(self, file_id: int, user_id: str) -> ProcessingResult:
        return self.processor.process_file_transactions(file_id, user_id)

    def detect_and_link_internal_transfers(self, user_id: str) -> LinkResult:
        return self.processor.detect_and_link_internal_transfers(user_id)

    def ingest_statement(
        self, file_id: int, user_id: str, statement: ParsedStatement | dict[str, Any]
    ) -> ServiceResult[IngestResult]:
        try:
            result = self.ingestor.ingest(file_id, user_id, statement)
        except (ValidationError, FingerprintError) as e:
            return ServiceResult.fail("VALIDATION_ERROR", str(e))
        return ServiceResult.ok(result)

    def process_statement(
        self, user_id: str, filename: str, document: bytes | str
    ) -> ServiceResult[StatementOutcome]:
        """Parse, store raw rows, build the ledger rows, then sweep transfers.

        The file row moves ``processing`` -> ``completed`` (written by the
        processor) or ``failed``.
        """

        if self._parser is None:
            return ServiceResult.fail("PARSING_FAILED", "no statement parser configured")
        try:
            file_id = self._store.create_file(user_id, filename)
            self._store.set_file_status(file_id, user_id, "processing")
        except StoreError as e:
            return ServiceResult.fail("PROCESSING_FAILED", str(e))

        try:
            parsed = self._parser.parse(document)
        except ParserError as e:
            self._mark_failed(file_id, user_id)
            code = "MISSING_API_KEY" if e.code == "MISSING_API_KEY" else "PARSING_FAILED"
            return ServiceResult.fail(code, e.message)

        ingested = self.ingest_statement(file_id, user_id, parsed)
        if not ingested.success or ingested.data is None:
            self._mark_failed(file_id, user_id)
            error = ingested.error or ErrorInfo("PROCESSING_FAILED", "ingest returned no result")
            return ServiceResult.fail(error.code, error.message)

        processing = self.process_file_transactions(file_id, user_id)
        if processing.errors and processing.processed == 0 and processing.duplicates == 0:
            self._mark_failed(file_id, user_id)
            return ServiceResult.fail("PROCESSING_FAILED", "; ".join(processing.errors))

        linking = self.detect_and_link_internal_transfers(user_id)
        return ServiceResult.ok(
            StatementOutcome(
                file_id=file_id,
                ingest=ingested.data,
                processing=processing,
                linking=linking,
            )
        )

    def _mark_failed(self, file_id: int, user_id: str) -> None:
        try:
            self._store.set_file_status(file_id, user_id, "failed")
        except StoreError as e:
            _logger.warning("api:mark_failed_error file_id=%s error=%s", file_id, e)

    # ---- Resolution --------------------------------------------------------

    def resolve_vendor(
        self,
        text: str,
        user_id: str | None = None,
        *,
        amount: Decimal | str | None = None,
        date: date | None = None,
    ) -> ServiceResult[VendorResolution]:
        if not text or not text.strip() or len(text) > 500:
            return ServiceResult.fail("VALIDATION_ERROR", "vendor text must be 1-500 characters")
        try:
            amt = to_amount(amount) if amount is not None else None
            result = self.vendors.resolve(text, user_id=user_id, amount=amt, date=date)
        except ValueError as e:
            return ServiceResult.fail("VALIDATION_ERROR", str(e))
        except StoreError as e:
            return ServiceResult.fail("VENDOR_RESOLUTION_FAILED", str(e))
        return ServiceResult.ok(result, cache_hit=result.tier == "cache")

    def resolve_vendors(
        self, requests: Sequence[VendorRequest | str], user_id: str | None = None
    ) -> ServiceResult[VendorBatchResult]:
        if not requests:
            return ServiceResult.fail("VALIDATION_ERROR", "at least one vendor is required")
        if len(requests) > MAX_VENDOR_BATCH:
            return ServiceResult.fail(
                "VALIDATION_ERROR", f"at most {MAX_VENDOR_BATCH} vendors per request"
            )
        batch = self.vendors.resolve_many(
            requests, user_id=user_id, concurrency=self._settings.max_workers
        )
        return ServiceResult.ok(batch, resolved_count=batch.stats.resolved)

    def resolve_category(
        self,
        vendor_name: str,
        amount: Decimal | str,
        type_: str,
        user_id: str | None = None,
        *,
        description: str | None = None,
    ) -> ServiceResult[CategoryResolution]:
        tx_type = (type_ or "").strip().upper()
        if tx_type not in ("DEBIT", "CREDIT"):
            return ServiceResult.fail("VALIDATION_ERROR", "type must be DEBIT or CREDIT")
        try:
            amt = to_amount(amount)
            result = self.categories.resolve(
                vendor_name, amt, tx_type, user_id=user_id, description=description
            )
        except ValueError as e:
            return ServiceResult.fail("VALIDATION_ERROR", str(e))
        except StoreError as e:
            return ServiceResult.fail("CATEGORIZATION_FAILED", str(e))
        if result is None:
            return ServiceResult.fail("NO_CATEGORY_FOUND", f"no category for {vendor_name!r}")
        return ServiceResult.ok(result, cache_hit=result.tier == "cache")

    def learn_from_correction(
        self,
        text: str,
        corrected_value: str | int,
        user_id: str,
        kind: Literal["vendor", "category"] = "vendor",
    ) -> ServiceResult[LearnOutcome]:
        """Record a user's correction of a vendor name or a vendor's category.

        For ``kind="category"`` the corrected value is a category id or a
        system category name.
        """

        try:
            if kind == "vendor":
                outcome = self.vendors.learn(text, str(corrected_value), user_id)
            elif kind == "category":
                record = self._catalog.by_id(corrected_value) or (
                    self._catalog.by_name(str(corrected_value))
                )
                if record is None:
                    return ServiceResult.fail(
                        "VALIDATION_ERROR", f"unknown category: {corrected_value!r}"
                    )
                outcome = self.categories.learn(text, record.id, user_id)
            else:
                return ServiceResult.fail("VALIDATION_ERROR", f"unknown kind: {kind!r}")
        except ValueError as e:
            return ServiceResult.fail("VALIDATION_ERROR", str(e))
        except StoreError as e:
            code = "VENDOR_RESOLUTION_FAILED" if kind == "vendor" else "CATEGORIZATION_FAILED"
            return ServiceResult.fail(code, str(e))
        if outcome is None:
            return ServiceResult.fail("VALIDATION_ERROR", "text normalizes to an empty key")
        return ServiceResult.ok(outcome, promoted=outcome.promoted is not None)

    def resolve_transaction_vendors(
        self, transaction_ids: Sequence[int], user_id: str, *, auto_apply: bool = True
    ) -> ServiceResult[VendorApplyBatch]:
        """Resolve the raw descriptors of up to 100 of the user's transactions.

        The descriptor kept in ``vendor_name_original`` is resolved; with
        ``auto_apply`` the resolved name replaces ``vendor_name`` when its
        confidence is above 0.6 and it differs from the current label.
        """

        if not transaction_ids:
            return ServiceResult.fail("VALIDATION_ERROR", "at least one transaction is required")
        if len(transaction_ids) > MAX_VENDOR_BATCH:
            return ServiceResult.fail(
                "VALIDATION_ERROR", f"at most {MAX_VENDOR_BATCH} transactions per request"
            )
        try:
            rows = self._store.list_transactions(user_id, ids=transaction_ids)
        except StoreError as e:
            return ServiceResult.fail("VENDOR_RESOLUTION_FAILED", str(e))
        if not rows:
            return ServiceResult.fail("VALIDATION_ERROR", "no matching transactions")

        def _suggest(tx: CanonicalTransaction) -> VendorSuggestion:
            if tx.id is None:
                raise StoreError("stored transaction has no id")
            text = tx.vendor_name_original or tx.description
            resolution = self.vendors.resolve(
                text, user_id=user_id, amount=tx.amount, date=tx.date
            )
            applied = False
            if (
                auto_apply
                and resolution.confidence > VENDOR_APPLY_CONFIDENCE
                and resolution.resolved_name != tx.vendor_name
            ):
                self._store.set_vendor_name(tx.id, user_id, resolution.resolved_name)
                applied = True
            return VendorSuggestion(
                transaction_id=tx.id,
                original_text=text,
                current_vendor_name=tx.vendor_name,
                resolution=resolution,
                applied=applied,
            )

        outcomes = p_map_settled(rows, _suggest, concurrency=self._settings.max_workers)
        suggestions: list[VendorSuggestion] = []
        for tx, outcome in zip(rows, outcomes):
            if outcome.ok and outcome.value is not None:
                suggestions.append(outcome.value)
            else:
                suggestions.append(
                    VendorSuggestion(
                        transaction_id=tx.id or 0,
                        original_text=tx.vendor_name_original,
                        current_vendor_name=tx.vendor_name,
                        resolution=None,
                        error=str(outcome.error),
                    )
                )
        batch = VendorApplyBatch(
            suggestions=suggestions,
            applied=sum(1 for s in suggestions if s.applied),
            failed=sum(1 for s in suggestions if s.error is not None),
        )
        _logger.info(
            "api:vendors_done total=%d applied=%d failed=%d",
            len(suggestions),
            batch.applied,
            batch.failed,
        )
        return ServiceResult.ok(batch)

    # ---- Bulk categorization ----------------------------------------------

    def categorize_transactions(
        self, transaction_ids: Sequence[int], user_id: str, *, auto_apply: bool = True
    ) -> ServiceResult[CategorizationBatch]:
        """Suggest categories for up to 50 of the user's transactions.

        With ``auto_apply`` a suggestion is written to the transaction when
        its confidence is at least 0.8 and it differs from the current one.
        """

        if not transaction_ids:
            return ServiceResult.fail("VALIDATION_ERROR", "at least one transaction is required")
        if len(transaction_ids) > MAX_CATEGORIZE_BATCH:
            return ServiceResult.fail(
                "VALIDATION_ERROR", f"at most {MAX_CATEGORIZE_BATCH} transactions per request"
            )
        try:
            rows = self._store.list_transactions(user_id, ids=transaction_ids)
        except StoreError as e:
            return ServiceResult.fail("CATEGORIZATION_FAILED", str(e))
        if not rows:
            return ServiceResult.fail("VALIDATION_ERROR", "no matching transactions")

        def _suggest(tx: CanonicalTransaction) -> CategorySuggestion:
            if tx.id is None:
                raise StoreError("stored transaction has no id")
            resolution = self.categories.resolve(
                tx.vendor_name, tx.amount, tx.type, user_id=user_id, description=tx.description
            )
            applied = False
            if (
                auto_apply
                and resolution is not None
                and resolution.confidence >= AUTO_APPLY_CONFIDENCE
                and resolution.category_id != tx.category_id
            ):
                self._store.set_transaction_category(
                    tx.id,
                    user_id,
                    category_id=resolution.category_id,
                    confidence=resolution.confidence,
                    source=resolution.source,
                )
                applied = True
            return CategorySuggestion(
                transaction_id=tx.id,
                vendor_name=tx.vendor_name,
                current_category_id=tx.category_id,
                resolution=resolution,
                applied=applied,
            )

        outcomes = p_map_settled(rows, _suggest, concurrency=self._settings.max_workers)
        suggestions: list[CategorySuggestion] = []
        for tx, outcome in zip(rows, outcomes):
            if outcome.ok and outcome.value is not None:
                suggestions.append(outcome.value)
            else:
                suggestions.append(
                    CategorySuggestion(
                        transaction_id=tx.id or 0,
                        vendor_name=tx.vendor_name,
                        current_category_id=tx.category_id,
                        resolution=None,
                        error=str(outcome.error),
                    )
                )
        batch = CategorizationBatch(
            suggestions=suggestions,
            applied=sum(1 for s in suggestions if s.applied),
            failed=sum(1 for s in suggestions if s.error is not None),
        )
        _logger.info(
            "api:categorize_done total=%d applied=%d failed=%d",
            len(suggestions),
            batch.applied,
            batch.failed,
        )
        return ServiceResult.ok(batch)

    # ---- Introspection -----------------------------------------------------

    def mapping_stats(
        self, user_id: str | None = None, kind: Literal["vendor", "category"] = "vendor"
    ) -> MappingStats:
        cache = self._vendor_cache if kind == "vendor" else self._category_cache
        return cache.mapping_stats(user_id)

    def list_transactions(self, user_id: str) -> list[CanonicalTransaction]:
        return self._store.list_transactions(user_id)


__all__ = [
    "ErrorInfo",
    "ServiceResult",
    "CategorySuggestion",
    "CategorizationBatch",
    "VendorSuggestion",
    "VendorApplyBatch",
    "StatementOutcome",
    "LedgerService",
    "MAX_CATEGORIZE_BATCH",
    "MAX_VENDOR_BATCH",
]
