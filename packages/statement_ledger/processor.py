"""Turn a file's raw transactions into canonical ledger rows.

Public API:
    - :class:`TransactionProcessor`
    - :class:`ProcessingResult`, :class:`LinkResult`

``process_file_transactions`` is safe to re-run: rows already in the ledger
come back from the store as ``DuplicateFingerprintError`` and are counted as
duplicates, so a second run reports ``processed == 0`` and no errors.

Error policy
------------
- Fetching the file's raw rows is the only fatal step; it returns zero counts
  and the single error.
- A failed insert is recorded in ``errors`` and never stops its siblings.
- A failed statistics update is recorded in ``errors`` after the inserts.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from .duplicates import partition_duplicates
from .errors import DuplicateFingerprintError, FingerprintError, StoreError
from .fingerprint import compute_fingerprint
from .logging_setup import get_logger
from .models import CanonicalTransaction, FileStats, RawTransaction
from .pmap import p_map_settled
from .ports import LedgerStore
from .transfers import DEFAULT_POLICY, TransferLeg, TransferPolicy, link_internal_transfers

_logger = get_logger("statement_ledger.processor")


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    processed: int = 0
    duplicates: int = 0
    internal_transfers: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class LinkResult:
    # Number of legs flagged (two per pair).
    linked: int = 0
    errors: list[str] = field(default_factory=list)


def _ensure_fingerprint(raw: RawTransaction) -> RawTransaction:
    if raw.fingerprint:
        return raw
    fp = compute_fingerprint(
        user_id=raw.user_id,
        date=raw.date,
        amount=raw.amount,
        type=raw.type,
        description=raw.description,
    )
    return RawTransaction(
        id=raw.id,
        file_id=raw.file_id,
        user_id=raw.user_id,
        date=raw.date,
        description=raw.description,
        amount=raw.amount,
        type=raw.type,
        fingerprint=fp,
        reference_number=raw.reference_number,
        raw_text=raw.raw_text,
        original_currency=raw.original_currency,
        original_amount=raw.original_amount,
        parsing_confidence=raw.parsing_confidence,
    )


def _canonical(raw: RawTransaction) -> CanonicalTransaction:
    return CanonicalTransaction(
        user_id=raw.user_id,
        file_id=raw.file_id,
        raw_transaction_id=raw.id,
        fingerprint=raw.fingerprint,
        date=raw.date,
        description=raw.description,
        amount=raw.amount,
        type=raw.type,
        reference_number=raw.reference_number,
        original_currency=raw.original_currency,
        original_amount=raw.original_amount,
        # Replaced by vendor resolution later; the descriptor is kept verbatim.
        vendor_name=raw.description,
        vendor_name_original=raw.description,
    )


def file_stats(
    rows: Sequence[CanonicalTransaction | RawTransaction], transfer_fingerprints: set[str]
) -> FileStats:
    """Totals over ``rows``. Transfer legs are counted but left out of income
    and expenses."""

    income = Decimal("0.00")
    expenses = Decimal("0.00")
    for row in rows:
        if row.fingerprint in transfer_fingerprints:
            continue
        if row.type == "CREDIT":
            income += row.amount
        else:
            expenses += row.amount
    return FileStats(
        total_transactions=len(rows),
        total_income=income,
        total_expenses=expenses,
        status="completed",
        processed_at=datetime.now(UTC),
    )


class TransactionProcessor:
    def __init__(
        self,
        store: LedgerStore,
        *,
        policy: TransferPolicy = DEFAULT_POLICY,
        concurrency: int = 4,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be a positive integer")
        self._store = store
        self._policy = policy
        self._concurrency = concurrency

    def process_file_transactions(self, file_id: int, user_id: str) -> ProcessingResult:
        try:
            raw_rows = self._store.fetch_raw_transactions(file_id, user_id)
        except StoreError as e:
            _logger.error("processor:fetch_failed file_id=%s error=%s", file_id, e)
            return ProcessingResult(errors=[str(e)])

        errors: list[str] = []
        rows: list[RawTransaction] = []
        for raw in raw_rows:
            try:
                rows.append(_ensure_fingerprint(raw))
            except FingerprintError as e:
                errors.append(f"raw transaction {raw.id}: {e}")

        partition = partition_duplicates(rows)
        uniques = partition.unique

        # Link over the whole batch; keys are batch positions until ids exist.
        linking = link_internal_transfers(
            (
                TransferLeg(
                    key=i,
                    user_id=r.user_id,
                    date=r.date,
                    amount=r.amount,
                    type=r.type,
                    description=r.description,
                )
                for i, r in enumerate(rows)
            ),
            self._policy,
        )
        transfer_fps = {rows[p].fingerprint for pair in linking.pairs for p in pair}

        outcomes = p_map_settled(
            uniques,
            lambda r: self._store.insert_transaction(_canonical(r)),
            concurrency=self._concurrency,
        )

        inserted_ids: dict[str, int] = {}
        store_duplicates = 0
        for raw, outcome in zip(uniques, outcomes):
            if outcome.ok and outcome.value is not None:
                inserted_ids[raw.fingerprint] = outcome.value
            elif isinstance(outcome.error, DuplicateFingerprintError):
                store_duplicates += 1
            else:
                errors.append(f"raw transaction {raw.id}: {outcome.error}")

        internal_transfers = 0
        used: set[int] = set()
        for debit_pos, credit_pos in linking.pairs:
            debit_id = inserted_ids.get(rows[debit_pos].fingerprint)
            credit_id = inserted_ids.get(rows[credit_pos].fingerprint)
            if debit_id is None or credit_id is None or {debit_id, credit_id} & used:
                continue
            used.update((debit_id, credit_id))
            try:
                self._store.link_transfer_pair(debit_id, credit_id)
                internal_transfers += 2
            except StoreError as e:
                errors.append(f"link {debit_id}<->{credit_id}: {e}")

        try:
            self._store.update_file_stats(file_id, user_id, file_stats(uniques, transfer_fps))
        except StoreError as e:
            errors.append(f"file stats: {e}")

        result = ProcessingResult(
            processed=len(inserted_ids),
            duplicates=len(partition.duplicates) + store_duplicates,
            internal_transfers=internal_transfers,
            errors=errors,
        )
        _logger.info(
            "processor:file_done file_id=%s processed=%d duplicates=%d transfers=%d errors=%d",
            file_id,
            result.processed,
            result.duplicates,
            result.internal_transfers,
            len(result.errors),
        )
        return result

    def detect_and_link_internal_transfers(self, user_id: str) -> LinkResult:
        """Pair unlinked transfer legs across every file of ``user_id``.

        Only rows that are not linked yet take part, so running the sweep
        again forms no new pairs.
        """

        try:
            rows = self._store.list_unlinked_transactions(user_id)
        except StoreError as e:
            _logger.error("processor:sweep_fetch_failed error=%s", e)
            return LinkResult(errors=[str(e)])

        linking = link_internal_transfers(
            (
                TransferLeg(
                    key=r.id,
                    user_id=r.user_id,
                    date=r.date,
                    amount=r.amount,
                    type=r.type,
                    description=r.description,
                )
                for r in rows
                if r.id is not None
            ),
            self._policy,
        )

        linked = 0
        errors: list[str] = []
        for first, second in linking.pairs:
            try:
                self._store.link_transfer_pair(first, second)  # type: ignore[arg-type]
                linked += 2
            except StoreError as e:
                errors.append(f"link {first}<->{second}: {e}")
        _logger.info("processor:sweep_done linked=%d errors=%d", linked, len(errors))
        return LinkResult(linked=linked, errors=errors)


__all__ = ["TransactionProcessor", "ProcessingResult", "LinkResult", "file_stats"]
