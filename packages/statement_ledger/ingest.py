"""Statement intake: parser output -> ``raw_transactions`` rows.

``StatementIngestor.ingest`` validates the parsed statement, normalizes its
``parsing_confidence`` from 0..100 to 0..1, fingerprints every line and
stores the first occurrence of each fingerprint. Repeats inside the
statement, and lines already stored for the user from an earlier upload,
are counted as duplicates.

Raw rows must be stored before the processor runs for the file.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .duplicates import partition_duplicates
from .errors import DuplicateFingerprintError, FingerprintError, ParserError
from .fingerprint import fingerprint_transactions
from .logging_setup import get_logger
from .models import FingerprintedTransaction, ParsedStatement, RawTransaction
from .pmap import p_map_settled
from .ports import LedgerStore
from .transfers import DEFAULT_POLICY, TransferLeg, TransferPolicy, link_internal_transfers

_logger = get_logger("statement_ledger.ingest")


@dataclass(frozen=True, slots=True)
class IngestResult:
    stored: int = 0
    duplicates: int = 0
    # Legs that pair up inside this statement; linking happens on canonical rows.
    internal_transfers: int = 0
    errors: list[str] = field(default_factory=list)


def _raw_row(
    tx: FingerprintedTransaction, *, file_id: int, parsing_confidence: float
) -> RawTransaction:
    return RawTransaction(
        file_id=file_id,
        user_id=tx.user_id,
        date=tx.date,
        description=tx.description,
        amount=tx.amount,
        type=tx.type,
        fingerprint=tx.fingerprint,
        reference_number=tx.reference_number,
        raw_text=tx.raw_text,
        original_currency=tx.original_currency,
        original_amount=tx.original_amount,
        parsing_confidence=parsing_confidence,
    )


class JsonStatementParser:
    """Reads statements already extracted to JSON.

    The document is ``{"transactions": [...], "parsing_confidence": 0-100}``
    or a bare list of transaction objects.
    """

    def parse(self, document: bytes | str) -> ParsedStatement:
        text = document.decode("utf-8") if isinstance(document, bytes) else document
        stripped = text.lstrip()
        if stripped.startswith("["):
            text = '{"transactions": ' + stripped + "}"
        try:
            return ParsedStatement.model_validate_json(text)
        except (ValidationError, ValueError) as e:
            raise ParserError("PARSING_FAILED", str(e)) from e


class StatementIngestor:
    def __init__(
        self,
        store: LedgerStore,
        *,
        policy: TransferPolicy = DEFAULT_POLICY,
        concurrency: int = 4,
    ) -> None:
        self._store = store
        self._policy = policy
        self._concurrency = concurrency

    def ingest(
        self,
        file_id: int,
        user_id: str,
        statement: ParsedStatement | Mapping[str, Any],
    ) -> IngestResult:
        """Store the statement's lines as raw transactions for ``file_id``.

        Raises ``pydantic.ValidationError`` when ``statement`` is malformed
        and ``FingerprintError`` when a line lacks a fingerprint field; no
        rows are written in either case.
        """

        parsed = (
            statement
            if isinstance(statement, ParsedStatement)
            else ParsedStatement.model_validate(statement)
        )
        if not user_id:
            raise FingerprintError("user_id is required")
        confidence = parsed.normalized_confidence()
        fingerprinted = fingerprint_transactions(parsed.transactions, user_id=user_id)

        partition = partition_duplicates(fingerprinted)
        linking = link_internal_transfers(
            (
                TransferLeg(
                    key=i,
                    user_id=user_id,
                    date=tx.date,
                    amount=tx.amount,
                    type=tx.type,
                    description=tx.description,
                )
                for i, tx in enumerate(partition.unique)
            ),
            self._policy,
        )

        outcomes = p_map_settled(
            partition.unique,
            lambda tx: self._store.insert_raw_transaction(
                _raw_row(tx, file_id=file_id, parsing_confidence=confidence)
            ),
            concurrency=self._concurrency,
        )

        stored = 0
        duplicates = len(partition.duplicates)
        errors: list[str] = []
        for tx, outcome in zip(partition.unique, outcomes):
            if outcome.ok:
                stored += 1
            elif isinstance(outcome.error, DuplicateFingerprintError):
                duplicates += 1
            else:
                errors.append(f"{tx.date.isoformat()} {tx.amount} {tx.type}: {outcome.error}")

        result = IngestResult(
            stored=stored,
            duplicates=duplicates,
            internal_transfers=2 * len(linking.pairs),
            errors=errors,
        )
        _logger.info(
            "ingest:done file_id=%s lines=%d stored=%d duplicates=%d errors=%d",
            file_id,
            len(parsed.transactions),
            result.stored,
            result.duplicates,
            len(result.errors),
        )
        return result


__all__ = ["StatementIngestor", "IngestResult", "JsonStatementParser"]
