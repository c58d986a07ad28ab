from __future__ import annotations

import json
from decimal import Decimal

import pytest
from pydantic import ValidationError

from statement_ledger.errors import FingerprintError, ParserError
from statement_ledger.ingest import JsonStatementParser, StatementIngestor
from statement_ledger.models import ParsedStatement

from tests.helpers.fakes import FakeLedgerStore

USER = "user-1"

LINES = [
    {"date": "2024-03-01", "description": "UPI-SWIGGY 4411", "amount": "349", "type": "debit"},
    {"date": "2024-03-01", "description": "Transfer to savings", "amount": "2,000.00", "type": "DEBIT"},
    {"date": "2024-03-02", "description": "Transfer from checking", "amount": 2000, "type": "CREDIT"},
    {"date": "2024-03-01", "description": "UPI-SWIGGY 4411", "amount": "349.00", "type": "DEBIT"},
]


@pytest.fixture()
def store() -> FakeLedgerStore:
    return FakeLedgerStore()


def test_json_parser_accepts_object_and_bare_list():
    parser = JsonStatementParser()
    doc = json.dumps({"transactions": LINES[:1], "parsing_confidence": 87})
    parsed = parser.parse(doc.encode("utf-8"))
    assert len(parsed.transactions) == 1
    assert parsed.transactions[0].type == "DEBIT"
    assert parsed.transactions[0].amount == Decimal("349.00")
    assert parsed.normalized_confidence() == pytest.approx(0.87)

    bare = parser.parse("  " + json.dumps(LINES[:2]))
    assert len(bare.transactions) == 2
    assert bare.normalized_confidence() == 1.0


@pytest.mark.parametrize(
    "doc",
    ["{not json", json.dumps({"transactions": [{"date": "2024-01-01"}]}), "[]x"],
)
def test_json_parser_failures_are_parser_errors(doc):
    with pytest.raises(ParserError) as ei:
        JsonStatementParser().parse(doc)
    assert ei.value.code == "PARSING_FAILED"


def test_ingest_stores_first_occurrence_and_counts_repeats(store):
    file_id = store.create_file(USER, "march.json")
    ingestor = StatementIngestor(store, concurrency=2)

    result = ingestor.ingest(file_id, USER, {"transactions": LINES, "parsing_confidence": 92})
    assert result.stored == 3
    assert result.duplicates == 1
    assert result.internal_transfers == 2
    assert result.errors == []

    rows = store.fetch_raw_transactions(file_id, USER)
    assert len(rows) == 3
    assert {r.parsing_confidence for r in rows} == {0.92}
    assert {r.amount for r in rows} == {Decimal("349.00"), Decimal("2000.00")}
    assert all(len(r.fingerprint) == 64 for r in rows)


def test_reupload_is_deduplicated_against_stored_rows(store):
    ingestor = StatementIngestor(store)
    first = store.create_file(USER, "march.json")
    second = store.create_file(USER, "march-again.json")
    statement = ParsedStatement.model_validate({"transactions": LINES[:3]})

    ingestor.ingest(first, USER, statement)
    again = ingestor.ingest(second, USER, statement)
    assert again.stored == 0
    assert again.duplicates == 3
    assert store.fetch_raw_transactions(second, USER) == []

    # Another user's identical lines are not duplicates.
    other = store.create_file("user-2", "march.json")
    assert ingestor.ingest(other, "user-2", statement).stored == 3


def test_invalid_statements_write_nothing(store):
    ingestor = StatementIngestor(store)
    file_id = store.create_file(USER, "bad.json")
    with pytest.raises(ValidationError):
        ingestor.ingest(file_id, USER, {"transactions": [{**LINES[0], "amount": "-5"}]})
    with pytest.raises(ValidationError):
        ingestor.ingest(file_id, USER, {"transactions": LINES, "parsing_confidence": 140})
    with pytest.raises(FingerprintError):
        ingestor.ingest(file_id, "", {"transactions": LINES})
    assert store.raw == {}
