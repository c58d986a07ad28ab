from __future__ import annotations

from dataclasses import dataclass

from statement_ledger.duplicates import partition_duplicates


@dataclass(frozen=True)
class _Row:
    name: str
    fingerprint: str


def test_first_occurrence_is_unique_and_repeats_point_back():
    rows = [_Row("a", "f1"), _Row("b", "f2"), _Row("c", "f1"), _Row("d", "f3"), _Row("e", "f2")]
    part = partition_duplicates(rows)

    assert [r.name for r in part.unique] == ["a", "b", "d"]
    assert [d.item.name for d in part.duplicates] == ["c", "e"]
    assert [d.duplicate_of for d in part.duplicates] == ["f1", "f2"]
    assert [part.unique[d.unique_index].name for d in part.duplicates] == ["a", "b"]
    assert len(part) == len(rows)


def test_empty_and_all_distinct_batches():
    assert len(partition_duplicates([])) == 0

    rows = [_Row(str(i), f"f{i}") for i in range(5)]
    part = partition_duplicates(iter(rows))
    assert part.unique == rows
    assert part.duplicates == []


def test_every_repeat_of_the_same_fingerprint_is_a_duplicate():
    rows = [_Row("a", "x"), _Row("b", "x"), _Row("c", "x")]
    part = partition_duplicates(rows)
    assert [r.name for r in part.unique] == ["a"]
    assert {d.unique_index for d in part.duplicates} == {0}
