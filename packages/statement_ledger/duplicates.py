"""Intra-batch duplicate detection.

Public surface:
- ``partition_duplicates(items)``: split a fingerprinted batch into the first
  occurrence of each fingerprint (``unique``) and every later repeat
  (``duplicates``), keeping the source order in both lists.

Duplicates against rows that are already stored are not this module's job:
the ``(user_id, fingerprint)`` unique constraint catches those at insert time.
Removing in-batch repeats first keeps that constraint from firing on rows the
batch itself produced.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar


class Fingerprinted(Protocol):
    @property
    def fingerprint(self) -> str: ...


T = TypeVar("T", bound=Fingerprinted)


@dataclass(frozen=True, slots=True)
class DuplicateOf(Generic[T]):
    item: T
    # Fingerprint of the unique member this item repeats (equal to its own).
    duplicate_of: str
    # Position of that unique member in ``DuplicatePartition.unique``.
    unique_index: int


@dataclass(frozen=True, slots=True)
class DuplicatePartition(Generic[T]):
    unique: list[T] = field(default_factory=list)
    duplicates: list[DuplicateOf[T]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.unique) + len(self.duplicates)


def partition_duplicates(items: Iterable[T]) -> DuplicatePartition[T]:
    seen: dict[str, int] = {}
    unique: list[T] = []
    duplicates: list[DuplicateOf[T]] = []
    for item in items:
        fp = item.fingerprint
        idx = seen.get(fp)
        if idx is None:
            seen[fp] = len(unique)
            unique.append(item)
        else:
            duplicates.append(DuplicateOf(item=item, duplicate_of=fp, unique_index=idx))
    return DuplicatePartition(unique=unique, duplicates=duplicates)


__all__ = ["DuplicateOf", "DuplicatePartition", "partition_duplicates"]
