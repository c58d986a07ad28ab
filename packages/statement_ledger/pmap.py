"""Bounded-concurrency mapping over a ``ThreadPoolExecutor``, after ``p-map``.

- ``p_map(iterable, mapper, concurrency=...)``: run ``mapper`` over the input
  with at most ``concurrency`` calls in flight and return results in input
  order. The first failure cancels work that has not started and propagates.
- ``p_map_settled(iterable, mapper, concurrency=...)``: run every item and
  return one :class:`Settled` outcome per input, never raising for a single
  item. Batch inserts use this: sibling failures must not abort each other.

Work is submitted through a sliding window so large inputs are never
materialized as futures all at once.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Generic, TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


@dataclass(frozen=True, slots=True)
class Settled(Generic[OutT]):
    value: OutT | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[OutT]:
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    source: Iterator[tuple[int, InT]] = enumerate(iterable)
    results: dict[int, OutT] = {}
    index_of: dict[Future[OutT], int] = {}

    def _submit_next(pool: ThreadPoolExecutor) -> Future[OutT] | None:
        try:
            idx, item = next(source)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        index_of[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        in_flight: set[Future[OutT]] = set()
        for _ in range(concurrency):
            fut = _submit_next(pool)
            if fut is None:
                break
            in_flight.add(fut)

        while in_flight:
            done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = index_of.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception:
                    pool.shutdown(wait=False, cancel_futures=True)
                    raise
            for _ in range(len(done)):
                fut = _submit_next(pool)
                if fut is None:
                    break
                in_flight.add(fut)

    return [results[i] for i in sorted(results)]


def p_map_settled(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[Settled[OutT]]:
    def _settle(item: InT) -> Settled[OutT]:
        try:
            return Settled(value=mapper(item))
        except Exception as e:  # noqa: BLE001 - collected per item for the caller
            return Settled(error=e)

    return p_map(iterable, _settle, concurrency=concurrency)


__all__ = ["Settled", "p_map", "p_map_settled"]
