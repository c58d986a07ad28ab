from __future__ import annotations

import threading
import time

import pytest

from statement_ledger.pmap import p_map, p_map_settled


def test_results_keep_input_order():
    def slow_for_small(n: int) -> int:
        time.sleep(0.01 * (5 - n))
        return n * n

    assert p_map(range(5), slow_for_small, concurrency=3) == [0, 1, 4, 9, 16]


def test_never_exceeds_concurrency():
    lock = threading.Lock()
    running = 0
    peak = 0

    def work(_: int) -> None:
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.005)
        with lock:
            running -= 1

    p_map(range(20), work, concurrency=3)
    assert 1 <= peak <= 3


def test_first_error_propagates():
    def boom(n: int) -> int:
        if n == 2:
            raise RuntimeError("bad item")
        return n

    with pytest.raises(RuntimeError, match="bad item"):
        p_map(range(4), boom, concurrency=1)


def test_settled_reports_each_item():
    def half(n: int) -> float:
        if n == 0:
            raise ZeroDivisionError("zero")
        return 1 / n

    outcomes = p_map_settled([1, 0, 4], half, concurrency=2)
    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[2].value == 0.25
    assert isinstance(outcomes[1].error, ZeroDivisionError)
    assert p_map_settled([], half, concurrency=2) == []


@pytest.mark.parametrize("concurrency", [0, -1, 1.5])
def test_invalid_concurrency(concurrency):
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=concurrency)
