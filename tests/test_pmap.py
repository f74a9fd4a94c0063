from __future__ import annotations

import threading
import time

import pytest

from statement_pipeline.pmap import p_map


def test_results_keep_input_order() -> None:
    def _slow_for_small(n: int) -> int:
        time.sleep(0.01 * (5 - n))
        return n * 10

    assert p_map(range(5), _slow_for_small, concurrency=3) == [0, 10, 20, 30, 40]


def test_concurrency_is_bounded() -> None:
    lock = threading.Lock()
    running = 0
    peak = 0

    def _track(_n: int) -> None:
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.02)
        with lock:
            running -= 1

    p_map(range(8), _track, concurrency=2)
    assert peak <= 2


@pytest.mark.parametrize("concurrency", [1, 3])
def test_stop_on_error_raises_first_failure(concurrency: int) -> None:
    def _boom(n: int) -> int:
        if n == 2:
            raise ValueError("bad item")
        return n

    with pytest.raises(ValueError, match="bad item"):
        p_map([1, 2, 3], _boom, concurrency=concurrency)


@pytest.mark.parametrize("concurrency", [1, 3])
def test_collects_every_failure(concurrency: int) -> None:
    seen: list[int] = []

    def _odd_fails(n: int) -> int:
        seen.append(n)
        if n % 2:
            raise ValueError(f"odd {n}")
        return n

    with pytest.raises(ExceptionGroup) as excinfo:
        p_map(range(4), _odd_fails, concurrency=concurrency, stop_on_error=False)
    assert sorted(str(e) for e in excinfo.value.exceptions) == ["odd 1", "odd 3"]
    assert sorted(seen) == [0, 1, 2, 3]


@pytest.mark.parametrize("bad", [0, -1, 1.5])
def test_rejects_bad_concurrency(bad) -> None:
    with pytest.raises(ValueError):
        p_map([1], lambda n: n, concurrency=bad)


def test_empty_input() -> None:
    assert p_map([], lambda n: n, concurrency=4) == []
