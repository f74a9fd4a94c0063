"""Ordered, bounded-concurrency map over a thread pool.

``p_map(items, mapper, concurrency=n)`` runs at most ``n`` mapper calls at a
time and returns results in input order. Keyword jobs use it to apply
category-update chunks; each chunk touches a disjoint set of transaction ids,
so chunks may run in parallel without changing the outcome.

With ``stop_on_error=True`` the first failure cancels work that has not started
and is re-raised. With ``stop_on_error=False`` every item runs and failures
are reported together as an ``ExceptionGroup`` after the successful results
are discarded; callers that want partial results should catch inside the
mapper instead.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(iterable)
    if concurrency == 1:
        # Sequential fast path: no pool, same error semantics.
        out: list[OutT] = []
        errors: list[Exception] = []
        for item in items:
            try:
                out.append(mapper(item))
            except Exception as e:  # noqa: BLE001
                if stop_on_error:
                    raise
                errors.append(e)
        if errors:
            raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
        return out

    results: dict[int, OutT] = {}
    failures: list[Exception] = []
    pending = iter(enumerate(items))

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: dict[Future[OutT], int] = {}

        def _top_up() -> None:
            while len(active) < concurrency:
                nxt = next(pending, None)
                if nxt is None:
                    return
                idx, item = nxt
                active[pool.submit(mapper, item)] = idx

        _top_up()
        while active:
            done, _ = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = active.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    failures.append(e)
            _top_up()

    if failures:
        raise ExceptionGroup("p_map: one or more mapper calls failed", failures)
    return [results[i] for i in range(len(items))]


__all__ = ["p_map"]
