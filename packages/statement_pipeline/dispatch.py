"""Enqueue a job event, or run the job in-process when the queue is unreachable.

Only :class:`TransportUnavailableError` triggers the inline path. Any other
enqueue failure propagates to the caller. Inline runs are fire-and-forget from
the caller's perspective: they execute on a small module-level thread pool and
the returned :class:`Dispatch` exposes the ``Future`` for callers (CLI, tests)
that want to wait.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from .errors import TransportUnavailableError
from .events import EventPayload, EventSender
from .logging_setup import get_logger

_INLINE_WORKERS = 4

_logger = get_logger("statement_pipeline.dispatch")

_pool_lock = threading.Lock()
_pool: ThreadPoolExecutor | None = None


@dataclass(frozen=True, slots=True)
class Dispatch:
    inline: bool
    event_ids: tuple[str, ...] = ()
    future: Future[Any] | None = None


def _inline_pool() -> ThreadPoolExecutor:
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadPoolExecutor(max_workers=_INLINE_WORKERS, thread_name_prefix="inline-job")
        return _pool


def shutdown_inline_pool(*, wait: bool = True) -> None:
    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    if pool is not None:
        pool.shutdown(wait=wait)


def _log_outcome(name: str, fut: Future[Any]) -> None:
    exc = fut.exception()
    if exc is not None:
        _logger.error("dispatch:inline_failed name=%s error=%s", name, exc.__class__.__name__)
    else:
        _logger.info("dispatch:inline_done name=%s", name)


def _default_inline(payload: EventPayload) -> Callable[[], Any]:
    def _run() -> Any:
        from .jobs.runtime import handle_event

        return handle_event(payload.event_name, payload.to_wire())

    return _run


def enqueue_or_run_inline(
    sender: EventSender,
    payload: EventPayload,
    inline: Callable[[], Any] | None = None,
) -> Dispatch:
    """Send ``payload``; on transport unavailability submit ``inline`` instead.

    ``inline`` defaults to running the registered job for the event through
    the job runtime, so retries and failure bookkeeping match a queued run.
    """

    name = payload.event_name
    try:
        ids = sender.send(name, payload.to_wire())
    except TransportUnavailableError as e:
        _logger.warning("dispatch:transport_unavailable name=%s reason=%s", name, e)
        fut = _inline_pool().submit(inline or _default_inline(payload))
        fut.add_done_callback(lambda f: _log_outcome(name, f))
        return Dispatch(inline=True, future=fut)
    return Dispatch(inline=False, event_ids=tuple(ids))


__all__ = ["Dispatch", "enqueue_or_run_inline", "shutdown_inline_pool"]
