"""Worker-side job runtime.

A :class:`JobFunction` binds an event name to a handler and a retry budget.
:func:`run_job` drives the attempts: attempt ``0`` plus ``retries`` more.
Handlers receive a :class:`JobContext` so they can tell a retried attempt from
the final one and keep their status state machines monotonic.

:func:`handle_event` is the entry point a transport adapter (webhook, queue
consumer) or the inline fallback calls with raw wire data.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from ..errors import NonRetriableError
from ..events import EventPayload, parse_event
from ..logging_setup import get_logger

DEFAULT_RETRIES = 2

_logger = get_logger("statement_pipeline.jobs.runtime")


@dataclass(frozen=True, slots=True)
class JobContext:
    attempt: int  # 0-based
    max_attempts: int

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt + 1 >= self.max_attempts


JobHandler: TypeAlias = Callable[[Any, JobContext], Any]


@dataclass(frozen=True, slots=True)
class JobFunction:
    id: str
    name: str
    event: str
    handler: JobHandler
    retries: int = DEFAULT_RETRIES


_registry_lock = threading.Lock()
_REGISTRY: dict[str, JobFunction] = {}


def register(function: JobFunction) -> JobFunction:
    with _registry_lock:
        existing = _REGISTRY.get(function.event)
        if existing is not None and existing.id != function.id:
            raise ValueError(
                f"event {function.event!r} already handled by job {existing.id!r}"
            )
        _REGISTRY[function.event] = function
    return function


def registered_functions() -> list[JobFunction]:
    with _registry_lock:
        return list(_REGISTRY.values())


def get_function(event_name: str) -> JobFunction:
    """Return the job registered for ``event_name``; unknown names raise ``KeyError``."""

    with _registry_lock:
        return _REGISTRY[event_name]


def run_job(function: JobFunction, data: Mapping[str, Any] | EventPayload) -> Any:
    """Run ``function`` with bounded retries and return the handler's result.

    ``NonRetriableError`` ends the run at once. Any other exception is retried
    until the budget is spent; the last error is re-raised.
    """

    payload = data if isinstance(data, EventPayload) else parse_event(function.event, data)
    max_attempts = function.retries + 1
    for attempt in range(max_attempts):
        ctx = JobContext(attempt=attempt, max_attempts=max_attempts)
        try:
            result = function.handler(payload, ctx)
        except NonRetriableError as e:
            _logger.error(
                "job:failed_non_retriable job=%s attempt=%d error=%s",
                function.id,
                attempt,
                e.__class__.__name__,
            )
            raise
        except Exception as e:
            if ctx.is_final_attempt:
                _logger.error(
                    "job:failed_terminal job=%s attempts=%d error=%s",
                    function.id,
                    max_attempts,
                    e.__class__.__name__,
                )
                raise
            _logger.warning(
                "job:retry job=%s attempt=%d error=%s", function.id, attempt, e.__class__.__name__
            )
            continue
        _logger.info("job:done job=%s attempt=%d", function.id, attempt)
        return result
    raise AssertionError("unreachable")  # pragma: no cover


def handle_event(name: str, data: Mapping[str, Any]) -> Any:
    """Dispatch wire ``data`` for event ``name`` to its registered job."""

    return run_job(get_function(name), data)


__all__ = [
    "DEFAULT_RETRIES",
    "JobContext",
    "JobFunction",
    "JobHandler",
    "get_function",
    "handle_event",
    "register",
    "registered_functions",
    "run_job",
]
