"""Background jobs. Importing this package registers every job function."""

from __future__ import annotations

from .runtime import (
    JobContext,
    JobFunction,
    get_function,
    handle_event,
    register,
    registered_functions,
    run_job,
)
from . import keyword_jobs, process_statement  # noqa: E402,F401  (registration)

__all__ = [
    "JobContext",
    "JobFunction",
    "get_function",
    "handle_event",
    "register",
    "registered_functions",
    "run_job",
]
