"""Logging for the ``statement_pipeline`` package.

Library modules ask for ``get_logger("statement_pipeline.<module>")`` and log
``event:phase key=value`` lines; they never attach handlers. Entrypoints (the
CLI, a worker process) call :func:`configure_logging` once at startup. Until
then the package root carries a ``NullHandler`` so importing the package in a
host application stays quiet.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "statement_pipeline"
_LEVEL_ENV = "STATEMENT_PIPELINE_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(_LEVEL_ENV)
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelNamesMapping().get(name)
        if numeric is not None:
            return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach one ``StreamHandler`` to the package root logger; later calls are no-ops.

    ``level`` may be an int, a level name or a digit string. When omitted,
    ``STATEMENT_PIPELINE_LOG_LEVEL`` is used, then ``INFO``.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    root = logging.getLogger(_PKG_LOGGER_NAME)
    for placeholder in [h for h in root.handlers if isinstance(h, logging.NullHandler)]:
        root.removeHandler(placeholder)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    root.addHandler(handler)
    root.setLevel(resolved)
    root.propagate = False
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    root = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
