"""Pytest configuration for test isolation.

Makes the workspace packages importable, scrubs pipeline-related environment
variables so a developer's ``.env`` cannot leak into tests, and provides a
file-backed SQLite database per test.

Jobs and services open their own sessions through ``db.client.session_scope()``
which reads ``DATABASE_URL``; the ``database_url`` fixture points it at the
test's database.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Ensure `packages/` and `libs/db/src` precede the repo root on sys.path so
# local packages resolve first.
_ROOT = Path(__file__).resolve().parents[1]
_PATHS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _PATHS if str(p) not in sys.path]

from db.client import dispose_engines  # noqa: E402

from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402

_SCRUBBED_ENV = (
    "DATABASE_URL",
    "INNGEST_EVENT_KEY",
    "INNGEST_BASE_URL",
    "OPENAI_API_KEY",
    "STATEMENT_PIPELINE_MODEL",
    "STATEMENT_PIPELINE_DEFAULT_CURRENCY",
    "STATEMENT_PIPELINE_PDFTOTEXT",
    "STATEMENT_PIPELINE_PDF_TIMEOUT",
    "STATEMENT_PIPELINE_CHUNK_CONCURRENCY",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SCRUBBED_ENV:
        monkeypatch.delenv(name, raising=False)
    # The OpenAI SDK refuses to construct a client without a key; tests stub it anyway.
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")


@pytest.fixture(autouse=True)
def _no_backoff_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    import statement_pipeline.ai_extract as ai_mod

    monkeypatch.setattr(ai_mod, "_sleep_backoff", lambda _attempt: None)


@pytest.fixture
def database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
    monkeypatch.setenv("DATABASE_URL", url)
    yield url
    dispose_engines()
