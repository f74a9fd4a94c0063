"""Keyword lifecycle jobs.

Both jobs move a keyword from ``categorizing`` to ``active`` (with the number
of rows actually changed) or to ``failed``:

- categorize-by-keyword scans the user's uncategorized transactions;
- reassign-keyword scans all of the user's transactions, since reassignment
  moves rows away from whatever category they currently hold.

Matches are applied in chunks of :data:`CHUNK_SIZE`. Chunks touch disjoint
transaction ids, so ``STATEMENT_PIPELINE_CHUNK_CONCURRENCY`` may run several at
once. Each row is a compare-and-set against the category observed when the
match was computed.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from typing import TypeAlias

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import KeywordStatus

from .. import persistence
from ..categorization import find_matching_transactions_for_keyword
from ..errors import NonRetriableError
from ..events import (
    CATEGORIZE_BY_KEYWORD,
    REASSIGN_KEYWORD,
    CategorizeByKeywordEvent,
    ReassignKeywordEvent,
)
from ..logging_setup import get_logger
from ..models import CategoryAssignment, KeywordRunResult, MatchableTransaction
from ..persistence import AssignmentOutcome
from ..pmap import p_map
from .runtime import JobContext, JobFunction, register

CHUNK_SIZE = 100

_logger = get_logger("statement_pipeline.jobs.keyword_jobs")

Fetcher: TypeAlias = Callable[[Session, str], list[MatchableTransaction]]


def _chunk_concurrency() -> int:
    raw = os.getenv("STATEMENT_PIPELINE_CHUNK_CONCURRENCY")
    try:
        return max(1, int(raw)) if raw else 1
    except ValueError:
        return 1


def _chunks(
    items: Sequence[CategoryAssignment], size: int
) -> list[tuple[int, Sequence[CategoryAssignment]]]:
    return [(start, items[start : start + size]) for start in range(0, len(items), size)]


def _apply_chunks(
    job: str, user_id: str, matches: Sequence[CategoryAssignment]
) -> AssignmentOutcome:
    def _apply(chunk: tuple[int, Sequence[CategoryAssignment]]) -> AssignmentOutcome:
        start, assignments = chunk
        try:
            with session_scope() as s:
                outcome = persistence.apply_category_assignments(
                    s, user_id=user_id, assignments=assignments
                )
        except SQLAlchemyError as e:
            _logger.warning(
                "%s:chunk_failed start=%d size=%d error=%s",
                job,
                start,
                len(assignments),
                e.__class__.__name__,
            )
            return AssignmentOutcome(
                updated=0, failed_ids=tuple(a.transaction_id for a in assignments)
            )
        _logger.info(
            "%s:chunk_done start=%d end=%d updated=%d",
            job,
            start,
            start + len(assignments),
            outcome.updated,
        )
        return outcome

    outcomes = p_map(
        _chunks(matches, CHUNK_SIZE),
        _apply,
        concurrency=_chunk_concurrency(),
        stop_on_error=False,
    )
    return AssignmentOutcome(
        updated=sum(o.updated for o in outcomes),
        failed_ids=tuple(i for o in outcomes for i in o.failed_ids),
    )


def _run_keyword_job(
    job: str,
    *,
    user_id: str,
    keyword_id: str,
    keyword: str,
    category_id: str,
    fetch: Fetcher,
    ctx: JobContext,
) -> KeywordRunResult:
    _logger.info("%s:start keyword_id=%s attempt=%d", job, keyword_id, ctx.attempt)
    try:
        with session_scope() as s:
            status = KeywordStatus(persistence.get_keyword(s, keyword_id, user_id=user_id).status)
            if status is not KeywordStatus.CATEGORIZING:
                # Redelivered event for a keyword that already finished.
                _logger.info("%s:already_done keyword_id=%s status=%s", job, keyword_id, status)
                return KeywordRunResult(keyword_id=keyword_id, matched=0, categorized_count=0)
            transactions = fetch(s, user_id)

        matches = find_matching_transactions_for_keyword(transactions, keyword, category_id)
        _logger.info(
            "%s:matched keyword_id=%s scanned=%d matched=%d",
            job,
            keyword_id,
            len(transactions),
            len(matches),
        )
        outcome = _apply_chunks(job, user_id, matches)

        with session_scope() as s:
            persistence.mark_keyword_active(s, keyword_id, outcome.updated)
    except Exception as e:
        final = ctx.is_final_attempt or isinstance(e, NonRetriableError)
        reason = str(e) or e.__class__.__name__
        _logger.error(
            "%s:failed keyword_id=%s attempt=%d final=%s error=%s",
            job,
            keyword_id,
            ctx.attempt,
            final,
            e.__class__.__name__,
        )
        try:
            with session_scope() as s:
                if final:
                    persistence.mark_keyword_failed(s, keyword_id, reason)
                else:
                    persistence.record_keyword_retry(s, keyword_id, reason)
        except SQLAlchemyError as db_err:
            _logger.error(
                "%s:status_write_failed keyword_id=%s error=%s",
                job,
                keyword_id,
                db_err.__class__.__name__,
            )
        raise

    _logger.info(
        "%s:done keyword_id=%s categorized=%d failed_rows=%d",
        job,
        keyword_id,
        outcome.updated,
        len(outcome.failed_ids),
    )
    return KeywordRunResult(
        keyword_id=keyword_id,
        matched=len(matches),
        categorized_count=outcome.updated,
        failed_ids=outcome.failed_ids,
    )


def categorize_by_keyword(payload: CategorizeByKeywordEvent, ctx: JobContext) -> KeywordRunResult:
    return _run_keyword_job(
        "categorize_by_keyword",
        user_id=payload.user_id,
        keyword_id=payload.keyword_id,
        keyword=payload.keyword,
        category_id=payload.category_id,
        fetch=persistence.fetch_uncategorized_transactions,
        ctx=ctx,
    )


def reassign_keyword(payload: ReassignKeywordEvent, ctx: JobContext) -> KeywordRunResult:
    return _run_keyword_job(
        "reassign_keyword",
        user_id=payload.user_id,
        keyword_id=payload.keyword_id,
        keyword=payload.keyword,
        category_id=payload.new_category_id,
        fetch=persistence.fetch_all_transactions,
        ctx=ctx,
    )


categorize_by_keyword_function = register(
    JobFunction(
        id="categorize-by-keyword",
        name="Categorize Transactions by Keyword",
        event=CATEGORIZE_BY_KEYWORD,
        handler=categorize_by_keyword,
    )
)

reassign_keyword_function = register(
    JobFunction(
        id="reassign-keyword",
        name="Reassign Keyword Transactions",
        event=REASSIGN_KEYWORD,
        handler=reassign_keyword,
    )
)


__all__ = [
    "CHUNK_SIZE",
    "categorize_by_keyword",
    "categorize_by_keyword_function",
    "reassign_keyword",
    "reassign_keyword_function",
]
