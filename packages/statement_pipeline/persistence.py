# ruff: noqa: I001
"""Persistence integration for the statement pipeline.

Functions here read and write the shared ledger tables owned by ``libs/db``.
They rely on SQLAlchemy ORM models defined in ``db.models.ledger`` and take an
open ``Session``; transaction boundaries belong to the caller
(``db.client.session_scope``).

Scope:
- Statement lookups and forward-only status transitions.
- Keyword rule loading and keyword status transitions.
- Idempotent bulk insert of pipeline-produced transactions.
- Compare-and-set category updates for keyword jobs.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.ledger import (
    Category,
    CategoryKeyword,
    KeywordStatus,
    Statement,
    StatementStatus,
    Transaction,
)
from .errors import CategoryNotFoundError, KeywordNotFoundError, StatementNotFoundError
from .logging_setup import get_logger
from .models import CategoryAssignment, CategoryRule, MatchableTransaction

_logger = get_logger("statement_pipeline.persistence")

# Allowed source states for each target state.
_STATEMENT_TRANSITIONS: dict[StatementStatus, frozenset[StatementStatus]] = {
    StatementStatus.PROCESSING: frozenset(),
    StatementStatus.COMPLETED: frozenset({StatementStatus.PROCESSING}),
    StatementStatus.FAILED: frozenset({StatementStatus.PROCESSING}),
}
_KEYWORD_TRANSITIONS: dict[KeywordStatus, frozenset[KeywordStatus]] = {
    KeywordStatus.CATEGORIZING: frozenset(KeywordStatus),
    KeywordStatus.ACTIVE: frozenset({KeywordStatus.CATEGORIZING}),
    KeywordStatus.FAILED: frozenset({KeywordStatus.CATEGORIZING}),
}


def _sources(table: Mapping[Any, frozenset[Any]], target: Any) -> list[str]:
    return sorted(s.value for s in table[target])


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


def create_statement(
    session: Session,
    *,
    user_id: str,
    card_id: str,
    file_name: str,
    file_type: str = "application/pdf",
) -> Statement:
    stmt = Statement(
        user_id=user_id,
        card_id=card_id,
        file_name=file_name,
        file_type=file_type,
        status=StatementStatus.PROCESSING.value,
        retry_count=0,
    )
    session.add(stmt)
    session.flush()
    return stmt


def get_statement(session: Session, statement_id: str) -> Statement | None:
    return session.get(Statement, statement_id)


def require_statement(session: Session, statement_id: str) -> Statement:
    stmt = get_statement(session, statement_id)
    if stmt is None:
        raise StatementNotFoundError(statement_id)
    return stmt


def _transition_statement(
    session: Session,
    statement_id: str,
    target: StatementStatus,
    *,
    failure_reason: str | None,
) -> bool:
    result = session.execute(
        update(Statement)
        .where(
            Statement.id == statement_id,
            Statement.status.in_(_sources(_STATEMENT_TRANSITIONS, target)),
        )
        .values(status=target.value, failure_reason=failure_reason)
    )
    changed = (result.rowcount or 0) > 0
    if not changed:
        _logger.warning(
            "statement_status:transition_skipped statement_id=%s target=%s",
            statement_id,
            target.value,
        )
    return changed


def mark_statement_completed(session: Session, statement_id: str) -> bool:
    """``processing -> completed``; clears the failure reason."""

    return _transition_statement(
        session, statement_id, StatementStatus.COMPLETED, failure_reason=None
    )


def mark_statement_failed(session: Session, statement_id: str, reason: str) -> bool:
    """``processing -> failed`` with a user-visible reason."""

    return _transition_statement(
        session, statement_id, StatementStatus.FAILED, failure_reason=reason or "Unknown error"
    )


def record_statement_retry(session: Session, statement_id: str, reason: str) -> bool:
    """Note a failed attempt that will be retried; status stays ``processing``."""

    result = session.execute(
        update(Statement)
        .where(
            Statement.id == statement_id,
            Statement.status == StatementStatus.PROCESSING.value,
        )
        .values(retry_count=Statement.retry_count + 1, failure_reason=reason)
    )
    return (result.rowcount or 0) > 0


# ---------------------------------------------------------------------------
# Keyword rules
# ---------------------------------------------------------------------------


def get_category(session: Session, category_id: str, *, user_id: str) -> Category:
    row = session.get(Category, category_id)
    if row is None or row.user_id != user_id:
        raise CategoryNotFoundError(category_id)
    return row


def load_keyword_rules(session: Session, user_id: str) -> list[CategoryRule]:
    """All of the user's rules, oldest first (oldest = highest priority)."""

    rows = session.execute(
        select(CategoryKeyword.category_id, CategoryKeyword.keyword)
        .where(CategoryKeyword.user_id == user_id)
        .order_by(CategoryKeyword.created_at.asc(), CategoryKeyword.id.asc())
    ).all()
    return [CategoryRule(category_id=r.category_id, keyword=r.keyword) for r in rows]


def create_keyword(
    session: Session,
    *,
    user_id: str,
    category_id: str,
    keyword: str,
    status: KeywordStatus,
) -> CategoryKeyword:
    row = CategoryKeyword(
        user_id=user_id,
        category_id=category_id,
        keyword=keyword,
        status=status.value,
        categorized_count=0,
    )
    session.add(row)
    session.flush()
    return row


def get_keyword(session: Session, keyword_id: str, *, user_id: str | None = None) -> CategoryKeyword:
    row = session.get(CategoryKeyword, keyword_id)
    if row is None or (user_id is not None and row.user_id != user_id):
        raise KeywordNotFoundError(keyword_id)
    return row


def _transition_keyword(
    session: Session,
    keyword_id: str,
    target: KeywordStatus,
    **values: Any,
) -> bool:
    result = session.execute(
        update(CategoryKeyword)
        .where(
            CategoryKeyword.id == keyword_id,
            CategoryKeyword.status.in_(_sources(_KEYWORD_TRANSITIONS, target)),
        )
        .values(status=target.value, **values)
    )
    changed = (result.rowcount or 0) > 0
    if not changed:
        _logger.warning(
            "keyword_status:transition_skipped keyword_id=%s target=%s",
            keyword_id,
            target.value,
        )
    return changed


def set_keyword_categorizing(
    session: Session, keyword_id: str, *, category_id: str | None = None
) -> bool:
    values: dict[str, Any] = {"failure_reason": None}
    if category_id is not None:
        values["category_id"] = category_id
    return _transition_keyword(session, keyword_id, KeywordStatus.CATEGORIZING, **values)


def mark_keyword_active(session: Session, keyword_id: str, categorized_count: int) -> bool:
    return _transition_keyword(
        session,
        keyword_id,
        KeywordStatus.ACTIVE,
        categorized_count=categorized_count,
        failure_reason=None,
    )


def mark_keyword_failed(session: Session, keyword_id: str, reason: str) -> bool:
    return _transition_keyword(
        session, keyword_id, KeywordStatus.FAILED, failure_reason=reason or "Unknown error"
    )


def record_keyword_retry(session: Session, keyword_id: str, reason: str) -> None:
    session.execute(
        update(CategoryKeyword)
        .where(
            CategoryKeyword.id == keyword_id,
            CategoryKeyword.status == KeywordStatus.CATEGORIZING.value,
        )
        .values(failure_reason=reason)
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def compute_fingerprint(
    *,
    statement_id: str,
    position: int,
    transaction_date: date,
    amount_cents: int,
    currency: str,
    merchant: str | None,
    description: str | None,
) -> str:
    """Stable SHA-256 over the fields that identify one extracted statement row.

    ``position`` keeps genuinely repeated rows (same day, merchant and amount)
    distinct while re-runs of the same extraction collide.
    """

    payload = {
        "statement_id": statement_id,
        "position": position,
        "date": transaction_date.isoformat(),
        "amount_cents": amount_cents,
        "currency": (currency or "").upper(),
        "merchant": (merchant or "").strip() or None,
        "description": (description or "").strip() or None,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def insert_statement_transactions(session: Session, rows: Sequence[Mapping[str, Any]]) -> int:
    """Insert ``rows`` in one statement; rows whose fingerprint exists are skipped.

    Returns the number of rows actually inserted.
    """

    if not rows:
        return 0
    dialect = session.get_bind().dialect.name
    insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = (
        insert_fn(Transaction.__table__)
        .values([dict(r) for r in rows])
        .on_conflict_do_nothing(index_elements=["fingerprint_sha256"])
    )
    result = session.execute(stmt)
    inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(rows)
    if inserted < len(rows):
        _logger.info(
            "insert_statement_transactions:duplicates_skipped rows=%d inserted=%d",
            len(rows),
            inserted,
        )
    return inserted


def _matchable(rows: Iterable[Any]) -> list[MatchableTransaction]:
    return [
        MatchableTransaction(
            id=r.id, description=r.description, merchant=r.merchant, category_id=r.category_id
        )
        for r in rows
    ]


def fetch_uncategorized_transactions(session: Session, user_id: str) -> list[MatchableTransaction]:
    rows = session.execute(
        select(
            Transaction.id, Transaction.description, Transaction.merchant, Transaction.category_id
        )
        .where(Transaction.user_id == user_id, Transaction.category_id.is_(None))
        .order_by(Transaction.id)
    ).all()
    return _matchable(rows)


def fetch_all_transactions(session: Session, user_id: str) -> list[MatchableTransaction]:
    rows = session.execute(
        select(
            Transaction.id, Transaction.description, Transaction.merchant, Transaction.category_id
        )
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.id)
    ).all()
    return _matchable(rows)


def count_uncategorized_transactions(session: Session, user_id: str) -> int:
    return session.execute(
        select(func.count())
        .select_from(Transaction)
        .where(Transaction.user_id == user_id, Transaction.category_id.is_(None))
    ).scalar_one()


@dataclass(frozen=True, slots=True)
class AssignmentOutcome:
    updated: int
    failed_ids: tuple[str, ...] = ()


def apply_category_assignments(
    session: Session,
    *,
    user_id: str,
    assignments: Sequence[CategoryAssignment],
) -> AssignmentOutcome:
    """Move each transaction to its target category if it is still where we saw it.

    Every row is a compare-and-set on the observed category inside its own
    SAVEPOINT: a row changed concurrently by another job is left alone, and a
    row whose update fails does not abort the rest. Only rows whose category
    actually changed are counted.
    """

    updated = 0
    failed: list[str] = []
    for a in assignments:
        try:
            with session.begin_nested():
                result = session.execute(
                    update(Transaction)
                    .where(
                        Transaction.id == a.transaction_id,
                        Transaction.user_id == user_id,
                        Transaction.category_id.is_not_distinct_from(a.observed_category_id),
                        Transaction.category_id.is_distinct_from(a.category_id),
                    )
                    .values(category_id=a.category_id, updated_at=datetime.now(UTC))
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            failed.append(a.transaction_id)
            _logger.warning(
                "apply_category_assignments:row_failed transaction_id=%s error=%s",
                a.transaction_id,
                e.__class__.__name__,
            )
            continue
        updated += result.rowcount or 0
    return AssignmentOutcome(updated=updated, failed_ids=tuple(failed))


__all__ = [
    "AssignmentOutcome",
    "apply_category_assignments",
    "compute_fingerprint",
    "count_uncategorized_transactions",
    "create_keyword",
    "create_statement",
    "fetch_all_transactions",
    "fetch_uncategorized_transactions",
    "get_category",
    "get_keyword",
    "get_statement",
    "insert_statement_transactions",
    "load_keyword_rules",
    "mark_keyword_active",
    "mark_keyword_failed",
    "mark_statement_completed",
    "mark_statement_failed",
    "record_keyword_retry",
    "record_statement_retry",
    "require_statement",
    "set_keyword_categorizing",
]
