"""Statement processing job.

Steps per attempt:

1. validate that the statement exists (non-retriable when it does not);
2. extract transaction candidates from the stored text with the model;
3. load the user's keyword rules, oldest first;
4. categorize each candidate and bulk-insert the rows, then mark the
   statement ``completed`` in the same database transaction.

Every step is safe to re-run. Inserted rows carry a per-statement fingerprint
so a retried attempt cannot duplicate them.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from db.client import session_scope
from db.models.ledger import StatementStatus, TransactionType

from .. import ai_extract, persistence
from ..categorization import categorize_transaction
from ..errors import NonRetriableError
from ..events import STATEMENT_PROCESS, StatementProcessEvent
from ..logging_setup import get_logger
from ..models import MAX_AMOUNT, CategoryRule, StatementRunResult, TransactionCandidate
from .runtime import JobContext, JobFunction, register

_logger = get_logger("statement_pipeline.jobs.process_statement")


def to_expense_cents(amount: Decimal) -> int:
    """Signed minor units for an expense: always ``<= 0``.

    Non-finite or out-of-range amounts become 0.
    """

    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        _logger.warning("process_statement:amount_out_of_range amount=%s", amount)
        return 0
    cents = (abs(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return -int(cents)


def build_transaction_rows(
    payload: StatementProcessEvent,
    candidates: Sequence[TransactionCandidate],
    rules: Sequence[CategoryRule],
    *,
    fallback_date: date,
) -> list[dict[str, Any]]:
    """Persisted-form rows for ``candidates``; every row is an expense."""

    now = datetime.now(UTC)
    rows: list[dict[str, Any]] = []
    for position, c in enumerate(candidates):
        tx_date = c.date or fallback_date
        amount_cents = to_expense_cents(c.amount)
        description = c.description or c.merchant
        rows.append(
            {
                "id": str(uuid.uuid4()),
                "user_id": payload.user_id,
                "statement_id": payload.statement_id,
                "card_id": payload.card_id,
                "description": description,
                "merchant": c.merchant,
                "transaction_date": tx_date,
                "category_id": categorize_transaction(description, c.merchant, rules),
                "currency": c.currency,
                "amount_cents": amount_cents,
                "type": TransactionType.EXPENSE.value,
                "fingerprint_sha256": persistence.compute_fingerprint(
                    statement_id=payload.statement_id,
                    position=position,
                    transaction_date=tx_date,
                    amount_cents=amount_cents,
                    currency=c.currency,
                    merchant=c.merchant,
                    description=description,
                ),
                "created_at": now,
                "updated_at": now,
            }
        )
    return rows


def _record_failure(statement_id: str, reason: str, *, final: bool) -> None:
    try:
        with session_scope() as s:
            if final:
                persistence.mark_statement_failed(s, statement_id, reason)
            else:
                persistence.record_statement_retry(s, statement_id, reason)
    except SQLAlchemyError as e:
        _logger.error(
            "process_statement:status_write_failed statement_id=%s error=%s",
            statement_id,
            e.__class__.__name__,
        )


def process_statement(payload: StatementProcessEvent, ctx: JobContext) -> StatementRunResult:
    sid = payload.statement_id
    _logger.info(
        "process_statement:start statement_id=%s attempt=%d text_len=%d",
        sid,
        ctx.attempt,
        len(payload.extracted_text),
    )
    try:
        with session_scope() as s:
            stmt = persistence.require_statement(s, sid)
            status = StatementStatus(stmt.status)
            uploaded_on = stmt.uploaded_at.date()
        if status.is_terminal:
            # Redelivered event for a statement that already finished.
            _logger.info("process_statement:already_terminal statement_id=%s status=%s", sid, status)
            return StatementRunResult(statement_id=sid, transactions_inserted=0, categorized_count=0)

        candidates, tokens = ai_extract.extract_transactions(payload.extracted_text)
        _logger.info(
            "process_statement:extracted statement_id=%s transactions=%d tokens=%d",
            sid,
            len(candidates),
            tokens,
        )

        with session_scope() as s:
            rules = persistence.load_keyword_rules(s, payload.user_id)

        rows = build_transaction_rows(payload, candidates, rules, fallback_date=uploaded_on)
        categorized = sum(1 for r in rows if r["category_id"] is not None)

        with session_scope() as s:
            inserted = persistence.insert_statement_transactions(s, rows)
            persistence.mark_statement_completed(s, sid)
    except Exception as e:
        final = ctx.is_final_attempt or isinstance(e, NonRetriableError)
        reason = str(e) or e.__class__.__name__
        _logger.error(
            "process_statement:failed statement_id=%s attempt=%d final=%s error=%s",
            sid,
            ctx.attempt,
            final,
            e.__class__.__name__,
        )
        _record_failure(sid, reason, final=final)
        raise

    _logger.info(
        "process_statement:done statement_id=%s inserted=%d categorized=%d rules=%d",
        sid,
        inserted,
        categorized,
        len(rules),
    )
    return StatementRunResult(
        statement_id=sid,
        transactions_inserted=inserted,
        categorized_count=categorized,
        total_tokens=tokens,
    )


process_statement_function = register(
    JobFunction(
        id="process-statement",
        name="Process Statement",
        event=STATEMENT_PROCESS,
        handler=process_statement,
    )
)


__all__ = [
    "build_transaction_rows",
    "process_statement",
    "process_statement_function",
    "to_expense_cents",
]
