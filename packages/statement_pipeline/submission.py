"""Upload-time services: the thin layer an HTTP handler or the CLI calls.

These run synchronously in the request. PDF problems come back as
:class:`PdfExtractionFailure` values so the caller can ask for a password
without a job ever being enqueued. Everything slow is handed to a job through
:func:`enqueue_or_run_inline`.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from db.client import session_scope
from db.models.ledger import KeywordStatus

from . import persistence
from .dispatch import Dispatch, enqueue_or_run_inline
from .errors import DuplicateKeywordError
from .events import (
    CategorizeByKeywordEvent,
    EventPayload,
    EventSender,
    ReassignKeywordEvent,
    StatementProcessEvent,
)
from .logging_setup import get_logger
from .pdf_extract import PdfErrorKind, PdfExtractionFailure, extract_pdf_text

MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024
KEYWORD_MAX_LENGTH = 100

_logger = get_logger("statement_pipeline.submission")


@dataclass(frozen=True, slots=True)
class SubmissionAccepted:
    statement_id: str
    dispatch: Dispatch

    ok = True

    @property
    def inline(self) -> bool:
        return self.dispatch.inline


@dataclass(frozen=True, slots=True)
class KeywordSubmission:
    keyword_id: str
    status: KeywordStatus
    dispatch: Dispatch | None = None


def submit_statement(
    *,
    user_id: str,
    card_id: str,
    file_name: str,
    data: bytes,
    sender: EventSender,
    password: str | None = None,
    file_type: str = "application/pdf",
) -> SubmissionAccepted | PdfExtractionFailure:
    """Extract text, create the statement, and queue processing.

    No statement is created when extraction fails.
    """

    if len(data) > MAX_FILE_SIZE_BYTES:
        return PdfExtractionFailure.of(
            PdfErrorKind.FILE_TOO_LARGE,
            f"File size exceeds {MAX_FILE_SIZE_BYTES // (1024 * 1024)}MB limit",
        )

    extraction = extract_pdf_text(data, password)
    if isinstance(extraction, PdfExtractionFailure):
        _logger.info(
            "submit_statement:extraction_failed user_id=%s kind=%s", user_id, extraction.kind
        )
        return extraction

    with session_scope() as s:
        statement = persistence.create_statement(
            s, user_id=user_id, card_id=card_id, file_name=file_name, file_type=file_type
        )
        statement_id = statement.id

    payload = StatementProcessEvent(
        statement_id=statement_id,
        user_id=user_id,
        card_id=card_id,
        file_name=file_name,
        extracted_text=extraction.text,
    )
    try:
        dispatch = enqueue_or_run_inline(sender, payload)
    except Exception as e:
        _logger.error(
            "submit_statement:enqueue_failed statement_id=%s error=%s",
            statement_id,
            e.__class__.__name__,
        )
        with session_scope() as s:
            persistence.mark_statement_failed(
                s, statement_id, f"Failed to queue statement for processing: {e}"
            )
        raise

    _logger.info(
        "submit_statement:queued statement_id=%s chars=%d inline=%s",
        statement_id,
        len(extraction.text),
        dispatch.inline,
    )
    return SubmissionAccepted(statement_id=statement_id, dispatch=dispatch)


def _enqueue_keyword_job(
    sender: EventSender, keyword_id: str, payload: EventPayload
) -> Dispatch:
    # No job exists after an enqueue error; the keyword must not stay categorizing.
    try:
        return enqueue_or_run_inline(sender, payload)
    except Exception as e:
        _logger.error(
            "keyword:enqueue_failed keyword_id=%s error=%s", keyword_id, e.__class__.__name__
        )
        with session_scope() as s:
            persistence.mark_keyword_failed(
                s, keyword_id, f"Failed to queue keyword categorization: {e}"
            )
        raise


def _clean_keyword(keyword: str) -> str:
    cleaned = (keyword or "").strip()
    if not cleaned:
        raise ValueError("Keyword is required")
    if len(cleaned) > KEYWORD_MAX_LENGTH:
        raise ValueError(f"Keyword must be {KEYWORD_MAX_LENGTH} characters or less")
    return cleaned


def create_keyword(
    *,
    user_id: str,
    category_id: str,
    keyword: str,
    sender: EventSender,
) -> KeywordSubmission:
    """Create a rule; categorize existing uncategorized rows in the background.

    The keyword starts ``categorizing`` only when the user has uncategorized
    transactions; otherwise it is ``active`` right away and no job runs.
    """

    cleaned = _clean_keyword(keyword)
    try:
        with session_scope() as s:
            persistence.get_category(s, category_id, user_id=user_id)
            pending = persistence.count_uncategorized_transactions(s, user_id)
            status = KeywordStatus.CATEGORIZING if pending else KeywordStatus.ACTIVE
            row = persistence.create_keyword(
                s, user_id=user_id, category_id=category_id, keyword=cleaned, status=status
            )
            keyword_id = row.id
    except IntegrityError as e:
        raise DuplicateKeywordError(f"Duplicate keyword: {cleaned}") from e

    _logger.info(
        "create_keyword:created keyword_id=%s status=%s uncategorized=%d",
        keyword_id,
        status,
        pending,
    )
    if status is not KeywordStatus.CATEGORIZING:
        return KeywordSubmission(keyword_id=keyword_id, status=status)

    dispatch = _enqueue_keyword_job(
        sender,
        keyword_id,
        CategorizeByKeywordEvent(
            user_id=user_id, keyword_id=keyword_id, keyword=cleaned, category_id=category_id
        ),
    )
    return KeywordSubmission(keyword_id=keyword_id, status=status, dispatch=dispatch)


def reassign_keyword(
    *,
    user_id: str,
    keyword_id: str,
    new_category_id: str,
    sender: EventSender,
) -> KeywordSubmission:
    """Point a keyword at another category and move its matching transactions."""

    with session_scope() as s:
        row = persistence.get_keyword(s, keyword_id, user_id=user_id)
        old_category_id = row.category_id
        if old_category_id == new_category_id:
            raise ValueError("Keyword already assigned to this category")
        persistence.get_category(s, new_category_id, user_id=user_id)
        persistence.set_keyword_categorizing(s, keyword_id, category_id=new_category_id)
        keyword_text = row.keyword

    dispatch = _enqueue_keyword_job(
        sender,
        keyword_id,
        ReassignKeywordEvent(
            user_id=user_id,
            keyword_id=keyword_id,
            keyword=keyword_text,
            old_category_id=old_category_id,
            new_category_id=new_category_id,
        ),
    )
    _logger.info(
        "reassign_keyword:queued keyword_id=%s old=%s new=%s inline=%s",
        keyword_id,
        old_category_id,
        new_category_id,
        dispatch.inline,
    )
    return KeywordSubmission(
        keyword_id=keyword_id, status=KeywordStatus.CATEGORIZING, dispatch=dispatch
    )


def retry_keyword(*, user_id: str, keyword_id: str, sender: EventSender) -> KeywordSubmission:
    """Reset a ``failed`` keyword to ``categorizing`` and run categorize-by-keyword again."""

    with session_scope() as s:
        row = persistence.get_keyword(s, keyword_id, user_id=user_id)
        if row.status != KeywordStatus.FAILED:
            raise ValueError(f"Only failed keywords can be retried (status={row.status})")
        persistence.set_keyword_categorizing(s, keyword_id)
        payload = CategorizeByKeywordEvent(
            user_id=user_id,
            keyword_id=keyword_id,
            keyword=row.keyword,
            category_id=row.category_id,
        )

    dispatch = _enqueue_keyword_job(sender, keyword_id, payload)
    _logger.info("retry_keyword:queued keyword_id=%s inline=%s", keyword_id, dispatch.inline)
    return KeywordSubmission(
        keyword_id=keyword_id, status=KeywordStatus.CATEGORIZING, dispatch=dispatch
    )


__all__ = [
    "KEYWORD_MAX_LENGTH",
    "MAX_FILE_SIZE_BYTES",
    "KeywordSubmission",
    "SubmissionAccepted",
    "create_keyword",
    "reassign_keyword",
    "retry_keyword",
    "submit_statement",
]
