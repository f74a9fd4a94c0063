"""Error taxonomy for the statement pipeline.

Three families matter to callers:

- ``NonRetriableError`` subclasses describe input or not-found problems. The
  job runtime stops on them and the statement/keyword goes straight to
  ``failed``.
- ``TransportUnavailableError`` means the event transport cannot be reached or
  is not configured. Enqueue helpers turn it into an inline run.
- Everything else (including ``AIRequestError`` and SQLAlchemy errors) is
  treated as transient and retried by the job runtime.

PDF extraction problems are not exceptions; see
:class:`statement_pipeline.pdf_extract.PdfExtractionFailure`.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class NonRetriableError(PipelineError):
    """A failure that another attempt cannot fix."""


class StatementNotFoundError(NonRetriableError):
    def __init__(self, statement_id: str) -> None:
        super().__init__(f"Statement {statement_id} not found")
        self.statement_id = statement_id


class KeywordNotFoundError(NonRetriableError):
    def __init__(self, keyword_id: str) -> None:
        super().__init__(f"Keyword {keyword_id} not found")
        self.keyword_id = keyword_id


class CategoryNotFoundError(NonRetriableError):
    def __init__(self, category_id: str) -> None:
        super().__init__(f"Category {category_id} not found")
        self.category_id = category_id


class InvalidAIResponseError(NonRetriableError):
    """The model output could not be turned into a transaction list."""

    code = "invalid_ai_response"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid AI response: {reason}")
        self.reason = reason


class AIRequestError(PipelineError):
    """The model call failed after the client's own retries."""


class DuplicateKeywordError(PipelineError):
    """The user already has a rule with this keyword text."""


class TransportUnavailableError(PipelineError):
    """The job-queue transport is unreachable or unconfigured."""


class EventSendError(PipelineError):
    """Enqueueing failed for a reason other than transport unavailability."""


__all__ = [
    "AIRequestError",
    "CategoryNotFoundError",
    "DuplicateKeywordError",
    "EventSendError",
    "InvalidAIResponseError",
    "KeywordNotFoundError",
    "NonRetriableError",
    "PipelineError",
    "StatementNotFoundError",
    "TransportUnavailableError",
]
