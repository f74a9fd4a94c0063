"""Defensive parsing of the model's transaction-extraction output.

The model is asked for a bare JSON array but may wrap it in a fenced code
block or surround it with prose. :func:`parse_ai_response` never raises for
bad model output; it returns :class:`ParsedTransactions` or
:class:`ParseFailure` and leaves the decision to the caller.
"""

from __future__ import annotations

import json
import os
import re
from typing import Any

from pydantic import ValidationError

from .logging_setup import get_logger
from .models import (
    DEFAULT_CURRENCY,
    ParsedTransactions,
    ParseFailure,
    ParseResult,
    TransactionCandidate,
)

_FENCED_ARRAY_RE = re.compile(r"```(?:json)?\s*(\[.*?\])\s*```", re.DOTALL)

_logger = get_logger("statement_pipeline.extraction_parsing")


def resolve_default_currency() -> str:
    return (os.getenv("STATEMENT_PIPELINE_DEFAULT_CURRENCY") or DEFAULT_CURRENCY).upper()


def _locate_array(content: str) -> str | None:
    fenced = _FENCED_ARRAY_RE.search(content)
    if fenced:
        return fenced.group(1)
    start = content.find("[")
    end = content.rfind("]")
    if start >= 0 and end > start:
        return content[start : end + 1]
    return None


def parse_ai_response(content: str, *, default_currency: str | None = None) -> ParseResult:
    """Turn raw model text into typed transaction candidates."""

    json_str = _locate_array(content or "")
    if json_str is None:
        return ParseFailure("No JSON array found in AI response")

    try:
        decoded: Any = json.loads(json_str)
    except json.JSONDecodeError as e:
        return ParseFailure(f"Invalid JSON in AI response: {e.msg}")
    if not isinstance(decoded, list):
        return ParseFailure("AI response is not an array")

    ctx = {"default_currency": default_currency or resolve_default_currency()}
    out: list[TransactionCandidate] = []
    skipped = 0
    for idx, item in enumerate(decoded):
        if not isinstance(item, dict):
            skipped += 1
            _logger.warning("parse_ai_response:skip idx=%d type=%s", idx, type(item).__name__)
            continue
        try:
            out.append(TransactionCandidate.model_validate(item, context=ctx))
        except ValidationError as e:
            skipped += 1
            _logger.warning("parse_ai_response:skip idx=%d errors=%d", idx, e.error_count())
    return ParsedTransactions(transactions=tuple(out), skipped=skipped)


__all__ = ["parse_ai_response", "resolve_default_currency"]
