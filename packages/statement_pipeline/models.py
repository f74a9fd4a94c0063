"""Data models shared across the statement pipeline.

Two flavors live here:

- Small frozen dataclasses / NamedTuples for values passed between pure
  functions (rules, matchable transactions, category assignments).
- Pydantic models where untrusted input must be coerced. The AI output is the
  main case: :class:`TransactionCandidate` turns one loosely-shaped JSON object
  into a typed record, with an explicit fallback for every field so that a
  single malformed value never fails the whole batch.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, NamedTuple, TypeAlias

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator, model_validator

DEFAULT_CURRENCY = "PEN"
UNKNOWN_MERCHANT = "Unknown"
# Largest accepted single amount in major units; larger values fall back to 0.
MAX_AMOUNT = Decimal("1000000000000")

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
# Keep digits, the decimal point, thousands separators and a sign.
_AMOUNT_NOISE_RE = re.compile(r"[^0-9.,\-]")

# ---------------------------------------------------------------------------
# Categorization inputs/outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryRule:
    """One user keyword rule. Order in a rule list is priority order."""

    category_id: str
    keyword: str


@dataclass(frozen=True, slots=True)
class MatchableTransaction:
    """The fields the matcher needs from a stored or candidate transaction."""

    id: str
    description: str | None
    merchant: str | None = None
    category_id: str | None = None


class CategoryAssignment(NamedTuple):
    """``transaction_id`` should move to ``category_id``.

    ``observed_category_id`` is the category seen when the match was computed;
    updates are applied only if the row still holds it.
    """

    transaction_id: str
    category_id: str
    observed_category_id: str | None = None


# ---------------------------------------------------------------------------
# AI extraction
# ---------------------------------------------------------------------------


class Completion(NamedTuple):
    text: str
    total_tokens: int


def _bounded(value: Decimal) -> Decimal:
    if not value.is_finite() or abs(value) > MAX_AMOUNT:
        return Decimal("0")
    return abs(value)


def _coerce_amount(raw: Any) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        return Decimal("0")
    if isinstance(raw, (int, float, Decimal)):
        try:
            return _bounded(Decimal(str(raw)))
        except InvalidOperation:
            return Decimal("0")
    if isinstance(raw, str):
        cleaned = _AMOUNT_NOISE_RE.sub("", raw).replace(",", "")
        if not cleaned:
            return Decimal("0")
        try:
            return _bounded(Decimal(cleaned))
        except InvalidOperation:
            return Decimal("0")
    return Decimal("0")


def _coerce_date(raw: Any) -> dt.date | None:
    if isinstance(raw, dt.datetime):
        return raw.date()
    if isinstance(raw, dt.date):
        return raw
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if len(s) < 10:
        return None
    try:
        return dt.date.fromisoformat(s[:10])
    except ValueError:
        return None


def _clean_str(raw: Any) -> str | None:
    if raw is None or isinstance(raw, (dict, list)):
        return None
    s = str(raw).strip()
    return s or None


class TransactionCandidate(BaseModel):
    """An AI-extracted, not-yet-persisted transaction.

    Validate with ``TransactionCandidate.model_validate(obj, context={...})``;
    the optional ``default_currency`` context key overrides
    :data:`DEFAULT_CURRENCY`.
    """

    model_config = ConfigDict(frozen=True)

    date: dt.date | None = None
    merchant: str = UNKNOWN_MERCHANT
    description: str = ""
    # Positive magnitude; the ledger sign is applied at persistence time.
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY

    @model_validator(mode="before")
    @classmethod
    def _fill_fallbacks(cls, data: Any, info: ValidationInfo) -> Any:
        if not isinstance(data, dict):
            return data
        ctx = info.context or {}
        default_currency = str(ctx.get("default_currency") or DEFAULT_CURRENCY).upper()

        merchant = _clean_str(data.get("merchant")) or UNKNOWN_MERCHANT
        description = _clean_str(data.get("description"))
        if description is None:
            raw_merchant = _clean_str(data.get("merchant"))
            description = raw_merchant or ""
        currency = (_clean_str(data.get("currency")) or "").upper()
        if not _CURRENCY_RE.match(currency):
            currency = default_currency

        return {
            "date": _coerce_date(data.get("date")),
            "merchant": merchant,
            "description": description,
            "amount": _coerce_amount(data.get("amount")),
            "currency": currency,
        }

    @field_validator("amount")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        return abs(v)


@dataclass(frozen=True, slots=True)
class ParsedTransactions:
    transactions: tuple[TransactionCandidate, ...]
    skipped: int = 0

    ok = True


@dataclass(frozen=True, slots=True)
class ParseFailure:
    reason: str

    ok = False


ParseResult: TypeAlias = ParsedTransactions | ParseFailure


# ---------------------------------------------------------------------------
# Job results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatementRunResult:
    statement_id: str
    transactions_inserted: int
    categorized_count: int
    total_tokens: int = 0


@dataclass(frozen=True, slots=True)
class KeywordRunResult:
    keyword_id: str
    matched: int
    categorized_count: int
    failed_ids: tuple[str, ...] = field(default_factory=tuple)


__all__ = [
    "DEFAULT_CURRENCY",
    "MAX_AMOUNT",
    "UNKNOWN_MERCHANT",
    "CategoryAssignment",
    "CategoryRule",
    "Completion",
    "KeywordRunResult",
    "MatchableTransaction",
    "ParseFailure",
    "ParseResult",
    "ParsedTransactions",
    "StatementRunResult",
    "TransactionCandidate",
]
