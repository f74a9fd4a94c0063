"""Keyword-based categorization engine.

Rules are ``(category_id, keyword)`` pairs evaluated in list order. A rule
matches when its normalized keyword is a substring of the transaction's
normalized search text; the first matching rule wins. There is no scoring
and no cross-transaction state.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .models import CategoryAssignment, CategoryRule, MatchableTransaction
from .normalizers import build_search_text, normalize_text


def _matches(search_text: str, normalized_keyword: str) -> bool:
    # An empty keyword would match everything; treat it as never matching.
    return bool(normalized_keyword) and normalized_keyword in search_text


def categorize_transaction(
    description: str | None,
    merchant: str | None,
    rules: Sequence[CategoryRule],
) -> str | None:
    """Return the category id of the first matching rule, or ``None``."""

    if not rules:
        return None
    search_text = build_search_text(description, merchant)
    for rule in rules:
        if _matches(search_text, normalize_text(rule.keyword)):
            return rule.category_id
    return None


def categorize_transactions(
    transactions: Iterable[MatchableTransaction],
    rules: Sequence[CategoryRule],
) -> dict[str, str | None]:
    """Bulk variant: ``{transaction_id: category_id | None}`` in input order."""

    # Normalize keywords once for the whole batch.
    prepared = [(r.category_id, normalize_text(r.keyword)) for r in rules]
    out: dict[str, str | None] = {}
    for tx in transactions:
        search_text = build_search_text(tx.description, tx.merchant)
        out[tx.id] = next(
            (cat for cat, kw in prepared if _matches(search_text, kw)),
            None,
        )
    return out


def find_matching_transactions_for_keyword(
    transactions: Iterable[MatchableTransaction],
    keyword: str,
    category_id: str,
) -> list[CategoryAssignment]:
    """Every transaction whose search text contains ``keyword``.

    The current category of each transaction is ignored for matching and
    carried along as ``observed_category_id``.
    """

    normalized = normalize_text(keyword)
    if not normalized:
        return []
    return [
        CategoryAssignment(
            transaction_id=tx.id,
            category_id=category_id,
            observed_category_id=tx.category_id,
        )
        for tx in transactions
        if _matches(build_search_text(tx.description, tx.merchant), normalized)
    ]


__all__ = [
    "categorize_transaction",
    "categorize_transactions",
    "find_matching_transactions_for_keyword",
]
