"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``statement_pipeline``.
"""

from .ledger import (
    Base,
    Category,
    CategoryKeyword,
    ExcludedKeyword,
    KeywordStatus,
    Statement,
    StatementStatus,
    Transaction,
    TransactionType,
)

__all__ = [
    "Base",
    "Category",
    "CategoryKeyword",
    "ExcludedKeyword",
    "KeywordStatus",
    "Statement",
    "StatementStatus",
    "Transaction",
    "TransactionType",
]
