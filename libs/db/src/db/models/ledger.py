from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------
# Closed status enumerations
# ---------------------------


class StatementStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not StatementStatus.PROCESSING


class KeywordStatus(StrEnum):
    CATEGORIZING = "categorizing"
    ACTIVE = "active"
    FAILED = "failed"


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


def _in_clause(column: str, enum_cls: type[StrEnum]) -> str:
    values = ",".join(f"'{m.value}'" for m in enum_cls)
    return f"{column} in ({values})"


# ---------------------------
# Reference: categories
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Preset categories are seeded per user; custom ones are user-created.
    is_preset: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------
# Core: statements
# ---------------------------


class Statement(Base):
    __tablename__ = "statements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # Cards are owned by the excluded CRUD layer; kept as an opaque reference.
    card_id: Mapped[str] = mapped_column(String(36), nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default=StatementStatus.PROCESSING.value,
        server_default=text(f"'{StatementStatus.PROCESSING.value}'"),
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", StatementStatus), name="ck_statements_status"),
    )


# ---------------------------
# Core: transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # NULL for manually entered transactions.
    statement_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("statements.id", ondelete="CASCADE"),
        nullable=True,
    )
    card_id: Mapped[str] = mapped_column(String(36), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    # Signed minor units: expenses negative, income positive.
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    # Pipeline rows carry a per-statement row hash so job retries cannot
    # double-insert. Manual rows leave it NULL.
    fingerprint_sha256: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(_in_clause("type", TransactionType), name="ck_transactions_type"),
        CheckConstraint(
            "(type = 'expense' AND amount_cents <= 0) OR (type = 'income' AND amount_cents >= 0)",
            name="ck_transactions_amount_sign",
        ),
        Index("ix_transactions_user_category", "user_id", "category_id"),
        Index("ix_transactions_statement", "statement_id"),
    )


# ---------------------------
# Rules: category_keywords / excluded_keywords
# ---------------------------


class CategoryKeyword(Base):
    __tablename__ = "category_keywords"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    category_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    keyword: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default=KeywordStatus.ACTIVE.value,
        server_default=text(f"'{KeywordStatus.ACTIVE.value}'"),
    )
    # Result of the last completed job run, not a running total.
    categorized_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", KeywordStatus), name="ck_category_keywords_status"),
        UniqueConstraint("user_id", "keyword", name="uq_category_keywords_user_keyword"),
        Index("ix_category_keywords_user_created", "user_id", "created_at"),
    )


class ExcludedKeyword(Base):
    """User-level suppression list. Stored only; the categorization path ignores it."""

    __tablename__ = "excluded_keywords"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    keyword: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
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
