# ruff: noqa: I001
"""Statement pipeline core tables.

Revision ID: 0001_statement_pipeline_core
Revises: None
Create Date: 2025-10-02
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_statement_pipeline_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_preset", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_categories_user_id", "categories", ["user_id"])

    op.create_table(
        "statements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("card_id", sa.String(36), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'processing'")),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at("uploaded_at"),
        sa.CheckConstraint(
            "status in ('processing','completed','failed')", name="ck_statements_status"
        ),
    )
    op.create_index("ix_statements_user_id", "statements", ["user_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "statement_id",
            sa.String(36),
            sa.ForeignKey("statements.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("card_id", sa.String(36), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("fingerprint_sha256", sa.String(64), nullable=True, unique=True),
        _created_at(),
        _created_at("updated_at"),
        sa.CheckConstraint("type in ('income','expense')", name="ck_transactions_type"),
        sa.CheckConstraint(
            "(type = 'expense' AND amount_cents <= 0) OR (type = 'income' AND amount_cents >= 0)",
            name="ck_transactions_amount_sign",
        ),
    )
    op.create_index("ix_transactions_user_category", "transactions", ["user_id", "category_id"])
    op.create_index("ix_transactions_statement", "transactions", ["statement_id"])

    op.create_table(
        "category_keywords",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("keyword", sa.String(100), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'active'")),
        sa.Column("categorized_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "status in ('categorizing','active','failed')", name="ck_category_keywords_status"
        ),
        sa.UniqueConstraint("user_id", "keyword", name="uq_category_keywords_user_keyword"),
    )
    op.create_index(
        "ix_category_keywords_user_created", "category_keywords", ["user_id", "created_at"]
    )

    op.create_table(
        "excluded_keywords",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("keyword", sa.String(100), nullable=False),
        _created_at(),
    )
    op.create_index("ix_excluded_keywords_user_id", "excluded_keywords", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_excluded_keywords_user_id", table_name="excluded_keywords")
    op.drop_table("excluded_keywords")
    op.drop_index("ix_category_keywords_user_created", table_name="category_keywords")
    op.drop_table("category_keywords")
    op.drop_index("ix_transactions_statement", table_name="transactions")
    op.drop_index("ix_transactions_user_category", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_statements_user_id", table_name="statements")
    op.drop_table("statements")
    op.drop_index("ix_categories_user_id", table_name="categories")
    op.drop_table("categories")
