"""users, transactions and insights

Revision ID: 202610010000
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610010000"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "type",
            sa.Enum("INCOME", "EXPENSE", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("amount_in_usd", sa.Numeric(14, 2), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                "DAILY_EXPENSES",
                "TRANSPORTATION",
                "ENTERTAINMENT",
                "HOUSING",
                "HEALTH",
                "EDUCATION",
                "SHOPPING",
                "OTHER",
                name="transactioncategory",
            ),
            nullable=False,
        ),
        sa.Column(
            "intent",
            sa.Enum("PLANNED", "IMPULSIVE", "MANDATORY", name="transactionintent"),
            nullable=False,
        ),
        sa.Column(
            "emotion",
            sa.Enum("SATISFACTION", "NEUTRAL", "REGRET", name="transactionemotion"),
            nullable=False,
        ),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_occurred", "transactions", ["user_id", "occurred_at"]
    )
    op.create_index(
        "ix_transactions_user_type_occurred",
        "transactions",
        ["user_id", "type", "occurred_at"],
    )
    op.create_index(
        "ix_transactions_type_occurred", "transactions", ["type", "occurred_at"]
    )

    op.create_table(
        "insights",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("period", sa.String(7), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("llm_model", sa.String(100), nullable=False),
        sa.Column("llm_request_id", sa.String(120), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "period", name="uq_insight_user_period"),
    )
    op.create_index(
        "ix_insights_user_period_created",
        "insights",
        ["user_id", "period", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_insights_user_period_created", table_name="insights")
    op.drop_table("insights")
    op.drop_index("ix_transactions_type_occurred", table_name="transactions")
    op.drop_index("ix_transactions_user_type_occurred", table_name="transactions")
    op.drop_index("ix_transactions_user_occurred", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("users")
