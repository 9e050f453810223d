import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"


class TransactionCategory(str, Enum):
    daily_expenses = "DAILY_EXPENSES"
    transportation = "TRANSPORTATION"
    entertainment = "ENTERTAINMENT"
    housing = "HOUSING"
    health = "HEALTH"
    education = "EDUCATION"
    shopping = "SHOPPING"
    other = "OTHER"


class TransactionIntent(str, Enum):
    planned = "PLANNED"
    impulsive = "IMPULSIVE"
    mandatory = "MANDATORY"


class TransactionEmotion(str, Enum):
    satisfaction = "SATISFACTION"
    neutral = "NEUTRAL"
    regret = "REGRET"


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="user"
    )
    insights: Mapped[list["Insight"]] = relationship("Insight", back_populates="user")


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        _value_enum(TransactionType, "transactiontype"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_in_usd: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    category: Mapped[TransactionCategory] = mapped_column(
        _value_enum(TransactionCategory, "transactioncategory"), nullable=False
    )
    intent: Mapped[TransactionIntent] = mapped_column(
        _value_enum(TransactionIntent, "transactionintent"), nullable=False
    )
    emotion: Mapped[TransactionEmotion] = mapped_column(
        _value_enum(TransactionEmotion, "transactionemotion"), nullable=False
    )
    note: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index("ix_transactions_user_type_occurred", "user_id", "type", "occurred_at"),
        Index("ix_transactions_type_occurred", "type", "occurred_at"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )


class Insight(Base, TimestampMixin):
    __tablename__ = "insights"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    llm_model: Mapped[str] = mapped_column(String(100), nullable=False)
    llm_request_id: Mapped[str] = mapped_column(String(120), nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="insights")

    __table_args__ = (
        UniqueConstraint("user_id", "period", name="uq_insight_user_period"),
        Index("ix_insights_user_period_created", "user_id", "period", "created_at"),
    )
