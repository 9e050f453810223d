from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models import (
    Transaction,
    TransactionCategory,
    TransactionEmotion,
    TransactionIntent,
    TransactionType,
    User,
)


def add_user(session: Session, email: str, user_id: Optional[str] = None) -> User:
    user = User(id=user_id, email=email) if user_id else User(email=email)
    session.add(user)
    session.flush()
    return user


def add_transaction(
    session: Session,
    user: User,
    type: TransactionType,
    amount: int,
    usd: str,
    occurred_at: datetime,
    *,
    category: TransactionCategory = TransactionCategory.daily_expenses,
    intent: TransactionIntent = TransactionIntent.planned,
    emotion: TransactionEmotion = TransactionEmotion.neutral,
    note: Optional[str] = None,
) -> Transaction:
    txn = Transaction(
        user_id=user.id,
        type=type,
        amount=amount,
        amount_in_usd=Decimal(usd),
        category=category,
        intent=intent,
        emotion=emotion,
        note=note,
        occurred_at=occurred_at,
    )
    session.add(txn)
    session.flush()
    return txn


def utc(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)
