from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional

from models import (
    TransactionCategory,
    TransactionEmotion,
    TransactionIntent,
    TransactionType,
)

PERCENTAGE_MULTIPLIER = 100
USD_QUANTUM = Decimal("0.01")


class GroupKey(str, Enum):
    category = "category"
    intent = "intent"
    emotion = "emotion"


@dataclass(frozen=True)
class TransactionProjection:
    type: TransactionType
    amount: int
    amount_in_usd: Decimal
    category: Optional[TransactionCategory] = None
    intent: Optional[TransactionIntent] = None
    emotion: Optional[TransactionEmotion] = None
    note: Optional[str] = None
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class AmountPair:
    local: int = 0
    usd: Decimal = Decimal("0")

    def __add__(self, other: AmountPair) -> AmountPair:
        return AmountPair(self.local + other.local, self.usd + other.usd)

    def __sub__(self, other: AmountPair) -> AmountPair:
        return AmountPair(self.local - other.local, self.usd - other.usd)

    def rounded(self) -> AmountPair:
        return AmountPair(self.local, self.usd.quantize(USD_QUANTUM, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class NetBalanceTotals:
    total_income: AmountPair
    total_expense: AmountPair
    net_balance: AmountPair


@dataclass(frozen=True)
class BreakdownItem:
    group_key: str
    totals: AmountPair
    percentage: float


@dataclass(frozen=True)
class Breakdown:
    items: list[BreakdownItem] = field(default_factory=list)
    grand_total: AmountPair = AmountPair()


def _pair(txn: TransactionProjection) -> AmountPair:
    return AmountPair(int(txn.amount), Decimal(txn.amount_in_usd))


def group_value(txn: TransactionProjection, group_key: GroupKey) -> str:
    if group_key == GroupKey.category:
        value: Optional[Enum] = txn.category
    elif group_key == GroupKey.intent:
        value = txn.intent
    elif group_key == GroupKey.emotion:
        value = txn.emotion
    else:
        raise ValueError(f"Unsupported group key: {group_key}")
    if value is None:
        raise ValueError(f"Transaction projection is missing {group_key.value}")
    return value.value


def net_balance(transactions: Iterable[TransactionProjection]) -> NetBalanceTotals:
    income = AmountPair()
    expense = AmountPair()
    for txn in transactions:
        if txn.type == TransactionType.income:
            income = income + _pair(txn)
        else:
            expense = expense + _pair(txn)
    return NetBalanceTotals(
        total_income=income,
        total_expense=expense,
        net_balance=(income - expense).rounded(),
    )


def percentage_of(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * PERCENTAGE_MULTIPLIER


def grouped_breakdown(
    transactions: Iterable[TransactionProjection], group_key: GroupKey
) -> Breakdown:
    """Fold transactions into per-group totals in one pass.

    Items keep the order in which each group first appears so that cached
    output is deterministic for a given input stream.
    """
    totals: dict[str, AmountPair] = {}
    grand_total = AmountPair()
    for txn in transactions:
        key = group_value(txn, group_key)
        pair = _pair(txn)
        totals[key] = totals.get(key, AmountPair()) + pair
        grand_total = grand_total + pair

    items = [
        BreakdownItem(
            group_key=key,
            totals=amounts,
            percentage=percentage_of(amounts.local, grand_total.local),
        )
        for key, amounts in totals.items()
    ]
    return Breakdown(items=items, grand_total=grand_total)


def savings_rate(total_income_local: int, total_expense_local: int) -> float:
    # zero-income months report 0 rather than an error
    if total_income_local <= 0:
        return 0.0
    rate = (total_income_local - total_expense_local) / total_income_local
    return round(rate * PERCENTAGE_MULTIPLIER, 2)
