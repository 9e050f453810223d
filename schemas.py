from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from aggregation import AmountPair, Breakdown, BreakdownItem
from models import (
    TransactionCategory,
    TransactionEmotion,
    TransactionIntent,
    TransactionType,
)

TAKE_MIN = 1
TAKE_MAX = 50
DEFAULT_TOP_TRANSACTIONS_LIMIT = 5
DEFAULT_INSIGHTS_PAGE_SIZE = 3


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class AmountPairOut(CamelModel):
    local_currency: int
    usd: float

    @classmethod
    def from_pair(cls, pair: AmountPair) -> "AmountPairOut":
        return cls(local_currency=pair.local, usd=float(pair.usd))


class NetBalanceOut(CamelModel):
    period: str
    net_balance: AmountPairOut
    total_income: AmountPairOut
    total_expense: AmountPairOut


class BreakdownItemOut(CamelModel):
    group_key: str
    total_local: int
    total_usd: float
    percentage: float

    @classmethod
    def from_item(cls, item: BreakdownItem) -> "BreakdownItemOut":
        return cls(
            group_key=item.group_key,
            total_local=item.totals.local,
            total_usd=float(item.totals.usd),
            percentage=item.percentage,
        )


class BreakdownOut(CamelModel):
    """Spending, intent and emotion breakdowns share this shape."""

    period: str
    items: list[BreakdownItemOut] = Field(default_factory=list)
    grand_total_local: int
    grand_total_usd: float

    @classmethod
    def from_breakdown(cls, period: str, breakdown: Breakdown) -> "BreakdownOut":
        return cls(
            period=period,
            items=[BreakdownItemOut.from_item(item) for item in breakdown.items],
            grand_total_local=breakdown.grand_total.local,
            grand_total_usd=float(breakdown.grand_total.usd),
        )


class SavingsRateOut(CamelModel):
    period: str
    savings_rate_percent: float
    total_income: AmountPairOut
    total_expense: AmountPairOut
    savings_amount: AmountPairOut


class TopTransactionOut(CamelModel):
    amount: int
    amount_usd: float
    category: TransactionCategory
    type: TransactionType
    note: Optional[str] = None
    occurred_at: datetime


class TopTransactionsOut(CamelModel):
    period: str
    transactions: list[TopTransactionOut] = Field(default_factory=list)


class TopExpenseOut(CamelModel):
    category: TransactionCategory
    amount: int
    amount_usd: float
    intent: TransactionIntent
    emotion: TransactionEmotion
    note: Optional[str] = None
    occurred_at: datetime


class TopExpensesOut(CamelModel):
    period: str
    transactions: list[TopExpenseOut] = Field(default_factory=list)


class InsightOut(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    user_id: str
    period: str
    content: str
    created_at: datetime


class GenerateInsightPayload(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    user_id: str = Field(..., min_length=1)
