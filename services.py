from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aggregation import (
    GroupKey,
    TransactionProjection,
    grouped_breakdown,
    net_balance,
    savings_rate,
)
from analytics_cache import (
    NET_BALANCE,
    SAVINGS_RATE,
    TOP_EXPENSES,
    TOP_TRANSACTIONS,
    AnalyticsCache,
    breakdown_metric,
)
from jobs import Backoff, Job, JobOptions, JobQueue
from models import Insight, Transaction, TransactionType, User
from periods import Period, resolve_period
from schemas import (
    DEFAULT_INSIGHTS_PAGE_SIZE,
    DEFAULT_TOP_TRANSACTIONS_LIMIT,
    AmountPairOut,
    BreakdownOut,
    NetBalanceOut,
    SavingsRateOut,
    TopExpenseOut,
    TopExpensesOut,
    TopTransactionOut,
    TopTransactionsOut,
)
from text_generation import TextGenerationClient

logger = logging.getLogger(__name__)

GENERATE_JOB = "generate"
INSIGHTS_QUEUE = "insights"
INSIGHT_JOB_OPTIONS = JobOptions(
    attempts=3,
    backoff=Backoff(type="exponential", delay_ms=5000),
    remove_on_complete=True,
    remove_on_fail=False,
)

INSIGHT_INSTRUCTIONS = """You are a personal finance coach writing a short monthly review.

You receive the review period, the user's net balance for that period
(local currency and USD) and the user's largest expenses with their
category, intent, emotion and note.

Write three to five short paragraphs in plain language:
- summarise how the month went, using the net balance
- point out spending patterns across categories, intents and emotions
- call out impulsive or regretted purchases without judgement
- end with one or two concrete, realistic suggestions for next month

Do not invent transactions or numbers that are not in the input.
"""

_PROJECTION_COLUMNS = {
    "type": Transaction.type,
    "amount": Transaction.amount,
    "amount_in_usd": Transaction.amount_in_usd,
    "category": Transaction.category,
    "intent": Transaction.intent,
    "emotion": Transaction.emotion,
    "note": Transaction.note,
    "occurred_at": Transaction.occurred_at,
}
_AMOUNT_FIELDS = ("type", "amount", "amount_in_usd")


class InsightNotFound(LookupError):
    pass


class InsightAlreadyExists(ValueError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EligibleUser:
    user_id: str
    count: int


class TransactionReader:
    """Read-only projections of the transactions table."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_period(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        fields: Sequence[str] = (),
        transaction_type: Optional[TransactionType] = None,
    ) -> list[TransactionProjection]:
        names = list(_AMOUNT_FIELDS) + [f for f in fields if f not in _AMOUNT_FIELDS]
        unknown = [name for name in names if name not in _PROJECTION_COLUMNS]
        if unknown:
            raise ValueError(f"Unknown transaction fields: {', '.join(unknown)}")

        stmt = select(*[_PROJECTION_COLUMNS[name].label(name) for name in names]).where(
            Transaction.user_id == user_id,
            Transaction.occurred_at >= start,
            Transaction.occurred_at < end,
        )
        if transaction_type is not None:
            stmt = stmt.where(Transaction.type == transaction_type)
        rows = self.session.execute(stmt).all()
        return [TransactionProjection(**row._asdict()) for row in rows]

    def find_top_expenses(
        self, user_id: str, start: datetime, end: datetime, limit: int
    ) -> list[TransactionProjection]:
        stmt = (
            select(*[column.label(name) for name, column in _PROJECTION_COLUMNS.items()])
            .where(
                Transaction.user_id == user_id,
                Transaction.type == TransactionType.expense,
                Transaction.occurred_at >= start,
                Transaction.occurred_at < end,
            )
            .order_by(Transaction.amount.desc(), Transaction.occurred_at.asc())
            .limit(limit)
        )
        rows = self.session.execute(stmt).all()
        return [TransactionProjection(**row._asdict()) for row in rows]

    def group_by_user_with_min_count(
        self, min_count: int, start: datetime, end: datetime
    ) -> list[EligibleUser]:
        count = func.count(Transaction.id).label("count")
        stmt = (
            select(Transaction.user_id, count)
            .join(User, User.id == Transaction.user_id)
            .where(
                Transaction.type == TransactionType.expense,
                Transaction.occurred_at >= start,
                Transaction.occurred_at < end,
            )
            .group_by(Transaction.user_id)
            .having(func.count(Transaction.id) >= min_count)
            .order_by(count.desc(), Transaction.user_id)
        )
        return [
            EligibleUser(user_id=row.user_id, count=int(row.count))
            for row in self.session.execute(stmt).all()
        ]


class AnalyticsService:
    def __init__(self, reader: TransactionReader, cache: AnalyticsCache) -> None:
        self.reader = reader
        self.cache = cache

    def net_balance(self, user_id: str, period_label: Optional[str] = None) -> NetBalanceOut:
        period = resolve_period(period_label)
        key = self.cache.key(NET_BALANCE, user_id, period.label)

        def compute() -> NetBalanceOut:
            transactions = self.reader.find_by_period(user_id, period.start, period.end)
            totals = net_balance(transactions)
            return NetBalanceOut(
                period=period.label,
                net_balance=AmountPairOut.from_pair(totals.net_balance),
                total_income=AmountPairOut.from_pair(totals.total_income),
                total_expense=AmountPairOut.from_pair(totals.total_expense),
            )

        return self.cache.get_or_compute(
            key, self.cache.ttl_for(NET_BALANCE), compute, NetBalanceOut
        )

    def breakdown(
        self, user_id: str, group_key: GroupKey, period_label: Optional[str] = None
    ) -> BreakdownOut:
        period = resolve_period(period_label)
        metric = breakdown_metric(group_key)
        key = self.cache.key(metric, user_id, period.label)

        def compute() -> BreakdownOut:
            transactions = self.reader.find_by_period(
                user_id,
                period.start,
                period.end,
                fields=[group_key.value],
                transaction_type=TransactionType.expense,
            )
            return BreakdownOut.from_breakdown(
                period.label, grouped_breakdown(transactions, group_key)
            )

        return self.cache.get_or_compute(
            key, self.cache.ttl_for(metric), compute, BreakdownOut
        )

    def spending_breakdown(self, user_id: str, period_label: Optional[str] = None) -> BreakdownOut:
        return self.breakdown(user_id, GroupKey.category, period_label)

    def intent_breakdown(self, user_id: str, period_label: Optional[str] = None) -> BreakdownOut:
        return self.breakdown(user_id, GroupKey.intent, period_label)

    def emotion_breakdown(self, user_id: str, period_label: Optional[str] = None) -> BreakdownOut:
        return self.breakdown(user_id, GroupKey.emotion, period_label)

    def savings_rate(self, user_id: str, period_label: Optional[str] = None) -> SavingsRateOut:
        period = resolve_period(period_label)
        key = self.cache.key(SAVINGS_RATE, user_id, period.label)

        def compute() -> SavingsRateOut:
            balance = self.net_balance(user_id, period.label)
            return SavingsRateOut(
                period=balance.period,
                savings_rate_percent=savings_rate(
                    balance.total_income.local_currency,
                    balance.total_expense.local_currency,
                ),
                total_income=balance.total_income,
                total_expense=balance.total_expense,
                savings_amount=balance.net_balance,
            )

        return self.cache.get_or_compute(
            key, self.cache.ttl_for(SAVINGS_RATE), compute, SavingsRateOut
        )

    def top_transactions(
        self,
        user_id: str,
        period_label: Optional[str] = None,
        take: int = DEFAULT_TOP_TRANSACTIONS_LIMIT,
    ) -> TopTransactionsOut:
        period = resolve_period(period_label)
        key = self.cache.key(TOP_TRANSACTIONS, user_id, period.label, take)

        def compute() -> TopTransactionsOut:
            rows = self.reader.find_top_expenses(user_id, period.start, period.end, take)
            return TopTransactionsOut(
                period=period.label,
                transactions=[
                    TopTransactionOut(
                        amount=row.amount,
                        amount_usd=float(row.amount_in_usd),
                        category=row.category,
                        type=row.type,
                        note=row.note,
                        occurred_at=row.occurred_at,
                    )
                    for row in rows
                ],
            )

        return self.cache.get_or_compute(
            key, self.cache.ttl_for(TOP_TRANSACTIONS), compute, TopTransactionsOut
        )

    def top_expenses(self, user_id: str, period: Period, limit: int) -> TopExpensesOut:
        key = self.cache.key(TOP_EXPENSES, user_id, period.label, limit)

        def compute() -> TopExpensesOut:
            rows = self.reader.find_top_expenses(user_id, period.start, period.end, limit)
            return TopExpensesOut(
                period=period.label,
                transactions=[
                    TopExpenseOut(
                        category=row.category,
                        amount=row.amount,
                        amount_usd=float(row.amount_in_usd),
                        intent=row.intent,
                        emotion=row.emotion,
                        note=row.note,
                        occurred_at=row.occurred_at,
                    )
                    for row in rows
                ],
            )

        return self.cache.get_or_compute(
            key, self.cache.ttl_for(TOP_EXPENSES), compute, TopExpensesOut
        )

    def invalidate_period(self, user_id: str, period_label: Optional[str] = None) -> None:
        self.cache.invalidate_period(user_id, resolve_period(period_label).label)


class EligibilityService:
    def __init__(self, reader: TransactionReader) -> None:
        self.reader = reader

    def eligible_users(
        self,
        min_count: int,
        period_label: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> list[EligibleUser]:
        period = resolve_period(period_label, now=now)
        users = self.reader.group_by_user_with_min_count(min_count, period.start, period.end)
        logger.info(
            f"eligibility: period={period.label} min_count={min_count} eligible={len(users)}"
        )
        return users


class InsightRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_unique(self, user_id: str, period_label: str) -> Optional[Insight]:
        return self.session.scalar(
            select(Insight).where(Insight.user_id == user_id, Insight.period == period_label)
        )

    def create(
        self,
        user_id: str,
        period_label: str,
        content: str,
        llm_model: str,
        llm_request_id: str,
    ) -> Insight:
        if self.find_unique(user_id, period_label) is not None:
            raise InsightAlreadyExists(
                f"Insight for user '{user_id}' and period '{period_label}' already exists"
            )
        insight = Insight(
            user_id=user_id,
            period=period_label,
            content=content,
            llm_model=llm_model,
            llm_request_id=llm_request_id,
        )
        self.session.add(insight)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            if self.find_unique(user_id, period_label) is None:
                raise
            raise InsightAlreadyExists(
                f"Insight for user '{user_id}' and period '{period_label}' already exists"
            ) from exc
        return insight


class InsightJobState(str, Enum):
    received = "received"
    gathering = "gathering"
    generating = "generating"
    persisting = "persisting"
    done = "done"
    failed = "failed"


def log_job_state(user_id: str, state: InsightJobState, **details: object) -> None:
    extra = "".join(f" {name}={value}" for name, value in details.items())
    logger.info(f"insight_job: user_id={user_id} state={state.value}{extra}")


class InsightService:
    def __init__(
        self,
        session: Session,
        analytics: AnalyticsService,
        text_client: TextGenerationClient,
        *,
        top_expenses_limit: int = 20,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session = session
        self.analytics = analytics
        self.text_client = text_client
        self.repository = InsightRepository(session)
        self.top_expenses_limit = top_expenses_limit
        self.clock = clock

    @staticmethod
    def compose_input(period_label: str, balance: NetBalanceOut, expenses: TopExpensesOut) -> str:
        net = balance.net_balance.model_dump(mode="json", by_alias=True)
        transactions = [
            item.model_dump(mode="json", by_alias=True, exclude_none=True)
            for item in expenses.transactions
        ]
        return (
            f"period: {period_label}, "
            f"netBalance: {json.dumps(net)}, "
            f"transactions: {json.dumps(transactions)}"
        )

    def generate(self, user_id: str, period_label: Optional[str] = None) -> Insight:
        period = resolve_period(period_label, now=self.clock())

        log_job_state(user_id, InsightJobState.gathering, period=period.label)
        expenses = self.analytics.top_expenses(user_id, period, self.top_expenses_limit)
        balance = self.analytics.net_balance(user_id, period.label)

        log_job_state(
            user_id, InsightJobState.generating, transactions=len(expenses.transactions)
        )
        result = self.text_client.generate(
            INSIGHT_INSTRUCTIONS, self.compose_input(period.label, balance, expenses)
        )
        if result.is_degraded:
            # persisted anyway; the content may be partial or empty
            logger.warning(
                f"insight_job: user_id={user_id} degraded_generation "
                f"request_id={result.id} error={result.error} incomplete={result.incomplete}"
            )

        log_job_state(user_id, InsightJobState.persisting, request_id=result.id)
        insight = self.repository.create(
            user_id=user_id,
            period_label=period.label,
            content=result.output_text,
            llm_model=result.model,
            llm_request_id=result.id,
        )
        log_job_state(user_id, InsightJobState.done, insight_id=insight.id)
        return insight

    def find_all(
        self, user_id: str, page: int = 1, take: int = DEFAULT_INSIGHTS_PAGE_SIZE
    ) -> list[Insight]:
        stmt = (
            select(Insight)
            .where(Insight.user_id == user_id)
            .order_by(Insight.period.desc(), Insight.created_at.desc())
            .offset((page - 1) * take)
            .limit(take)
        )
        return list(self.session.scalars(stmt).all())

    def find_one(self, insight_id: str, user_id: str) -> Insight:
        insight = self.session.scalar(
            select(Insight).where(Insight.id == insight_id, Insight.user_id == user_id)
        )
        if not insight:
            raise InsightNotFound(f"Insight with ID '{insight_id}' not found.")
        return insight

    def find_by_period(self, user_id: str, period_label: str) -> Insight:
        insight = self.repository.find_unique(user_id, period_label)
        if not insight:
            raise InsightNotFound(f"Insight for period '{period_label}' not found.")
        return insight


def enqueue_monthly_insights(
    session: Session,
    queue: JobQueue,
    min_count: int,
    period_label: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> list[Job]:
    """Enqueue one ``generate`` job per eligible user."""
    users = EligibilityService(TransactionReader(session)).eligible_users(
        min_count, period_label, now=now
    )
    jobs = [
        queue.enqueue(GENERATE_JOB, {"userId": user.user_id}, INSIGHT_JOB_OPTIONS)
        for user in users
    ]
    logger.info(f"insight_fanout: enqueued={len(jobs)} min_count={min_count}")
    return jobs
