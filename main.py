from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from sqlalchemy.orm import Session

from analytics_cache import AnalyticsCache, get_analytics_cache
from database import SessionLocal
from periods import validate_period_label
from scheduler import SchedulerManager
from schemas import (
    DEFAULT_INSIGHTS_PAGE_SIZE,
    DEFAULT_TOP_TRANSACTIONS_LIMIT,
    TAKE_MAX,
    TAKE_MIN,
    BreakdownOut,
    InsightOut,
    NetBalanceOut,
    SavingsRateOut,
    TopTransactionsOut,
)
from services import AnalyticsService, InsightNotFound, InsightService, TransactionReader
from text_generation import OpenAIResponsesClient

app = FastAPI(title="Spending Insights")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_cache() -> AnalyticsCache:
    return get_analytics_cache()


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_period(period: Optional[str] = Query(default=None)) -> Optional[str]:
    try:
        return validate_period_label(period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def get_analytics(
    db: Session = Depends(get_db), cache: AnalyticsCache = Depends(get_cache)
) -> AnalyticsService:
    return AnalyticsService(TransactionReader(db), cache)


def get_insights(
    db: Session = Depends(get_db), analytics: AnalyticsService = Depends(get_analytics)
) -> InsightService:
    # read-only endpoints never call the text-generation service
    return InsightService(db, analytics, OpenAIResponsesClient.from_settings())


scheduler_manager: Optional[SchedulerManager] = None


@app.on_event("startup")
def startup_event():
    global scheduler_manager
    scheduler_manager = SchedulerManager()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    if scheduler_manager is not None:
        scheduler_manager.stop()


@app.get("/api/analytics/net-balance", response_model=NetBalanceOut, response_model_by_alias=True)
def api_net_balance(
    user_id: str = Depends(get_current_user_id),
    period: Optional[str] = Depends(get_period),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.net_balance(user_id, period)


@app.get(
    "/api/analytics/spending-breakdown",
    response_model=BreakdownOut,
    response_model_by_alias=True,
)
def api_spending_breakdown(
    user_id: str = Depends(get_current_user_id),
    period: Optional[str] = Depends(get_period),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.spending_breakdown(user_id, period)


@app.get(
    "/api/analytics/intent-breakdown",
    response_model=BreakdownOut,
    response_model_by_alias=True,
)
def api_intent_breakdown(
    user_id: str = Depends(get_current_user_id),
    period: Optional[str] = Depends(get_period),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.intent_breakdown(user_id, period)


@app.get(
    "/api/analytics/emotion-breakdown",
    response_model=BreakdownOut,
    response_model_by_alias=True,
)
def api_emotion_breakdown(
    user_id: str = Depends(get_current_user_id),
    period: Optional[str] = Depends(get_period),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.emotion_breakdown(user_id, period)


@app.get("/api/analytics/savings-rate", response_model=SavingsRateOut, response_model_by_alias=True)
def api_savings_rate(
    user_id: str = Depends(get_current_user_id),
    period: Optional[str] = Depends(get_period),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.savings_rate(user_id, period)


@app.get(
    "/api/analytics/top-transactions",
    response_model=TopTransactionsOut,
    response_model_by_alias=True,
)
def api_top_transactions(
    user_id: str = Depends(get_current_user_id),
    period: Optional[str] = Depends(get_period),
    take: int = Query(DEFAULT_TOP_TRANSACTIONS_LIMIT, ge=TAKE_MIN, le=TAKE_MAX),
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.top_transactions(user_id, period, take)


@app.post("/api/analytics/invalidate", status_code=204)
def api_invalidate_analytics(
    user_id: str = Depends(get_current_user_id),
    period: Optional[str] = Depends(get_period),
    analytics: AnalyticsService = Depends(get_analytics),
):
    analytics.invalidate_period(user_id, period)


@app.get("/api/insights", response_model=list[InsightOut], response_model_by_alias=True)
def api_insights(
    user_id: str = Depends(get_current_user_id),
    page: int = Query(1, ge=1, le=1000),
    take: int = Query(DEFAULT_INSIGHTS_PAGE_SIZE, ge=TAKE_MIN, le=TAKE_MAX),
    insights: InsightService = Depends(get_insights),
):
    return [InsightOut.model_validate(item) for item in insights.find_all(user_id, page, take)]


@app.get(
    "/api/insights/by-period/{period}",
    response_model=InsightOut,
    response_model_by_alias=True,
)
def api_insight_by_period(
    period: str,
    user_id: str = Depends(get_current_user_id),
    insights: InsightService = Depends(get_insights),
):
    try:
        label = validate_period_label(period)
        return InsightOut.model_validate(insights.find_by_period(user_id, label))
    except InsightNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/insights/{insight_id}", response_model=InsightOut, response_model_by_alias=True)
def api_insight(
    insight_id: str,
    user_id: str = Depends(get_current_user_id),
    insights: InsightService = Depends(get_insights),
):
    try:
        return InsightOut.model_validate(insights.find_one(insight_id, user_id))
    except InsightNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
