import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        cache_prefix: str,
        cache_ttls: dict[str, int],
        min_insight_transactions: int,
        insight_top_expenses: int,
        worker_concurrency: int,
        openai_api_key: str,
        openai_model: str,
        openai_base_url: str,
        openai_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.cache_prefix = cache_prefix
        self.cache_ttls = cache_ttls
        self.min_insight_transactions = min_insight_transactions
        self.insight_top_expenses = insight_top_expenses
        self.worker_concurrency = worker_concurrency
        self.openai_api_key = openai_api_key
        self.openai_model = openai_model
        self.openai_base_url = openai_base_url
        self.openai_timeout_secs = openai_timeout_secs


# seconds, keyed by cache metric name
DEFAULT_CACHE_TTLS = {
    "netBalance": 900,
    "spendingBreakdown": 900,
    "intentBreakdown": 900,
    "emotionBreakdown": 900,
    "savingsRate": 900,
    "topTransactions": 600,
    "topExpenses": 600,
}

_TTL_ENV_NAMES = {
    "netBalance": "INSIGHTS_CACHE_TTL_NET_BALANCE",
    "spendingBreakdown": "INSIGHTS_CACHE_TTL_SPENDING_BREAKDOWN",
    "intentBreakdown": "INSIGHTS_CACHE_TTL_INTENT_BREAKDOWN",
    "emotionBreakdown": "INSIGHTS_CACHE_TTL_EMOTION_BREAKDOWN",
    "savingsRate": "INSIGHTS_CACHE_TTL_SAVINGS_RATE",
    "topTransactions": "INSIGHTS_CACHE_TTL_TOP_TRANSACTIONS",
    "topExpenses": "INSIGHTS_CACHE_TTL_TOP_EXPENSES",
}


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("INSIGHTS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _cache_ttls() -> dict[str, int]:
    return {
        metric: int(os.getenv(env_name, str(DEFAULT_CACHE_TTLS[metric])))
        for metric, env_name in _TTL_ENV_NAMES.items()
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "insights.db"
    database_url = os.getenv("INSIGHTS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("INSIGHTS_TIMEZONE", "UTC")
    cache_prefix = os.getenv("INSIGHTS_CACHE_PREFIX", "analytics:")
    min_insight_transactions = int(os.getenv("INSIGHTS_MIN_INSIGHT_TRANSACTIONS", "5"))
    insight_top_expenses = int(os.getenv("INSIGHTS_INSIGHT_TOP_EXPENSES", "20"))
    worker_concurrency = int(os.getenv("INSIGHTS_WORKER_CONCURRENCY", "4"))
    openai_api_key = os.getenv("INSIGHTS_OPENAI_API_KEY", "")
    openai_model = os.getenv("INSIGHTS_OPENAI_MODEL", "gpt-4o-mini")
    openai_base_url = os.getenv("INSIGHTS_OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_timeout_secs = float(os.getenv("INSIGHTS_OPENAI_TIMEOUT_SECS", "60"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        cache_prefix=cache_prefix,
        cache_ttls=_cache_ttls(),
        min_insight_transactions=min_insight_transactions,
        insight_top_expenses=insight_top_expenses,
        worker_concurrency=worker_concurrency,
        openai_api_key=openai_api_key,
        openai_model=openai_model,
        openai_base_url=openai_base_url,
        openai_timeout_secs=openai_timeout_secs,
    )
