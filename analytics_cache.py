"""Cache-aside storage for analytics results.

Every analytics query is stored under a key derived from the metric name,
the user, the period label and any extra discriminators (for example the
``take`` of a top-transactions query). Cached values are the JSON form of
the DTO handed to callers, so a hit returns exactly what the miss produced.

Concurrent misses for the same key may both compute and both write; the
last write wins. Readers must not assume strong consistency.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from aggregation import GroupKey
from config import get_settings
from schemas import TAKE_MAX, TAKE_MIN

logger = logging.getLogger(__name__)

NET_BALANCE = "netBalance"
SPENDING_BREAKDOWN = "spendingBreakdown"
INTENT_BREAKDOWN = "intentBreakdown"
EMOTION_BREAKDOWN = "emotionBreakdown"
SAVINGS_RATE = "savingsRate"
TOP_TRANSACTIONS = "topTransactions"
TOP_EXPENSES = "topExpenses"

# keys without extra discriminators
PERIOD_METRICS = (
    NET_BALANCE,
    SPENDING_BREAKDOWN,
    INTENT_BREAKDOWN,
    EMOTION_BREAKDOWN,
    SAVINGS_RATE,
)
# keys discriminated by a row limit
LIMITED_METRICS = (TOP_TRANSACTIONS, TOP_EXPENSES)

M = TypeVar("M", bound=BaseModel)


def breakdown_metric(group_key: GroupKey) -> str:
    if group_key == GroupKey.category:
        return SPENDING_BREAKDOWN
    if group_key == GroupKey.intent:
        return INTENT_BREAKDOWN
    if group_key == GroupKey.emotion:
        return EMOTION_BREAKDOWN
    raise ValueError(f"Unsupported group key: {group_key}")


def cache_key(
    metric: str, user_id: str, period_label: str, *extra: object, prefix: str = ""
) -> str:
    parts = [f"{prefix}{metric}", user_id, period_label]
    parts.extend(str(value) for value in extra)
    return ":".join(parts)


class CacheStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl: float) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryCacheStore(CacheStore):
    """Process-local store; single-key operations are atomic."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            now = self._clock()
            return [key for key, (_, exp) in self._entries.items() if exp > now]


class AnalyticsCache:
    def __init__(
        self,
        store: CacheStore,
        ttls: dict[str, int],
        prefix: str = "",
        top_expenses_limit: int = TAKE_MAX,
    ) -> None:
        self.store = store
        self.ttls = ttls
        self.prefix = prefix
        self.top_expenses_limit = top_expenses_limit

    def key(self, metric: str, user_id: str, period_label: str, *extra: object) -> str:
        return cache_key(metric, user_id, period_label, *extra, prefix=self.prefix)

    def ttl_for(self, metric: str) -> int:
        return self.ttls[metric]

    def get_or_compute(
        self, key: str, ttl: float, compute: Callable[[], M], model: type[M]
    ) -> M:
        cached = self.store.get(key)
        if cached is not None:
            logger.debug(f"analytics_cache: hit key={key}")
            return model.model_validate_json(cached)

        logger.debug(f"analytics_cache: miss key={key}")
        result = compute()
        self.store.set(key, result.model_dump_json(by_alias=True), ttl)
        return result

    def invalidate_period(self, user_id: str, period_label: str) -> list[str]:
        """Delete every known key of one user and one period.

        Writes that move a transaction between months must invalidate both
        the old and the new period; only the given period is cleared here.
        """
        keys = [self.key(metric, user_id, period_label) for metric in PERIOD_METRICS]
        max_limit = max(TAKE_MAX, self.top_expenses_limit)
        keys.extend(
            self.key(metric, user_id, period_label, limit)
            for metric in LIMITED_METRICS
            for limit in range(TAKE_MIN, max_limit + 1)
        )
        for key in keys:
            self.store.delete(key)
        logger.info(
            f"analytics_cache: invalidated user_id={user_id} period={period_label} keys={len(keys)}"
        )
        return keys

    def invalidate_user(self, user_id: str) -> None:
        # Keys are not enumerable on every backing store, so entries for
        # other periods stay readable until their TTL runs out.
        logger.info(f"analytics_cache: user invalidation deferred to ttl user_id={user_id}")


@lru_cache(maxsize=1)
def get_analytics_cache() -> AnalyticsCache:
    settings = get_settings()
    return AnalyticsCache(
        MemoryCacheStore(),
        settings.cache_ttls,
        settings.cache_prefix,
        top_expenses_limit=settings.insight_top_expenses,
    )
