import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

PERIOD_PATTERN = re.compile(r"^\d{4}-\d{2}$")
PERIOD_FORMAT_ERROR = "Period must be in YYYY-MM format"


@dataclass(frozen=True)
class Period:
    """A calendar month in UTC, ``[start, end)``."""

    label: str
    start: datetime
    end: datetime


def _month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _next_month_start(year: int, month: int) -> datetime:
    if month == 12:
        return _month_start(year + 1, 1)
    return _month_start(year, month + 1)


def resolve_period(label: Optional[str] = None, *, now: Optional[datetime] = None) -> Period:
    """Resolve an optional ``YYYY-MM`` label into a concrete month.

    The label is expected to be pre-validated (see ``validate_period_label``);
    when absent the current UTC month is used.
    """
    if label:
        year, month = (int(part) for part in label.split("-"))
    else:
        current = now or datetime.now(timezone.utc)
        if current.tzinfo is not None:
            current = current.astimezone(timezone.utc)
        year, month = current.year, current.month

    start = _month_start(year, month)
    end = _next_month_start(year, month)
    return Period(f"{start.year:04d}-{start.month:02d}", start, end)


def validate_period_label(label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    if not PERIOD_PATTERN.match(label):
        raise ValueError(PERIOD_FORMAT_ERROR)
    month = int(label[5:7])
    if not 1 <= month <= 12:
        raise ValueError(PERIOD_FORMAT_ERROR)
    return label
