from datetime import datetime, timezone

import pytest

from periods import resolve_period, validate_period_label


def test_resolve_period_from_label() -> None:
    period = resolve_period("2024-01")
    assert period.label == "2024-01"
    assert period.start == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert period.end == datetime(2024, 2, 1, tzinfo=timezone.utc)


def test_resolve_period_december_rolls_into_next_year() -> None:
    period = resolve_period("2023-12")
    assert period.start == datetime(2023, 12, 1, tzinfo=timezone.utc)
    assert period.end == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_resolve_period_defaults_to_current_utc_month() -> None:
    period = resolve_period(None, now=datetime(2025, 9, 30, 23, 59, tzinfo=timezone.utc))
    assert period.label == "2025-09"
    assert period.end == datetime(2025, 10, 1, tzinfo=timezone.utc)


def test_resolve_period_converts_local_now_to_utc() -> None:
    from zoneinfo import ZoneInfo

    # 00:30 on Oct 1st in Berlin is still September in UTC
    now = datetime(2025, 10, 1, 0, 30, tzinfo=ZoneInfo("Europe/Berlin"))
    assert resolve_period(None, now=now).label == "2025-09"


@pytest.mark.parametrize("label", ["2024-1", "24-01", "2024-13", "2024-00", "2024/01"])
def test_validate_period_label_rejects_malformed(label: str) -> None:
    with pytest.raises(ValueError):
        validate_period_label(label)


def test_validate_period_label_accepts_absent_and_valid() -> None:
    assert validate_period_label(None) is None
    assert validate_period_label("2024-02") == "2024-02"
