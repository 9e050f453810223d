from models import TransactionType
from services import EligibilityService, TransactionReader

from helpers import add_transaction, add_user, utc


def _add_expenses(session, user, count: int, month: int = 1) -> None:
    for day in range(1, count + 1):
        add_transaction(session, user, TransactionType.expense, 100, "1", utc(2024, month, day))


def test_threshold_is_inclusive(session) -> None:
    exact = add_user(session, "exact@example.com")
    below = add_user(session, "below@example.com")
    _add_expenses(session, exact, 3)
    _add_expenses(session, below, 2)

    users = EligibilityService(TransactionReader(session)).eligible_users(3, "2024-01")

    assert [u.user_id for u in users] == [exact.id]
    assert users[0].count == 3


def test_only_expenses_in_the_period_count(session) -> None:
    user = add_user(session, "mixed@example.com")
    _add_expenses(session, user, 2)
    _add_expenses(session, user, 5, month=2)
    for day in range(1, 6):
        add_transaction(session, user, TransactionType.income, 100, "1", utc(2024, 1, day))

    service = EligibilityService(TransactionReader(session))

    assert service.eligible_users(3, "2024-01") == []
    assert [u.user_id for u in service.eligible_users(3, "2024-02")] == [user.id]


def test_users_are_ordered_by_count_descending(session) -> None:
    light = add_user(session, "light@example.com")
    heavy = add_user(session, "heavy@example.com")
    _add_expenses(session, light, 2)
    _add_expenses(session, heavy, 6)

    users = EligibilityService(TransactionReader(session)).eligible_users(1, "2024-01")

    assert [(u.user_id, u.count) for u in users] == [(heavy.id, 6), (light.id, 2)]
