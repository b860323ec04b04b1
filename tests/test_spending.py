from datetime import date, datetime

import pytest
from sqlalchemy.exc import OperationalError

from conftest import add_txn, make_user
from models import Budget, BudgetKind
from schemas import BudgetIn, BudgetUpdate
from services import (
    BudgetService,
    DuplicateBudget,
    SpendingService,
    TransactionNotFound,
    TransactionService,
)


def _budget(session, **kwargs) -> Budget:
    values = dict(
        user_id=1,
        kind=BudgetKind.monthly,
        category=None,
        amount=1000,
        currency="INR",
        month=3,
        year=2025,
        is_active=True,
        notifications_enabled=True,
        notification_threshold=80,
    )
    values.update(kwargs)
    budget = Budget(**values)
    session.add(budget)
    session.commit()
    return budget


def test_spending_window_covers_whole_month_inclusive(session):
    make_user(session)
    add_txn(session, -100, datetime(2025, 3, 1, 0, 0, 0))
    add_txn(session, -50, datetime(2025, 3, 31, 23, 59, 59))
    add_txn(session, -999, datetime(2025, 2, 28, 23, 59, 59))
    add_txn(session, -999, datetime(2025, 4, 1, 0, 0, 0))
    budget = _budget(session)

    assert SpendingService(session, 1).current_spending(budget) == 150


def test_spending_ignores_income_deleted_and_other_users(session):
    make_user(session)
    make_user(session, user_id=2)
    add_txn(session, -40, datetime(2025, 3, 5))
    add_txn(session, 5000, datetime(2025, 3, 5))
    add_txn(session, -70, datetime(2025, 3, 6), is_deleted=True)
    add_txn(session, -80, datetime(2025, 3, 7), user_id=2)
    budget = _budget(session)

    assert SpendingService(session, 1).current_spending(budget) == 40


def test_category_budget_filters_category_and_defaults_to_current_month(session):
    make_user(session)
    add_txn(session, -30, datetime(2025, 6, 2), category="Food")
    add_txn(session, -20, datetime(2025, 6, 3), category="Travel")
    add_txn(session, -500, datetime(2025, 5, 3), category="Food")
    budget = _budget(session, kind=BudgetKind.category, category="Food", month=None)

    spent = SpendingService(session, 1).current_spending(budget, today=date(2025, 6, 15))
    assert spent == 30


def test_spending_read_failure_fails_open(session, monkeypatch):
    make_user(session)
    budget = _budget(session)

    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    service = SpendingService(session, 1)
    monkeypatch.setattr(service, "total_expenses", boom)
    assert service.current_spending(budget) == 0


def test_list_for_user_without_transactions_reports_zero_spending(session):
    make_user(session)
    _budget(session, month=3)
    _budget(session, kind=BudgetKind.category, category="Food", month=3)
    _budget(session, month=4, is_active=False)

    rows = BudgetService(session, 1).list_with_status()
    assert len(rows) == 2
    for row in rows:
        assert row.current_spending == 0
        assert row.percentage_used == 0
        assert row.is_over_budget is False
        assert row.tier == "good"


def test_summary_splits_monthly_and_category_budgets(session):
    make_user(session)
    add_txn(session, -900, datetime(2025, 3, 10), category="Food")
    _budget(session, amount=1000)
    _budget(session, kind=BudgetKind.category, category="Food", amount=500)

    summary = BudgetService(session, 1).summary(today=date(2025, 3, 20))
    assert summary.monthly is not None
    assert summary.monthly.tier == "warning"
    assert summary.monthly.remaining == 100
    assert [b.category for b in summary.categories] == ["Food"]
    assert summary.categories[0].is_over_budget is True
    assert summary.categories[0].percentage_used == 100


def test_create_rejects_duplicate_active_budget(session):
    make_user(session)
    service = BudgetService(session, 1)
    payload = BudgetIn(kind="monthly", amount=1000, month=3, year=2025)
    first = service.create(payload)
    assert first.currency == "INR"
    assert first.notification_threshold == 80

    with pytest.raises(DuplicateBudget):
        service.create(payload)

    service.deactivate(first.id)
    second = service.create(payload)
    assert second.id != first.id


def test_category_budget_requires_category():
    with pytest.raises(ValueError):
        BudgetIn(kind="category", amount=100, year=2025)
    with pytest.raises(ValueError):
        BudgetIn(kind="monthly", amount=100, year=2025)


def test_update_changes_amount_and_threshold(session):
    make_user(session)
    budget = _budget(session)
    updated = BudgetService(session, 1).update(
        budget.id,
        BudgetUpdate(amount=2000, notifications={"enabled": False, "threshold": 90}),
    )
    assert updated.amount == 2000
    assert updated.notifications_enabled is False
    assert updated.notification_threshold == 90


def test_categories_are_distinct_and_skip_deleted(session):
    make_user(session)
    add_txn(session, -1, datetime(2025, 3, 1), category="Food")
    add_txn(session, -1, datetime(2025, 3, 2), category="Food")
    add_txn(session, -1, datetime(2025, 3, 3), category="Travel")
    add_txn(session, -1, datetime(2025, 3, 4), category="Ghost", is_deleted=True)

    assert SpendingService(session, 1).categories() == ["Food", "Travel"]


def test_soft_delete_removes_transaction_from_totals(session):
    make_user(session)
    make_user(session, user_id=2)
    kept = add_txn(session, -30, datetime(2025, 3, 1))
    gone = add_txn(session, -70, datetime(2025, 3, 2))
    foreign = add_txn(session, -5, datetime(2025, 3, 2), user_id=2)
    service = TransactionService(session, 1)

    service.soft_delete(gone.id)

    session.refresh(gone)
    assert gone.is_deleted
    assert gone.updated_at >= gone.created_at
    assert not kept.is_deleted
    assert SpendingService(session, 1).total_expenses(2025, 3) == 30
    with pytest.raises(TransactionNotFound):
        service.soft_delete(foreign.id)
