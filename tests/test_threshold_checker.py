from datetime import date, datetime

from conftest import FakeNotifier, add_txn, make_user
from models import Budget, BudgetKind
from notifications import NotificationGate, ThresholdChecker
from services import SpendingService

TODAY = date(2025, 3, 20)


def _budget(session, user_id=1, **kwargs) -> Budget:
    values = dict(
        user_id=user_id,
        kind=BudgetKind.monthly,
        amount=1000,
        currency="INR",
        month=3,
        year=2025,
        notification_threshold=80,
    )
    values.update(kwargs)
    budget = Budget(**values)
    session.add(budget)
    session.commit()
    return budget


def _checker(session, notifier, gate=None) -> ThresholdChecker:
    return ThresholdChecker(
        session, notifier=notifier, gate=gate or NotificationGate(3600), today=TODAY
    )


def test_exceeded_budget_sends_exceeded_alert_once(session):
    make_user(session)
    _budget(session)
    add_txn(session, -1200, datetime(2025, 3, 3))
    notifier = FakeNotifier()
    checker = _checker(session, notifier)

    assert checker.check_user(1) == 1
    assert checker.check_user(1) == 0

    assert notifier.threshold == []
    (args,) = notifier.exceeded
    assert args == ("user1@example.com", "User 1", "monthly", "Monthly", 1000, 200)


def test_threshold_alert_carries_percentage_and_remaining(session):
    make_user(session)
    _budget(session, kind=BudgetKind.category, category="Food", amount=500)
    add_txn(session, -400, datetime(2025, 3, 3), category="Food")
    add_txn(session, -400, datetime(2025, 3, 3), category="Travel")
    notifier = FakeNotifier()

    _checker(session, notifier).check_user(1)

    (args,) = notifier.threshold
    assert args == ("user1@example.com", "User 1", "category", "Food", 80.0, 500, 100)
    assert notifier.exceeded == []


def test_under_threshold_sends_nothing(session):
    make_user(session)
    _budget(session)
    add_txn(session, -100, datetime(2025, 3, 3))
    notifier = FakeNotifier()

    assert _checker(session, notifier).check_user(1) == 0
    assert notifier.threshold == notifier.exceeded == []


def test_disabled_preferences_skip_user(session):
    make_user(session, enabled=False)
    make_user(session, user_id=2, budget_alerts=False)
    _budget(session, user_id=1)
    _budget(session, user_id=2)
    add_txn(session, -5000, datetime(2025, 3, 3), user_id=1)
    add_txn(session, -5000, datetime(2025, 3, 3), user_id=2)
    notifier = FakeNotifier()
    checker = _checker(session, notifier)

    assert checker.check_user(1) == 0
    assert checker.check_user(2) == 0
    assert checker.check_user(404) == 0
    assert notifier.exceeded == []


def test_budget_level_opt_out_and_inactive_budgets_are_skipped(session):
    make_user(session)
    _budget(session, notifications_enabled=False)
    _budget(session, kind=BudgetKind.category, category="Food", is_active=False)
    _budget(session, month=2)
    add_txn(session, -5000, datetime(2025, 3, 3))
    notifier = FakeNotifier()

    assert _checker(session, notifier).check_user(1) == 0


def test_shared_gate_suppresses_across_checkers(session):
    make_user(session)
    _budget(session)
    add_txn(session, -900, datetime(2025, 3, 3))
    gate = NotificationGate(3600)
    notifier = FakeNotifier()

    _checker(session, notifier, gate).check_user(1)
    _checker(session, notifier, gate).check_user(1)
    assert len(notifier.threshold) == 1

    # Crossing into overage is a different alert kind.
    add_txn(session, -200, datetime(2025, 3, 4))
    _checker(session, notifier, gate).check_user(1)
    assert len(notifier.exceeded) == 1


def test_notifier_failure_is_logged_not_raised(session):
    make_user(session)
    _budget(session)
    add_txn(session, -2000, datetime(2025, 3, 3))

    assert _checker(session, FakeNotifier(fail=True)).check_user(1) == 1


def test_sweep_continues_after_a_failing_user(session, monkeypatch):
    make_user(session, user_id=1)
    make_user(session, user_id=2)
    make_user(session, user_id=3, enabled=False)
    _budget(session, user_id=1)
    _budget(session, user_id=2)
    add_txn(session, -2000, datetime(2025, 3, 3), user_id=1)
    add_txn(session, -2000, datetime(2025, 3, 3), user_id=2)

    original = SpendingService.total_expenses

    def flaky(self, *args, **kwargs):
        if self.user_id == 1:
            raise RuntimeError("transient read failure")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(SpendingService, "total_expenses", flaky)
    notifier = FakeNotifier()

    assert _checker(session, notifier).check_all_users() == 2
    assert [args[0] for args in notifier.exceeded] == ["user2@example.com"]


def test_run_sweep_reports_users_checked():
    from scheduler import run_sweep

    class StubChecker:
        def __init__(self, session):
            self.session = session

        def check_all_users(self):
            return 7

    assert run_sweep("test", checker_factory=StubChecker) == 7


def test_scheduler_registers_startup_and_interval_jobs():
    from scheduler import SchedulerManager

    manager = SchedulerManager()
    manager.start()
    try:
        jobs = {job.id: job for job in manager.scheduler.get_jobs()}
        assert set(jobs) == {"budget_sweep_startup", "budget_sweep_interval"}
        assert jobs["budget_sweep_interval"].max_instances == 1
    finally:
        manager.stop()
    assert not manager.scheduler.running
