from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from datetime import date
from enum import Enum
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session

from config import get_settings
from mailer import EmailNotifier
from models import Budget, BudgetKind, User
from periods import current_month
from services import (
    BudgetService,
    BudgetStatus,
    SpendingService,
    UserService,
    derive_status,
)


logger = logging.getLogger(__name__)


class AlertKind(str, Enum):
    none = "none"
    threshold = "threshold"
    exceeded = "exceeded"


def decide_alert(
    amount: float, current_spending: float, status: BudgetStatus, threshold: float
) -> AlertKind:
    if current_spending > amount:
        return AlertKind.exceeded
    if status.percentage_used >= threshold:
        return AlertKind.threshold
    return AlertKind.none


class NotificationGate:
    """Cooldown tracker keyed by (budget, alert kind).

    Entries expire after the cooldown and the store is capped, so it cannot
    grow without bound. Lives in process memory only; a restart forgets it.
    """

    def __init__(
        self,
        cooldown_secs: float = 3600,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown_secs = cooldown_secs
        self.max_entries = max_entries
        self.clock = clock
        self._sent: OrderedDict[tuple[int, str], float] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sent)

    def _evict(self, now: float) -> None:
        while self._sent:
            sent_at = next(iter(self._sent.values()))
            if now - sent_at < self.cooldown_secs and len(self._sent) <= self.max_entries:
                break
            self._sent.popitem(last=False)

    def should_send(self, budget_id: int, alert_kind: AlertKind | str) -> bool:
        key = (budget_id, AlertKind(alert_kind).value)
        with self._lock:
            now = self.clock()
            self._evict(now)
            last = self._sent.get(key)
            if last is not None and now - last < self.cooldown_secs:
                return False
            self._sent[key] = now
            self._sent.move_to_end(key)
            return True

    def clear(self) -> None:
        with self._lock:
            self._sent.clear()


_gate: Optional[NotificationGate] = None
_gate_lock = threading.Lock()


def get_notification_gate() -> NotificationGate:
    global _gate
    with _gate_lock:
        if _gate is None:
            _gate = NotificationGate(get_settings().alert_cooldown_secs)
        return _gate


class AlertNotifier(Protocol):
    def send_threshold_alert(
        self,
        email: str,
        name: str,
        budget_kind: str,
        category: str,
        percentage: float,
        amount: float,
        remaining: float,
    ) -> object: ...

    def send_exceeded_alert(
        self,
        email: str,
        name: str,
        budget_kind: str,
        category: str,
        amount: float,
        exceeded_by: float,
    ) -> object: ...


class ThresholdChecker:
    def __init__(
        self,
        session: Session,
        *,
        notifier: Optional[AlertNotifier] = None,
        gate: Optional[NotificationGate] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.notifier = notifier or EmailNotifier()
        self.gate = gate or get_notification_gate()
        self.today = today

    def check_user(self, user_id: int) -> int:
        """Check one user's budgets; never raises. Returns alerts sent."""
        try:
            return self._check_user(user_id)
        except Exception:
            self.session.rollback()
            logger.exception(f"threshold_check_failed: user_id={user_id}")
            return 0

    def check_all_users(self) -> int:
        users = UserService(self.session).alert_recipients()
        for user in users:
            self.check_user(user.id)
        return len(users)

    def _check_user(self, user_id: int) -> int:
        user = UserService(self.session).get(user_id)
        if not user or not user.notifications_enabled or not user.budget_alerts_enabled:
            return 0

        period = current_month(today=self.today)
        budgets = BudgetService(self.session, user_id).active_for_month(
            period.year, period.month
        )
        spending = SpendingService(self.session, user_id)
        sent = 0
        for budget in budgets:
            if not budget.notifications_enabled:
                continue
            category = budget.category if budget.kind == BudgetKind.category else None
            current = spending.total_expenses(
                budget.year, budget.month, category, today=self.today
            )
            status = derive_status(budget.amount, current, budget.notification_threshold)
            kind = decide_alert(
                budget.amount, current, status, budget.notification_threshold
            )
            if kind is AlertKind.none:
                continue
            if not self.gate.should_send(budget.id, kind):
                logger.debug(f"alert_suppressed: budget_id={budget.id} kind={kind.value}")
                continue
            self._notify(user, budget, kind, current, status)
            sent += 1
        return sent

    def _notify(
        self,
        user: User,
        budget: Budget,
        kind: AlertKind,
        current: float,
        status: BudgetStatus,
    ) -> None:
        label = budget.category or "Monthly"
        try:
            if kind is AlertKind.exceeded:
                self.notifier.send_exceeded_alert(
                    user.email,
                    user.name,
                    budget.kind.value,
                    label,
                    budget.amount,
                    max(0.0, current - budget.amount),
                )
            else:
                self.notifier.send_threshold_alert(
                    user.email,
                    user.name,
                    budget.kind.value,
                    label,
                    status.percentage_used,
                    budget.amount,
                    status.remaining,
                )
        except Exception:
            logger.exception(
                f"alert_send_failed: budget_id={budget.id} kind={kind.value} user_id={user.id}"
            )
            return
        logger.info(
            f"alert_sent: budget_id={budget.id} kind={kind.value} user_id={user.id} "
            f"label={label}"
        )
