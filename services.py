from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Budget,
    BudgetKind,
    Transaction,
    TransactionSource,
    TransactionType,
    User,
)
from periods import budget_window, current_month
from schemas import (
    BudgetIn,
    BudgetNotificationsIn,
    BudgetOut,
    BudgetSummaryOut,
    BudgetUpdate,
    NotificationPreferencesIn,
    TransactionIn,
)


logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


def signed_amount(txn_type: TransactionType | str, amount: float) -> float:
    """Expenses are stored negative and income positive, whatever the input sign."""
    if TransactionType(txn_type) == TransactionType.expense:
        return -abs(amount)
    return abs(amount)


class BudgetTier(str, Enum):
    good = "good"
    warning = "warning"
    over = "over"


@dataclass(frozen=True)
class BudgetStatus:
    current_spending: float
    remaining: float
    percentage_used: float
    is_over_budget: bool
    tier: BudgetTier


def derive_status(
    amount: float, current_spending: float, threshold_pct: float
) -> BudgetStatus:
    remaining = max(0.0, amount - current_spending)
    if amount == 0:
        percentage_used = 0.0
    else:
        percentage_used = min(100.0, current_spending / amount * 100)
    # Uncapped comparison; percentage_used stops at 100.
    is_over = current_spending > amount
    if is_over:
        tier = BudgetTier.over
    elif percentage_used >= threshold_pct:
        tier = BudgetTier.warning
    else:
        tier = BudgetTier.good
    return BudgetStatus(
        current_spending=current_spending,
        remaining=remaining,
        percentage_used=percentage_used,
        is_over_budget=is_over,
        tier=tier,
    )


class UserNotFound(ValueError):
    pass


class BudgetNotFound(ValueError):
    pass


class DuplicateBudget(ValueError):
    pass


class TransactionNotFound(ValueError):
    pass


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def alert_recipients(self) -> list[User]:
        stmt = (
            select(User)
            .where(
                User.notifications_enabled.is_(True),
                User.budget_alerts_enabled.is_(True),
            )
            .order_by(User.id)
        )
        return self.session.scalars(stmt).all()

    def update_preferences(
        self, user_id: int, data: NotificationPreferencesIn
    ) -> User:
        user = self.get(user_id)
        if not user:
            raise UserNotFound("User not found")
        if data.enabled is not None:
            user.notifications_enabled = data.enabled
        if data.budget_alerts is not None:
            user.budget_alerts_enabled = data.budget_alerts
        if data.weekly_reports is not None:
            user.weekly_reports_enabled = data.weekly_reports
        self.session.commit()
        self.session.refresh(user)
        return user


class SpendingService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def total_expenses(
        self,
        year: Optional[int],
        month: Optional[int],
        category: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> float:
        window = budget_window(year, month, today=today)
        stmt = select(Transaction.amount).where(
            Transaction.user_id == self.user_id,
            Transaction.is_deleted.is_(False),
            Transaction.amount < 0,
            Transaction.date >= window.start,
            Transaction.date <= window.end,
        )
        if category is not None:
            stmt = stmt.where(Transaction.category == category)
        return float(sum(abs(amount) for amount in self.session.scalars(stmt)))

    def current_spending(self, budget: Budget, *, today: Optional[date] = None) -> float:
        category = budget.category if budget.kind == BudgetKind.category else None
        try:
            return self.total_expenses(budget.year, budget.month, category, today=today)
        except Exception:
            # Budget reads must not fail because the spending query did.
            logger.exception(
                f"spending_read_failed: budget_id={budget.id} user_id={self.user_id}"
            )
            return 0.0

    def categories(self) -> list[str]:
        stmt = (
            select(Transaction.category)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.is_deleted.is_(False),
            )
            .distinct()
            .order_by(Transaction.category)
        )
        return [c for c in self.session.scalars(stmt).all() if c]


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.spending = SpendingService(session, self.user_id)

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise BudgetNotFound("Budget not found")
        return budget

    def list_active(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.is_active.is_(True))
            .order_by(
                Budget.kind.asc(),
                Budget.year.desc(),
                Budget.month.desc(),
                Budget.category.asc(),
            )
        )
        return self.session.scalars(stmt).all()

    def active_for_month(
        self, year: int, month: int, *, kind: Optional[BudgetKind] = None
    ) -> list[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.is_active.is_(True),
            Budget.year == year,
            Budget.month == month,
        )
        if kind:
            stmt = stmt.where(Budget.kind == kind)
        return self.session.scalars(stmt.order_by(Budget.id)).all()

    def status(self, budget: Budget, *, today: Optional[date] = None) -> BudgetStatus:
        spending = self.spending.current_spending(budget, today=today)
        return derive_status(budget.amount, spending, budget.notification_threshold)

    def to_out(self, budget: Budget, *, today: Optional[date] = None) -> BudgetOut:
        status = self.status(budget, today=today)
        return BudgetOut(
            id=budget.id,
            kind=budget.kind,
            category=budget.category,
            amount=budget.amount,
            currency=budget.currency,
            month=budget.month,
            year=budget.year,
            is_active=budget.is_active,
            notifications=BudgetNotificationsIn(
                enabled=budget.notifications_enabled,
                threshold=budget.notification_threshold,
            ),
            current_spending=status.current_spending,
            remaining=status.remaining,
            percentage_used=status.percentage_used,
            is_over_budget=status.is_over_budget,
            tier=status.tier.value,
        )

    def list_with_status(self, *, today: Optional[date] = None) -> list[BudgetOut]:
        return [self.to_out(b, today=today) for b in self.list_active()]

    def summary(self, *, today: Optional[date] = None) -> BudgetSummaryOut:
        period = current_month(today=today)
        monthly = self.active_for_month(
            period.year, period.month, kind=BudgetKind.monthly
        )
        categories = self.active_for_month(
            period.year, period.month, kind=BudgetKind.category
        )
        return BudgetSummaryOut(
            monthly=self.to_out(monthly[0], today=today) if monthly else None,
            categories=[self.to_out(b, today=today) for b in categories],
        )

    def create(self, data: BudgetIn) -> Budget:
        # Uniqueness among active budgets is checked here, not by the schema.
        existing = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.kind == data.kind,
                Budget.year == data.year,
                Budget.is_active.is_(True),
                Budget.category.is_(None)
                if data.category is None
                else Budget.category == data.category,
                Budget.month.is_(None)
                if data.month is None
                else Budget.month == data.month,
            )
        )
        if existing:
            if data.kind == BudgetKind.monthly:
                scope = f"{data.month}/{data.year}"
            else:
                scope = f"{data.category} {data.year}"
            raise DuplicateBudget(f"Budget already exists for {scope}")

        budget = Budget(
            user_id=self.user_id,
            kind=data.kind,
            category=data.category,
            amount=data.amount,
            currency=(data.currency or get_settings().default_currency).upper(),
            month=data.month,
            year=data.year,
            is_active=True,
            notifications_enabled=data.notifications.enabled,
            notification_threshold=data.notifications.threshold,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: id={budget.id} user_id={self.user_id} kind={budget.kind.value}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        if data.amount is not None:
            budget.amount = data.amount
        if data.notifications is not None:
            budget.notifications_enabled = data.notifications.enabled
            budget.notification_threshold = data.notifications.threshold
        if data.is_active is not None:
            budget.is_active = data.is_active
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def deactivate(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        budget.is_active = False
        self.session.commit()
        logger.info(f"budget_deactivated: id={budget_id} user_id={self.user_id}")


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def resolve_category(self, name: str) -> str:
        """Map a free-form category onto one the user already has, if close enough."""
        cleaned = (name or "").strip()
        if not cleaned:
            return "Other"
        lowered = cleaned.lower()
        existing = SpendingService(self.session, self.user_id).categories()
        for category in existing:
            if category.lower() == lowered:
                return category

        best_distance: Optional[int] = None
        best: list[str] = []
        for category in existing:
            dist = int(Levenshtein.distance(lowered, category.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            return best[0]
        return cleaned

    def create(
        self,
        data: TransactionIn,
        *,
        source: TransactionSource = TransactionSource.manual,
        extra: Optional[dict] = None,
    ) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            category=data.category.strip(),
            subcategory=data.subcategory,
            amount=signed_amount(data.type, data.amount),
            currency=(data.currency or get_settings().default_currency).upper(),
            date=data.date.replace(tzinfo=None),
            description=data.description,
            payment_method=data.payment_method,
            tags=list(data.tags),
            source=source,
            status="confirmed",
            extra=dict(extra or {}),
            is_deleted=False,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    def soft_delete(self, transaction_id: int) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        txn.is_deleted = True
        self.session.commit()
