from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

# Amounts are stored with two decimals but handled as floats in Python.
Money = Numeric(12, 2, asdecimal=False)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class BudgetKind(str, Enum):
    monthly = "monthly"
    category = "category"


class PaymentMethod(str, Enum):
    cash = "cash"
    card = "card"
    upi = "upi"
    bank_transfer = "bank_transfer"
    other = "other"


class TransactionSource(str, Enum):
    manual = "manual"
    receipt = "receipt"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    budget_alerts_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    weekly_reports_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="user")


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    kind: Mapped[BudgetKind] = mapped_column(SAEnum(BudgetKind), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    month: Mapped[Optional[int]] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    notification_threshold: Mapped[int] = mapped_column(
        Integer, default=80, nullable=False
    )
    created_by: Mapped[str] = mapped_column(String(10), default="user", nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="budgets")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
        CheckConstraint("year BETWEEN 2020 AND 2100", name="ck_budget_year_range"),
        CheckConstraint(
            "month IS NULL OR month BETWEEN 1 AND 12", name="ck_budget_month_range"
        ),
        CheckConstraint(
            "notification_threshold BETWEEN 0 AND 100",
            name="ck_budget_threshold_range",
        ),
        Index("ix_budget_user_kind_month", "user_id", "kind", "year", "month"),
        Index(
            "ix_budget_user_kind_category_month",
            "user_id",
            "kind",
            "category",
            "year",
            "month",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(100))
    # Signed: expenses negative, income positive.
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod), default=PaymentMethod.other, nullable=False
    )
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    source: Mapped[TransactionSource] = mapped_column(
        SAEnum(TransactionSource), default=TransactionSource.manual, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="confirmed", nullable=False)
    extra: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category", "date"),
    )
