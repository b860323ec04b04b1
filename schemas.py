from datetime import datetime
from typing import Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from models import BudgetKind, PaymentMethod, TransactionSource, TransactionType


class BudgetNotificationsIn(BaseModel):
    enabled: bool = True
    threshold: int = Field(default=80, ge=0, le=100)


class BudgetIn(BaseModel):
    kind: BudgetKind = Field(validation_alias=AliasChoices("kind", "type"))
    category: Optional[str] = Field(default=None, max_length=100)
    amount: float = Field(..., ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: int = Field(..., ge=2020, le=2100)
    notifications: BudgetNotificationsIn = Field(default_factory=BudgetNotificationsIn)

    @model_validator(mode="after")
    def _scope_fields(self) -> "BudgetIn":
        if self.kind == BudgetKind.category:
            if not (self.category or "").strip():
                raise ValueError("Category is required for category budgets")
            self.category = self.category.strip()
        else:
            self.category = None
        if self.kind == BudgetKind.monthly and self.month is None:
            raise ValueError("Month is required for monthly budgets")
        return self


class BudgetUpdate(BaseModel):
    amount: Optional[float] = Field(default=None, ge=0)
    notifications: Optional[BudgetNotificationsIn] = None
    is_active: Optional[bool] = None


class BudgetOut(BaseModel):
    id: int
    kind: BudgetKind
    category: Optional[str]
    amount: float
    currency: str
    month: Optional[int]
    year: int
    is_active: bool
    notifications: BudgetNotificationsIn
    current_spending: float
    remaining: float
    percentage_used: float
    is_over_budget: bool
    tier: Literal["good", "warning", "over"]


class BudgetSummaryOut(BaseModel):
    monthly: Optional[BudgetOut]
    categories: list[BudgetOut]


class NotificationPreferencesIn(BaseModel):
    enabled: Optional[bool] = None
    budget_alerts: Optional[bool] = None
    weekly_reports: Optional[bool] = None


class TransactionIn(BaseModel):
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    amount: float
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    date: datetime
    description: Optional[str] = Field(default=None, max_length=500)
    payment_method: PaymentMethod = PaymentMethod.other
    tags: list[str] = Field(default_factory=list)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    category: str
    subcategory: Optional[str]
    amount: float
    currency: str
    date: datetime
    description: Optional[str]
    payment_method: PaymentMethod
    tags: list[str]
    source: TransactionSource
    status: str
    metadata: dict = Field(validation_alias=AliasChoices("extra", "metadata"))


class ExtractedTransaction(BaseModel):
    """One candidate pulled off a receipt page, after sign normalisation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: TransactionType
    category: str = "Other"
    subcategory: Optional[str] = None
    amount: float
    currency: Optional[str] = None
    date: datetime
    description: Optional[str] = None
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.other,
        validation_alias=AliasChoices("paymentMethod", "payment_method"),
    )
    tags: list[str] = Field(default_factory=list)
    page: int = 1

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value):
        if value is None or not str(value).strip():
            return "Other"
        return str(value).strip()[:100]

    @field_validator("subcategory", "description", mode="before")
    @classmethod
    def _trim_text(cls, value, info):
        if value is None or not str(value).strip():
            return None
        limit = 100 if info.field_name == "subcategory" else 500
        return str(value).strip()[:limit]

    @field_validator("currency", mode="before")
    @classmethod
    def _currency_code(cls, value):
        if not isinstance(value, str) or len(value.strip()) != 3:
            return None
        return value.strip().upper()

    @field_validator("payment_method", mode="before")
    @classmethod
    def _known_payment_method(cls, value):
        if isinstance(value, str):
            cleaned = value.strip().lower().replace(" ", "_")
            if cleaned in PaymentMethod._value2member_map_:
                return cleaned
        return PaymentMethod.other

    @field_validator("tags", mode="before")
    @classmethod
    def _tag_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value if v]
