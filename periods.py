from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    year: int
    month: int
    start: datetime
    end: datetime


def today_local(tz: Optional[str] = None) -> date:
    return datetime.now(ZoneInfo(tz or get_settings().timezone)).date()


def month_window(year: int, month: int) -> Period:
    """Day 1 00:00:00 through the last day of the month at 23:59:59."""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    last = next_month - date.resolution
    return Period(
        year=year,
        month=month,
        start=datetime.combine(first, time.min),
        end=datetime.combine(last, time(23, 59, 59)),
    )


def current_month(*, today: Optional[date] = None) -> Period:
    today = today or today_local()
    return month_window(today.year, today.month)


def budget_window(
    year: Optional[int], month: Optional[int], *, today: Optional[date] = None
) -> Period:
    # Category budgets may carry no month; they track the current one.
    today = today or today_local()
    return month_window(year or today.year, month or today.month)
