"""Fiscal-year and billing period key utilities.

Period keys:
    monthly:   "2026-03"  fiscal year 2026, zero-based fiscal month index 3
    quarterly: "2026-Q2"  fiscal year 2026, second fiscal quarter (1..4)

A fiscal year is named after the calendar year in which it ends. With a July
start (``fiscal_year_start_month=7``) fiscal 2026 runs July 2025 - June 2026 and
fiscal month 0 is July 2025. With a January start fiscal and calendar years match.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date

from hoa_billing.services.errors import ValidationError

_MONTHLY_RE = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTERLY_RE = re.compile(r"^(\d{4})-Q([1-4])$")


def get_fiscal_year(on: date, start_month: int = 1) -> int:
    """Fiscal year containing ``on``."""
    if start_month == 1:
        return on.year
    return on.year + 1 if on.month >= start_month else on.year


def fiscal_month_to_calendar(fiscal_year: int, fiscal_month: int, start_month: int = 1) -> tuple[int, int]:
    """Map a zero-based fiscal month index to (calendar_year, calendar_month)."""
    if not 0 <= fiscal_month <= 11:
        raise ValidationError(f"Fiscal month must be 0-11, got {fiscal_month}")
    first_year = fiscal_year if start_month == 1 else fiscal_year - 1
    month_zero = start_month - 1 + fiscal_month
    return first_year + month_zero // 12, month_zero % 12 + 1


@dataclass(frozen=True)
class PeriodKey:
    """Parsed billing period key."""

    fiscal_year: int
    index: int
    frequency: str

    @classmethod
    def parse(cls, value: str) -> "PeriodKey":
        match = _MONTHLY_RE.match(value or "")
        if match:
            month = int(match.group(2))
            if month > 11:
                raise ValidationError(f"Invalid period key {value!r}: month index must be 00-11")
            return cls(int(match.group(1)), month, "monthly")
        match = _QUARTERLY_RE.match(value or "")
        if match:
            return cls(int(match.group(1)), int(match.group(2)) - 1, "quarterly")
        raise ValidationError(
            f"Invalid period key {value!r}: expected YYYY-MM or YYYY-Qn",
            {"period_id": value},
        )

    @property
    def period_id(self) -> str:
        if self.frequency == "quarterly":
            return f"{self.fiscal_year}-Q{self.index + 1}"
        return f"{self.fiscal_year}-{self.index:02d}"

    @property
    def months(self) -> int:
        return 3 if self.frequency == "quarterly" else 1

    @property
    def first_fiscal_month(self) -> int:
        return self.index * self.months

    def start_date(self, start_month: int = 1) -> date:
        year, month = fiscal_month_to_calendar(self.fiscal_year, self.first_fiscal_month, start_month)
        return date(year, month, 1)

    def end_date(self, start_month: int = 1) -> date:
        last = self.first_fiscal_month + self.months - 1
        year, month = fiscal_month_to_calendar(self.fiscal_year, last, start_month)
        return date(year, month, calendar.monthrange(year, month)[1])

    def due_date(self, start_month: int = 1, due_day: int = 1) -> date:
        return self.start_date(start_month).replace(day=due_day)

    def previous(self) -> "PeriodKey":
        per_year = 4 if self.frequency == "quarterly" else 12
        if self.index == 0:
            return PeriodKey(self.fiscal_year - 1, per_year - 1, self.frequency)
        return PeriodKey(self.fiscal_year, self.index - 1, self.frequency)

    def __str__(self) -> str:
        return self.period_id


__all__ = ["PeriodKey", "get_fiscal_year", "fiscal_month_to_calendar"]
