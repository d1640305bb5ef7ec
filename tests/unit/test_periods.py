"""Unit tests for fiscal year and period key utilities."""

from datetime import date

import pytest

from hoa_billing.services.errors import ValidationError
from hoa_billing.services.periods import PeriodKey, fiscal_month_to_calendar, get_fiscal_year


class TestFiscalYear:
    """Test fiscal year calculations."""

    def test_calendar_fiscal_year(self):
        """Test January start matches the calendar year."""
        assert get_fiscal_year(date(2026, 3, 15), 1) == 2026

    def test_offset_fiscal_year(self):
        """Test a July start names the year after the calendar year it ends in."""
        assert get_fiscal_year(date(2025, 7, 1), 7) == 2026
        assert get_fiscal_year(date(2026, 6, 30), 7) == 2026
        assert get_fiscal_year(date(2026, 7, 1), 7) == 2027

    def test_fiscal_month_to_calendar(self):
        """Test zero-based fiscal months map to calendar months."""
        assert fiscal_month_to_calendar(2026, 0, 7) == (2025, 7)
        assert fiscal_month_to_calendar(2026, 5, 7) == (2025, 12)
        assert fiscal_month_to_calendar(2026, 6, 7) == (2026, 1)
        assert fiscal_month_to_calendar(2026, 11, 1) == (2026, 12)

    def test_fiscal_month_out_of_range(self):
        """Test fiscal month index outside 0-11 is rejected."""
        with pytest.raises(ValidationError):
            fiscal_month_to_calendar(2026, 12, 1)


class TestPeriodKey:
    """Test period key parsing and dates."""

    def test_parse_monthly(self):
        """Test monthly keys use zero-based fiscal months."""
        key = PeriodKey.parse("2026-00")

        assert key.frequency == "monthly"
        assert key.months == 1
        assert key.start_date(1) == date(2026, 1, 1)
        assert key.end_date(1) == date(2026, 1, 31)
        assert str(key) == "2026-00"

    def test_parse_quarterly(self):
        """Test quarterly keys cover three months."""
        key = PeriodKey.parse("2026-Q2")

        assert key.frequency == "quarterly"
        assert key.first_fiscal_month == 3
        assert key.start_date(1) == date(2026, 4, 1)
        assert key.end_date(1) == date(2026, 6, 30)

    def test_quarter_with_offset_fiscal_year(self):
        """Test first quarter of fiscal 2026 with a July start."""
        key = PeriodKey.parse("2026-Q1")

        assert key.start_date(7) == date(2025, 7, 1)
        assert key.end_date(7) == date(2025, 9, 30)

    def test_due_date(self):
        """Test due date falls on the configured day of the first month."""
        assert PeriodKey.parse("2026-Q1").due_date(1, 10) == date(2026, 1, 10)

    def test_previous_wraps_year(self):
        """Test previous period crosses the fiscal year boundary."""
        assert PeriodKey.parse("2026-00").previous().period_id == "2025-11"
        assert PeriodKey.parse("2026-Q1").previous().period_id == "2025-Q4"
        assert PeriodKey.parse("2026-Q3").previous().period_id == "2026-Q2"

    @pytest.mark.parametrize("value", ["2026-12", "2026-Q5", "2026-1", "26-01", "", "2026/Q1"])
    def test_invalid_keys(self, value):
        """Test malformed keys raise ValidationError."""
        with pytest.raises(ValidationError):
            PeriodKey.parse(value)
