from datetime import date, datetime
from decimal import Decimal

import pytest

from donation_core.models.subscription import Frequency
from donation_core.utils import (
    add_period, financial_year, financial_year_short, to_paise, to_rupees,
    round_half_up_rupees, format_inr, amount_in_words, validate_pan, normalize_pan,
    verification_code,
)


class TestBillingPeriods:

    def test_month_end_clamps_and_drifts_forward_from_clamped_date(self):
        feb = add_period(date(2024, 1, 31), "monthly")
        assert feb == date(2024, 2, 29)
        assert add_period(feb, "monthly") == date(2024, 3, 29)

    def test_month_end_in_non_leap_year(self):
        assert add_period(date(2023, 1, 31), Frequency.MONTHLY) == date(2023, 2, 28)

    def test_quarterly_uses_same_clamping(self):
        assert add_period(date(2023, 11, 30), Frequency.QUARTERLY) == date(2024, 2, 29)
        assert add_period(date(2024, 1, 15), "quarterly") == date(2024, 4, 15)

    def test_yearly_from_leap_day(self):
        assert add_period(date(2024, 2, 29), Frequency.YEARLY) == date(2025, 2, 28)

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            add_period(date(2024, 1, 1), "weekly")


class TestFinancialYear:

    @pytest.mark.parametrize("moment, expected", [
        (date(2025, 2, 10), "2024-2025"),
        (date(2025, 3, 31), "2024-2025"),
        (date(2025, 4, 1), "2025-2026"),
        (datetime(2024, 12, 31, 23, 59), "2024-2025"),
    ])
    def test_april_to_march(self, moment, expected):
        assert financial_year(moment) == expected

    def test_short_form(self):
        assert financial_year_short(date(2024, 6, 10)) == "2024-25"
        assert financial_year_short(date(2000, 1, 1)) == "1999-00"


class TestMoney:

    def test_to_paise(self):
        assert to_paise(Decimal("500")) == 50000
        assert to_paise("10.5") == 1050
        assert to_paise(1) == 100

    def test_to_paise_rejects_fractional_paise(self):
        with pytest.raises(ValueError):
            to_paise("1.005")

    def test_to_rupees(self):
        assert to_rupees(97000) == Decimal("970.00")

    def test_round_half_up(self):
        assert round_half_up_rupees(50050) == 50100       # 500.50 -> 501
        assert round_half_up_rupees(Decimal("25050")) == 25100
        assert round_half_up_rupees(Decimal("25049")) == 25000
        assert round_half_up_rupees(50000) == 50000

    def test_indian_grouping(self):
        assert format_inr(50000) == "₹500.00"
        assert format_inr(10000000) == "₹1,00,000.00"
        assert format_inr(123456789) == "₹12,34,567.89"

    def test_amount_in_words(self):
        assert amount_in_words(100000) == "Rupees One Thousand Only"
        assert amount_in_words(100050) == "Rupees One Thousand and Fifty Paise Only"
        assert amount_in_words(123456700) == (
            "Rupees Twelve Lakh Thirty Four Thousand Five Hundred Sixty Seven Only"
        )
        assert amount_in_words(2500000000) == "Rupees Two Crore Fifty Lakh Only"


class TestIdentifiers:

    def test_pan(self):
        assert validate_pan("abcpr1234f")
        assert not validate_pan("ABCP1234F")
        assert not validate_pan(None)
        assert normalize_pan("  abcpr1234f ") == "ABCPR1234F"
        assert normalize_pan("   ") is None

    def test_verification_code_is_stable(self):
        code = verification_code("HF-80G-2024-25-000001", 7)
        assert code == verification_code("HF-80G-2024-25-000001", 7)
        assert code != verification_code("HF-80G-2024-25-000001", 8)
        assert len(code) == 20
        assert code == code.upper()
