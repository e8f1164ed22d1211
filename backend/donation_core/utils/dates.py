"""
Date Utilities — billing-cycle arithmetic and Indian financial years.
"""
from datetime import date, datetime, timezone

from dateutil.relativedelta import relativedelta

# relativedelta clamps the day-of-month to the end of a shorter target month
# (Jan 31 + 1 month -> Feb 28/29, Feb 29 + 1 year -> Feb 28).
BILLING_PERIODS = {
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
    "yearly": relativedelta(years=1),
}


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_period(start: date, frequency) -> date:
    """Advance a billing date by exactly one period of `frequency`.

    Args:
        start: The current billing date.
        frequency: "monthly" | "quarterly" | "yearly" (or the Frequency enum).

    Raises:
        ValueError: for an unknown frequency.
    """
    key = getattr(frequency, "value", frequency)
    try:
        period = BILLING_PERIODS[key]
    except KeyError:
        raise ValueError(f"Unknown billing frequency: {frequency!r}") from None
    return start + period


def financial_year(moment: date | datetime) -> str:
    """Indian financial year (April 1 – March 31), e.g. 2025-02-10 -> '2024-2025'."""
    start = moment.year if moment.month >= 4 else moment.year - 1
    return f"{start}-{start + 1}"


def financial_year_short(moment: date | datetime) -> str:
    """Compact form used in certificate numbers, e.g. '2024-25'."""
    start = moment.year if moment.month >= 4 else moment.year - 1
    return f"{start}-{str(start + 1)[-2:]}"
