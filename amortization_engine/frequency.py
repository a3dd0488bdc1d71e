"""
Payment Frequency Module

Static lookup from frequency identifier to periods per year and date-stepping
rules. Monthly, semiannual and annual frequencies step by calendar months;
the others step by an approximate day interval.
"""

from decimal import Decimal
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Optional, Union
import calendar

from .decimal_math import INTERNAL_SCALE, ONE, ZERO, add, divide, power, subtract, to_decimal
from .exceptions import UnknownFrequency


class Frequency(Enum):
    """Payment and interest calculation frequencies"""
    MONTHLY = "monthly"          # 12 periods per year
    BIWEEKLY = "biweekly"        # 26 periods per year
    WEEKLY = "weekly"            # 52 periods per year
    DAILY = "daily"              # 365 periods per year
    SEMIANNUAL = "semiannual"    # 2 periods per year
    ANNUAL = "annual"            # 1 period per year


PERIODS_PER_YEAR: Dict[Frequency, int] = {
    Frequency.MONTHLY: 12,
    Frequency.BIWEEKLY: 26,
    Frequency.WEEKLY: 52,
    Frequency.DAILY: 365,
    Frequency.SEMIANNUAL: 2,
    Frequency.ANNUAL: 1,
}

# Frequencies with an exact calendar unit, in months per period
CALENDAR_MONTHS: Dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.SEMIANNUAL: 6,
    Frequency.ANNUAL: 12,
}


def parse_frequency(frequency: Union[Frequency, str]) -> Frequency:
    """
    Resolve a frequency identifier

    Raises:
        UnknownFrequency: If the identifier is not supported
    """
    if isinstance(frequency, Frequency):
        return frequency
    if isinstance(frequency, str):
        try:
            return Frequency(frequency.strip().lower())
        except ValueError:
            pass
    raise UnknownFrequency(frequency, [f.value for f in Frequency])


def periods_per_year(frequency: Union[Frequency, str]) -> int:
    """Get number of payment periods per year"""
    return PERIODS_PER_YEAR[parse_frequency(frequency)]


def payment_interval_days(frequency: Union[Frequency, str]) -> int:
    """Approximate days between payments: round(365 / periods per year)"""
    return int(divide(365, periods_per_year(frequency), 0))


def periods_in_months(months: int, frequency: Union[Frequency, str]) -> int:
    """Payment periods spanned by a signed number of months, rounded half up"""
    return int(divide(months * periods_per_year(frequency), 12, 0))


def payment_count(term_months: int, frequency: Union[Frequency, str]) -> int:
    """Number of payments over a term in months, at least one"""
    return max(1, periods_in_months(term_months, frequency))


def periodic_rate(
    annual_rate: Decimal,
    payment_frequency: Union[Frequency, str],
    interest_calc_frequency: Optional[Union[Frequency, str]] = None,
    scale: int = INTERNAL_SCALE
) -> Decimal:
    """
    Interest rate per payment period

    When interest compounds at a different frequency than payments are made,
    the effective rate per payment period is (1 + i/m)^(m/p) - 1.

    Args:
        annual_rate: Nominal annual rate as a fraction (0.05 for 5%)
        payment_frequency: How often payments are made (p per year)
        interest_calc_frequency: How often interest compounds (m per year)
        scale: Fractional digits of the result
    """
    annual_rate = to_decimal(annual_rate)
    payment_periods = periods_per_year(payment_frequency)

    if interest_calc_frequency is None:
        return divide(annual_rate, payment_periods, scale)

    compounding_periods = periods_per_year(interest_calc_frequency)
    if compounding_periods == payment_periods or annual_rate == ZERO:
        return divide(annual_rate, payment_periods, scale)

    rate_per_compounding = divide(annual_rate, compounding_periods, scale + 8)
    exponent = divide(compounding_periods, payment_periods, scale + 8)
    return subtract(power(add(ONE, rate_per_compounding, scale + 8), exponent, scale + 4), ONE, scale)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_periods(start_date: date, frequency: Union[Frequency, str], count: int) -> date:
    """
    Step a date forward by a number of payment periods

    Always steps from the same origin so month-end dates do not drift
    (Jan 31 + 2 months is Mar 31, not Mar 28).
    """
    frequency = parse_frequency(frequency)
    if frequency in CALENDAR_MONTHS:
        return add_months(start_date, CALENDAR_MONTHS[frequency] * count)
    return start_date + timedelta(days=payment_interval_days(frequency) * count)


def periods_between(origin: date, later: date, frequency: Union[Frequency, str]) -> int:
    """Whole payment periods from origin to a later schedule date"""
    frequency = parse_frequency(frequency)
    if frequency in CALENDAR_MONTHS:
        months = (later.year - origin.year) * 12 + (later.month - origin.month)
        return months // CALENDAR_MONTHS[frequency]
    return (later - origin).days // payment_interval_days(frequency)


def payment_date_for(origin: date, frequency: Union[Frequency, str], payment_number: int) -> date:
    """Date of a 1-based payment number in a schedule starting at origin"""
    return add_periods(origin, frequency, payment_number - 1)
