"""
Loan Data Model

Immutable value types passed through the amortization core: loan snapshots,
rate periods, schedule rows, loan events and recalculation directives.
State changes are modelled as value replacement (dataclasses.replace), never
in-place mutation.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from enum import Enum

from .decimal_math import ZERO, to_cents, to_decimal
from .exceptions import ConfigurationError
from .frequency import (
    Frequency, add_months, parse_frequency, payment_count, periodic_rate
)


class EventType(Enum):
    """Loan event types"""
    EXTRA_PAYMENT = "extra_payment"          # Unscheduled principal payment
    SKIP_PAYMENT = "skip_payment"            # Borrower skips one or more payments
    RATE_CHANGE = "rate_change"              # New annual rate from event date
    LOAN_MODIFICATION = "loan_modification"  # Principal or term adjustment
    GRACE_PERIOD = "grace_period"            # No payments due, interest may accrue
    PAYMENT_APPLIED = "payment_applied"      # Regular payment received
    ACCRUAL = "accrual"                      # Interest accrual posted


# Event types whose effect changes the future schedule
RECALCULATING_EVENTS = frozenset({
    EventType.EXTRA_PAYMENT,
    EventType.SKIP_PAYMENT,
    EventType.RATE_CHANGE,
    EventType.LOAN_MODIFICATION,
    EventType.GRACE_PERIOD,
})


def _parse_date(value: Union[date, str]) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


@dataclass(frozen=True)
class RatePeriod:
    """
    Date range during which a specific annual rate applies.

    The range is given either by an inclusive end_date or by a duration in
    months; with neither, the period is open-ended.
    """
    start_date: date
    rate: Decimal                          # Annual rate as a fraction
    end_date: Optional[date] = None        # Inclusive
    duration_months: Optional[int] = None
    period_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'start_date', _parse_date(self.start_date))
        object.__setattr__(self, 'rate', to_decimal(self.rate))
        if self.end_date is not None:
            object.__setattr__(self, 'end_date', _parse_date(self.end_date))

        if self.rate < ZERO or self.rate > Decimal('1'):
            raise ConfigurationError(f"Rate must be between 0 and 1, got: {self.rate}")
        if self.end_date is not None and self.duration_months is not None:
            raise ConfigurationError("Rate period takes an end date or a duration, not both")
        if self.duration_months is not None and self.duration_months < 1:
            raise ConfigurationError("Rate period duration must be at least 1 month")
        if self.end_date is not None and self.start_date > self.end_date:
            raise ConfigurationError("Start date cannot be after end date")

    @property
    def last_date(self) -> Optional[date]:
        """Inclusive last day of the period, None if open-ended"""
        if self.end_date is not None:
            return self.end_date
        if self.duration_months is not None:
            return add_months(self.start_date, self.duration_months) - timedelta(days=1)
        return None

    def covers(self, on_date: date) -> bool:
        """Check if the period is active on a date"""
        if on_date < self.start_date:
            return False
        last = self.last_date
        return last is None or on_date <= last

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start_date': self.start_date.isoformat(),
            'rate': str(self.rate),
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'duration_months': self.duration_months,
            'period_id': self.period_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RatePeriod':
        return cls(
            start_date=date.fromisoformat(data['start_date']),
            rate=Decimal(data['rate']),
            end_date=date.fromisoformat(data['end_date']) if data.get('end_date') else None,
            duration_months=data.get('duration_months'),
            period_id=data.get('period_id'),
        )


def validate_rate_periods(periods: Tuple[RatePeriod, ...]) -> None:
    """
    Check that rate periods are contiguous and non-overlapping

    Raises:
        ConfigurationError: On gaps, overlaps, or an open period before the last
    """
    for previous, current in zip(periods, periods[1:]):
        previous_last = previous.last_date
        if previous_last is None:
            raise ConfigurationError(
                f"Open-ended rate period starting {previous.start_date} must be the last period"
            )
        expected_start = previous_last + timedelta(days=1)
        if current.start_date < expected_start:
            raise ConfigurationError(
                f"Rate periods overlap: {previous.start_date}..{previous_last} "
                f"and period starting {current.start_date}"
            )
        if current.start_date > expected_start:
            raise ConfigurationError(
                f"Gap between rate periods: {previous_last} to {current.start_date}"
            )


@dataclass(frozen=True)
class LoanSnapshot:
    """Immutable view of a loan at a point in time"""
    principal: Decimal                     # Original financed amount
    annual_rate: Decimal                   # e.g., 0.05 for 5%
    term_months: int                       # Total term including deferrals
    start_date: date
    payment_frequency: Frequency = Frequency.MONTHLY
    interest_calc_frequency: Optional[Frequency] = None  # Defaults to payment frequency
    current_balance: Optional[Decimal] = None            # Defaults to principal
    balloon_amount: Optional[Decimal] = None
    rate_periods: Tuple[RatePeriod, ...] = ()
    first_payment_date: Optional[date] = None            # Defaults to start date
    number_of_payments: Optional[int] = None             # Overrides the term-derived count
    deferred_months: int = 0                             # Grace months before first payment
    accrued_interest: Decimal = ZERO                     # Accrued, not yet paid or capitalized
    previous_rate: Optional[Decimal] = None
    rate_effective_date: Optional[date] = None
    loan_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'principal', to_cents(self.principal))
        object.__setattr__(self, 'annual_rate', to_decimal(self.annual_rate))
        object.__setattr__(self, 'start_date', _parse_date(self.start_date))
        object.__setattr__(self, 'payment_frequency', parse_frequency(self.payment_frequency))
        object.__setattr__(
            self, 'interest_calc_frequency',
            parse_frequency(self.interest_calc_frequency or self.payment_frequency)
        )
        object.__setattr__(
            self, 'current_balance',
            to_cents(self.principal if self.current_balance is None else self.current_balance)
        )
        if self.balloon_amount is not None:
            object.__setattr__(self, 'balloon_amount', to_cents(self.balloon_amount))
        if self.first_payment_date is not None:
            object.__setattr__(self, 'first_payment_date', _parse_date(self.first_payment_date))
        object.__setattr__(self, 'accrued_interest', to_cents(self.accrued_interest))
        object.__setattr__(
            self, 'rate_periods',
            tuple(sorted(self.rate_periods, key=lambda period: period.start_date))
        )

        if self.principal <= ZERO:
            raise ConfigurationError("Principal must be positive")
        if self.annual_rate < ZERO or self.annual_rate > Decimal('1'):
            raise ConfigurationError("Annual interest rate must be between 0 and 1 (0-100%)")
        if self.term_months < 1:
            raise ConfigurationError("Term must be at least 1 month")
        if self.current_balance < ZERO:
            raise ConfigurationError("Current balance cannot be negative")
        if self.balloon_amount is not None:
            if self.balloon_amount < ZERO:
                raise ConfigurationError("Balloon amount cannot be negative")
            if self.balloon_amount >= self.principal:
                raise ConfigurationError(
                    f"Balloon amount ({self.balloon_amount}) cannot be >= principal ({self.principal})"
                )
        if self.number_of_payments is not None and self.number_of_payments < 1:
            raise ConfigurationError("Number of payments must be at least 1")
        if self.deferred_months < 0 or self.deferred_months >= self.term_months:
            raise ConfigurationError("Deferred months must be within the loan term")

        validate_rate_periods(self.rate_periods)

    @property
    def first_payment(self) -> date:
        """Date of the first scheduled payment"""
        return self.first_payment_date or self.start_date

    @property
    def total_payments(self) -> int:
        """Number of scheduled payments"""
        if self.number_of_payments is not None:
            return self.number_of_payments
        return payment_count(self.term_months - self.deferred_months, self.payment_frequency)

    @property
    def has_balloon(self) -> bool:
        return self.balloon_amount is not None and self.balloon_amount > ZERO

    @property
    def has_rate_periods(self) -> bool:
        return len(self.rate_periods) > 0

    def rate_per_period(self, annual_rate: Optional[Decimal] = None) -> Decimal:
        """Periodic rate for the loan's payment and compounding frequencies"""
        return periodic_rate(
            self.annual_rate if annual_rate is None else annual_rate,
            self.payment_frequency,
            self.interest_calc_frequency
        )

    def rate_period_for(self, on_date: date) -> Optional[Tuple[int, RatePeriod]]:
        """Find the rate period active on a date as (period id, period)"""
        for index, period in enumerate(self.rate_periods):
            if period.covers(on_date):
                return (period.period_id if period.period_id is not None else index), period
        return None

    def with_changes(self, **changes) -> 'LoanSnapshot':
        """Return a new snapshot with fields replaced"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert snapshot to dictionary (amounts as strings)"""
        return {
            'loan_id': self.loan_id,
            'principal': str(self.principal),
            'current_balance': str(self.current_balance),
            'annual_rate': str(self.annual_rate),
            'term_months': self.term_months,
            'start_date': self.start_date.isoformat(),
            'payment_frequency': self.payment_frequency.value,
            'interest_calc_frequency': self.interest_calc_frequency.value,
            'balloon_amount': str(self.balloon_amount) if self.balloon_amount is not None else None,
            'rate_periods': [period.to_dict() for period in self.rate_periods],
            'first_payment_date': self.first_payment_date.isoformat() if self.first_payment_date else None,
            'number_of_payments': self.number_of_payments,
            'deferred_months': self.deferred_months,
            'accrued_interest': str(self.accrued_interest),
            'previous_rate': str(self.previous_rate) if self.previous_rate is not None else None,
            'rate_effective_date': self.rate_effective_date.isoformat() if self.rate_effective_date else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanSnapshot':
        """Convert dictionary to snapshot"""
        def get_date(key: str) -> Optional[date]:
            if data.get(key):
                return date.fromisoformat(data[key])
            return None

        def get_decimal(key: str) -> Optional[Decimal]:
            if data.get(key) is not None:
                return Decimal(data[key])
            return None

        return cls(
            loan_id=data.get('loan_id'),
            principal=Decimal(data['principal']),
            current_balance=get_decimal('current_balance'),
            annual_rate=Decimal(data['annual_rate']),
            term_months=data['term_months'],
            start_date=date.fromisoformat(data['start_date']),
            payment_frequency=Frequency(data.get('payment_frequency', 'monthly')),
            interest_calc_frequency=(
                Frequency(data['interest_calc_frequency']) if data.get('interest_calc_frequency') else None
            ),
            balloon_amount=get_decimal('balloon_amount'),
            rate_periods=tuple(RatePeriod.from_dict(p) for p in data.get('rate_periods', [])),
            first_payment_date=get_date('first_payment_date'),
            number_of_payments=data.get('number_of_payments'),
            deferred_months=data.get('deferred_months', 0),
            accrued_interest=get_decimal('accrued_interest') or ZERO,
            previous_rate=get_decimal('previous_rate'),
            rate_effective_date=get_date('rate_effective_date'),
        )


@dataclass(frozen=True)
class ScheduleRow:
    """Single row in an amortization schedule"""
    payment_number: int
    payment_date: date
    beginning_balance: Decimal
    payment_amount: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    ending_balance: Decimal
    balloon_amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None             # Annual rate applied to this row
    rate_period_id: Optional[int] = None
    extra_principal: Optional[Decimal] = None  # Unscheduled principal folded into this row

    def __post_init__(self):
        for name in ('beginning_balance', 'payment_amount', 'principal_portion',
                     'interest_portion', 'ending_balance'):
            object.__setattr__(self, name, to_cents(getattr(self, name)))
        for name in ('balloon_amount', 'extra_principal'):
            if getattr(self, name) is not None:
                object.__setattr__(self, name, to_cents(getattr(self, name)))
        if self.rate is not None:
            object.__setattr__(self, 'rate', to_decimal(self.rate))

        if self.payment_number < 1:
            raise ValueError("Payment number must be 1-based")

        expected_payment = self.principal_portion + self.interest_portion + (self.balloon_amount or ZERO)
        if expected_payment != self.payment_amount:
            raise ValueError(
                f"Payment amount {self.payment_amount} does not equal principal "
                f"{self.principal_portion} + interest {self.interest_portion}"
                + (f" + balloon {self.balloon_amount}" if self.balloon_amount else "")
            )
        if self.beginning_balance - self.principal_portion != self.ending_balance:
            raise ValueError(
                f"Ending balance {self.ending_balance} does not equal beginning balance "
                f"{self.beginning_balance} - principal {self.principal_portion}"
            )

    @property
    def scheduled_payment(self) -> Decimal:
        """Regular installment, excluding balloon and unscheduled principal"""
        return self.payment_amount - (self.balloon_amount or ZERO) - (self.extra_principal or ZERO)

    def to_dict(self) -> Dict[str, Any]:
        """Convert schedule row to dictionary (amounts as strings)"""
        return {
            'payment_number': self.payment_number,
            'payment_date': self.payment_date.isoformat(),
            'beginning_balance': str(self.beginning_balance),
            'payment_amount': str(self.payment_amount),
            'principal_portion': str(self.principal_portion),
            'interest_portion': str(self.interest_portion),
            'ending_balance': str(self.ending_balance),
            'balloon_amount': str(self.balloon_amount) if self.balloon_amount is not None else None,
            'rate': str(self.rate) if self.rate is not None else None,
            'rate_period_id': self.rate_period_id,
            'extra_principal': str(self.extra_principal) if self.extra_principal is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleRow':
        """Convert dictionary to schedule row"""
        def get_decimal(key: str) -> Optional[Decimal]:
            if data.get(key) is not None:
                return Decimal(data[key])
            return None

        return cls(
            payment_number=data['payment_number'],
            payment_date=date.fromisoformat(data['payment_date']),
            beginning_balance=Decimal(data['beginning_balance']),
            payment_amount=Decimal(data['payment_amount']),
            principal_portion=Decimal(data['principal_portion']),
            interest_portion=Decimal(data['interest_portion']),
            ending_balance=Decimal(data['ending_balance']),
            balloon_amount=get_decimal('balloon_amount'),
            rate=get_decimal('rate'),
            rate_period_id=data.get('rate_period_id'),
            extra_principal=get_decimal('extra_principal'),
        )


@dataclass(frozen=True)
class LoanEvent:
    """
    Real-world event affecting a loan.

    Events are append-only: created by the caller, validated, applied once,
    never mutated. Raw values are kept as given so the validator can report
    on malformed input; type-specific fields live in ``details``
    (months_to_skip, new_rate, adjustment_type, value, applied_to,
    grace_months, strategy).
    """
    loan_id: str
    event_type: Union[EventType, str]
    event_date: Union[date, str]
    amount: Any = None
    notes: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.event_type, str):
            try:
                object.__setattr__(self, 'event_type', EventType(self.event_type))
            except ValueError:
                pass  # Left as given; reported by the validator
        if isinstance(self.event_date, str):
            try:
                object.__setattr__(self, 'event_date', date.fromisoformat(self.event_date))
            except ValueError:
                pass  # Left as given; reported by the validator
        object.__setattr__(self, 'details', MappingProxyType(dict(self.details)))

    @property
    def type_value(self) -> str:
        """Event type identifier as a string"""
        if isinstance(self.event_type, EventType):
            return self.event_type.value
        return str(self.event_type)

    def get(self, name: str, default: Any = None) -> Any:
        """Look up a type-specific field"""
        return self.details.get(name, default)

    @property
    def months(self) -> int:
        """Months to skip or grace months; falls back to amount"""
        value = self.get('months_to_skip', self.get('grace_months', self.amount))
        return int(to_decimal(value))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_id': self.event_id,
            'loan_id': self.loan_id,
            'event_type': self.type_value,
            'event_date': (
                self.event_date.isoformat() if isinstance(self.event_date, date) else self.event_date
            ),
            'amount': str(self.amount) if self.amount is not None else None,
            'notes': self.notes,
            'details': {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.details.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanEvent':
        return cls(
            event_id=data.get('event_id'),
            loan_id=data['loan_id'],
            event_type=data['event_type'],
            event_date=data['event_date'],
            amount=data.get('amount'),
            notes=data.get('notes') or "",
            details=data.get('details') or {},
        )


@dataclass(frozen=True)
class RecalculationDirective:
    """Instruction emitted by an event handler: whether and from when to recalculate"""
    required: bool
    reason: str
    effective_date: Optional[date] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'metadata', MappingProxyType(dict(self.metadata)))


def sort_events(events: List[LoanEvent]) -> List[LoanEvent]:
    """Chronological order by event date; same-day events keep insertion order"""
    return sorted(events, key=lambda event: event.event_date)
