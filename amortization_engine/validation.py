"""
Event Validation Module

Rule-based validation of incoming loan events against the current loan
state. Validation never mutates anything; it returns a field -> messages
map, empty when the event is valid.
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, List, Optional

from .config import get_config
from .decimal_math import ONE, ZERO, to_decimal
from .models import EventType, LoanEvent, LoanSnapshot

ADJUSTMENT_TYPES = ("principal", "term")
APPLIED_TO_VALUES = ("principal", "interest", "auto")
EXTRA_PAYMENT_STRATEGIES = ("reduce_term", "reduce_payment")

ValidationErrors = Dict[str, List[str]]


def _numeric(value: Any) -> Optional[Decimal]:
    """Decimal value of a numeric input, None if not numeric"""
    if value is None or value == "":
        return None
    try:
        return to_decimal(value)
    except ValueError:
        return None


class EventValidator:
    """Type-specific validation of loan events"""

    def __init__(self, max_skip_months: Optional[int] = None):
        self.max_skip_months = max_skip_months or get_config().max_skip_months
        self._rules = {
            EventType.EXTRA_PAYMENT: self._validate_extra_payment,
            EventType.SKIP_PAYMENT: self._validate_skip_payment,
            EventType.RATE_CHANGE: self._validate_rate_change,
            EventType.LOAN_MODIFICATION: self._validate_loan_modification,
            EventType.GRACE_PERIOD: self._validate_grace_period,
            EventType.PAYMENT_APPLIED: self._validate_payment_applied,
            EventType.ACCRUAL: self._validate_accrual,
        }

    @property
    def supported_types(self) -> List[str]:
        return [event_type.value for event_type in self._rules]

    def is_supported_type(self, event_type: Any) -> bool:
        return isinstance(event_type, EventType) and event_type in self._rules

    def validate(self, event: LoanEvent, loan: LoanSnapshot) -> ValidationErrors:
        """
        Validate an event against the loan it applies to

        Args:
            event: Incoming event
            loan: Current loan snapshot

        Returns:
            Map of field -> error messages; empty when valid
        """
        errors: ValidationErrors = {}

        if not event.loan_id:
            self._add(errors, 'loan_id', "Loan ID is required")
        elif loan.loan_id is not None and event.loan_id != loan.loan_id:
            self._add(errors, 'loan_id', f"Event belongs to loan {event.loan_id}, not {loan.loan_id}")

        # Event type validation
        if event.event_type is None or event.event_type == "":
            self._add(errors, 'event_type', "Event type is required")
        elif not self.is_supported_type(event.event_type):
            self._add(
                errors, 'event_type',
                f"Invalid event type. Must be one of: {', '.join(self.supported_types)}"
            )

        # Date validation
        if event.event_date is None or event.event_date == "":
            self._add(errors, 'event_date', "Event date is required")
        elif not isinstance(event.event_date, date):
            self._add(errors, 'event_date', "Invalid date format (YYYY-MM-DD)")
        elif event.event_date < loan.start_date:
            self._add(errors, 'event_date', "Event date cannot be before loan start date")

        # Type-specific validation (only if no type error)
        if 'event_type' not in errors:
            self._rules[event.event_type](event, loan, errors)

        return errors

    def _add(self, errors: ValidationErrors, field: str, message: str) -> None:
        errors.setdefault(field, []).append(message)

    def _positive_amount(self, event: LoanEvent, errors: ValidationErrors, label: str) -> Optional[Decimal]:
        if event.amount is None or event.amount == "":
            self._add(errors, 'amount', f"Amount is required for {label}")
            return None
        amount = _numeric(event.amount)
        if amount is None:
            self._add(errors, 'amount', "Amount must be numeric")
            return None
        if amount <= ZERO:
            self._add(errors, 'amount', "Amount must be positive")
            return None
        return amount

    def _whole_months(self, value: Any, field: str, errors: ValidationErrors) -> Optional[int]:
        if value is None or value == "":
            self._add(errors, field, "Number of months is required")
            return None
        months = _numeric(value)
        if months is None:
            self._add(errors, field, "Must be numeric")
            return None
        if months != months.to_integral_value():
            self._add(errors, field, "Must be a whole number of months")
            return None
        return int(months)

    def _validate_extra_payment(self, event, loan, errors):
        amount = self._positive_amount(event, errors, "extra payment")
        if amount is not None and amount > loan.current_balance:
            self._add(errors, 'amount', "Amount cannot exceed current loan balance")

        strategy = event.get('strategy')
        if strategy is not None and strategy not in EXTRA_PAYMENT_STRATEGIES:
            self._add(
                errors, 'strategy',
                f"Strategy must be one of: {', '.join(EXTRA_PAYMENT_STRATEGIES)}"
            )

    def _validate_skip_payment(self, event, loan, errors):
        months = self._whole_months(event.get('months_to_skip', event.amount), 'months_to_skip', errors)
        if months is None:
            return
        if months <= 0:
            self._add(errors, 'months_to_skip', "Must skip at least 1 month")
        elif months > self.max_skip_months:
            self._add(errors, 'months_to_skip', f"Cannot skip more than {self.max_skip_months} months")

    def _validate_rate_change(self, event, loan, errors):
        raw_rate = event.get('new_rate')
        if raw_rate is None or raw_rate == "":
            self._add(errors, 'new_rate', "New interest rate is required")
            return
        new_rate = _numeric(raw_rate)
        if new_rate is None:
            self._add(errors, 'new_rate', "Interest rate must be numeric")
        elif new_rate < ZERO or new_rate > ONE:
            self._add(errors, 'new_rate', "Interest rate must be between 0 and 1 (0% to 100%)")

    def _validate_loan_modification(self, event, loan, errors):
        adjustment_type = event.get('adjustment_type')
        if not adjustment_type:
            self._add(errors, 'adjustment_type', "Adjustment type is required")
        elif adjustment_type not in ADJUSTMENT_TYPES:
            self._add(errors, 'adjustment_type', 'Adjustment type must be "principal" or "term"')

        raw_value = event.get('value')
        if raw_value is None or raw_value == "":
            self._add(errors, 'value', "Adjustment value is required")
            return
        value = _numeric(raw_value)
        if value is None:
            self._add(errors, 'value', "Value must be numeric")
            return
        if value == ZERO:
            self._add(errors, 'value', "Adjustment value cannot be zero")
            return

        if adjustment_type == "principal":
            if loan.current_balance + value <= ZERO:
                self._add(errors, 'value', "Principal reduction cannot exceed current loan balance")
            elif loan.has_balloon and loan.principal + value <= loan.balloon_amount:
                self._add(errors, 'value', "Principal cannot be reduced to or below the balloon amount")
        elif adjustment_type == "term" and value != value.to_integral_value():
            self._add(errors, 'value', "Term adjustment must be a whole number of months")

    def _validate_grace_period(self, event, loan, errors):
        months = self._whole_months(event.get('grace_months', event.amount), 'grace_months', errors)
        if months is not None and months < 1:
            self._add(errors, 'grace_months', "Grace period must be at least 1 month")

    def _validate_payment_applied(self, event, loan, errors):
        self._positive_amount(event, errors, "payment")

        applied_to = event.get('applied_to')
        if not applied_to:
            self._add(errors, 'applied_to', "Applied to field is required")
        elif applied_to not in APPLIED_TO_VALUES:
            self._add(errors, 'applied_to', 'Applied to must be "principal", "interest", or "auto"')

    def _validate_accrual(self, event, loan, errors):
        self._positive_amount(event, errors, "accrual")


def validate_event(event: LoanEvent, loan: LoanSnapshot) -> ValidationErrors:
    """Validate an event with the configured rules"""
    return EventValidator().validate(event, loan)
