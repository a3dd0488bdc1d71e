"""
Event Handlers Module

One pure handler per event kind, mapping (loan snapshot, event) to an
updated snapshot plus a recalculation directive. Handlers never mutate
their inputs; apply_event validates before any handler runs.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from .config import get_config
from .decimal_math import CENTS_SCALE, ZERO, divide, multiply, to_cents, to_decimal
from .exceptions import ConfigurationError, ValidationError
from .frequency import add_months, periods_in_months
from .logging_config import get_logger, log_action
from .models import EventType, LoanEvent, LoanSnapshot, RatePeriod, RecalculationDirective
from .recalculation import (
    compounded_interest, extra_payment_strategy, interest_savings, payoff_period_count
)
from .strategies import StrategySelector
from .validation import EventValidator

logger = get_logger("amortization.events")

HandlerResult = Tuple[LoanSnapshot, RecalculationDirective]


def _extended_payment_count(loan: LoanSnapshot, months: int) -> Optional[int]:
    """Explicit payment count adjusted for a term change, None when derived from the term"""
    if loan.number_of_payments is None:
        return None
    return max(1, loan.number_of_payments + periods_in_months(months, loan.payment_frequency))


class EventHandler(ABC):
    """Applies one kind of loan event"""

    event_type: EventType

    @abstractmethod
    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        """Return the updated snapshot and whether the schedule must be recalculated"""

    def supports(self, event: LoanEvent) -> bool:
        return event.event_type == self.event_type


class ExtraPaymentHandler(EventHandler):
    """Unscheduled principal payment: reduces the current balance"""

    event_type = EventType.EXTRA_PAYMENT

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        amount = to_cents(event.amount)
        new_balance = max(ZERO, loan.current_balance - amount)
        updated = loan.with_changes(current_balance=new_balance)

        # Savings estimate holds the level payment fixed on the amortizing balance
        balloon = loan.balloon_amount or ZERO
        rate = loan.rate_per_period()
        payment = StrategySelector().select(loan).calculate_payment(loan)
        before = max(ZERO, loan.current_balance - balloon)
        after = max(ZERO, new_balance - balloon)
        saved = interest_savings(before, after, rate, payment)
        remaining = payoff_period_count(after, rate, payment)

        return updated, RecalculationDirective(
            required=True,
            reason=self.event_type.value,
            effective_date=event.event_date,
            metadata={
                'extra_payment': amount,
                'strategy': extra_payment_strategy(event),
                'previous_balance': loan.current_balance,
                'new_balance': new_balance,
                'interest_savings': saved,
                'resulting_payments': remaining,
            }
        )


class SkipPaymentHandler(EventHandler):
    """Skipped payments: interest compounds onto the balance and the term extends"""

    event_type = EventType.SKIP_PAYMENT

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        months = event.months
        accrued = compounded_interest(loan.current_balance, loan.annual_rate, months)

        updated = loan.with_changes(
            current_balance=loan.current_balance + accrued,
            term_months=loan.term_months + months,
            number_of_payments=_extended_payment_count(loan, months)
        )
        return updated, RecalculationDirective(
            required=True,
            reason=self.event_type.value,
            effective_date=event.event_date,
            metadata={
                'months_skipped': months,
                'accrued_interest': accrued,
                'new_term_months': updated.term_months,
            }
        )


class RateChangeHandler(EventHandler):
    """New annual rate effective from the event date"""

    event_type = EventType.RATE_CHANGE

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        new_rate = to_decimal(event.get('new_rate'))
        changes = {
            'previous_rate': loan.annual_rate,
            'annual_rate': new_rate,
            'rate_effective_date': event.event_date,
        }
        if loan.has_rate_periods:
            changes['rate_periods'] = self._split_periods(loan, event, new_rate)

        updated = loan.with_changes(**changes)
        return updated, RecalculationDirective(
            required=True,
            reason=self.event_type.value,
            effective_date=event.event_date,
            metadata={'previous_rate': loan.annual_rate, 'new_rate': new_rate}
        )

    def _split_periods(self, loan: LoanSnapshot, event: LoanEvent, new_rate: Decimal) -> Tuple[RatePeriod, ...]:
        """End the period covering the event date and open a new one at the new rate"""
        kept: List[RatePeriod] = []
        ids = []

        for index, period in enumerate(loan.rate_periods):
            period_id = period.period_id if period.period_id is not None else index
            ids.append(period_id)
            if period.start_date >= event.event_date:
                continue  # Superseded by the new rate
            last = period.last_date
            if last is not None and last < event.event_date:
                kept.append(RatePeriod(period.start_date, period.rate, end_date=last, period_id=period_id))
            else:
                kept.append(RatePeriod(
                    period.start_date, period.rate,
                    end_date=event.event_date - timedelta(days=1),
                    period_id=period_id
                ))

        start = event.event_date
        if kept and kept[-1].last_date + timedelta(days=1) < start:
            start = kept[-1].last_date + timedelta(days=1)

        kept.append(RatePeriod(start, new_rate, period_id=max(ids) + 1))
        return tuple(kept)


class LoanModificationHandler(EventHandler):
    """Signed adjustment of principal or term"""

    event_type = EventType.LOAN_MODIFICATION

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        adjustment_type = event.get('adjustment_type')
        value = to_decimal(event.get('value'))

        if adjustment_type == "principal":
            value = to_cents(value)
            updated = loan.with_changes(
                principal=loan.principal + value,
                current_balance=loan.current_balance + value
            )
        elif adjustment_type == "term":
            months = int(value)
            term_months = max(loan.deferred_months + 1, loan.term_months + months)
            updated = loan.with_changes(
                term_months=term_months,
                number_of_payments=_extended_payment_count(loan, term_months - loan.term_months)
            )
        else:
            raise ConfigurationError(f"Unknown adjustment type: {adjustment_type}")

        return updated, RecalculationDirective(
            required=True,
            reason=self.event_type.value,
            effective_date=event.event_date,
            metadata={'adjustment_type': adjustment_type, 'value': value}
        )


class GracePeriodHandler(EventHandler):
    """
    Grace period: no payments due for a number of months.

    Simple interest accrues on the unchanged balance. It is capitalized into
    the balance when capitalize_grace_interest is set and otherwise recorded
    as accrued interest. A grace period before the first payment moves the
    first payment date back; the term extends either way.
    """

    event_type = EventType.GRACE_PERIOD

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        months = event.months
        monthly_rate = divide(loan.annual_rate, 12)
        accrued = multiply(multiply(loan.current_balance, monthly_rate, CENTS_SCALE), months, CENTS_SCALE)

        grace_start = event.event_date
        grace_end = add_months(grace_start, months) - timedelta(days=1)
        before_first_payment = event.event_date < loan.first_payment

        changes = {
            'term_months': loan.term_months + months,
            'number_of_payments': _extended_payment_count(loan, months),
        }
        if before_first_payment:
            changes['first_payment_date'] = add_months(loan.first_payment, months)
            changes['deferred_months'] = loan.deferred_months + months
            changes['number_of_payments'] = loan.number_of_payments

        capitalized = get_config().capitalize_grace_interest
        if capitalized:
            changes['current_balance'] = loan.current_balance + accrued
            if before_first_payment:
                changes['principal'] = loan.principal + accrued
        else:
            changes['accrued_interest'] = loan.accrued_interest + accrued

        updated = loan.with_changes(**changes)
        return updated, RecalculationDirective(
            required=True,
            reason=self.event_type.value,
            effective_date=event.event_date,
            metadata={
                'grace_months': months,
                'accrued_interest': accrued,
                'capitalized': capitalized,
                'start_date': grace_start,
                'end_date': grace_end,
                'months_after_grace': updated.term_months,
            }
        )


class PaymentAppliedHandler(EventHandler):
    """Regular payment received: settles accrued interest and/or principal"""

    event_type = EventType.PAYMENT_APPLIED

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        amount = to_cents(event.amount)
        applied_to = event.get('applied_to')

        to_interest = ZERO
        if applied_to in ("interest", "auto"):
            to_interest = min(amount, loan.accrued_interest)
        to_principal = ZERO
        if applied_to == "principal":
            to_principal = min(amount, loan.current_balance)
        elif applied_to == "auto":
            to_principal = min(amount - to_interest, loan.current_balance)

        updated = loan.with_changes(
            accrued_interest=loan.accrued_interest - to_interest,
            current_balance=loan.current_balance - to_principal
        )
        return updated, RecalculationDirective(
            required=False,
            reason=self.event_type.value,
            effective_date=event.event_date,
            metadata={'interest_paid': to_interest, 'principal_paid': to_principal}
        )


class AccrualHandler(EventHandler):
    """Interest accrual posted to the loan"""

    event_type = EventType.ACCRUAL

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        amount = to_cents(event.amount)
        updated = loan.with_changes(accrued_interest=loan.accrued_interest + amount)
        return updated, RecalculationDirective(
            required=False,
            reason=self.event_type.value,
            effective_date=event.event_date,
            metadata={'accrued_interest': updated.accrued_interest}
        )


class EventHandlerRegistry:
    """Validates events and dispatches them to their handler"""

    def __init__(
        self,
        handlers: Optional[List[EventHandler]] = None,
        validator: Optional[EventValidator] = None
    ):
        self.validator = validator or EventValidator()
        self._handlers: Dict[EventType, EventHandler] = {}
        for handler in handlers or [
            ExtraPaymentHandler(),
            SkipPaymentHandler(),
            RateChangeHandler(),
            LoanModificationHandler(),
            GracePeriodHandler(),
            PaymentAppliedHandler(),
            AccrualHandler(),
        ]:
            self.register(handler)

    def register(self, handler: EventHandler) -> None:
        self._handlers[handler.event_type] = handler

    def handler_for(self, event: LoanEvent) -> EventHandler:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            raise ConfigurationError(f"No handler registered for event type: {event.type_value}")
        return handler

    def apply(self, loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
        """
        Validate and apply an event

        Raises:
            ValidationError: If the event is invalid for the loan; nothing is applied
        """
        errors = self.validator.validate(event, loan)
        if errors:
            log_action(
                logger, "warning", "Event rejected",
                loan_id=event.loan_id,
                action="validate_event",
                resource=event.type_value,
                extra={"errors": errors}
            )
            raise ValidationError(errors)

        updated, directive = self.handler_for(event).apply(loan, event)

        log_action(
            logger, "debug", "Event applied",
            loan_id=event.loan_id,
            action="apply_event",
            resource=event.type_value,
            extra={
                "recalculation_required": directive.required,
                "effective_date": directive.effective_date,
                "current_balance": str(updated.current_balance),
            }
        )
        return updated, directive


def apply_event(loan: LoanSnapshot, event: LoanEvent) -> HandlerResult:
    """Validate an event and apply it to a loan snapshot"""
    return EventHandlerRegistry().apply(loan, event)
