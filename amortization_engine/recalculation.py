"""
Schedule Recalculation Module

Keeps an amortization schedule consistent with the loan's event history.
Rows up to the anchor (the last row on or before the target date) are
history and are preserved; events dated from the anchor up to the target
are folded into the anchor, skipped and grace months become zero-payment
rows, and the tail is regenerated by the loan's calculation strategy.
"""

from decimal import Decimal, ROUND_CEILING
from datetime import date
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import get_config
from .decimal_math import (
    CENTS_SCALE, ONE, ZERO, add, divide, multiply, quantize, subtract, to_cents, to_decimal
)
from .exceptions import NotFoundError
from .frequency import add_periods, payment_count, periods_between
from .logging_config import get_logger, log_action
from .models import (
    RECALCULATING_EVENTS, EventType, LoanEvent, LoanSnapshot, ScheduleRow, sort_events
)
from .strategies import StrategySelector

logger = get_logger("amortization.recalculation")


def payoff_period_count(balance: Decimal, rate: Decimal, payment: Decimal) -> Optional[int]:
    """
    Number of periods to pay off a balance at a fixed periodic rate and payment

    Solves n = -ln(1 - B*r/PMT) / ln(1 + r), rounded up after quantizing to
    6 places so representation noise does not add a period.

    Returns:
        Period count, or None if the payment never amortizes the balance
    """
    balance, rate, payment = to_decimal(balance), to_decimal(rate), to_decimal(payment)

    if balance <= ZERO:
        return 0
    if payment <= ZERO:
        return None

    if rate == ZERO:
        periods = divide(balance, payment)
    else:
        remaining = subtract(ONE, divide(multiply(balance, rate), payment))
        if remaining <= ZERO:
            return None
        periods = divide(-remaining.ln(), add(ONE, rate).ln())

    count = int(quantize(periods, 6).to_integral_value(rounding=ROUND_CEILING))
    if count > get_config().max_term_periods:
        return None
    return max(1, count)


def remaining_interest(balance: Decimal, rate: Decimal, payment: Decimal) -> Optional[Decimal]:
    """Total interest paid amortizing a balance with a level payment"""
    balance = to_cents(balance)
    max_periods = get_config().max_term_periods
    total = ZERO

    for _ in range(max_periods):
        if balance <= ZERO:
            return total
        interest = multiply(balance, rate, CENTS_SCALE)
        principal = subtract(payment, interest, CENTS_SCALE)
        if principal <= ZERO:
            return None
        total += interest
        balance -= min(principal, balance)

    return total if balance <= ZERO else None


def interest_savings(
    balance_before: Decimal,
    balance_after: Decimal,
    rate: Decimal,
    payment: Decimal
) -> Optional[Decimal]:
    """Interest avoided by reducing a balance while keeping the payment"""
    before = remaining_interest(balance_before, rate, payment)
    after = remaining_interest(balance_after, rate, payment)
    if before is None or after is None:
        return None
    return before - after


def early_payoff_date(first_payment_date: date, frequency, periods: int) -> date:
    """Date of the final payment when a schedule of periods starts at first_payment_date"""
    return add_periods(first_payment_date, frequency, max(periods, 1) - 1)


@dataclass(frozen=True)
class ScheduleSummary:
    """Totals over a schedule"""
    payment_count: int
    total_paid: Decimal
    total_principal: Decimal
    total_interest: Decimal
    balloon_amount: Decimal
    payoff_date: Optional[date]


def summarize_schedule(rows: Sequence[ScheduleRow]) -> ScheduleSummary:
    return ScheduleSummary(
        payment_count=sum(1 for row in rows if row.payment_amount > ZERO),
        total_paid=sum((row.payment_amount for row in rows), ZERO),
        total_principal=sum((row.principal_portion for row in rows), ZERO),
        total_interest=sum((row.interest_portion for row in rows), ZERO),
        balloon_amount=sum((row.balloon_amount or ZERO for row in rows), ZERO),
        payoff_date=rows[-1].payment_date if rows else None
    )


@dataclass(frozen=True)
class RecalculationResult:
    """Outcome of a recalculation"""
    schedule: List[ScheduleRow]
    anchor_payment_number: Optional[int]   # None when the whole schedule was regenerated
    removed_rows: int                      # Existing rows after the anchor that were discarded
    regenerated_rows: int                  # Rows generated after the anchor
    adjusted_balance: Decimal              # Balance the regenerated tail amortizes


@dataclass(frozen=True)
class _EventTotals:
    """Window events reduced to their schedule effects"""
    net_extra: Decimal                     # Extra payments less principal increases
    has_extra_payment: bool
    reduce_term: bool
    pauses: Tuple[LoanEvent, ...]          # Skip and mid-loan grace events, in order


class RecalculationOrchestrator:
    """Regenerates the affected tail of a schedule after loan events"""

    def __init__(self, selector: Optional[StrategySelector] = None):
        self.selector = selector or StrategySelector()

    def recalculate(
        self,
        loan: LoanSnapshot,
        events: Iterable[LoanEvent],
        existing_schedule: Sequence[ScheduleRow],
        target_date: date
    ) -> RecalculationResult:
        """
        Recalculate a schedule as of a target date

        Args:
            loan: Loan snapshot with all events up to target_date applied
            events: Loan event history, in any order
            existing_schedule: Current schedule rows
            target_date: Date up to which events are taken into account

        Returns:
            RecalculationResult with the full new schedule

        Raises:
            NotFoundError: If there is no existing schedule
            ConfigurationError: If the loan no longer matches a strategy
        """
        if not existing_schedule:
            raise NotFoundError(f"No existing schedule for loan {loan.loan_id or ''}".strip())

        schedule = sorted(existing_schedule, key=lambda row: row.payment_number)
        anchor_index = self._find_anchor(schedule, target_date)
        anchor_date = schedule[anchor_index].payment_date if anchor_index is not None else None

        # Each event belongs to the last row dated on or before it
        window = [
            event for event in sort_events(self._applicable(loan, events))
            if event.event_date <= target_date
            and (anchor_date is None or event.event_date >= anchor_date)
        ]

        # A grace period starting before the first payment moves the whole schedule
        first_date = schedule[0].payment_date
        if any(event.event_type == EventType.GRACE_PERIOD and event.event_date < first_date
               for event in window):
            anchor_index = None

        if anchor_index is None:
            result = self._regenerate_all(loan, window, schedule)
        elif not window:
            result = self._reproduce_tail(loan, schedule, anchor_index)
        else:
            result = self._regenerate_tail(loan, window, schedule, anchor_index)

        log_action(
            logger, "info", "Schedule recalculated",
            loan_id=loan.loan_id,
            action="recalculate",
            resource="schedule",
            extra={
                "target_date": target_date.isoformat(),
                "anchor_payment_number": result.anchor_payment_number,
                "events_applied": len(window),
                "removed_rows": result.removed_rows,
                "regenerated_rows": result.regenerated_rows,
                "adjusted_balance": str(result.adjusted_balance),
            }
        )
        return result

    def _find_anchor(self, schedule: List[ScheduleRow], target_date: date) -> Optional[int]:
        anchor_index = None
        for index, row in enumerate(schedule):
            if row.payment_date <= target_date:
                anchor_index = index
        return anchor_index

    def _applicable(self, loan: LoanSnapshot, events: Iterable[LoanEvent]) -> List[LoanEvent]:
        return [
            event for event in events
            if event.event_type in RECALCULATING_EVENTS
            and isinstance(event.event_date, date)
            and (loan.loan_id is None or event.loan_id == loan.loan_id)
        ]

    def _totals(self, window: List[LoanEvent], first_date: date) -> _EventTotals:
        net_extra = ZERO
        has_extra_payment = False
        reduce_term = True
        pauses = []

        for event in window:
            if event.event_type == EventType.EXTRA_PAYMENT:
                net_extra += to_cents(event.amount)
                has_extra_payment = True
                reduce_term = extra_payment_strategy(event) == "reduce_term"
            elif (event.event_type == EventType.LOAN_MODIFICATION
                  and event.get('adjustment_type') == "principal"):
                net_extra -= to_cents(event.get('value'))
            elif event.event_type == EventType.SKIP_PAYMENT:
                pauses.append(event)
            elif event.event_type == EventType.GRACE_PERIOD and event.event_date >= first_date:
                pauses.append(event)

        return _EventTotals(net_extra, has_extra_payment, reduce_term, tuple(pauses))

    def _reproduce_tail(self, loan, schedule, anchor_index) -> RecalculationResult:
        """No new events: regenerate the tail with the existing payment and length"""
        anchor = schedule[anchor_index]
        tail = schedule[anchor_index + 1:]
        if not tail or anchor.ending_balance <= ZERO:
            return RecalculationResult(list(schedule), anchor.payment_number, 0, 0, anchor.ending_balance)

        payment = next((row.scheduled_payment for row in tail if row.payment_amount > ZERO), None)
        regenerated = self._generate_tail(
            loan, schedule[0].payment_date, anchor, 0,
            anchor.ending_balance, len(tail), payment
        )
        return RecalculationResult(
            schedule[:anchor_index + 1] + regenerated,
            anchor.payment_number, len(tail), len(regenerated), anchor.ending_balance
        )

    def _regenerate_tail(self, loan, window, schedule, anchor_index) -> RecalculationResult:
        origin = schedule[0].payment_date
        totals = self._totals(window, origin)
        anchor = self._fold_into_anchor(loan, schedule[anchor_index], totals.net_extra)
        removed = len(schedule) - anchor_index - 1
        history = schedule[:anchor_index] + [anchor]

        balance = anchor.ending_balance
        if balance <= ZERO:
            return RecalculationResult(history, anchor.payment_number, removed, 0, ZERO)

        pause_rows = self._pause_rows(loan, totals.pauses, origin, anchor, balance)
        if pause_rows:
            balance = pause_rows[-1].ending_balance

        slots = max(1, loan.total_payments - anchor.payment_number - len(pause_rows))
        periods, payment = slots, None
        if totals.has_extra_payment and totals.net_extra > ZERO and totals.reduce_term \
                and not loan.has_rate_periods:
            solved = payoff_period_count(balance, loan.rate_per_period(), anchor.scheduled_payment)
            if solved is not None:
                periods = min(slots, solved)

        tail = self._generate_tail(loan, origin, anchor, len(pause_rows), balance, periods, payment)
        regenerated = pause_rows + tail
        return RecalculationResult(
            history + regenerated, anchor.payment_number, removed, len(regenerated), balance
        )

    def _regenerate_all(self, loan, window, schedule) -> RecalculationResult:
        """No row on or before the target date: rebuild from the first payment"""
        # Principal modifications are already part of the snapshot's principal
        extras = sum(
            (to_cents(event.amount) for event in window if event.event_type == EventType.EXTRA_PAYMENT),
            ZERO
        )

        accrued = ZERO
        for event in window:
            if event.event_type == EventType.SKIP_PAYMENT:
                accrued += compounded_interest(loan.principal - extras + accrued,
                                               loan.annual_rate, event.months)

        opening = loan.principal - extras + accrued
        amortizing = opening - (loan.balloon_amount or ZERO)

        if amortizing <= ZERO:
            rows = []
            balloon_due = loan.balloon_amount + amortizing if loan.has_balloon else ZERO
            if balloon_due > ZERO:
                rows.append(ScheduleRow(
                    payment_number=1,
                    payment_date=loan.first_payment,
                    beginning_balance=ZERO,
                    payment_amount=balloon_due,
                    principal_portion=ZERO,
                    interest_portion=ZERO,
                    ending_balance=ZERO,
                    balloon_amount=balloon_due,
                    rate=loan.annual_rate
                ))
            return RecalculationResult(rows, None, len(schedule), len(rows), ZERO)

        synthetic = replace(loan, principal=opening, current_balance=opening, accrued_interest=ZERO)
        rows = self.selector.select(synthetic).calculate_schedule(synthetic)
        return RecalculationResult(rows, None, len(schedule), len(rows), amortizing)

    def _fold_into_anchor(self, loan: LoanSnapshot, anchor: ScheduleRow, net_extra: Decimal) -> ScheduleRow:
        """Rebuild the anchor row with unscheduled principal from the event window"""
        previous_extra = anchor.extra_principal or ZERO
        base_principal = anchor.principal_portion - previous_extra
        base_ending = anchor.beginning_balance - base_principal

        # Extra payments cannot take the amortizing balance below zero;
        # any excess on a balloon loan reduces the balloon
        applied = min(net_extra, base_ending) if net_extra > ZERO else net_extra
        excess = net_extra - applied
        ending = base_ending - applied

        balloon = None
        if loan.has_balloon and ending == ZERO:
            balloon_due = max(ZERO, loan.balloon_amount - excess)
            balloon = balloon_due if balloon_due > ZERO else None

        principal = base_principal + applied
        return replace(
            anchor,
            principal_portion=principal,
            payment_amount=principal + anchor.interest_portion + (balloon or ZERO),
            ending_balance=ending,
            balloon_amount=balloon,
            extra_principal=applied if applied != ZERO else None
        )

    def _pause_rows(
        self,
        loan: LoanSnapshot,
        pauses: Sequence[LoanEvent],
        origin: date,
        anchor: ScheduleRow,
        balance: Decimal
    ) -> List[ScheduleRow]:
        """Zero-payment rows for skipped payments and grace periods"""
        rows = []
        anchor_offset = periods_between(origin, anchor.payment_date, loan.payment_frequency)
        capitalize = get_config().capitalize_grace_interest

        for event in pauses:
            grace_balance = balance
            for _ in range(payment_count(event.months, loan.payment_frequency)):
                number = anchor.payment_number + len(rows) + 1
                payment_date = add_periods(origin, loan.payment_frequency, anchor_offset + len(rows) + 1)
                annual_rate, rate_period_id = self._rate_on(loan, payment_date)

                if event.event_type == EventType.SKIP_PAYMENT:
                    # Skipped payments compound onto the balance
                    interest = multiply(balance, loan.rate_per_period(annual_rate), CENTS_SCALE)
                elif capitalize:
                    # Grace interest is simple interest on the balance at grace start
                    interest = multiply(grace_balance, loan.rate_per_period(annual_rate), CENTS_SCALE)
                else:
                    interest = ZERO

                rows.append(ScheduleRow(
                    payment_number=number,
                    payment_date=payment_date,
                    beginning_balance=balance,
                    payment_amount=ZERO,
                    principal_portion=-interest,
                    interest_portion=interest,
                    ending_balance=balance + interest,
                    rate=annual_rate,
                    rate_period_id=rate_period_id
                ))
                balance = balance + interest

        return rows

    def _rate_on(self, loan: LoanSnapshot, payment_date: date) -> Tuple[Decimal, Optional[int]]:
        if loan.has_rate_periods:
            found = loan.rate_period_for(payment_date)
            if found is not None:
                period_id, period = found
                return period.rate, period_id
        return loan.annual_rate, None

    def _generate_tail(
        self,
        loan: LoanSnapshot,
        origin: date,
        anchor: ScheduleRow,
        pause_count: int,
        balance: Decimal,
        periods: int,
        payment: Optional[Decimal]
    ) -> List[ScheduleRow]:
        """Run the loan's strategy on a synthetic snapshot of the remaining balance"""
        principal = balance + (loan.balloon_amount or ZERO)
        synthetic = replace(
            loan,
            principal=principal,
            current_balance=principal,
            number_of_payments=periods,
            first_payment_date=origin,
            deferred_months=0,
            accrued_interest=ZERO
        )
        strategy = self.selector.select(synthetic)
        offset = periods_between(origin, anchor.payment_date, loan.payment_frequency) + 1 + pause_count
        return strategy.calculate_schedule(
            synthetic,
            payment=payment,
            start_number=anchor.payment_number + pause_count + 1,
            period_offset=offset,
            origin=origin
        )


def extra_payment_strategy(event: LoanEvent) -> str:
    """reduce_term (default) or reduce_payment"""
    strategy = event.get('strategy')
    if strategy:
        return strategy
    if "reduce_payment" in (event.notes or ""):
        return "reduce_payment"
    return "reduce_term"


def compounded_interest(balance: Decimal, annual_rate: Decimal, months: int) -> Decimal:
    """Interest compounded monthly onto a balance for a number of months"""
    monthly_rate = divide(annual_rate, 12)
    accrued = ZERO
    for _ in range(months):
        accrued += multiply(add(balance, accrued, CENTS_SCALE), monthly_rate, CENTS_SCALE)
    return accrued


def recalculate(
    loan: LoanSnapshot,
    events: Iterable[LoanEvent],
    existing_schedule: Sequence[ScheduleRow],
    target_date: date
) -> List[ScheduleRow]:
    """Recalculated schedule as of target_date"""
    return RecalculationOrchestrator().recalculate(loan, events, existing_schedule, target_date).schedule
