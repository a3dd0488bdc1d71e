"""
Calculation Strategies Module

Payment and schedule calculation for the three loan shapes:
- Standard: level payment from the closed-form PMT formula
- Balloon: level payment on principal less the balloon, balloon due with the final payment
- Variable rate: level payment refined by bisection across dated rate periods

Every strategy forces the final row to pay off the remaining balance so the
schedule ends at exactly 0.00.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import date
from typing import List, Optional, Sequence, Tuple

from .config import get_config
from .decimal_math import (
    CENT, CENTS_SCALE, INTERNAL_SCALE, ONE, ZERO, add, divide, multiply, power, subtract, to_cents
)
from .exceptions import ConfigurationError
from .frequency import add_periods
from .logging_config import get_logger, log_action
from .models import LoanSnapshot, ScheduleRow

logger = get_logger("amortization.strategies")


def amortized_payment(principal: Decimal, rate: Decimal, periods: int) -> Decimal:
    """
    Level payment that amortizes a principal over a number of periods

    Standard loan payment formula: P * [r(1+r)^n] / [(1+r)^n - 1]
    Where P = principal, r = periodic interest rate, n = number of payments

    Returns:
        Payment rounded to cents
    """
    if periods < 1:
        raise ConfigurationError("Number of payments must be at least 1")

    if rate == ZERO:
        # No interest - simple division
        return divide(principal, periods, CENTS_SCALE)

    scale = INTERNAL_SCALE + 8
    factor = power(add(ONE, rate, scale), periods, scale)
    numerator = multiply(multiply(principal, rate, scale), factor, scale)
    return to_cents(divide(numerator, subtract(factor, ONE, scale), scale))


class CalculationStrategy(ABC):
    """Computes the periodic payment and full schedule for a loan snapshot"""

    name = "base"

    @abstractmethod
    def supports(self, loan: LoanSnapshot) -> bool:
        """Check if this strategy applies to the loan"""

    @abstractmethod
    def calculate_payment(
        self,
        loan: LoanSnapshot,
        origin: Optional[date] = None,
        period_offset: int = 0
    ) -> Decimal:
        """
        Calculate the level periodic payment

        Args:
            loan: Loan snapshot
            origin: Date of period zero (defaults to the loan's first payment date)
            period_offset: Periods between origin and the first payment
        """

    @abstractmethod
    def _build_rows(
        self,
        loan: LoanSnapshot,
        payment: Decimal,
        dates: List[date],
        start_number: int
    ) -> List[ScheduleRow]:
        """Generate schedule rows for the given payment dates"""

    def calculate_schedule(
        self,
        loan: LoanSnapshot,
        payment: Optional[Decimal] = None,
        start_number: int = 1,
        period_offset: int = 0,
        origin: Optional[date] = None
    ) -> List[ScheduleRow]:
        """
        Generate the amortization schedule

        Args:
            loan: Loan snapshot; its principal is the opening balance
            payment: Level payment to use (calculated when omitted)
            start_number: Payment number of the first row
            period_offset: Periods between origin and the first row's date
            origin: Date of period zero (defaults to the loan's first payment date)

        Returns:
            Schedule rows, the last ending at exactly zero

        Raises:
            ConfigurationError: If the strategy does not support the loan
        """
        if not self.supports(loan):
            raise ConfigurationError(f"{type(self).__name__} does not support this loan configuration")

        origin = origin or loan.first_payment
        if payment is None:
            payment = self.calculate_payment(loan, origin, period_offset)

        dates = self._payment_dates(loan, origin, period_offset)
        rows = self._build_rows(loan, payment, dates, start_number)

        log_action(
            logger, "debug", "Schedule generated",
            loan_id=loan.loan_id,
            action="calculate_schedule",
            resource=self.name,
            extra={"rows": len(rows), "payment": str(payment), "first_payment_number": start_number}
        )
        return rows

    def _payment_dates(self, loan: LoanSnapshot, origin: date, period_offset: int) -> List[date]:
        return [
            add_periods(origin, loan.payment_frequency, period_offset + index)
            for index in range(loan.total_payments)
        ]

    def _rate_for(self, loan: LoanSnapshot, payment_date: date) -> Tuple[Decimal, Optional[int]]:
        """Annual rate and rate period id applying on a payment date"""
        return loan.annual_rate, None

    def _amortize(
        self,
        loan: LoanSnapshot,
        balance: Decimal,
        payment: Decimal,
        dates: Sequence[date],
        start_number: int,
        balloon: Optional[Decimal] = None
    ) -> List[ScheduleRow]:
        """Level-payment loop shared by all strategies"""
        rows = []
        last_index = len(dates) - 1

        for index, payment_date in enumerate(dates):
            annual_rate, rate_period_id = self._rate_for(loan, payment_date)

            # Calculate interest on remaining balance
            interest = multiply(balance, loan.rate_per_period(annual_rate), CENTS_SCALE)

            # Principal is payment minus interest
            principal = payment - interest

            # Final payment (or an early payoff) clears the exact remaining balance
            is_final = index == last_index or principal >= balance
            if is_final:
                principal = balance

            row_balloon = balloon if is_final else None
            rows.append(ScheduleRow(
                payment_number=start_number + index,
                payment_date=payment_date,
                beginning_balance=balance,
                payment_amount=principal + interest + (row_balloon or ZERO),
                principal_portion=principal,
                interest_portion=interest,
                ending_balance=balance - principal,
                balloon_amount=row_balloon,
                rate=annual_rate,
                rate_period_id=rate_period_id
            ))
            balance = balance - principal

            if is_final:
                break

        return rows


class StandardAmortizationStrategy(CalculationStrategy):
    """Equal-installment amortization at a single fixed rate"""

    name = "standard"

    def supports(self, loan: LoanSnapshot) -> bool:
        return not loan.has_balloon and not loan.has_rate_periods

    def calculate_payment(
        self,
        loan: LoanSnapshot,
        origin: Optional[date] = None,
        period_offset: int = 0
    ) -> Decimal:
        return amortized_payment(loan.principal, loan.rate_per_period(), loan.total_payments)

    def _build_rows(self, loan, payment, dates, start_number):
        return self._amortize(loan, loan.principal, payment, dates, start_number)


class BalloonPaymentStrategy(CalculationStrategy):
    """
    Balloon payment amortization.

    Regular payments amortize the effective principal (principal less the
    balloon); the balloon is added to the final row's payment amount and
    recorded in its balloon_amount. Rows track the amortizing balance.
    """

    name = "balloon"

    def supports(self, loan: LoanSnapshot) -> bool:
        return loan.has_balloon

    def effective_principal(self, loan: LoanSnapshot) -> Decimal:
        if loan.balloon_amount >= loan.principal:
            raise ConfigurationError(
                f"Balloon amount ({loan.balloon_amount}) cannot be >= principal ({loan.principal})"
            )
        return loan.principal - loan.balloon_amount

    def calculate_payment(
        self,
        loan: LoanSnapshot,
        origin: Optional[date] = None,
        period_offset: int = 0
    ) -> Decimal:
        effective = self.effective_principal(loan)
        rate = loan.rate_per_period()

        # Single period: everything is due at once
        if loan.total_payments == 1:
            return loan.principal + multiply(loan.principal, rate, CENTS_SCALE)

        return amortized_payment(effective, rate, loan.total_payments)

    def _build_rows(self, loan, payment, dates, start_number):
        effective = self.effective_principal(loan)

        # One-period loan; a one-row continuation amortizes like any other final row
        if len(dates) == 1 and start_number == 1:
            interest = multiply(loan.principal, loan.rate_per_period(), CENTS_SCALE)
            return [ScheduleRow(
                payment_number=start_number,
                payment_date=dates[0],
                beginning_balance=effective,
                payment_amount=effective + interest + loan.balloon_amount,
                principal_portion=effective,
                interest_portion=interest,
                ending_balance=ZERO,
                balloon_amount=loan.balloon_amount,
                rate=loan.annual_rate
            )]

        return self._amortize(loan, effective, payment, dates, start_number, balloon=loan.balloon_amount)


class VariableRateStrategy(CalculationStrategy):
    """
    Amortization across dated rate periods.

    There is no closed form when the rate changes mid-schedule. The payment
    starts from the PMT at the period-weighted average rate and is refined
    by bisection on whole cents until the level payment leaves the smallest
    residual balance; the final row absorbs what remains.
    """

    name = "variable_rate"

    def supports(self, loan: LoanSnapshot) -> bool:
        return loan.has_rate_periods

    def _rate_for(self, loan: LoanSnapshot, payment_date: date) -> Tuple[Decimal, Optional[int]]:
        found = loan.rate_period_for(payment_date)
        if found is None:
            raise ConfigurationError(f"No rate period covers payment date {payment_date.isoformat()}")
        period_id, period = found
        return period.rate, period_id

    def estimate_payment(self, loan: LoanSnapshot, dates: Sequence[date]) -> Decimal:
        """PMT at the average rate weighted by the periods each rate covers"""
        rates = [self._rate_for(loan, payment_date)[0] for payment_date in dates]
        average_rate = divide(sum(rates, ZERO), len(rates))
        return amortized_payment(loan.principal, loan.rate_per_period(average_rate), len(dates))

    def calculate_payment(
        self,
        loan: LoanSnapshot,
        origin: Optional[date] = None,
        period_offset: int = 0
    ) -> Decimal:
        dates = self._payment_dates(loan, origin or loan.first_payment, period_offset)
        periodic_rates = [
            loan.rate_per_period(self._rate_for(loan, payment_date)[0]) for payment_date in dates
        ]
        estimate = self.estimate_payment(loan, dates)
        payment = self._refine(loan.principal, periodic_rates, estimate)

        log_action(
            logger, "debug", "Variable rate payment refined",
            loan_id=loan.loan_id,
            action="calculate_payment",
            resource=self.name,
            extra={"estimate": str(estimate), "payment": str(payment)}
        )
        return payment

    def _refine(self, principal: Decimal, periodic_rates: List[Decimal], estimate: Decimal) -> Decimal:
        """Bisect on whole cents for the payment leaving the smallest residual"""
        def residual(cents: int) -> Decimal:
            payment = Decimal(cents) * CENT
            balance = principal
            for rate in periodic_rates:
                balance -= payment - multiply(balance, rate, CENTS_SCALE)
            return balance

        max_iterations = get_config().variable_rate_max_iterations
        iterations = 0

        # Bracket: residual(low) > 0 >= residual(high)
        low, high = 0, max(int(estimate / CENT), 1)
        while residual(high) > ZERO and iterations < max_iterations:
            low, high = high, high * 2
            iterations += 1

        while low < high and iterations < max_iterations:
            middle = (low + high) // 2
            if residual(middle) > ZERO:
                low = middle + 1
            else:
                high = middle
            iterations += 1

        candidates = [cents for cents in (high - 1, high) if cents > 0]
        best = min(candidates, key=lambda cents: abs(residual(cents)))
        return Decimal(best) * CENT

    def _build_rows(self, loan, payment, dates, start_number):
        return self._amortize(loan, loan.principal, payment, dates, start_number)


class StrategySelector:
    """Picks the single strategy applicable to a loan"""

    def __init__(self, strategies: Optional[List[CalculationStrategy]] = None):
        # Dispatch order: variable rate, balloon, standard
        self.strategies = strategies or [
            VariableRateStrategy(),
            BalloonPaymentStrategy(),
            StandardAmortizationStrategy(),
        ]

    def select(self, loan: LoanSnapshot) -> CalculationStrategy:
        """
        Select the strategy for a loan

        Raises:
            ConfigurationError: If no strategy or more than one strategy matches
        """
        matching = [strategy for strategy in self.strategies if strategy.supports(loan)]

        if not matching:
            raise ConfigurationError("No calculation strategy supports this loan configuration")
        if len(matching) > 1:
            names = ", ".join(strategy.name for strategy in matching)
            raise ConfigurationError(f"Ambiguous loan configuration matches strategies: {names}")

        return matching[0]


_selector = StrategySelector()


def select_strategy(loan: LoanSnapshot) -> CalculationStrategy:
    return _selector.select(loan)


def calculate_payment(loan: LoanSnapshot) -> Decimal:
    """Level periodic payment for a loan"""
    return select_strategy(loan).calculate_payment(loan)


def calculate_schedule(loan: LoanSnapshot) -> List[ScheduleRow]:
    """Full amortization schedule for a loan"""
    return select_strategy(loan).calculate_schedule(loan)
