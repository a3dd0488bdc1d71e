"""
Test suite for schedule recalculation

Rows on or before the target date are history; the tail after them is
regenerated from the loan state and the events in the window.
"""

import pytest
from decimal import Decimal
from datetime import date

from amortization_engine.exceptions import NotFoundError
from amortization_engine.event_handlers import apply_event
from amortization_engine.models import LoanSnapshot, LoanEvent, EventType
from amortization_engine.strategies import calculate_schedule
from amortization_engine.recalculation import (
    RecalculationOrchestrator, recalculate, payoff_period_count, remaining_interest,
    interest_savings, early_payoff_date, summarize_schedule, compounded_interest,
    extra_payment_strategy
)


@pytest.fixture
def loan():
    return LoanSnapshot(
        principal=Decimal("10000.00"),
        annual_rate=Decimal("0.05"),
        term_months=12,
        start_date=date(2024, 1, 1),
        first_payment_date=date(2024, 2, 1),
        loan_id="LOAN-1",
    )


@pytest.fixture
def schedule(loan):
    return calculate_schedule(loan)


def event(event_type, event_date, amount=None, **details):
    return LoanEvent("LOAN-1", event_type, event_date, amount=amount, details=details)


def assert_consistent(rows):
    for previous, current in zip(rows, rows[1:]):
        assert previous.ending_balance == current.beginning_balance
        assert current.payment_number == previous.payment_number + 1
        assert current.payment_date > previous.payment_date
    assert rows[-1].ending_balance == Decimal("0.00")


class TestIdempotence:
    """Test recalculating without new events reproduces the schedule"""

    @pytest.mark.parametrize("target", [
        date(2024, 1, 15),   # before the first payment
        date(2024, 2, 1),
        date(2024, 6, 20),
        date(2025, 1, 1),    # final payment
        date(2026, 1, 1),
    ])
    def test_no_events(self, loan, schedule, target):
        assert recalculate(loan, [], schedule, target) == schedule

    def test_payment_events_ignored(self, loan, schedule):
        events = [event(EventType.PAYMENT_APPLIED, date(2024, 3, 1), "856.07", applied_to="auto")]
        assert recalculate(loan, events, schedule, date(2024, 3, 1)) == schedule

    def test_repeated_recalculation(self, loan, schedule):
        extra = event(EventType.EXTRA_PAYMENT, date(2024, 3, 1), "2000.00")
        updated, _ = apply_event(loan, extra)

        once = recalculate(updated, [extra], schedule, date(2024, 3, 1))
        twice = recalculate(updated, [extra], once, date(2024, 3, 1))
        assert twice == once


class TestExtraPayment:
    """Test extra principal folded into the anchor row"""

    def test_reduce_term(self, loan, schedule):
        extra = event(EventType.EXTRA_PAYMENT, date(2024, 3, 1), "2000.00")
        updated, _ = apply_event(loan, extra)

        result = RecalculationOrchestrator().recalculate(updated, [extra], schedule, date(2024, 3, 1))
        rows = result.schedule

        assert rows[:1] == schedule[:1]
        anchor = rows[1]
        assert anchor.ending_balance == Decimal("6367.80")
        assert anchor.extra_principal == Decimal("2000.00")
        assert anchor.payment_amount == Decimal("2856.07")
        assert anchor.scheduled_payment == Decimal("856.07")

        # 6367.80 at 856.07 pays off in 8 more payments
        assert len(rows) == 10
        assert rows[2].payment_number == 3
        assert rows[2].payment_date == date(2024, 4, 1)
        assert rows[2].beginning_balance == Decimal("6367.80")
        assert all(row.payment_amount <= Decimal("856.07") for row in rows[2:])
        assert_consistent(rows)

        assert result.anchor_payment_number == 2
        assert result.removed_rows == 10
        assert result.regenerated_rows == 8
        assert result.adjusted_balance == Decimal("6367.80")

    def test_reduce_payment(self, loan, schedule):
        extra = event(EventType.EXTRA_PAYMENT, date(2024, 3, 1), "2000.00", strategy="reduce_payment")
        updated, _ = apply_event(loan, extra)

        rows = recalculate(updated, [extra], schedule, date(2024, 3, 1))

        assert len(rows) == 12
        assert rows[2].payment_amount < Decimal("700.00")
        assert rows[-1].payment_date == date(2025, 1, 1)
        assert_consistent(rows)

    def test_balance_cleared(self, loan, schedule):
        """Test an extra payment of the whole balance ends the schedule at the anchor"""
        extra = event(EventType.EXTRA_PAYMENT, date(2024, 3, 1), "8367.80")
        updated, _ = apply_event(loan, extra)

        rows = recalculate(updated, [extra], schedule, date(2024, 3, 1))

        assert len(rows) == 2
        assert rows[-1].ending_balance == Decimal("0.00")
        assert rows[-1].extra_principal == Decimal("8367.80")

    def test_event_outside_window_ignored(self, loan, schedule):
        """Test events already behind the previous row do not fold in again"""
        extra = event(EventType.EXTRA_PAYMENT, date(2024, 2, 15), "2000.00")
        rows = recalculate(loan, [extra], schedule, date(2024, 4, 1))
        assert rows == schedule

    def test_extras_between_rows_in_consecutive_periods(self, loan, schedule):
        """Test each extra folds only into the last row dated before it"""
        first = event(EventType.EXTRA_PAYMENT, date(2024, 2, 15), "1000.00")
        second = event(EventType.EXTRA_PAYMENT, date(2024, 3, 10), "500.00")

        updated, _ = apply_event(loan, first)
        rows = recalculate(updated, [first], schedule, date(2024, 2, 15))
        updated, _ = apply_event(updated, second)
        rows = recalculate(updated, [first, second], rows, date(2024, 3, 10))

        assert rows[0].extra_principal == Decimal("1000.00")
        assert rows[1].extra_principal == Decimal("500.00")
        assert sum((row.extra_principal or Decimal("0")) for row in rows) == Decimal("1500.00")
        assert rows[0].ending_balance == Decimal("8185.60")
        assert_consistent(rows)

    def test_insertion_order_does_not_matter(self, loan, schedule):
        """Test the latest-dated extra sets the strategy whatever the list order"""
        early = event(EventType.EXTRA_PAYMENT, date(2024, 3, 5), "500.00", strategy="reduce_payment")
        late = event(EventType.EXTRA_PAYMENT, date(2024, 3, 15), "1500.00")
        updated, _ = apply_event(loan, early)
        updated, _ = apply_event(updated, late)

        in_order = recalculate(updated, [early, late], schedule, date(2024, 3, 20))
        reversed_order = recalculate(updated, [late, early], schedule, date(2024, 3, 20))

        assert reversed_order == in_order
        assert in_order[1].extra_principal == Decimal("2000.00")
        assert in_order[1].ending_balance == Decimal("6367.80")
        assert len(in_order) == 10


class TestSkipPayment:

    def test_pause_row_and_extension(self, loan, schedule):
        skip = event(EventType.SKIP_PAYMENT, date(2024, 4, 1), months_to_skip=1)
        updated, _ = apply_event(loan, skip)

        rows = recalculate(updated, [skip], schedule, date(2024, 4, 1))

        assert len(rows) == 13
        assert rows[:3] == schedule[:3]

        pause = rows[3]
        assert pause.payment_number == 4
        assert pause.payment_date == date(2024, 5, 1)
        assert pause.payment_amount == Decimal("0.00")
        assert pause.interest_portion == Decimal("31.44")
        assert pause.ending_balance == Decimal("7578.04")

        assert rows[4].payment_date == date(2024, 6, 1)
        assert rows[-1].payment_date == date(2025, 2, 1)
        assert_consistent(rows)

    def test_later_event_keeps_single_pause(self, loan, schedule):
        """Test a skip between rows is not replayed by the next period's event"""
        skip = event(EventType.SKIP_PAYMENT, date(2024, 2, 15), months_to_skip=1)
        change = event(EventType.RATE_CHANGE, date(2024, 3, 10), new_rate="0.08")

        updated, _ = apply_event(loan, skip)
        rows = recalculate(updated, [skip], schedule, date(2024, 2, 15))
        updated, _ = apply_event(updated, change)
        rows = recalculate(updated, [skip, change], rows, date(2024, 3, 10))

        assert len(rows) == 13
        assert [row.payment_number for row in rows if row.payment_amount == Decimal("0.00")] == [2]
        assert rows[2].rate == Decimal("0.08")
        assert_consistent(rows)


class TestRateAndTermChanges:

    def test_rate_change_reprices_tail(self, loan, schedule):
        change = event(EventType.RATE_CHANGE, date(2024, 3, 1), new_rate="0.08")
        updated, _ = apply_event(loan, change)

        rows = recalculate(updated, [change], schedule, date(2024, 3, 1))

        assert rows[:2] == schedule[:2]
        assert len(rows) == 12
        assert rows[2].rate == Decimal("0.08")
        assert rows[2].interest_portion == Decimal("55.79")
        assert rows[2].payment_amount > schedule[2].payment_amount
        assert_consistent(rows)

    def test_term_extension(self, loan, schedule):
        modification = event(EventType.LOAN_MODIFICATION, date(2024, 3, 1),
                             adjustment_type="term", value=6)
        updated, _ = apply_event(loan, modification)

        rows = recalculate(updated, [modification], schedule, date(2024, 3, 1))

        assert len(rows) == 18
        assert rows[-1].payment_date == date(2025, 7, 1)
        assert_consistent(rows)

    def test_principal_reduction(self, loan, schedule):
        modification = event(EventType.LOAN_MODIFICATION, date(2024, 3, 1),
                             adjustment_type="principal", value="-1000")
        updated, _ = apply_event(loan, modification)

        rows = recalculate(updated, [modification], schedule, date(2024, 3, 1))

        assert rows[1].ending_balance == Decimal("7367.80")
        assert len(rows) == 12
        assert_consistent(rows)


class TestGracePeriod:

    def test_grace_before_first_payment_regenerates(self, loan, schedule):
        grace = event(EventType.GRACE_PERIOD, date(2024, 1, 15), grace_months=2)
        updated, _ = apply_event(loan, grace)

        result = RecalculationOrchestrator().recalculate(updated, [grace], schedule, date(2024, 1, 15))
        rows = result.schedule

        assert result.anchor_payment_number is None
        assert len(rows) == 12
        assert rows[0].payment_date == date(2024, 4, 1)
        assert rows[-1].payment_date == date(2025, 3, 1)
        assert rows[0].beginning_balance == Decimal("10000.00")
        assert_consistent(rows)

    def test_mid_loan_grace_without_capitalization(self, loan, schedule):
        grace = event(EventType.GRACE_PERIOD, date(2024, 4, 1), grace_months=1)
        updated, _ = apply_event(loan, grace)

        rows = recalculate(updated, [grace], schedule, date(2024, 4, 1))

        assert len(rows) == 13
        assert rows[3].payment_amount == Decimal("0.00")
        assert rows[3].interest_portion == Decimal("0.00")
        assert rows[3].ending_balance == rows[2].ending_balance
        assert_consistent(rows)


class TestErrors:

    def test_empty_schedule(self, loan):
        with pytest.raises(NotFoundError, match="No existing schedule"):
            recalculate(loan, [], [], date(2024, 3, 1))


class TestHelpers:
    """Test payoff and interest helpers"""

    def test_payoff_period_count(self):
        assert payoff_period_count(Decimal("1000"), Decimal("0"), Decimal("100")) == 10
        assert payoff_period_count(Decimal("1000"), Decimal("0"), Decimal("300")) == 4
        assert payoff_period_count(Decimal("6367.80"), Decimal("0.0041666667"), Decimal("856.07")) == 8
        assert payoff_period_count(Decimal("0"), Decimal("0.01"), Decimal("100")) == 0

    def test_payment_that_never_amortizes(self):
        assert payoff_period_count(Decimal("1000"), Decimal("0.1"), Decimal("100")) is None
        assert payoff_period_count(Decimal("1000"), Decimal("0.1"), Decimal("0")) is None

    def test_remaining_interest(self):
        assert remaining_interest(Decimal("100"), Decimal("0.01"), Decimal("60")) == Decimal("1.41")
        assert remaining_interest(Decimal("1000"), Decimal("0.1"), Decimal("50")) is None

    def test_interest_savings(self):
        saved = interest_savings(Decimal("100"), Decimal("41"), Decimal("0.01"), Decimal("60"))
        assert saved == Decimal("1.00")

    def test_early_payoff_date(self):
        assert early_payoff_date(date(2024, 2, 1), "monthly", 8) == date(2024, 9, 1)

    def test_compounded_interest(self):
        assert compounded_interest(Decimal("10000.00"), Decimal("0.05"), 2) == Decimal("83.51")

    def test_extra_payment_strategy(self):
        assert extra_payment_strategy(event(EventType.EXTRA_PAYMENT, date(2024, 3, 1), "1")) == "reduce_term"
        noted = LoanEvent("LOAN-1", EventType.EXTRA_PAYMENT, date(2024, 3, 1), amount="1",
                          notes="bonus, reduce_payment")
        assert extra_payment_strategy(noted) == "reduce_payment"

    def test_summarize_schedule(self, schedule):
        summary = summarize_schedule(schedule)

        assert summary.payment_count == 12
        assert summary.total_principal == Decimal("10000.00")
        assert summary.total_paid == summary.total_principal + summary.total_interest
        assert summary.balloon_amount == Decimal("0")
        assert summary.payoff_date == date(2025, 1, 1)
