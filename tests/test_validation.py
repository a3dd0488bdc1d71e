"""
Test suite for event validation
"""

import pytest
from decimal import Decimal
from datetime import date

from amortization_engine.models import LoanSnapshot, LoanEvent, EventType
from amortization_engine.validation import EventValidator, validate_event


@pytest.fixture
def loan():
    return LoanSnapshot(
        principal=Decimal("10000.00"),
        annual_rate=Decimal("0.05"),
        term_months=12,
        start_date=date(2024, 1, 1),
        loan_id="LOAN-1",
    )


def event(event_type, amount=None, event_date=date(2024, 3, 1), **details):
    return LoanEvent("LOAN-1", event_type, event_date, amount=amount, details=details)


class TestCommonRules:
    """Test rules applied to every event"""

    def test_valid_event(self, loan):
        assert validate_event(event(EventType.EXTRA_PAYMENT, "500"), loan) == {}

    def test_invalid_type(self, loan):
        errors = validate_event(event("refinance"), loan)
        assert errors["event_type"][0].startswith("Invalid event type. Must be one of: extra_payment")

    def test_missing_type(self, loan):
        errors = validate_event(event(""), loan)
        assert errors["event_type"] == ["Event type is required"]

    def test_date_before_loan_start(self, loan):
        errors = validate_event(event(EventType.ACCRUAL, "5", event_date=date(2023, 12, 31)), loan)
        assert errors == {"event_date": ["Event date cannot be before loan start date"]}

    def test_malformed_date(self, loan):
        errors = validate_event(event(EventType.ACCRUAL, "5", event_date="2024-02-30"), loan)
        assert errors["event_date"] == ["Invalid date format (YYYY-MM-DD)"]

    def test_missing_date(self, loan):
        errors = validate_event(event(EventType.ACCRUAL, "5", event_date=None), loan)
        assert errors["event_date"] == ["Event date is required"]

    def test_event_for_other_loan(self, loan):
        other = LoanEvent("LOAN-2", EventType.ACCRUAL, date(2024, 3, 1), amount="5")
        assert "loan_id" in validate_event(other, loan)

    def test_multiple_errors_reported_together(self, loan):
        errors = validate_event(
            event(EventType.EXTRA_PAYMENT, "-5", event_date=date(2023, 1, 1), strategy="shorter"), loan
        )
        assert set(errors) == {"event_date", "amount", "strategy"}


class TestExtraPayment:

    def test_amount_required(self, loan):
        errors = validate_event(event(EventType.EXTRA_PAYMENT), loan)
        assert errors["amount"] == ["Amount is required for extra payment"]

    def test_amount_numeric(self, loan):
        errors = validate_event(event(EventType.EXTRA_PAYMENT, "abc"), loan)
        assert errors["amount"] == ["Amount must be numeric"]

    def test_amount_positive(self, loan):
        errors = validate_event(event(EventType.EXTRA_PAYMENT, "0"), loan)
        assert errors["amount"] == ["Amount must be positive"]

    def test_amount_within_balance(self, loan):
        assert validate_event(event(EventType.EXTRA_PAYMENT, "10000.00"), loan) == {}
        errors = validate_event(event(EventType.EXTRA_PAYMENT, "10000.01"), loan)
        assert errors["amount"] == ["Amount cannot exceed current loan balance"]

    def test_strategy(self, loan):
        assert validate_event(event(EventType.EXTRA_PAYMENT, "100", strategy="reduce_payment"), loan) == {}
        errors = validate_event(event(EventType.EXTRA_PAYMENT, "100", strategy="skip"), loan)
        assert "strategy" in errors


class TestSkipPayment:

    @pytest.mark.parametrize("months", [1, 6, 12])
    def test_valid_range(self, loan, months):
        assert validate_event(event(EventType.SKIP_PAYMENT, months_to_skip=months), loan) == {}

    def test_at_least_one_month(self, loan):
        errors = validate_event(event(EventType.SKIP_PAYMENT, months_to_skip=0), loan)
        assert errors["months_to_skip"] == ["Must skip at least 1 month"]

    def test_at_most_twelve_months(self, loan):
        errors = validate_event(event(EventType.SKIP_PAYMENT, months_to_skip=13), loan)
        assert errors["months_to_skip"] == ["Cannot skip more than 12 months"]

    def test_whole_months(self, loan):
        errors = validate_event(event(EventType.SKIP_PAYMENT, months_to_skip="1.5"), loan)
        assert errors["months_to_skip"] == ["Must be a whole number of months"]

    def test_required(self, loan):
        errors = validate_event(event(EventType.SKIP_PAYMENT), loan)
        assert errors["months_to_skip"] == ["Number of months is required"]

    def test_configurable_limit(self, loan):
        validator = EventValidator(max_skip_months=3)
        errors = validator.validate(event(EventType.SKIP_PAYMENT, months_to_skip=4), loan)
        assert errors["months_to_skip"] == ["Cannot skip more than 3 months"]


class TestRateChange:

    @pytest.mark.parametrize("rate", ["0", "0.065", "1"])
    def test_valid_rates(self, loan, rate):
        assert validate_event(event(EventType.RATE_CHANGE, new_rate=rate), loan) == {}

    def test_required(self, loan):
        errors = validate_event(event(EventType.RATE_CHANGE), loan)
        assert errors["new_rate"] == ["New interest rate is required"]

    def test_numeric(self, loan):
        errors = validate_event(event(EventType.RATE_CHANGE, new_rate="high"), loan)
        assert errors["new_rate"] == ["Interest rate must be numeric"]

    def test_bounds(self, loan):
        errors = validate_event(event(EventType.RATE_CHANGE, new_rate="1.01"), loan)
        assert errors["new_rate"] == ["Interest rate must be between 0 and 1 (0% to 100%)"]


class TestLoanModification:

    def test_valid(self, loan):
        assert validate_event(
            event(EventType.LOAN_MODIFICATION, adjustment_type="term", value=6), loan
        ) == {}
        assert validate_event(
            event(EventType.LOAN_MODIFICATION, adjustment_type="principal", value="-2500"), loan
        ) == {}

    def test_adjustment_type(self, loan):
        errors = validate_event(event(EventType.LOAN_MODIFICATION, adjustment_type="rate", value=1), loan)
        assert errors["adjustment_type"] == ['Adjustment type must be "principal" or "term"']

    def test_value_required_and_numeric(self, loan):
        errors = validate_event(event(EventType.LOAN_MODIFICATION, adjustment_type="term"), loan)
        assert errors["value"] == ["Adjustment value is required"]
        errors = validate_event(event(EventType.LOAN_MODIFICATION, adjustment_type="term", value="x"), loan)
        assert errors["value"] == ["Value must be numeric"]

    def test_principal_stays_positive(self, loan):
        errors = validate_event(
            event(EventType.LOAN_MODIFICATION, adjustment_type="principal", value="-10000"), loan
        )
        assert errors["value"] == ["Principal reduction cannot exceed current loan balance"]

    def test_term_whole_months(self, loan):
        errors = validate_event(
            event(EventType.LOAN_MODIFICATION, adjustment_type="term", value="2.5"), loan
        )
        assert errors["value"] == ["Term adjustment must be a whole number of months"]


class TestGracePeriod:

    def test_valid(self, loan):
        assert validate_event(event(EventType.GRACE_PERIOD, grace_months=3), loan) == {}
        assert validate_event(event(EventType.GRACE_PERIOD, amount=2), loan) == {}

    def test_at_least_one_month(self, loan):
        errors = validate_event(event(EventType.GRACE_PERIOD, grace_months=0), loan)
        assert errors["grace_months"] == ["Grace period must be at least 1 month"]


class TestPaymentAppliedAndAccrual:

    def test_payment_applied(self, loan):
        assert validate_event(event(EventType.PAYMENT_APPLIED, "856.07", applied_to="auto"), loan) == {}

    def test_applied_to_values(self, loan):
        errors = validate_event(event(EventType.PAYMENT_APPLIED, "100", applied_to="fees"), loan)
        assert errors["applied_to"] == ['Applied to must be "principal", "interest", or "auto"']
        errors = validate_event(event(EventType.PAYMENT_APPLIED, "100"), loan)
        assert errors["applied_to"] == ["Applied to field is required"]

    def test_payment_amount_positive(self, loan):
        errors = validate_event(event(EventType.PAYMENT_APPLIED, "-1", applied_to="principal"), loan)
        assert errors["amount"] == ["Amount must be positive"]

    def test_accrual_amount(self, loan):
        assert validate_event(event(EventType.ACCRUAL, "41.67"), loan) == {}
        errors = validate_event(event(EventType.ACCRUAL, "0"), loan)
        assert errors["amount"] == ["Amount must be positive"]
