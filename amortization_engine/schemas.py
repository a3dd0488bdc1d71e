"""
Pydantic schemas for external representations of loans, events and schedules

Decimal values travel as strings so they round-trip without float drift.
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .models import LoanEvent, LoanSnapshot, RatePeriod, ScheduleRow
from .recalculation import RecalculationResult, ScheduleSummary


def _to_decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _to_string(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class RatePeriodModel(BaseModel):
    start_date: date
    rate: str = Field(..., description="Annual rate as decimal string")
    end_date: Optional[date] = None
    duration_months: Optional[int] = None
    period_id: Optional[int] = None

    def to_rate_period(self) -> RatePeriod:
        return RatePeriod(
            start_date=self.start_date,
            rate=Decimal(self.rate),
            end_date=self.end_date,
            duration_months=self.duration_months,
            period_id=self.period_id
        )

    @classmethod
    def from_rate_period(cls, period: RatePeriod) -> 'RatePeriodModel':
        return cls(
            start_date=period.start_date,
            rate=str(period.rate),
            end_date=period.end_date,
            duration_months=period.duration_months,
            period_id=period.period_id
        )


class LoanSnapshotModel(BaseModel):
    loan_id: Optional[str] = None
    principal: str = Field(..., description="Decimal amount as string")
    annual_rate: str = Field(..., description="Annual rate as decimal string, e.g. 0.05")
    term_months: int
    start_date: date
    payment_frequency: str = "monthly"
    interest_calc_frequency: Optional[str] = None
    current_balance: Optional[str] = None
    balloon_amount: Optional[str] = None
    rate_periods: List[RatePeriodModel] = Field(default_factory=list)
    first_payment_date: Optional[date] = None
    number_of_payments: Optional[int] = None
    deferred_months: int = 0
    accrued_interest: str = "0.00"
    previous_rate: Optional[str] = None
    rate_effective_date: Optional[date] = None

    def to_snapshot(self) -> LoanSnapshot:
        return LoanSnapshot(
            loan_id=self.loan_id,
            principal=Decimal(self.principal),
            annual_rate=Decimal(self.annual_rate),
            term_months=self.term_months,
            start_date=self.start_date,
            payment_frequency=self.payment_frequency,
            interest_calc_frequency=self.interest_calc_frequency,
            current_balance=_to_decimal(self.current_balance),
            balloon_amount=_to_decimal(self.balloon_amount),
            rate_periods=tuple(period.to_rate_period() for period in self.rate_periods),
            first_payment_date=self.first_payment_date,
            number_of_payments=self.number_of_payments,
            deferred_months=self.deferred_months,
            accrued_interest=Decimal(self.accrued_interest),
            previous_rate=_to_decimal(self.previous_rate),
            rate_effective_date=self.rate_effective_date
        )

    @classmethod
    def from_snapshot(cls, loan: LoanSnapshot) -> 'LoanSnapshotModel':
        return cls(
            loan_id=loan.loan_id,
            principal=str(loan.principal),
            annual_rate=str(loan.annual_rate),
            term_months=loan.term_months,
            start_date=loan.start_date,
            payment_frequency=loan.payment_frequency.value,
            interest_calc_frequency=loan.interest_calc_frequency.value,
            current_balance=str(loan.current_balance),
            balloon_amount=_to_string(loan.balloon_amount),
            rate_periods=[RatePeriodModel.from_rate_period(p) for p in loan.rate_periods],
            first_payment_date=loan.first_payment_date,
            number_of_payments=loan.number_of_payments,
            deferred_months=loan.deferred_months,
            accrued_interest=str(loan.accrued_interest),
            previous_rate=_to_string(loan.previous_rate),
            rate_effective_date=loan.rate_effective_date
        )


class ScheduleRowModel(BaseModel):
    payment_number: int
    payment_date: date
    beginning_balance: str
    payment_amount: str
    principal_portion: str
    interest_portion: str
    ending_balance: str
    balloon_amount: Optional[str] = None
    rate: Optional[str] = None
    rate_period_id: Optional[int] = None
    extra_principal: Optional[str] = None

    def to_row(self) -> ScheduleRow:
        return ScheduleRow(
            payment_number=self.payment_number,
            payment_date=self.payment_date,
            beginning_balance=Decimal(self.beginning_balance),
            payment_amount=Decimal(self.payment_amount),
            principal_portion=Decimal(self.principal_portion),
            interest_portion=Decimal(self.interest_portion),
            ending_balance=Decimal(self.ending_balance),
            balloon_amount=_to_decimal(self.balloon_amount),
            rate=_to_decimal(self.rate),
            rate_period_id=self.rate_period_id,
            extra_principal=_to_decimal(self.extra_principal)
        )

    @classmethod
    def from_row(cls, row: ScheduleRow) -> 'ScheduleRowModel':
        return cls(
            payment_number=row.payment_number,
            payment_date=row.payment_date,
            beginning_balance=str(row.beginning_balance),
            payment_amount=str(row.payment_amount),
            principal_portion=str(row.principal_portion),
            interest_portion=str(row.interest_portion),
            ending_balance=str(row.ending_balance),
            balloon_amount=_to_string(row.balloon_amount),
            rate=_to_string(row.rate),
            rate_period_id=row.rate_period_id,
            extra_principal=_to_string(row.extra_principal)
        )


class ScheduleModel(BaseModel):
    loan_id: Optional[str] = None
    rows: List[ScheduleRowModel] = Field(default_factory=list)

    def to_rows(self) -> List[ScheduleRow]:
        return [row.to_row() for row in self.rows]

    @classmethod
    def from_rows(cls, rows: List[ScheduleRow], loan_id: Optional[str] = None) -> 'ScheduleModel':
        return cls(loan_id=loan_id, rows=[ScheduleRowModel.from_row(row) for row in rows])


class LoanEventModel(BaseModel):
    event_id: Optional[str] = None
    loan_id: str
    event_type: str = Field(..., description="Event type (extra_payment, skip_payment, rate_change, ...)")
    event_date: str  # ISO date string
    amount: Optional[str] = None  # Decimal as string
    notes: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)

    def to_event(self) -> LoanEvent:
        return LoanEvent(
            event_id=self.event_id,
            loan_id=self.loan_id,
            event_type=self.event_type,
            event_date=self.event_date,
            amount=self.amount,
            notes=self.notes,
            details=self.details
        )

    @classmethod
    def from_event(cls, event: LoanEvent) -> 'LoanEventModel':
        data = event.to_dict()
        return cls(**data)


class ScheduleSummaryModel(BaseModel):
    payment_count: int
    total_paid: str
    total_principal: str
    total_interest: str
    balloon_amount: str
    payoff_date: Optional[date] = None

    @classmethod
    def from_summary(cls, summary: ScheduleSummary) -> 'ScheduleSummaryModel':
        return cls(
            payment_count=summary.payment_count,
            total_paid=str(summary.total_paid),
            total_principal=str(summary.total_principal),
            total_interest=str(summary.total_interest),
            balloon_amount=str(summary.balloon_amount),
            payoff_date=summary.payoff_date
        )


class RecalculationResultModel(BaseModel):
    schedule: List[ScheduleRowModel]
    anchor_payment_number: Optional[int] = None
    removed_rows: int
    regenerated_rows: int
    adjusted_balance: str

    @classmethod
    def from_result(cls, result: RecalculationResult) -> 'RecalculationResultModel':
        return cls(
            schedule=[ScheduleRowModel.from_row(row) for row in result.schedule],
            anchor_payment_number=result.anchor_payment_number,
            removed_rows=result.removed_rows,
            regenerated_rows=result.regenerated_rows,
            adjusted_balance=str(result.adjusted_balance)
        )
