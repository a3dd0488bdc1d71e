"""
Amortization Service Module

Coordinates the calculation core with the loan, schedule and event
repositories: generates initial schedules, records events and regenerates
the affected schedule tail atomically.
"""

from datetime import date
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from .event_handlers import EventHandlerRegistry
from .exceptions import NotFoundError
from .logging_config import get_logger, log_action
from .models import RECALCULATING_EVENTS, LoanEvent, LoanSnapshot, RecalculationDirective, ScheduleRow
from .recalculation import RecalculationOrchestrator, RecalculationResult, ScheduleSummary, summarize_schedule
from .storage import (
    EventRepository, InMemoryEventRepository, InMemoryLoanRepository,
    InMemoryScheduleRepository, InMemoryStorage, LoanRepository,
    ScheduleRepository, StorageInterface
)
from .strategies import StrategySelector

logger = get_logger("amortization.service")


@dataclass(frozen=True)
class EventOutcome:
    """Result of recording an event"""
    event_id: str
    loan: LoanSnapshot
    directive: RecalculationDirective
    recalculation: Optional[RecalculationResult] = None


class AmortizationService:
    """Loan schedule lifecycle over repository ports"""

    def __init__(
        self,
        storage: StorageInterface,
        loans: LoanRepository,
        schedules: ScheduleRepository,
        events: EventRepository,
        registry: Optional[EventHandlerRegistry] = None,
        orchestrator: Optional[RecalculationOrchestrator] = None
    ):
        self.storage = storage
        self.loans = loans
        self.schedules = schedules
        self.events = events
        self.selector = StrategySelector()
        self.registry = registry or EventHandlerRegistry()
        self.orchestrator = orchestrator or RecalculationOrchestrator(self.selector)

    @classmethod
    def in_memory(cls) -> 'AmortizationService':
        """Service backed by in-memory repositories"""
        storage = InMemoryStorage()
        return cls(
            storage,
            InMemoryLoanRepository(storage),
            InMemoryScheduleRepository(storage),
            InMemoryEventRepository(storage)
        )

    def create_loan(self, loan: LoanSnapshot) -> List[ScheduleRow]:
        """
        Store a loan and generate its initial schedule

        Raises:
            ValueError: If the loan has no ID
            ConfigurationError: If no strategy applies to the loan
        """
        if not loan.loan_id:
            raise ValueError("Loan ID is required")

        rows = self.selector.select(loan).calculate_schedule(loan)

        with self.storage.atomic():
            self.loans.update(loan.loan_id, loan)
            self.schedules.delete_rows_after(loan.loan_id, date.min)
            self.schedules.insert_rows(loan.loan_id, rows)

        log_action(
            logger, "info", "Loan schedule generated",
            loan_id=loan.loan_id,
            action="create_loan",
            resource="schedule",
            extra={"rows": len(rows), "payment": str(rows[0].payment_amount) if rows else None}
        )
        return rows

    def get_loan(self, loan_id: str) -> LoanSnapshot:
        return self.loans.get(loan_id)

    def get_schedule(self, loan_id: str) -> List[ScheduleRow]:
        """
        Current schedule of a loan

        Raises:
            NotFoundError: If the loan or its schedule does not exist
        """
        self.loans.get(loan_id)
        rows = self.schedules.get_rows(loan_id)
        if not rows:
            raise NotFoundError(f"No schedule found for loan {loan_id}")
        return rows

    def get_summary(self, loan_id: str) -> ScheduleSummary:
        return summarize_schedule(self.get_schedule(loan_id))

    def record_event(self, event: LoanEvent, target_date: Optional[date] = None) -> EventOutcome:
        """
        Validate, apply and record an event, regenerating the schedule if required

        Args:
            event: Incoming event
            target_date: Recalculate as of this date (defaults to the event date)

        Raises:
            NotFoundError: If the loan or its schedule does not exist
            ValidationError: If the event is invalid; nothing is recorded
        """
        loan = self.loans.get(event.loan_id)
        updated, directive = self.registry.apply(loan, event)

        recalculation = None
        with self.storage.atomic():
            event_id = self.events.insert(event)
            self.loans.update(event.loan_id, updated)

            if directive.required:
                updated, recalculation = self._recalculate(
                    updated, target_date or directive.effective_date
                )
                self._replace_tail(event.loan_id, recalculation)
                self.loans.update(event.loan_id, updated)

        log_action(
            logger, "info", "Event recorded",
            loan_id=event.loan_id,
            action="record_event",
            resource=event.type_value,
            extra={
                "event_id": event_id,
                "recalculated": recalculation is not None,
                "regenerated_rows": recalculation.regenerated_rows if recalculation else 0,
            }
        )
        return EventOutcome(event_id, updated, directive, recalculation)

    def _recalculate(self, loan: LoanSnapshot, target_date: date) -> Tuple[LoanSnapshot, RecalculationResult]:
        """
        Recalculate as of target_date, then replay later recorded events

        A back-dated event regenerates the tail under events already recorded
        after it, so each later event date is recalculated again in order.
        """
        events = self.events.list_by_loan(loan.loan_id)
        later_dates = sorted({
            recorded.event_date for recorded in events
            if recorded.event_type in RECALCULATING_EVENTS and recorded.event_date > target_date
        })

        schedule = self.schedules.get_rows(loan.loan_id)
        results = []
        for step_date in [target_date] + later_dates:
            result = self.orchestrator.recalculate(loan, events, schedule, step_date)
            results.append(result)
            schedule = result.schedule
            if not schedule:
                break

            # Payments dropped by an early payoff stay dropped for later events
            if len(schedule) != loan.total_payments:
                loan = loan.with_changes(number_of_payments=len(schedule))

        anchors = [result.anchor_payment_number for result in results]
        anchor = None if None in anchors else min(anchors)
        regenerated = [row for row in schedule if anchor is None or row.payment_number > anchor]
        return loan, replace(
            results[0],
            schedule=schedule,
            anchor_payment_number=anchor,
            regenerated_rows=len(regenerated)
        )

    def _replace_tail(self, loan_id: str, result: RecalculationResult) -> None:
        """Delete rows after the anchor and store the regenerated rows"""
        cut = date.min
        if result.anchor_payment_number is not None:
            cut = next(
                row.payment_date for row in result.schedule
                if row.payment_number == result.anchor_payment_number
            )
        self.schedules.delete_rows_after(loan_id, cut)
        self.schedules.insert_rows(loan_id, [row for row in result.schedule if row.payment_date >= cut])
