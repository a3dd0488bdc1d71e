"""
Storage Module

Repository ports for loans, schedules and events, with in-memory
implementations over a table/record storage backend. All monetary values
are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any
from datetime import date
from contextlib import contextmanager
import json
import threading
import uuid

from .exceptions import NotFoundError
from .models import LoanEvent, LoanSnapshot, ScheduleRow


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage; transactions restore a snapshot on rollback"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshots: List[str] = []

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [
                json.loads(json.dumps(record))
                for record in self._data[table].values()
                if all(record.get(key) == value for key, value in filters.items())
            ]

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._snapshots.append(json.dumps(self._data))

    def commit(self) -> None:
        self._snapshots.pop()
        self._lock.release()

    def rollback(self) -> None:
        self._data = json.loads(self._snapshots.pop())
        self._lock.release()


class LoanRepository(ABC):
    """Loan persistence port"""

    @abstractmethod
    def get(self, loan_id: str) -> LoanSnapshot:
        """Load a loan; raises NotFoundError if absent"""

    @abstractmethod
    def update(self, loan_id: str, loan: LoanSnapshot) -> None:
        """Store a loan snapshot"""


class ScheduleRepository(ABC):
    """Schedule persistence port"""

    @abstractmethod
    def insert_rows(self, loan_id: str, rows: List[ScheduleRow]) -> None:
        """Insert or overwrite rows by payment number"""

    @abstractmethod
    def delete_rows_after(self, loan_id: str, after: date) -> int:
        """Delete rows dated after a date; returns the number deleted"""

    @abstractmethod
    def get_rows(self, loan_id: str) -> List[ScheduleRow]:
        """Rows ordered by payment number"""


class EventRepository(ABC):
    """Event persistence port (append-only)"""

    @abstractmethod
    def insert(self, event: LoanEvent) -> str:
        """Record an event; returns its event id"""

    @abstractmethod
    def list_by_loan(self, loan_id: str) -> List[LoanEvent]:
        """Events of a loan in insertion order"""


class InMemoryLoanRepository(LoanRepository):

    TABLE = "loans"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def get(self, loan_id: str) -> LoanSnapshot:
        data = self.storage.load(self.TABLE, loan_id)
        if data is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return LoanSnapshot.from_dict(data)

    def update(self, loan_id: str, loan: LoanSnapshot) -> None:
        data = loan.to_dict()
        data['loan_id'] = loan_id
        self.storage.save(self.TABLE, loan_id, data)


class InMemoryScheduleRepository(ScheduleRepository):

    TABLE = "schedule_rows"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def insert_rows(self, loan_id: str, rows: List[ScheduleRow]) -> None:
        for row in rows:
            data = row.to_dict()
            data['loan_id'] = loan_id
            self.storage.save(self.TABLE, f"{loan_id}:{row.payment_number}", data)

    def delete_rows_after(self, loan_id: str, after: date) -> int:
        deleted = 0
        for data in self.storage.find(self.TABLE, {'loan_id': loan_id}):
            if date.fromisoformat(data['payment_date']) > after:
                self.storage.delete(self.TABLE, f"{loan_id}:{data['payment_number']}")
                deleted += 1
        return deleted

    def get_rows(self, loan_id: str) -> List[ScheduleRow]:
        rows = [ScheduleRow.from_dict(data) for data in self.storage.find(self.TABLE, {'loan_id': loan_id})]
        return sorted(rows, key=lambda row: row.payment_number)


class InMemoryEventRepository(EventRepository):

    TABLE = "loan_events"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def insert(self, event: LoanEvent) -> str:
        event_id = event.event_id or str(uuid.uuid4())
        data = event.to_dict()
        data['event_id'] = event_id

        # One past the highest stored sequence
        with self.storage.atomic():
            data['sequence'] = max(
                (record.get('sequence', 0) for record in self.storage.find(self.TABLE, {})),
                default=0
            ) + 1
            self.storage.save(self.TABLE, event_id, data)
        return event_id

    def list_by_loan(self, loan_id: str) -> List[LoanEvent]:
        records = sorted(self.storage.find(self.TABLE, {'loan_id': loan_id}), key=lambda data: data['sequence'])
        return [LoanEvent.from_dict(data) for data in records]
