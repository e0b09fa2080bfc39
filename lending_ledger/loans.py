"""
Loan Module

Loan, scheduled repayment and received repayment records, the status
state machine shared by the schedule generator and the repayment
allocator, and the repository that reads and writes them.

All amounts are integers in minor currency units.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass, FrozenInstanceError
from typing import Any, Dict, List, Optional, Tuple, Union
from enum import Enum
import re
import uuid

from .exceptions import InvalidArgumentError, NotFoundError
from .storage import StorageInterface, StorageRecord


class LoanStatus(str, Enum):
    """Loan lifecycle states"""
    DUE = "due"          # Outstanding balance remains
    REPAID = "repaid"    # Outstanding balance reached zero


class RepaymentStatus(str, Enum):
    """Scheduled repayment states"""
    DUE = "due"            # Nothing paid yet
    PARTIAL = "partial"    # Some but not all paid
    REPAID = "repaid"      # Fully paid


# Allowed forward moves; staying in the same state is always allowed
LOAN_TRANSITIONS = {
    LoanStatus.DUE: {LoanStatus.REPAID},
    LoanStatus.REPAID: set(),
}

REPAYMENT_TRANSITIONS = {
    RepaymentStatus.DUE: {RepaymentStatus.PARTIAL, RepaymentStatus.REPAID},
    RepaymentStatus.PARTIAL: {RepaymentStatus.REPAID},
    RepaymentStatus.REPAID: set(),
}

CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


def can_transition(current: Enum, new: Enum) -> bool:
    """Check whether a loan or repayment may move from ``current`` to ``new``"""
    if current == new:
        return True
    if isinstance(current, LoanStatus):
        return new in LOAN_TRANSITIONS[current]
    return new in REPAYMENT_TRANSITIONS[current]


def derive_repayment_status(amount: int, outstanding_amount: int) -> RepaymentStatus:
    """Status implied by how much of a scheduled amount is still outstanding"""
    if outstanding_amount == 0:
        return RepaymentStatus.REPAID
    if outstanding_amount == amount:
        return RepaymentStatus.DUE
    return RepaymentStatus.PARTIAL


def require_positive_int(value: Any, name: str) -> int:
    """Return ``value`` if it is a positive integer, raise InvalidArgumentError otherwise"""
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{name} must be an integer, got {type(value).__name__}")
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be positive, got {value}")
    return value


def normalize_currency_code(currency_code: Any) -> str:
    """Upper-case a currency code and check it has the three-letter shape"""
    if not isinstance(currency_code, str):
        raise InvalidArgumentError(f"Currency code must be a string, got {type(currency_code).__name__}")
    code = currency_code.strip().upper()
    if not CURRENCY_CODE_PATTERN.match(code):
        raise InvalidArgumentError(f"Invalid currency code: {currency_code!r}")
    return code


def _parse_date(value: Union[str, date, None]) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    if "T" in value or " " in value:
        return datetime.fromisoformat(value)
    return date.fromisoformat(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Loan(StorageRecord):
    """Loan with its principal and running outstanding balance"""
    borrower_id: Optional[str]
    amount: int                     # Principal in minor units
    currency_code: str
    terms: int                      # Number of installments
    outstanding_amount: int
    processed_at: date              # Origination date
    status: LoanStatus = LoanStatus.DUE
    
    @property
    def is_repaid(self) -> bool:
        return self.status == LoanStatus.REPAID
    
    def reduce_outstanding(self, amount: int) -> None:
        """Take a received amount off the balance. The balance may go below zero."""
        self.outstanding_amount -= amount
        self.updated_at = _utcnow()

    def settle(self) -> bool:
        """
        Mark the loan repaid if its balance is exactly zero.

        Returns:
            True if this call moved the loan to repaid
        """
        if self.outstanding_amount != 0 or self.status == LoanStatus.REPAID:
            return False
        self.set_status(LoanStatus.REPAID)
        return True

    def set_status(self, status: LoanStatus) -> None:
        if not can_transition(self.status, status):
            raise InvalidArgumentError(
                f"Loan {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['processed_at'] = self.processed_at.isoformat()
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = dict(data)
        data['processed_at'] = _parse_date(data['processed_at'])
        data['status'] = LoanStatus(data['status'])
        return super().from_dict(data)


@dataclass
class ScheduledRepayment(StorageRecord):
    """One installment of a loan's repayment plan"""
    loan_id: str
    sequence: int                   # 1-based position in the schedule
    amount: int                     # Scheduled amount, never changes
    outstanding_amount: int
    currency_code: str
    due_date: date
    status: RepaymentStatus = RepaymentStatus.DUE
    
    def __post_init__(self):
        if not 0 <= self.outstanding_amount <= self.amount:
            raise InvalidArgumentError(
                f"Outstanding amount {self.outstanding_amount} outside 0..{self.amount}"
            )
    
    @property
    def sort_key(self) -> Tuple[date, int]:
        return (self.due_date, self.sequence)
    
    def apply(self, payment: int) -> int:
        """
        Consume up to the outstanding amount of this installment.
        
        Args:
            payment: Amount still available from the received payment
            
        Returns:
            Amount actually applied to this installment
        """
        applied = min(payment, self.outstanding_amount)
        new_status = derive_repayment_status(self.amount, self.outstanding_amount - applied)
        if not can_transition(self.status, new_status):
            raise InvalidArgumentError(
                f"Repayment {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.outstanding_amount -= applied
        self.status = new_status
        self.updated_at = _utcnow()
        return applied
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['due_date'] = self.due_date.isoformat()
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduledRepayment':
        data = dict(data)
        data['due_date'] = _parse_date(data['due_date'])
        data['status'] = RepaymentStatus(data['status'])
        return super().from_dict(data)


@dataclass
class ReceivedRepayment(StorageRecord):
    """Immutable record of a payment received against a loan"""
    loan_id: str
    amount: int
    currency_code: str
    received_at: date

    def __post_init__(self):
        object.__setattr__(self, "_sealed", True)

    def __setattr__(self, name, value):
        if getattr(self, "_sealed", False):
            raise FrozenInstanceError(f"cannot assign to field {name!r} of a received repayment")
        super().__setattr__(name, value)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['received_at'] = self.received_at.isoformat()
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReceivedRepayment':
        data = dict(data)
        data['received_at'] = _parse_date(data['received_at'])
        return super().from_dict(data)


def new_record_fields() -> Dict[str, Any]:
    """id and timestamps for a record about to be created"""
    now = _utcnow()
    return {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}


class LoanRepository:
    """
    Reads and writes loans, scheduled repayments and received repayments
    """
    
    def __init__(self, storage: StorageInterface):
        self.storage = storage
        
        self.loans_table = "loans"
        self.scheduled_table = "scheduled_repayments"
        self.received_table = "received_repayments"
    
    def create_loan(self, loan: Loan, installments: List[ScheduledRepayment]) -> None:
        """Write a new loan and its whole schedule as one batch"""
        with self.storage.atomic():
            self.save_loan(loan)
            for installment in installments:
                self.save_scheduled_repayment(installment)
    
    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())
    
    def save_scheduled_repayment(self, repayment: ScheduledRepayment) -> None:
        self.storage.save(self.scheduled_table, repayment.id, repayment.to_dict())
    
    def save_received_repayment(self, repayment: ReceivedRepayment) -> None:
        if self.storage.exists(self.received_table, repayment.id):
            raise InvalidArgumentError(f"Received repayment {repayment.id} already recorded")
        self.storage.save(self.received_table, repayment.id, repayment.to_dict())
    
    def get_loan(self, loan_id: str) -> Loan:
        """Get loan by ID, raising NotFoundError if it does not exist"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if not loan_dict:
            raise NotFoundError("loan", loan_id)
        return Loan.from_dict(loan_dict)
    
    def get_borrower_loans(self, borrower_id: str) -> List[Loan]:
        """Get all loans for a borrower"""
        loans_data = self.storage.find(self.loans_table, {"borrower_id": borrower_id})
        return [Loan.from_dict(data) for data in loans_data]
    
    def get_scheduled_repayments(self, loan_id: str) -> List[ScheduledRepayment]:
        """Full schedule for a loan, oldest due date first"""
        data = self.storage.find(self.scheduled_table, {"loan_id": loan_id})
        repayments = [ScheduledRepayment.from_dict(item) for item in data]
        repayments.sort(key=lambda r: r.sort_key)
        return repayments
    
    def get_unpaid_repayments(self, loan_id: str) -> List[ScheduledRepayment]:
        """Installments not yet repaid, ordered by due date then schedule position"""
        return [
            repayment for repayment in self.get_scheduled_repayments(loan_id)
            if repayment.status != RepaymentStatus.REPAID
        ]
    
    def get_received_repayments(self, loan_id: str) -> List[ReceivedRepayment]:
        """Payment history for a loan in the order received"""
        data = self.storage.find(self.received_table, {"loan_id": loan_id})
        return [ReceivedRepayment.from_dict(item) for item in data]
