"""
Loan Service Module

Entry point for callers: originates loans with their repayment schedule
and applies received payments, recording both in the audit trail.
"""

from datetime import date
from typing import List, Optional

from .allocation import RepaymentAllocator
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .loans import Loan, LoanRepository, LoanStatus, ReceivedRepayment, ScheduledRepayment
from .logging_config import get_logger, log_action, setup_logging
from .schedule import ScheduleGenerator
from .storage import StorageInterface, create_storage


logger = get_logger("lending_ledger.service")


class LoanService:
    """
    Originates loans and allocates payments against them
    """
    
    def __init__(
        self,
        storage: StorageInterface,
        config: Optional[LedgerConfig] = None,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.storage = storage
        self.config = config or get_config()
        self.repository = LoanRepository(storage)
        self.generator = ScheduleGenerator()
        self.allocator = RepaymentAllocator(self.repository, self.config.overpayment_policy)
        
        if audit_trail is None and self.config.enable_audit_logging:
            audit_trail = AuditTrail(storage)
        self.audit_trail = audit_trail
    
    @classmethod
    def from_config(cls, config: Optional[LedgerConfig] = None) -> 'LoanService':
        """Set up logging and build a service on the storage named by ``config.database_url``"""
        config = config or get_config()
        setup_logging(config.log_level, config.log_format, log_file=config.log_file)
        return cls(create_storage(config.database_url), config)
    
    def create_loan(
        self,
        borrower_id: str,
        amount: int,
        currency_code: str,
        terms: int,
        processed_at: date
    ) -> Loan:
        """
        Originate a loan and its repayment schedule
        
        Args:
            borrower_id: Borrower identity
            amount: Principal in minor units
            currency_code: Three-letter currency code
            terms: Number of monthly installments
            processed_at: Origination date
            
        Returns:
            Created Loan
        """
        loan, installments = self.generator.generate_schedule(
            principal=amount,
            terms=terms,
            currency_code=currency_code,
            start_date=processed_at,
            borrower_id=borrower_id
        )
        
        with self.storage.atomic():
            self.repository.create_loan(loan, installments)
            self._audit(
                AuditEventType.LOAN_ORIGINATED, "loan", loan.id,
                {
                    "borrower_id": borrower_id,
                    "amount": loan.amount,
                    "currency_code": loan.currency_code,
                    "terms": loan.terms,
                    "processed_at": loan.processed_at
                }
            )
        
        log_action(
            logger, "info", f"Loan {loan.id} originated",
            action="create_loan", resource=loan.id,
            extra={"amount": loan.amount, "currency_code": loan.currency_code, "terms": loan.terms}
        )
        return loan
    
    def repay_loan(
        self,
        loan_id: str,
        amount: int,
        currency_code: str,
        received_at: date
    ) -> ReceivedRepayment:
        """
        Apply a received payment to a loan
        
        Args:
            loan_id: Loan receiving the payment
            amount: Payment in minor units
            currency_code: Currency of the payment
            received_at: When the payment was received
            
        Returns:
            The ReceivedRepayment record
        """
        loan = self.repository.get_loan(loan_id)
        was_repaid = loan.status == LoanStatus.REPAID
        
        with self.storage.atomic():
            received = self.allocator.allocate(loan, amount, currency_code, received_at)
            self._audit(
                AuditEventType.LOAN_PAYMENT_RECEIVED, "loan", loan.id,
                {
                    "received_repayment_id": received.id,
                    "amount": received.amount,
                    "currency_code": received.currency_code,
                    "received_at": received.received_at,
                    "outstanding_amount": loan.outstanding_amount
                }
            )
            if not was_repaid and loan.status == LoanStatus.REPAID:
                self._audit(
                    AuditEventType.LOAN_REPAID, "loan", loan.id,
                    {"received_repayment_id": received.id}
                )
        
        log_action(
            logger, "info", f"Payment {received.id} applied to loan {loan.id}",
            action="repay_loan", resource=loan.id,
            extra={"amount": amount, "outstanding_amount": loan.outstanding_amount,
                   "status": loan.status.value}
        )
        return received
    
    def get_loan(self, loan_id: str) -> Loan:
        """Get loan by ID. Raises NotFoundError for an unknown loan."""
        return self.repository.get_loan(loan_id)
    
    def get_borrower_loans(self, borrower_id: str) -> List[Loan]:
        return self.repository.get_borrower_loans(borrower_id)
    
    def get_scheduled_repayments(self, loan_id: str) -> List[ScheduledRepayment]:
        self.repository.get_loan(loan_id)
        return self.repository.get_scheduled_repayments(loan_id)
    
    def get_received_repayments(self, loan_id: str) -> List[ReceivedRepayment]:
        self.repository.get_loan(loan_id)
        return self.repository.get_received_repayments(loan_id)
    
    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str, metadata: dict) -> None:
        if self.audit_trail is not None:
            self.audit_trail.log_event(event_type, entity_type, entity_id, metadata)
