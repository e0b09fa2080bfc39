"""
Test suite for the loan service

Tests origination and repayment end to end through the service,
including persistence, audit events and error propagation.
"""

import pytest
from datetime import date

from lending_ledger.audit import AuditEventType
from lending_ledger.config import LedgerConfig, OverpaymentPolicy
from lending_ledger.exceptions import InvalidArgumentError, NotFoundError
from lending_ledger.loans import LoanStatus, RepaymentStatus
from lending_ledger.service import LoanService
from lending_ledger.storage import InMemoryStorage, SQLiteStorage


class TestLoanService:
    """Test the loan service against in-memory storage"""
    
    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.service = LoanService(self.storage, LedgerConfig())
        self.loan = self.service.create_loan(
            borrower_id="borrower-1",
            amount=1000,
            currency_code="USD",
            terms=3,
            processed_at=date(2024, 1, 15)
        )
    
    def test_create_loan(self):
        loan = self.service.get_loan(self.loan.id)
        
        assert loan.amount == 1000
        assert loan.outstanding_amount == 1000
        assert loan.status == LoanStatus.DUE
        assert loan.borrower_id == "borrower-1"
        
        schedule = self.service.get_scheduled_repayments(self.loan.id)
        assert [r.amount for r in schedule] == [333, 333, 334]
        assert [r.due_date for r in schedule] == [
            date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)
        ]
    
    def test_create_loan_is_audited(self):
        events = self.service.audit_trail.get_events_for_entity("loan", self.loan.id)
        
        assert [e.event_type for e in events] == [AuditEventType.LOAN_ORIGINATED]
        assert events[0].metadata["amount"] == 1000
        assert events[0].metadata["processed_at"] == "2024-01-15"
    
    def test_invalid_loan_writes_nothing(self):
        storage = InMemoryStorage()
        service = LoanService(storage, LedgerConfig())
        
        with pytest.raises(InvalidArgumentError):
            service.create_loan("borrower-1", 1000, "USD", 0, date(2024, 1, 15))
        
        assert storage.count("loans") == 0
        assert storage.count("scheduled_repayments") == 0
        assert storage.count("audit_events") == 0
    
    def test_repay_loan_in_installments(self):
        self.service.repay_loan(self.loan.id, 333, "USD", date(2024, 2, 15))
        self.service.repay_loan(self.loan.id, 500, "USD", date(2024, 3, 15))
        
        schedule = self.service.get_scheduled_repayments(self.loan.id)
        assert [r.status for r in schedule] == [
            RepaymentStatus.REPAID, RepaymentStatus.REPAID, RepaymentStatus.PARTIAL
        ]
        assert schedule[2].outstanding_amount == 167
        
        loan = self.service.get_loan(self.loan.id)
        assert loan.outstanding_amount == 167
        assert loan.status == LoanStatus.DUE
    
    def test_repay_loan_in_full(self):
        received = self.service.repay_loan(self.loan.id, 1000, "USD", date(2024, 2, 15))
        
        loan = self.service.get_loan(self.loan.id)
        assert loan.status == LoanStatus.REPAID
        assert self.service.get_received_repayments(self.loan.id) == [received]
        
        events = self.service.audit_trail.get_events_for_entity("loan", self.loan.id)
        assert [e.event_type for e in events] == [
            AuditEventType.LOAN_ORIGINATED,
            AuditEventType.LOAN_PAYMENT_RECEIVED,
            AuditEventType.LOAN_REPAID
        ]
        assert events[1].metadata["received_repayment_id"] == received.id
        assert self.service.audit_trail.verify_integrity()['valid']
    
    def test_loan_repaid_is_audited_once(self):
        self.service.repay_loan(self.loan.id, 1000, "USD", date(2024, 2, 15))
        self.service.repay_loan(self.loan.id, 10, "USD", date(2024, 3, 15))
        
        events = self.service.audit_trail.get_events_for_entity("loan", self.loan.id)
        repaid = [e for e in events if e.event_type == AuditEventType.LOAN_REPAID]
        assert len(repaid) == 1
        assert self.service.get_loan(self.loan.id).status == LoanStatus.REPAID
    
    def test_repay_unknown_loan(self):
        with pytest.raises(NotFoundError):
            self.service.repay_loan("missing", 100, "USD", date(2024, 2, 15))
        
        assert self.storage.count("received_repayments") == 0
    
    def test_get_unknown_loan_collections(self):
        with pytest.raises(NotFoundError):
            self.service.get_scheduled_repayments("missing")
        with pytest.raises(NotFoundError):
            self.service.get_received_repayments("missing")
    
    def test_get_borrower_loans(self):
        second = self.service.create_loan("borrower-1", 500, "USD", 2, date(2024, 1, 20))
        self.service.create_loan("borrower-2", 700, "USD", 1, date(2024, 1, 20))
        
        loans = self.service.get_borrower_loans("borrower-1")
        assert {l.id for l in loans} == {self.loan.id, second.id}
    
    def test_audit_failure_rolls_back_payment(self):
        def fail(*args, **kwargs):
            raise RuntimeError("audit store down")
        
        self.service.audit_trail.log_event = fail
        
        with pytest.raises(RuntimeError, match="audit store down"):
            self.service.repay_loan(self.loan.id, 500, "USD", date(2024, 2, 15))
        
        assert self.service.get_loan(self.loan.id).outstanding_amount == 1000
        assert self.service.get_received_repayments(self.loan.id) == []
        assert all(
            r.status == RepaymentStatus.DUE
            for r in self.service.get_scheduled_repayments(self.loan.id)
        )


class TestLoanServiceConfiguration:
    """Test configuration-driven behaviour"""
    
    def test_audit_logging_disabled(self):
        storage = InMemoryStorage()
        service = LoanService(storage, LedgerConfig(enable_audit_logging=False))
        
        loan = service.create_loan("borrower-1", 1000, "USD", 2, date(2024, 1, 15))
        service.repay_loan(loan.id, 1000, "USD", date(2024, 2, 15))
        
        assert service.audit_trail is None
        assert storage.count("audit_events") == 0
    
    def test_reject_overpayment(self):
        service = LoanService(
            InMemoryStorage(),
            LedgerConfig(overpayment_policy=OverpaymentPolicy.REJECT)
        )
        loan = service.create_loan("borrower-1", 1000, "USD", 2, date(2024, 1, 15))
        
        with pytest.raises(InvalidArgumentError):
            service.repay_loan(loan.id, 1500, "USD", date(2024, 2, 15))
        
        assert service.get_loan(loan.id).outstanding_amount == 1000
        assert service.get_received_repayments(loan.id) == []
    
    def test_from_config(self):
        service = LoanService.from_config(LedgerConfig(database_url="memory://"))
        
        assert isinstance(service.storage, InMemoryStorage)
    
    def test_sqlite_end_to_end(self, tmp_path):
        """Schedule and payments survive reopening the database"""
        db_path = tmp_path / "ledger.db"
        config = LedgerConfig(database_url=f"sqlite:///{db_path}")
        service = LoanService.from_config(config)
        loan = service.create_loan("borrower-1", 1000, "USD", 2, date(2024, 1, 31))
        service.repay_loan(loan.id, 250, "USD", date(2024, 2, 29))
        service.storage.close()
        
        reopened = LoanService(SQLiteStorage(db_path), config)
        schedule = reopened.get_scheduled_repayments(loan.id)
        assert [r.due_date for r in schedule] == [date(2024, 2, 29), date(2024, 3, 31)]
        assert (schedule[0].outstanding_amount, schedule[0].status) == (250, RepaymentStatus.PARTIAL)
        assert reopened.get_loan(loan.id).outstanding_amount == 750
        assert reopened.audit_trail.verify_integrity()['total_events'] == 2
        reopened.storage.close()
