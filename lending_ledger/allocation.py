"""
Repayment Allocator Module

Applies a received payment to a loan's unpaid installments, oldest due
date first, until the payment is used up. Each call is one atomic unit:
the received repayment record, every touched installment and the loan
balance are written together or not at all.
"""

from datetime import date
import logging

from .config import OverpaymentPolicy
from .exceptions import InvalidArgumentError
from .loans import (
    Loan, LoanRepository, ReceivedRepayment,
    new_record_fields, require_positive_int
)


logger = logging.getLogger("lending_ledger.allocation")


class RepaymentAllocator:
    """
    Waterfall allocation of received payments across scheduled repayments
    """
    
    def __init__(
        self,
        repository: LoanRepository,
        overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.ALLOW
    ):
        self.repository = repository
        self.overpayment_policy = OverpaymentPolicy(overpayment_policy)
    
    def allocate(
        self,
        loan: Loan,
        amount: int,
        currency_code: str,
        received_at: date
    ) -> ReceivedRepayment:
        """
        Record a payment and apply it to the loan's installments
        
        Args:
            loan: Loan receiving the payment; updated in place
            amount: Payment in minor units, must be positive
            currency_code: Currency of the payment, recorded as given and never
                checked against the loan currency
            received_at: When the payment was received
            
        Returns:
            The ReceivedRepayment record
        """
        require_positive_int(amount, "Payment amount")
        if not isinstance(currency_code, str):
            raise InvalidArgumentError(
                f"Currency code must be a string, got {type(currency_code).__name__}"
            )
        if not isinstance(received_at, date):
            raise InvalidArgumentError(
                f"received_at must be a date, got {type(received_at).__name__}"
            )
        
        if amount > loan.outstanding_amount:
            if self.overpayment_policy == OverpaymentPolicy.REJECT:
                raise InvalidArgumentError(
                    f"Payment {amount} exceeds outstanding amount {loan.outstanding_amount} "
                    f"on loan {loan.id}"
                )
            logger.warning(
                "Payment %d exceeds outstanding amount %d on loan %s",
                amount, loan.outstanding_amount, loan.id
            )
        
        saved_state = (loan.outstanding_amount, loan.status, loan.updated_at)
        try:
            with self.repository.storage.atomic():
                received = ReceivedRepayment(
                    **new_record_fields(),
                    loan_id=loan.id,
                    amount=amount,
                    currency_code=currency_code,
                    received_at=received_at
                )
                self.repository.save_received_repayment(received)
                
                loan.reduce_outstanding(amount)
                
                remaining = amount
                for installment in self.repository.get_unpaid_repayments(loan.id):
                    applied = installment.apply(remaining)
                    remaining -= applied
                    self.repository.save_scheduled_repayment(installment)
                    logger.debug(
                        "Applied %d to installment %s due %s, now %s",
                        applied, installment.id, installment.due_date, installment.status.value
                    )
                    if remaining == 0:
                        break
                
                loan.settle()
                self.repository.save_loan(loan)
        except Exception:
            loan.outstanding_amount, loan.status, loan.updated_at = saved_state
            raise
        
        logger.info(
            "Received %d %s on loan %s, outstanding %d",
            amount, currency_code, loan.id, loan.outstanding_amount
        )
        return received
    
    def allocate_by_id(
        self,
        loan_id: str,
        amount: int,
        currency_code: str,
        received_at: date
    ) -> ReceivedRepayment:
        """Resolve the loan, then allocate. Raises NotFoundError for an unknown loan."""
        loan = self.repository.get_loan(loan_id)
        return self.allocate(loan, amount, currency_code, received_at)
