"""
Schedule Generator Module

Splits a loan principal into equal monthly installments. Integer division
keeps every installment in whole minor units; the remainder goes to the
last installment so the schedule sums to the principal exactly.
"""

from datetime import date
from typing import List, Optional, Tuple
import calendar
import logging

from .exceptions import InvalidArgumentError
from .loans import (
    Loan, LoanStatus, ScheduledRepayment, RepaymentStatus,
    new_record_fields, normalize_currency_code, require_positive_int
)


logger = logging.getLogger("lending_ledger.schedule")


def add_months(start_date: date, months: int) -> date:
    """
    Add months to a date, clamping the day to the end of the target month.

    Jan 31 plus one month is Feb 28 or 29, and plus two months is Mar 31.
    Callers offset from a fixed start date, so a short month never pulls
    later due dates back; rolling past the month end into Mar 2 is not done.
    """
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def split_principal(principal: int, terms: int) -> List[int]:
    """Installment amounts for a principal split over ``terms`` payments"""
    base, remainder = divmod(principal, terms)
    amounts = [base] * terms
    amounts[-1] += remainder
    return amounts


class ScheduleGenerator:
    """
    Builds a loan and its repayment schedule from the loan terms.
    
    Nothing is written here; the caller persists the result.
    """
    
    def generate_schedule(
        self,
        principal: int,
        terms: int,
        currency_code: str,
        start_date: date,
        borrower_id: Optional[str] = None
    ) -> Tuple[Loan, List[ScheduledRepayment]]:
        """
        Generate a loan and its installments
        
        Args:
            principal: Loan amount in minor units, must be positive
            terms: Number of monthly installments, must be positive
            currency_code: Three-letter currency code
            start_date: Origination date; the first installment is due a month later
            borrower_id: External identity of the borrower
            
        Returns:
            The loan and its installments ordered by due date
        """
        require_positive_int(principal, "Principal")
        require_positive_int(terms, "Terms")
        currency_code = normalize_currency_code(currency_code)
        if not isinstance(start_date, date):
            raise InvalidArgumentError(f"start_date must be a date, got {type(start_date).__name__}")
        
        loan = Loan(
            **new_record_fields(),
            borrower_id=borrower_id,
            amount=principal,
            currency_code=currency_code,
            terms=terms,
            outstanding_amount=principal,
            processed_at=start_date,
            status=LoanStatus.DUE
        )
        
        installments = []
        for number, amount in enumerate(split_principal(principal, terms), start=1):
            installments.append(ScheduledRepayment(
                **new_record_fields(),
                loan_id=loan.id,
                sequence=number,
                amount=amount,
                outstanding_amount=amount,
                currency_code=currency_code,
                # Offset from the start date so a clamped day never drifts
                due_date=add_months(start_date, number),
                status=RepaymentStatus.DUE
            ))
        
        logger.debug(
            "Generated %d installments for loan %s (%d %s)",
            terms, loan.id, principal, currency_code
        )
        return loan, installments
