"""
Lending Ledger

Loan origination, equal-split repayment schedules and oldest-first
allocation of received payments, with integer minor-unit arithmetic
that reconciles exactly and an audit trail of every loan event.
"""

__version__ = "1.0.0"
