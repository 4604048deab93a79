"""
Personal Ledger Engine - Source Package

The recurring-obligations and reconciliation core of a personal
finance tracker: balances, loan amortization, insurance accrual,
the monthly bills view and bank statement import.

DESIGN PRINCIPLES:
1. Derived truth beats stored flags (payments come from the ledger)
2. Engine functions are pure over an explicit LedgerState
3. Compute everything first, write state once
4. Every command is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Ledger Team"
