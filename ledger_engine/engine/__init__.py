"""
Ledger Engine Package

Pure functions over an explicit LedgerState: balances, amortization,
insurance accrual, the monthly bills view and the payment protocol.
Nothing in here reads settings or touches storage.
"""

from ledger_engine.engine.balance import OPEN_ENDED_DATE, balance_as_of, balances_as_of
from ledger_engine.engine.amortization import (
    installment_due_date,
    interest_due_between,
    outstanding_balance,
    paid_installments,
    price_installment,
    schedule,
    solve_monthly_rate,
    sync_loan_status,
)
from ledger_engine.engine.accrual import (
    accrual,
    expense_for_period,
    linked_payments,
    mark_installment_paid,
    pending_installments,
    unmark_installment_paid,
)
from ledger_engine.engine.obligations import (
    apply_overrides,
    bills_for_month,
    external_paid_expenses,
    find_payment_transaction,
    generate_templates,
    load_overrides,
    month_bounds,
    month_key,
    month_totals,
)
from ledger_engine.engine.payments import (
    PaymentError,
    add_ad_hoc_bill,
    add_purchase_installments,
    delete_bill,
    operation_type_for,
    pay_bill,
    purchase_installment_bills,
    unpay_bill,
    update_bill,
)

__all__ = [
    # Balances
    "OPEN_ENDED_DATE",
    "balance_as_of",
    "balances_as_of",
    # Amortization
    "installment_due_date",
    "interest_due_between",
    "outstanding_balance",
    "paid_installments",
    "price_installment",
    "schedule",
    "solve_monthly_rate",
    "sync_loan_status",
    # Accrual
    "accrual",
    "expense_for_period",
    "linked_payments",
    "mark_installment_paid",
    "pending_installments",
    "unmark_installment_paid",
    # Bills view
    "apply_overrides",
    "bills_for_month",
    "external_paid_expenses",
    "find_payment_transaction",
    "generate_templates",
    "load_overrides",
    "month_bounds",
    "month_key",
    "month_totals",
    # Payments
    "PaymentError",
    "add_ad_hoc_bill",
    "add_purchase_installments",
    "delete_bill",
    "operation_type_for",
    "pay_bill",
    "purchase_installment_bills",
    "unpay_bill",
    "update_bill",
]
