"""
Report Queries

DESIGN DECISION: Reports are DETERMINISTIC reads of the same
LedgerState the commands produce. They never estimate what the
ledger does not contain.

- Balance sheet: account balances, prepaid insurance as an asset,
  credit cards, loans and unpaid premiums as liabilities.
- Income statement: accrual-flavoured. Insurance is expensed
  straight-line instead of when paid, and loan payments count only
  for their scheduled interest.
- Alerts: month deficit, fixed-expense commitment, next installment.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from ledger_engine.engine.accrual import accrual, expense_for_period
from ledger_engine.engine.amortization import (
    installment_due_date,
    interest_due_between,
    outstanding_balance,
    paid_installments,
)
from ledger_engine.engine.balance import balances_as_of
from ledger_engine.engine.obligations import is_contabilized, month_bounds
from ledger_engine.models.ledger import CategoryNature, Flow, OperationType
from ledger_engine.models.obligations import LoanStatus, round_money
from ledger_engine.models.reports import (
    AccountBalance,
    BalanceSheet,
    FinancialAlert,
    IncomeStatement,
)
from ledger_engine.models.state import LedgerState


logger = structlog.get_logger(__name__)

UNCATEGORIZED = "uncategorized"
DEFAULT_COMMITMENT_RATIO = Decimal("0.5")

INCOME_OPERATIONS = (OperationType.INCOME, OperationType.YIELD)
EXPENSE_OPERATIONS = (OperationType.EXPENSE, OperationType.VEHICLE)


class ReportError(Exception):
    """A report was requested with inconsistent arguments."""
    pass


def balance_sheet(state: LedgerState, as_of: date) -> BalanceSheet:
    balances = balances_as_of(state.accounts, state.transactions, as_of)

    sheet = BalanceSheet(as_of=as_of)
    for account in state.accounts:
        balance = balances[account.id]
        sheet.accounts.append(AccountBalance(
            account_id=account.id,
            name=account.name,
            account_type=account.account_type.value,
            balance=balance,
        ))
        if account.is_liability:
            sheet.credit_card_debt += balance
        else:
            sheet.cash_and_investments += balance

    for policy in state.policies:
        result = accrual(policy, as_of, state.transactions)
        sheet.prepaid_insurance += result.unexpensed
        sheet.insurance_payable += result.unpaid

    for loan in state.loans:
        if loan.status == LoanStatus.PENDING_SETUP:
            continue
        sheet.loan_debt += outstanding_balance(loan, state.transactions, as_of)

    return sheet


def _add(bucket: dict[str, Decimal], key: Optional[str], amount: Decimal) -> None:
    key = key or UNCATEGORIZED
    bucket[key] = bucket.get(key, Decimal("0")) + amount


def income_statement(state: LedgerState, start: date, end: date) -> IncomeStatement:
    if end < start:
        raise ReportError(f"Period end {end} is before start {start}")

    report = IncomeStatement(period_start=start, period_end=end)
    natures = {c.id: c.nature for c in state.categories}

    for tx in state.transactions:
        if not (start <= tx.date <= end) or not is_contabilized(tx):
            continue

        if tx.flow == Flow.IN and tx.operation_type in INCOME_OPERATIONS:
            _add(report.income_by_category, tx.category_id, tx.amount)
        elif tx.flow == Flow.OUT and tx.operation_type in EXPENSE_OPERATIONS:
            # Policy payments are recognized through accrual instead
            if tx.links.vehicle_transaction_id:
                continue
            if natures.get(tx.category_id) == CategoryNature.FIXED_EXPENSE:
                _add(report.fixed_by_category, tx.category_id, tx.amount)
            else:
                _add(report.variable_by_category, tx.category_id, tx.amount)

    report.accrued_insurance = sum(
        (expense_for_period(policy, start, end) for policy in state.policies),
        Decimal("0"),
    )
    report.loan_interest = sum(
        (
            interest_due_between(loan, start, end)
            for loan in state.loans
            if loan.status != LoanStatus.PENDING_SETUP
        ),
        Decimal("0"),
    )
    return report


def _month_label(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def financial_alerts(
    state: LedgerState,
    today: date,
    commitment_ratio: Decimal = DEFAULT_COMMITMENT_RATIO,
) -> list[FinancialAlert]:
    """Alerts for the month containing `today`, with stable ids."""
    alerts = []
    first, last = month_bounds(today)
    label = _month_label(today)
    report = income_statement(state, first, last)

    if report.net_result < 0:
        alerts.append(FinancialAlert(
            id=f"month-deficit:{label}",
            level="danger",
            message="Expenses exceed income this month",
            detail=f"Result: R$ {round_money(report.net_result):,.2f}",
        ))

    if report.total_income > 0:
        ratio = report.total_fixed / report.total_income
        if ratio > commitment_ratio:
            alerts.append(FinancialAlert(
                id=f"fixed-commitment:{label}",
                level="warning",
                message="Fixed expenses take more than half of income",
                detail=f"{ratio:.0%} of income is committed to fixed expenses",
            ))

    for loan in state.loans:
        if loan.status != LoanStatus.ACTIVE:
            continue
        paid = paid_installments(loan, state.transactions)
        next_number = next((n for n in range(1, loan.term_months + 1) if n not in paid), None)
        if next_number is None:
            continue
        due = installment_due_date(loan, next_number)
        overdue = due < today
        alerts.append(FinancialAlert(
            id=f"next-installment:{loan.id}:{next_number}",
            level="danger" if overdue else "info",
            message=(
                f"{loan.description or 'Loan'} installment {next_number}/{loan.term_months} "
                f"{'overdue since' if overdue else 'due on'} {due.isoformat()}"
            ),
            detail=f"R$ {round_money(loan.installment_amount):,.2f}",
            due_date=due,
        ))

    return alerts
