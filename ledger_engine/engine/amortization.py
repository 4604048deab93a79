"""
Amortization Engine

PRICE (French) schedules for fixed-installment loans, and the
Newton-Raphson solver that recovers a monthly rate from principal,
payment and term.

DESIGN DECISION: Schedules use Decimal with round-half-up to cents on
every row so intermediate balances are reproducible. The solver works
in floats: its result is an estimate the user confirms before the loan
is activated.

How many installments are paid is always derived from the ledger
(transactions carrying links.loan_id + links.parcela_id), never
counted on the loan itself.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from dateutil.relativedelta import relativedelta

from ledger_engine.models.ledger import Transaction
from ledger_engine.models.obligations import (
    AmortizationItem,
    Loan,
    LoanStatus,
    round_money,
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


# =============================================================================
# SCHEDULE
# =============================================================================

def schedule(loan: Loan) -> list[AmortizationItem]:
    """
    Full PRICE schedule for a loan.

    The last installment takes whatever principal is left so the
    schedule always closes at exactly zero. Once the balance is paid
    down early the remaining rows are zero.
    """
    items: list[AmortizationItem] = []
    remaining = round_money(loan.total_principal)
    rate = Decimal(loan.monthly_rate)

    for number in range(1, loan.term_months + 1):
        if remaining <= 0:
            items.append(AmortizationItem(
                installment_number=number,
                interest=ZERO,
                principal_portion=ZERO,
                remaining_balance=ZERO,
            ))
            continue

        interest = round_money(remaining * rate)
        if number == loan.term_months:
            principal = remaining
        else:
            principal = min(round_money(loan.installment_amount - interest), remaining)

        remaining = round_money(remaining - principal)
        items.append(AmortizationItem(
            installment_number=number,
            interest=interest,
            principal_portion=principal,
            remaining_balance=remaining,
        ))

    return items


def price_installment(principal: Decimal, monthly_rate: Decimal, periods: int) -> Decimal:
    """Fixed PRICE installment for the given terms."""
    if periods <= 0:
        return ZERO
    principal = Decimal(principal)
    rate = Decimal(monthly_rate)
    if rate == 0:
        return round_money(principal / periods)
    factor = (1 + rate) ** -periods
    return round_money(principal * rate / (1 - factor))


def installment_due_date(loan: Loan, installment_number: int) -> date:
    """Installment N falls due N months after the loan start."""
    return loan.start_date + relativedelta(months=installment_number)


def installment_number_in_month(loan: Loan, year: int, month: int) -> Optional[int]:
    """The installment falling due in the given month, if any."""
    number = (year * 12 + month) - (loan.start_date.year * 12 + loan.start_date.month)
    if 1 <= number <= loan.term_months:
        return number
    return None


# =============================================================================
# RATE SOLVER
# =============================================================================

def solve_monthly_rate(
    principal: float,
    payment: float,
    periods: int,
    initial_guess: float = 0.01,
    max_iterations: int = 100,
    tolerance: float = 1e-7,
) -> Optional[float]:
    """
    Monthly rate (as a fraction) that makes `periods` payments of
    `payment` worth `principal` today.

    Newton-Raphson on NPV(i) = payment * (1 - (1+i)^-n) / i - principal.
    Returns None when the inputs are infeasible or the iteration does
    not converge, never a guessed rate.
    """
    principal = float(principal)
    payment = float(payment)

    if principal <= 0 or payment <= 0 or periods <= 0:
        return None
    if payment * periods < principal:
        return None
    if abs(payment * periods - principal) < tolerance:
        return 0.0

    def npv(i: float) -> float:
        if i == 0:
            return payment * periods - principal
        return payment * (1 - (1 + i) ** -periods) / i - principal

    def npv_derivative(i: float) -> float:
        if i == 0:
            return 0.0
        return payment * (
            periods * (1 + i) ** (-periods - 1) * i - (1 - (1 + i) ** -periods)
        ) / (i * i)

    rate = initial_guess
    for _ in range(max_iterations):
        value = npv(rate)
        if abs(value) < tolerance:
            return rate

        derivative = npv_derivative(rate)
        if abs(derivative) < tolerance:
            logger.info("rate_solver_flat_derivative", rate=rate)
            return None

        rate = rate - value / derivative
        if rate < 0:
            rate = 0.001

    logger.info(
        "rate_solver_not_converged",
        principal=principal,
        payment=payment,
        periods=periods,
    )
    return None


# =============================================================================
# DERIVED STATE
# =============================================================================

def paid_installments(
    loan: Loan,
    transactions: Iterable[Transaction],
    as_of: Optional[date] = None,
) -> set[int]:
    """Installment numbers with a linked payment in the ledger."""
    return {
        t.links.parcela_id
        for t in transactions
        if t.links.loan_id == loan.id
        and t.links.parcela_id is not None
        and (as_of is None or t.date <= as_of)
    }


def find_installment_payment(
    loan_id: str,
    installment_number: int,
    transactions: Iterable[Transaction],
) -> Optional[Transaction]:
    for t in transactions:
        if t.links.loan_id == loan_id and t.links.parcela_id == installment_number:
            return t
    return None


def outstanding_balance(
    loan: Loan,
    transactions: Iterable[Transaction],
    as_of: Optional[date] = None,
) -> Decimal:
    """
    Principal still owed: the schedule balance after the number of
    installments paid so far.
    """
    rows = schedule(loan)
    paid_count = min(len(paid_installments(loan, transactions, as_of)), len(rows))
    if paid_count == 0:
        return round_money(loan.total_principal)
    return rows[paid_count - 1].remaining_balance


def interest_due_between(loan: Loan, start: date, end: date) -> Decimal:
    """Scheduled interest of the installments falling due in [start, end]."""
    total = ZERO
    for item in schedule(loan):
        if start <= installment_due_date(loan, item.installment_number) <= end:
            total += item.interest
    return total


def sync_loan_status(loan: Loan, transactions: Iterable[Transaction]) -> Loan:
    """
    Status setter driven by the ledger: paid_off once every installment
    has a linked payment, active otherwise. Loans still in setup are
    left alone.
    """
    if loan.status == LoanStatus.PENDING_SETUP:
        return loan
    paid_count = len(paid_installments(loan, transactions))
    target = (
        LoanStatus.PAID_OFF
        if loan.term_months > 0 and paid_count >= loan.term_months
        else LoanStatus.ACTIVE
    )
    if target == loan.status:
        return loan
    logger.info("loan_status_changed", loan_id=loan.id, status=target.value)
    return loan.model_copy(update={"status": target})
