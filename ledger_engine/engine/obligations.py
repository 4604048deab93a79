"""
Obligation Generator

Builds the monthly bills view from three sources:
1. Templates computed from loans, insurance policies and categories
2. Persisted bills (ad-hoc bills and user overrides of templates)
3. Payments found in the ledger

DESIGN DECISION: Generation and merging are separate pure layers
(`generate_templates` and `apply_overrides`). Templates are recomputed
from scratch on every call and their ids are deterministic, so the
view is idempotent and an override always finds its template again.

DESIGN DECISION: Paid state is derived from the ledger, never trusted
from a stored flag. A persisted transaction id is honoured only while
that transaction still exists.
"""

import calendar
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from dateutil.relativedelta import relativedelta

from ledger_engine.engine import amortization
from ledger_engine.models.ledger import (
    CategoryNature,
    Flow,
    OperationType,
    Transaction,
    TransactionSource,
)
from ledger_engine.models.obligations import (
    AdHocSource,
    Bill,
    FixedExpenseSource,
    InsuranceInstallmentSource,
    LoanInstallmentSource,
    LoanStatus,
    MonthTotals,
    VariableExpenseSource,
    round_money,
)
from ledger_engine.models.state import LedgerState


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")

DEFAULT_FIXED_DUE_DAY = 10
DEFAULT_VARIABLE_DUE_DAY = 25

# Operation types that count as spending when no bill manages them
EXTERNAL_EXPENSE_TYPES = (
    OperationType.EXPENSE,
    OperationType.LOAN_PAYMENT,
    OperationType.VEHICLE,
)


# =============================================================================
# MONTH HELPERS
# =============================================================================

def month_start(month: date) -> date:
    """Normalize any date to the first day of its month."""
    return month.replace(day=1)


def month_key(month: date) -> str:
    """'yyyyMM' suffix used in generated bill ids."""
    return f"{month.year:04d}{month.month:02d}"


def month_bounds(month: date) -> tuple[date, date]:
    first = month_start(month)
    last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
    return first, last


def in_month(day: date, month: date) -> bool:
    return day.year == month.year and day.month == month.month


def _day_in_month(month: date, day: int) -> date:
    last_day = calendar.monthrange(month.year, month.month)[1]
    return month_start(month).replace(day=min(day, last_day))


# =============================================================================
# PAYMENT LOOKUP
# =============================================================================

def find_payment_transaction(bill: Bill, transactions: Iterable[Transaction]) -> Optional[Transaction]:
    """
    The ledger transaction that pays a bill, if any.

    Lookup order: source linkage (loan or policy installment), then
    links.bill_id, then the transaction id recorded on the bill.
    """
    transactions = list(transactions)
    source = bill.source

    if isinstance(source, LoanInstallmentSource):
        tx = amortization.find_installment_payment(
            source.loan_id, source.installment_number, transactions
        )
        if tx is not None:
            return tx
    elif isinstance(source, InsuranceInstallmentSource):
        for t in transactions:
            if (
                t.links.vehicle_transaction_id == source.policy_id
                and t.links.parcela_id == source.installment_number
            ):
                return t
    elif not isinstance(source, (FixedExpenseSource, VariableExpenseSource, AdHocSource)):
        raise TypeError(f"Unknown bill source: {source!r}")

    for t in transactions:
        if t.links.bill_id == bill.id:
            return t

    if bill.transaction_id:
        return next((t for t in transactions if t.id == bill.transaction_id), None)
    return None


def with_derived_payment(bill: Bill, transactions: Iterable[Transaction]) -> Bill:
    """Copy of `bill` whose paid fields reflect the ledger."""
    tx = find_payment_transaction(bill, transactions)
    if tx is None:
        if bill.is_paid or bill.transaction_id:
            logger.warning(
                "bill_payment_not_in_ledger",
                bill_id=bill.id,
                transaction_id=bill.transaction_id,
            )
        return bill.model_copy(update={
            "is_paid": False,
            "payment_date": None,
            "transaction_id": None,
        })
    return bill.model_copy(update={
        "is_paid": True,
        "payment_date": tx.date,
        "transaction_id": tx.id,
    })


# =============================================================================
# LAYER 1: OVERRIDES
# =============================================================================

def load_overrides(persisted: Iterable[Bill], month: date) -> dict[str, Bill]:
    """
    Persisted bills relevant to a month, indexed by id: every ad-hoc
    bill plus every persisted bill due in the month.
    """
    return {
        bill.id: bill
        for bill in persisted
        if bill.is_ad_hoc or in_month(bill.due_date, month)
    }


# =============================================================================
# LAYER 2: TEMPLATES
# =============================================================================

def _loan_templates(state: LedgerState, month: date) -> list[Bill]:
    bills = []
    for loan in state.loans:
        if loan.status != LoanStatus.ACTIVE:
            continue
        number = amortization.installment_number_in_month(loan, month.year, month.month)
        if number is None:
            continue
        label = loan.description or "Loan"
        bills.append(Bill(
            id=f"loan_{loan.id}_{number}_{month_key(month)}",
            description=f"{label} ({number}/{loan.term_months})",
            due_date=amortization.installment_due_date(loan, number),
            expected_amount=round_money(loan.installment_amount),
            source=LoanInstallmentSource(loan_id=loan.id, installment_number=number),
            suggested_account_id=loan.linked_account_id,
            suggested_category_id=loan.category_id,
        ))
    return bills


def _insurance_templates(state: LedgerState, month: date) -> list[Bill]:
    bills = []
    for policy in state.policies:
        total = len(policy.installments)
        for item in policy.installments:
            if not in_month(item.due_date, month):
                continue
            label = policy.insurer or "Insurance"
            bills.append(Bill(
                id=f"seguro_{policy.id}_{item.number}_{month_key(month)}",
                description=f"{label} {policy.vehicle_id} ({item.number}/{total})",
                due_date=item.due_date,
                expected_amount=item.amount,
                source=InsuranceInstallmentSource(
                    policy_id=policy.id,
                    installment_number=item.number,
                ),
                suggested_account_id=policy.linked_account_id,
                suggested_category_id=policy.category_id,
            ))
    return bills


def category_spend(
    transactions: Iterable[Transaction],
    category_id: str,
    start: date,
    end: date,
) -> Decimal:
    """Money that left accounts for a category in [start, end]."""
    return sum(
        (
            t.amount for t in transactions
            if t.category_id == category_id
            and start <= t.date <= end
            and not t.is_inflow
        ),
        ZERO,
    )


def _category_templates(
    state: LedgerState,
    month: date,
    fixed_due_day: int,
    variable_due_day: int,
) -> list[Bill]:
    prior_start, prior_end = month_bounds(month_start(month) - relativedelta(months=1))
    bills = []
    for category in state.categories:
        if category.nature == CategoryNature.FIXED_EXPENSE:
            prefix, due_day = "fixed", fixed_due_day
            source = FixedExpenseSource(category_id=category.id)
        elif category.nature == CategoryNature.VARIABLE_EXPENSE:
            prefix, due_day = "variable", variable_due_day
            source = VariableExpenseSource(category_id=category.id)
        else:
            continue

        estimate = category_spend(state.transactions, category.id, prior_start, prior_end)
        bills.append(Bill(
            id=f"{prefix}_{category.id}_{month_key(month)}",
            description=category.label,
            due_date=_day_in_month(month, due_day),
            expected_amount=round_money(estimate),
            source=source,
            suggested_category_id=category.id,
        ))
    return bills


def generate_templates(
    state: LedgerState,
    month: date,
    fixed_due_day: int = DEFAULT_FIXED_DUE_DAY,
    variable_due_day: int = DEFAULT_VARIABLE_DUE_DAY,
) -> dict[str, Bill]:
    """
    All generated bills for a month, keyed by deterministic id, with
    paid state derived from the ledger.
    """
    month = month_start(month)
    templates = (
        _loan_templates(state, month)
        + _insurance_templates(state, month)
        + _category_templates(state, month, fixed_due_day, variable_due_day)
    )
    return {
        bill.id: with_derived_payment(bill, state.transactions)
        for bill in templates
    }


# =============================================================================
# LAYER 3: MERGE
# =============================================================================

def apply_overrides(
    generated: dict[str, Bill],
    overrides: dict[str, Bill],
    ledger_transactions: Optional[Iterable[Transaction]] = None,
) -> dict[str, Bill]:
    """
    Merge persisted user edits on top of freshly generated bills.

    The override wins for exclusion, amount and suggested account or
    category. A payment recorded only on the override is honoured when
    its transaction exists in `ledger_transactions`; without a ledger
    the override is trusted as is.
    """
    transactions = list(ledger_transactions) if ledger_transactions is not None else None
    tx_by_id = {t.id: t for t in transactions} if transactions is not None else None

    merged = {}
    for bill_id, base in generated.items():
        override = overrides.get(bill_id)
        if override is None:
            merged[bill_id] = base
            continue

        update = {
            "is_excluded": override.is_excluded,
            "expected_amount": override.expected_amount,
            "suggested_account_id": override.suggested_account_id or base.suggested_account_id,
            "suggested_category_id": override.suggested_category_id or base.suggested_category_id,
        }

        if not base.is_paid and (override.transaction_id or override.payment_date):
            if tx_by_id is None:
                update.update({
                    "is_paid": override.is_paid,
                    "payment_date": override.payment_date,
                    "transaction_id": override.transaction_id,
                })
            elif override.transaction_id in tx_by_id:
                tx = tx_by_id[override.transaction_id]
                update.update({
                    "is_paid": True,
                    "payment_date": tx.date,
                    "transaction_id": tx.id,
                })
            else:
                logger.warning(
                    "override_payment_dangling",
                    bill_id=bill_id,
                    transaction_id=override.transaction_id,
                )

        merged[bill_id] = base.model_copy(update=update)
    return merged


def _visible(bill: Bill) -> bool:
    return bill.is_paid or not bill.is_excluded


def _sorted(bills: Iterable[Bill]) -> list[Bill]:
    return sorted(bills, key=lambda b: (b.due_date, b.id))


def bills_for_month(
    state: LedgerState,
    month: date,
    include_templates: bool = True,
    fixed_due_day: int = DEFAULT_FIXED_DUE_DAY,
    variable_due_day: int = DEFAULT_VARIABLE_DUE_DAY,
) -> list[Bill]:
    """
    The bills view for a month.

    With `include_templates=False` only ad-hoc bills and already paid
    bills are returned, the lightweight "what changed" view.
    """
    month = month_start(month)
    overrides = load_overrides(state.bills, month)

    ad_hoc = [
        with_derived_payment(bill, state.transactions)
        for bill in overrides.values()
        if bill.is_ad_hoc and in_month(bill.due_date, month)
    ]
    template_overrides = {
        bill_id: bill for bill_id, bill in overrides.items() if not bill.is_ad_hoc
    }

    if not include_templates:
        paid_persisted = [
            bill for bill in (
                with_derived_payment(b, state.transactions)
                for b in template_overrides.values()
            )
            if bill.is_paid
        ]
        return _sorted(b for b in ad_hoc + paid_persisted if _visible(b))

    generated = generate_templates(state, month, fixed_due_day, variable_due_day)
    merged = apply_overrides(generated, template_overrides, state.transactions)

    # Paid history stays visible when its template is no longer generated
    orphans = [
        bill for bill in (
            with_derived_payment(b, state.transactions)
            for bill_id, b in template_overrides.items()
            if bill_id not in generated
        )
        if bill.is_paid
    ]

    result = [b for b in ad_hoc + list(merged.values()) + orphans if _visible(b)]
    return _sorted(result)


# =============================================================================
# MONTH SUMMARIES
# =============================================================================

def is_contabilized(tx: Transaction) -> bool:
    """Imported transactions only count once conciliated."""
    return tx.meta.source != TransactionSource.IMPORT or tx.conciliated


def external_paid_expenses(state: LedgerState, month: date) -> list[Transaction]:
    """
    Spending in the month that no bill manages: manual entries and
    imported lines, outflows of an expense-like type.
    """
    first, last = month_bounds(month)
    return sorted(
        (
            t for t in state.transactions
            if first <= t.date <= last
            and t.flow == Flow.OUT
            and t.operation_type in EXTERNAL_EXPENSE_TYPES
            and is_contabilized(t)
            and t.meta.source != TransactionSource.BILL_TRACKER
            and t.links.bill_id is None
        ),
        key=lambda t: (t.date, t.id),
    )


def month_totals(bills: Iterable[Bill]) -> MonthTotals:
    totals = MonthTotals()
    for bill in bills:
        if bill.is_paid:
            totals.total_paid += bill.expected_amount
            totals.paid_count += 1
        elif not bill.is_excluded:
            totals.total_unpaid += bill.expected_amount
            totals.unpaid_count += 1
    return totals
